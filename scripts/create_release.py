#!/usr/bin/env python3
"""
Publish a signed firmware release to the OTA service

Usage:
    python scripts/create_release.py --template-id esp32-sensor --version 1.0.5 \
        --channel stable --file build/esp32_v1.0.5.bin

Environment Variables:
    BASE_URL: Backend base URL (default: http://localhost:8000)
    ADMIN_USER: Admin username
    ADMIN_PASS: Admin password
"""
import os
import sys
import argparse
import requests


def create_release(
    template_id: str,
    version: str,
    channel: str,
    file_path: str,
    base_url: str,
    admin_user: str,
    admin_pass: str,
    release_notes: str = None,
    created_by: str = None
):
    """Upload a binary and create a release from it"""

    if not os.path.exists(file_path):
        print(f"Error: File not found: {file_path}")
        sys.exit(1)

    url = f"{base_url}/api/ota/releases"

    with open(file_path, 'rb') as f:
        files = {'binary': (os.path.basename(file_path), f, 'application/octet-stream')}
        data = {
            'template_id': template_id,
            'version': version,
            'channel': channel,
        }
        if release_notes:
            data['release_notes'] = release_notes
        if created_by:
            data['created_by'] = created_by

        try:
            print(f"Creating release {template_id} {version} ({channel}) from {file_path}...")
            response = requests.post(
                url,
                files=files,
                data=data,
                auth=(admin_user, admin_pass),
                timeout=300  # large binaries
            )
            response.raise_for_status()
            release = response.json()
        except requests.exceptions.ConnectionError:
            print(f"[ERROR] Cannot connect to backend server at {base_url}")
            sys.exit(1)
        except requests.exceptions.RequestException as e:
            print(f"[ERROR] Error creating release: {e}")
            if e.response is not None:
                try:
                    print(f"   Details: {e.response.json()}")
                except ValueError:
                    print(f"   Status: {e.response.status_code}")
                    print(f"   Response: {e.response.text[:200]}")
            sys.exit(1)

    print(f"[SUCCESS] Release {release['release_id']} created")
    print(f"   SHA256: {release['binary_hash']}")
    print(f"   Size: {release['binary_size']} bytes")
    print(f"   Signature: {release['signature'][:32]}...")
    return release


def main():
    parser = argparse.ArgumentParser(description='Create a firmware release')
    parser.add_argument('--template-id', required=True, help='Template the firmware was built from')
    parser.add_argument('--version', required=True, help='Firmware version (e.g., 1.0.5)')
    parser.add_argument('--channel', default='stable', choices=['stable', 'beta', 'alpha'],
                        help='Release channel')
    parser.add_argument('--file', required=True, help='Path to firmware binary file')
    parser.add_argument('--base-url', default=os.getenv('BASE_URL', 'http://localhost:8000'),
                        help='Backend base URL')
    parser.add_argument('--admin-user', default=os.getenv('ADMIN_USER', 'admin'),
                        help='Admin username')
    parser.add_argument('--admin-pass', default=os.getenv('ADMIN_PASS'),
                        help='Admin password')
    parser.add_argument('--release-notes', help='Release notes for this version')
    parser.add_argument('--created-by', default=os.getenv('USER'), help='Operator name')

    args = parser.parse_args()

    if not args.admin_pass:
        print("Error: Admin password required. Set ADMIN_PASS environment variable or use --admin-pass")
        sys.exit(1)

    create_release(
        template_id=args.template_id,
        version=args.version,
        channel=args.channel,
        file_path=args.file,
        base_url=args.base_url,
        admin_user=args.admin_user,
        admin_pass=args.admin_pass,
        release_notes=args.release_notes,
        created_by=args.created_by
    )


if __name__ == '__main__':
    main()
