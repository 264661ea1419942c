#!/usr/bin/env python3
"""
Generate the RSA key pair used to sign firmware releases

Usage:
    python scripts/generate_signing_keys.py --out-dir ./keys

Then point SIGNING_PRIVATE_KEY_PATH / SIGNING_PUBLIC_KEY_PATH at the files.
Devices only ever need the public key.
"""
import os
import sys
import argparse
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from app.services.ota.signing import generate_key_pair  # noqa: E402


def main():
    parser = argparse.ArgumentParser(description='Generate firmware signing keys')
    parser.add_argument('--out-dir', default='./keys', help='Directory for the PEM files')
    parser.add_argument('--bits', type=int, default=2048, help='RSA key size')
    parser.add_argument('--force', action='store_true', help='Overwrite existing keys')
    args = parser.parse_args()

    out_dir = Path(args.out_dir)
    private_path = out_dir / 'signing_private.pem'
    public_path = out_dir / 'signing_public.pem'

    if private_path.exists() and not args.force:
        print(f"Error: {private_path} already exists (use --force to overwrite)")
        sys.exit(1)

    out_dir.mkdir(parents=True, exist_ok=True)
    private_pem, public_pem = generate_key_pair(args.bits)

    private_path.write_bytes(private_pem)
    os.chmod(private_path, 0o600)
    public_path.write_bytes(public_pem)

    print(f"[SUCCESS] Wrote {private_path} and {public_path}")
    print(f"   SIGNING_PRIVATE_KEY_PATH={private_path}")
    print(f"   SIGNING_PUBLIC_KEY_PATH={public_path}")


if __name__ == '__main__':
    main()
