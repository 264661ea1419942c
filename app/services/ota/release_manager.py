# app/services/ota/release_manager.py
import logging
import uuid
from datetime import datetime
from typing import List, Optional

from app.core.errors import IntegrityError, StorageError, ValidationError
from app.db.models.ota import FirmwareRelease, ReleaseChannel
from app.db.repositories.ota_repository import OTARepository
from app.services.ota.runtime import OTARuntime
from app.services.ota.signing import SignatureError, compute_hash

logger = logging.getLogger(__name__)

VALID_CHANNELS = [c.value for c in ReleaseChannel]


class ReleaseManager:
    """Creates, lists, deletes and verifies signed firmware releases"""

    def __init__(self, repository: OTARepository, runtime: OTARuntime):
        self.repository = repository
        self.runtime = runtime

    def create_release(
        self,
        template_id: str,
        version: str,
        channel: str,
        binary_data: bytes,
        release_notes: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> FirmwareRelease:
        """Hash, sign and store a firmware binary, then record the release"""
        if not template_id or not version or not binary_data:
            raise ValidationError("Template ID, version, and binary data are required")

        if channel not in VALID_CHANNELS:
            raise ValidationError(f"Invalid release channel: {channel}. Valid values: {', '.join(VALID_CHANNELS)}")

        max_size = self.runtime.settings.FIRMWARE_MAX_SIZE
        if len(binary_data) > max_size:
            raise ValidationError(f"Firmware file too large. Max size: {max_size} bytes")

        if self.repository.get_release_by_version(template_id, version, channel):
            raise ValidationError(f"Release {version} already exists for template {template_id} on {channel}")

        release_id = str(uuid.uuid4())
        binary_hash = compute_hash(binary_data)
        try:
            signature = self.runtime.signer.sign(binary_data)
        except SignatureError as e:
            raise IntegrityError(f"Failed to sign binary: {e}") from e

        binary_path = self.runtime.storage.store_binary(release_id, binary_data)

        release = FirmwareRelease(
            release_id=release_id,
            template_id=template_id,
            version=version,
            channel=channel,
            binary_hash=binary_hash,
            binary_path=binary_path,
            binary_size=len(binary_data),
            signature=signature,
            release_notes=release_notes,
            created_at=datetime.utcnow(),
            created_by=created_by,
        )

        try:
            self.repository.create_release(release)
        except Exception:
            self.repository.rollback()
            # Clean up binary if metadata creation failed
            try:
                self.runtime.storage.delete_binary(binary_path)
            except StorageError as cleanup_error:
                logger.error(f"Failed to remove orphaned binary {binary_path}: {cleanup_error}")
            raise

        logger.info(f"Created firmware release {release_id}: template={template_id}, version={version}, channel={channel}")

        if self.runtime.notifier is not None:
            self.runtime.notifier.send_release_notification(template_id, version, channel, release_notes)

        return release

    def get_release(self, release_id: str) -> FirmwareRelease:
        return self.repository.get_release(release_id)

    def list_releases(self, template_id: Optional[str] = None, channel: Optional[str] = None) -> List[FirmwareRelease]:
        if channel and channel not in VALID_CHANNELS:
            raise ValidationError(f"Invalid release channel: {channel}")
        return self.repository.list_releases(template_id, channel)

    def delete_release(self, release_id: str) -> None:
        """Delete the release record and its stored binary"""
        release = self.repository.get_release(release_id)
        binary_path = release.binary_path

        try:
            self.runtime.storage.delete_binary(binary_path)
        except StorageError as e:
            logger.warning(f"Failed to delete binary {binary_path} from storage: {e}")

        self.repository.delete_release(release_id)
        logger.info(f"Deleted firmware release {release_id}")

    def verify_release(self, release_id: str) -> None:
        """
        Check a stored release end to end.

        The stored binary is re-hashed and compared to ``binary_hash`` first;
        only then is the signature checked against the stored bytes. Raises
        IntegrityError if either check fails.
        """
        release = self.repository.get_release(release_id)
        binary_data = self.runtime.storage.get_binary(release.binary_path)

        computed_hash = compute_hash(binary_data)
        if computed_hash != release.binary_hash:
            logger.error(f"Hash mismatch for release {release_id}")
            raise IntegrityError(
                "Binary hash mismatch",
                detail={"expected": release.binary_hash, "actual": computed_hash},
            )

        try:
            self.runtime.signer.verify(binary_data, release.signature)
        except SignatureError as e:
            logger.error(f"Signature verification failed for release {release_id}: {e}")
            raise IntegrityError(f"Signature verification failed: {e}") from e

        logger.info(f"Verified firmware release {release_id}")
