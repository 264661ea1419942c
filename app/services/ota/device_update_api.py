# app/services/ota/device_update_api.py
import logging

from app.core.errors import IntegrityError, NoPendingUpdateError, NotFoundError
from app.db.models.ota import DeploymentStatus, DeviceUpdate, UpdateStatus
from app.db.repositories.ota_repository import OTARepository
from app.schemas.ota import FirmwareUpdate, UpdateStatusReport
from app.services.ota.device_update_tracker import DeviceUpdateTracker
from app.services.ota.rollout_controller import RolloutController
from app.services.ota.runtime import OTARuntime

logger = logging.getLogger(__name__)


class DeviceUpdateAPI:
    """Device-facing operations: poll for an update, report progress"""

    def __init__(
        self,
        repository: OTARepository,
        runtime: OTARuntime,
        tracker: DeviceUpdateTracker,
        controller: RolloutController,
    ):
        self.repository = repository
        self.runtime = runtime
        self.tracker = tracker
        self.controller = controller

    def get_update_for_device(self, device_id: str) -> FirmwareUpdate:
        """
        Describe the update a device should install now.

        Raises NoPendingUpdateError when the device's latest update is not
        pending or its deployment is not running; that is the normal
        "nothing to do" answer, not a failure.
        """
        device_update = self.tracker.get_latest_update_for_device(device_id)
        if device_update is None or device_update.status != UpdateStatus.PENDING.value:
            raise NoPendingUpdateError(f"No pending update for device {device_id}")

        try:
            deployment = self.repository.get_deployment(device_update.deployment_id)
        except NotFoundError:
            raise NoPendingUpdateError(f"No pending update for device {device_id}")
        if deployment.status != DeploymentStatus.ACTIVE.value:
            raise NoPendingUpdateError(
                f"No pending update for device {device_id}: deployment {deployment.deployment_id} is {deployment.status}"
            )

        release = self.repository.get_release(device_update.release_id)
        if not release.binary_hash or not release.signature:
            raise IntegrityError(f"Release {release.release_id} is missing its hash or signature")

        binary_url = self.runtime.storage.get_binary_url(
            release.binary_path, self.runtime.settings.BINARY_URL_EXPIRY_SECONDS
        )

        logger.info(f"Serving update {release.version} ({release.release_id}) to device {device_id}")
        return FirmwareUpdate(
            release_id=release.release_id,
            version=release.version,
            binary_url=binary_url,
            binary_hash=release.binary_hash,
            binary_size=release.binary_size,
            signature=release.signature,
        )

    def report_update_status(self, report: UpdateStatusReport) -> DeviceUpdate:
        return self.controller.report_update_status(report)
