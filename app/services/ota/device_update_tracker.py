# app/services/ota/device_update_tracker.py
from typing import List, Optional

from app.core.errors import ValidationError
from app.db.models.ota import DeviceUpdate, UpdateStatus
from app.db.repositories.ota_repository import DeploymentStats, OTARepository


class DeviceUpdateTracker:
    """Reads and writes per-device update records of a deployment"""

    def __init__(self, repository: OTARepository):
        self.repository = repository

    def get_device_update(self, device_id: str, release_id: str) -> DeviceUpdate:
        return self.repository.get_device_update(device_id, release_id)

    def get_latest_update_for_device(self, device_id: str) -> Optional[DeviceUpdate]:
        """The most recently started update record of a device, if any"""
        return self.repository.get_latest_update_for_device(device_id)

    def list_device_updates(self, deployment_id: str) -> List[DeviceUpdate]:
        return self.repository.list_device_updates(deployment_id)

    def update_device_update(self, device_update: DeviceUpdate) -> DeviceUpdate:
        return self.repository.update_device_update(device_update)

    def get_device_updates_by_status(self, deployment_id: str, status: str) -> List[DeviceUpdate]:
        if status not in {s.value for s in UpdateStatus}:
            raise ValidationError(f"Invalid update status: {status}")
        return self.repository.get_device_updates_by_status(deployment_id, status)

    def get_devices_pending_update(self, deployment_id: str, limit: int = 0) -> List[DeviceUpdate]:
        return self.repository.get_devices_pending_update(deployment_id, limit)

    def get_deployment_stats(self, deployment_id: str) -> DeploymentStats:
        """(success, failure, pending) recomputed from every row of the deployment"""
        return self.repository.get_deployment_stats(deployment_id)
