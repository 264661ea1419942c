# app/services/ota/rollout_controller.py
import logging
from collections import Counter
from datetime import datetime
from typing import Callable, Optional

from app.core.errors import OTAError, ValidationError
from app.db.models.ota import (
    DeploymentStatus,
    DeviceUpdate,
    OTADeployment,
    TERMINAL_UPDATE_STATUSES,
    UPDATE_STATUS_ORDER,
    UpdateStatus,
)
from app.db.repositories.ota_repository import OTARepository
from app.schemas.ota import DeploymentStatusReport, UpdateStatusReport
from app.services.ota.deployment_planner import transition_deployment
from app.services.ota.device_update_tracker import DeviceUpdateTracker
from app.services.ota.runtime import OTARuntime

logger = logging.getLogger(__name__)

VALID_UPDATE_STATUSES = [s.value for s in UpdateStatus]

# Only running deployments change status in response to device reports
RUNNING_STATUSES = {DeploymentStatus.ACTIVE.value, DeploymentStatus.PAUSED.value}


def derive_deployment_status(current: str, success_count: int, failure_count: int, total_devices: int,
                             failure_threshold: int) -> str:
    """Status a running deployment should have given its fresh counters"""
    if current not in RUNNING_STATUSES or total_devices == 0:
        return current
    if failure_count * 100 >= failure_threshold * total_devices:
        return DeploymentStatus.FAILED.value
    if success_count == total_devices:
        return DeploymentStatus.COMPLETED.value
    return current


def progress_percentage(completed_count: int, total_devices: int) -> int:
    """completed/total as a percentage, rounded half up"""
    if total_devices <= 0:
        return 0
    return (completed_count * 200 + total_devices) // (2 * total_devices)


class RolloutController:
    """Drives deployments from device status reports"""

    def __init__(
        self,
        repository: OTARepository,
        runtime: OTARuntime,
        tracker: DeviceUpdateTracker,
        on_deployment_failed: Optional[Callable[[str], object]] = None,
    ):
        self.repository = repository
        self.runtime = runtime
        self.tracker = tracker
        # Invoked with the deployment ID when a report pushes it past its failure threshold
        self.on_deployment_failed = on_deployment_failed

    def activate_deployment(self, deployment_id: str) -> OTADeployment:
        """Start a pending (staged or canary) deployment"""
        return transition_deployment(
            self.repository, self.runtime, deployment_id, DeploymentStatus.PENDING, DeploymentStatus.ACTIVE
        )

    def report_update_status(self, report: UpdateStatusReport) -> DeviceUpdate:
        """
        Record a device's progress on a release and refresh the owning
        deployment.

        Reports against a record that already reached ``completed`` or
        ``failed`` leave the record untouched, so retried terminal reports
        are harmless. Reports that would move the status backwards are
        ignored as out of order.
        """
        if report.status not in VALID_UPDATE_STATUSES:
            raise ValidationError(f"Invalid update status: {report.status}. Valid values: {', '.join(VALID_UPDATE_STATUSES)}")
        if not 0 <= report.progress <= 100:
            raise ValidationError("Progress must be between 0 and 100")

        device_update = self.tracker.get_device_update(report.device_id, report.release_id)

        if device_update.status in TERMINAL_UPDATE_STATUSES:
            logger.info(
                f"Ignoring {report.status} report for device={report.device_id}, release={report.release_id}: "
                f"update already {device_update.status}"
            )
        elif self._apply_report(device_update, report):
            device_update = self.tracker.update_device_update(device_update)
            logger.info(
                f"OTA report received: device={report.device_id}, release={report.release_id}, "
                f"status={device_update.status}, progress={device_update.progress}"
            )

        deployment_id = device_update.deployment_id
        deployment, became_failed = self._refresh_deployment(deployment_id)

        if became_failed:
            self._handle_failed_deployment(deployment)

        return device_update

    @staticmethod
    def _apply_report(device_update: DeviceUpdate, report: UpdateStatusReport) -> bool:
        """Apply a report to a non-terminal record; False if nothing changed"""
        now = datetime.utcnow()

        if report.status == UpdateStatus.FAILED.value:
            device_update.status = report.status
            device_update.progress = report.progress
            device_update.error_message = report.error_message
            device_update.completed_at = now
            return True

        current_rank = UPDATE_STATUS_ORDER[device_update.status]
        new_rank = UPDATE_STATUS_ORDER[report.status]

        if new_rank < current_rank:
            logger.debug(
                f"Out-of-order report for device={device_update.device_id}: "
                f"{report.status} after {device_update.status}"
            )
            return False

        if new_rank == current_rank:
            if report.progress <= device_update.progress:
                return False
            device_update.progress = report.progress
            return True

        device_update.status = report.status
        device_update.progress = report.progress
        device_update.error_message = None
        if report.status == UpdateStatus.COMPLETED.value:
            device_update.completed_at = now
        return True

    def _refresh_deployment(self, deployment_id: str):
        """
        Rewrite the deployment's counters from its device updates and derive
        its status. Returns (deployment, became_failed).
        """
        written = {}

        def mutate(deployment: OTADeployment):
            written.clear()
            stats = self.tracker.get_deployment_stats(deployment.deployment_id)
            status = derive_deployment_status(
                deployment.status,
                stats.success_count,
                stats.failure_count,
                len(deployment.target_devices),
                deployment.failure_threshold,
            )
            values = {}
            if stats.success_count != deployment.success_count:
                values["success_count"] = stats.success_count
            if stats.failure_count != deployment.failure_count:
                values["failure_count"] = stats.failure_count
            if status != deployment.status:
                values["status"] = status
            written.update(values)
            return values or None

        with self.runtime.deployment_locks.hold(deployment_id):
            deployment = self.repository.mutate_deployment(
                deployment_id, mutate, attempts=self.runtime.settings.DEPLOYMENT_WRITE_RETRIES
            )

        new_status = written.get("status")
        if new_status:
            logger.info(
                f"Deployment {deployment_id} is now {new_status} "
                f"(success={deployment.success_count}, failure={deployment.failure_count}, "
                f"targets={len(deployment.target_devices)})"
            )
        return deployment, new_status == DeploymentStatus.FAILED.value

    def _handle_failed_deployment(self, deployment: OTADeployment) -> None:
        deployment_id = deployment.deployment_id
        logger.warning(
            f"Deployment {deployment_id} crossed its failure threshold of {deployment.failure_threshold}%"
        )

        if self.runtime.notifier is not None:
            self.runtime.notifier.send_deployment_failed_notification(
                deployment_id, deployment.failure_count, len(deployment.target_devices)
            )

        if not self.runtime.settings.AUTO_ROLLBACK_ENABLED or self.on_deployment_failed is None:
            return

        try:
            self.on_deployment_failed(deployment_id)
        except OTAError as e:
            logger.warning(f"Automatic rollback of deployment {deployment_id} failed: {e}")

    def get_deployment_status(self, deployment_id: str) -> DeploymentStatusReport:
        """Classify every device update of a deployment into a progress report"""
        deployment = self.repository.get_deployment(deployment_id)
        updates = self.tracker.list_device_updates(deployment_id)
        counts = Counter(u.status for u in updates)

        total_devices = len(deployment.target_devices)
        completed_count = counts[UpdateStatus.COMPLETED.value]

        return DeploymentStatusReport(
            deployment_id=deployment.deployment_id,
            release_id=deployment.release_id,
            status=deployment.status,
            strategy=deployment.strategy,
            total_devices=total_devices,
            pending_count=counts[UpdateStatus.PENDING.value],
            downloading_count=counts[UpdateStatus.DOWNLOADING.value],
            installing_count=counts[UpdateStatus.INSTALLING.value],
            completed_count=completed_count,
            failed_count=counts[UpdateStatus.FAILED.value],
            progress_percentage=progress_percentage(completed_count, total_devices),
            created_at=deployment.created_at,
            updated_at=deployment.updated_at,
        )
