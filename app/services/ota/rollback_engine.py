# app/services/ota/rollback_engine.py
import logging

from app.core.errors import ValidationError
from app.db.models.ota import DeploymentStatus, DeploymentStrategy, FirmwareRelease, OTADeployment
from app.db.repositories.ota_repository import OTARepository
from app.schemas.ota import DeploymentConfig
from app.services.ota.deployment_planner import DeploymentPlanner
from app.services.ota.runtime import OTARuntime

logger = logging.getLogger(__name__)

# Deployments that may be replaced by a rollback
ROLLBACK_SOURCE_STATUSES = {
    DeploymentStatus.ACTIVE.value,
    DeploymentStatus.PAUSED.value,
    DeploymentStatus.FAILED.value,
}


class RollbackEngine:
    """Replaces a failing deployment with an immediate one of the previous release"""

    def __init__(self, repository: OTARepository, runtime: OTARuntime, planner: DeploymentPlanner):
        self.repository = repository
        self.runtime = runtime
        self.planner = planner

    def find_previous_release(self, release: FirmwareRelease) -> FirmwareRelease:
        """Newest release of the same template and channel created before ``release``"""
        releases = self.repository.list_releases(release.template_id, release.channel)
        for candidate in releases:
            if candidate.release_id != release.release_id and candidate.created_at < release.created_at:
                return candidate
        raise ValidationError(
            "No previous release found for rollback",
            detail={"template_id": release.template_id, "channel": release.channel, "version": release.version},
        )

    @staticmethod
    def _check_rollback_source(status: str) -> None:
        if status not in ROLLBACK_SOURCE_STATUSES:
            raise ValidationError(
                f"Only active, paused or failed deployments can be rolled back, current status: {status}"
            )

    def rollback_deployment(self, deployment_id: str) -> OTADeployment:
        """
        Mark ``deployment_id`` failed and publish the previous release to
        the very same devices, mid-update ones included.

        Returns the new rollback deployment, which is ``active`` as soon as
        its device updates exist.
        """
        deployment = self.repository.get_deployment(deployment_id)
        self._check_rollback_source(deployment.status)
        release = self.repository.get_release(deployment.release_id)
        previous_release = self.find_previous_release(release)

        target_devices = list(deployment.target_devices)
        failure_threshold = deployment.failure_threshold

        def mark_failed(current: OTADeployment):
            self._check_rollback_source(current.status)
            if current.status == DeploymentStatus.FAILED.value:
                return None
            return {"status": DeploymentStatus.FAILED.value}

        with self.runtime.deployment_locks.hold(deployment_id):
            self.repository.mutate_deployment(
                deployment_id, mark_failed, attempts=self.runtime.settings.DEPLOYMENT_WRITE_RETRIES
            )

        rollback_config = DeploymentConfig(
            strategy=DeploymentStrategy.IMMEDIATE.value,
            rollout_percentage=100,
            failure_threshold=failure_threshold,
            target_devices=target_devices,
        )
        rollback = self.planner.deploy_release(previous_release.release_id, rollback_config)

        logger.info(
            f"Rolled back deployment {deployment_id}: rollback_deployment={rollback.deployment_id}, "
            f"release {release.version} -> {previous_release.version}"
        )

        if self.runtime.notifier is not None:
            self.runtime.notifier.send_rollback_notification(
                deployment_id, rollback.deployment_id, previous_release.version
            )

        return rollback
