# app/services/ota/deployment_planner.py
import hashlib
import logging
from datetime import datetime
from typing import List

from app.core.errors import ValidationError
from app.db.models.ota import (
    DeploymentStatus,
    DeploymentStrategy,
    DeviceUpdate,
    FirmwareRelease,
    OTADeployment,
    TERMINAL_DEPLOYMENT_STATUSES,
    UpdateStatus,
)
from app.db.repositories.ota_repository import OTARepository
from app.schemas.ota import DeploymentConfig
from app.services.ota.runtime import OTARuntime

logger = logging.getLogger(__name__)

VALID_STRATEGIES = [s.value for s in DeploymentStrategy]


def staged_subset_size(candidate_count: int, rollout_percentage: int) -> int:
    """floor(pct% of N), but never zero devices for a positive percentage"""
    size = (candidate_count * rollout_percentage) // 100
    if size == 0 and rollout_percentage > 0:
        size = 1
    return min(size, candidate_count)


def select_target_devices(release_id: str, candidates: List[str], strategy: str, rollout_percentage: int) -> List[str]:
    """
    Pick the frozen target set of a deployment.

    Staged rollouts take a deterministic subset: candidates are ranked by
    SHA256 of ``"<release_id>:<device_id>"`` so the same release always
    reaches the same devices first, independent of registry ordering.
    """
    if strategy != DeploymentStrategy.STAGED.value:
        return list(candidates)

    ranked = sorted(
        candidates,
        key=lambda device_id: hashlib.sha256(f"{release_id}:{device_id}".encode("utf-8")).hexdigest(),
    )
    return ranked[:staged_subset_size(len(candidates), rollout_percentage)]


def transition_deployment(
    repository: OTARepository,
    runtime: OTARuntime,
    deployment_id: str,
    from_status: DeploymentStatus,
    to_status: DeploymentStatus,
) -> OTADeployment:
    """Move a deployment between two statuses with a versioned write"""

    def mutate(deployment: OTADeployment):
        if deployment.status != from_status.value:
            raise ValidationError(
                f"Deployment must be {from_status.value} to become {to_status.value}, current status: {deployment.status}"
            )
        return {"status": to_status.value}

    with runtime.deployment_locks.hold(deployment_id):
        deployment = repository.mutate_deployment(
            deployment_id, mutate, attempts=runtime.settings.DEPLOYMENT_WRITE_RETRIES
        )

    logger.info(f"Deployment {deployment_id}: {from_status.value} -> {to_status.value}")
    return deployment


class DeploymentPlanner:
    """Turns a release plus a rollout config into a persisted deployment"""

    def __init__(self, repository: OTARepository, runtime: OTARuntime):
        self.repository = repository
        self.runtime = runtime

    def _validate_config(self, config: DeploymentConfig) -> DeploymentConfig:
        if config is None:
            raise ValidationError("Deployment config cannot be empty")

        if config.strategy not in VALID_STRATEGIES:
            raise ValidationError(f"Invalid deployment strategy: {config.strategy}. Valid values: {', '.join(VALID_STRATEGIES)}")

        rollout_percentage = config.rollout_percentage
        if config.strategy == DeploymentStrategy.IMMEDIATE.value:
            rollout_percentage = 100
        elif rollout_percentage is None or not 1 <= rollout_percentage <= 100:
            raise ValidationError("Rollout percentage must be between 1 and 100")

        failure_threshold = config.failure_threshold
        if failure_threshold is None or failure_threshold == 0:
            failure_threshold = self.runtime.settings.DEFAULT_FAILURE_THRESHOLD
        elif not 0 < failure_threshold <= 100:
            raise ValidationError("Failure threshold must be between 0 and 100")

        return config.model_copy(update={
            "rollout_percentage": rollout_percentage,
            "failure_threshold": failure_threshold,
        })

    def _resolve_candidates(self, release: FirmwareRelease, config: DeploymentConfig) -> List[str]:
        if config.target_devices:
            candidates = config.target_devices
        else:
            candidates = self.runtime.device_registry.list_devices(release.template_id, release.channel)
        # Drop duplicates and blanks, keep registry order
        return list(dict.fromkeys(d for d in candidates if d))

    def deploy_release(self, release_id: str, config: DeploymentConfig) -> OTADeployment:
        """
        Create a deployment of ``release_id`` and one pending device update
        per target device, in a single transaction. Immediate deployments
        start ``active``; staged and canary ones start ``pending`` and wait
        for activation.
        """
        release = self.repository.get_release(release_id)
        config = self._validate_config(config)

        candidates = self._resolve_candidates(release, config)
        if not candidates:
            raise ValidationError(
                "No target devices found for deployment",
                detail={"template_id": release.template_id, "channel": release.channel},
            )

        target_devices = select_target_devices(
            release.release_id, candidates, config.strategy, config.rollout_percentage
        )
        self._check_retargeting(release.release_id, target_devices)

        if config.strategy == DeploymentStrategy.IMMEDIATE.value:
            status = DeploymentStatus.ACTIVE.value
        else:
            status = DeploymentStatus.PENDING.value

        now = datetime.utcnow()
        deployment = OTADeployment(
            release_id=release.release_id,
            strategy=config.strategy,
            rollout_percentage=config.rollout_percentage,
            target_devices=target_devices,
            status=status,
            failure_threshold=config.failure_threshold,
            success_count=0,
            failure_count=0,
            created_at=now,
            updated_at=now,
        )

        try:
            self.repository.create_deployment(deployment, commit=False)
            for device_id in target_devices:
                self._assign_update(device_id, release.release_id, deployment.deployment_id, now)
            self.repository.commit()
        except Exception:
            self.repository.rollback()
            raise

        deployment = self.repository.get_deployment(deployment.deployment_id)
        logger.info(
            f"Created deployment {deployment.deployment_id}: release={release_id}, strategy={config.strategy}, "
            f"target_devices={len(target_devices)}/{len(candidates)}, status={status}"
        )
        return deployment

    def _check_retargeting(self, release_id: str, target_devices: List[str]) -> None:
        """
        Refuse to take over device updates of this release that still belong
        to a pending or running deployment; that deployment could never
        finish without them.
        """
        conflicts = {}
        for device_id in target_devices:
            existing = self.repository.find_device_update(device_id, release_id)
            if existing is None:
                continue
            owner = self.repository.find_deployment(existing.deployment_id)
            if owner is not None and owner.status not in TERMINAL_DEPLOYMENT_STATUSES:
                conflicts.setdefault(owner.deployment_id, []).append(device_id)

        if conflicts:
            raise ValidationError(
                "Devices are already targeted with this release by an unfinished deployment",
                detail={"release_id": release_id, "deployments": conflicts},
            )

    def _assign_update(self, device_id: str, release_id: str, deployment_id: str, now: datetime) -> None:
        existing = self.repository.find_device_update(device_id, release_id)
        if existing is not None:
            # Owning deployment is finished, see _check_retargeting
            existing.deployment_id = deployment_id
            existing.status = UpdateStatus.PENDING.value
            existing.progress = 0
            existing.error_message = None
            existing.started_at = now
            existing.completed_at = None
            self.repository.session.add(existing)
            return

        self.repository.create_device_update(
            DeviceUpdate(
                device_id=device_id,
                release_id=release_id,
                deployment_id=deployment_id,
                status=UpdateStatus.PENDING.value,
                progress=0,
                started_at=now,
            ),
            commit=False,
        )

    def pause_deployment(self, deployment_id: str) -> OTADeployment:
        return transition_deployment(
            self.repository, self.runtime, deployment_id, DeploymentStatus.ACTIVE, DeploymentStatus.PAUSED
        )

    def resume_deployment(self, deployment_id: str) -> OTADeployment:
        return transition_deployment(
            self.repository, self.runtime, deployment_id, DeploymentStatus.PAUSED, DeploymentStatus.ACTIVE
        )
