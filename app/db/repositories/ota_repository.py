# app/db/repositories/ota_repository.py
import logging
from collections import namedtuple
from datetime import datetime
from typing import Callable, List, Optional

from sqlalchemy import func, update
from sqlmodel import Session, select

from app.core.errors import ConcurrencyError, NotFoundError, ValidationError
from app.db.models.ota import (
    DeviceUpdate,
    FirmwareRelease,
    OTADeployment,
    DeploymentStatus,
    UpdateStatus,
)

logger = logging.getLogger(__name__)

DeploymentStats = namedtuple("DeploymentStats", ["success_count", "failure_count", "pending_count"])


class OTARepository:
    """SQLModel-backed store for releases, deployments and device updates"""

    def __init__(self, session: Session):
        self.session = session

    def commit(self) -> None:
        self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()

    # Firmware releases

    def create_release(self, release: FirmwareRelease, commit: bool = True) -> FirmwareRelease:
        if self.release_exists(release.release_id):
            raise ValidationError(f"Release {release.release_id} already exists")
        self.session.add(release)
        if commit:
            self.session.commit()
            self.session.refresh(release)
        return release

    def get_release(self, release_id: str) -> FirmwareRelease:
        if not release_id:
            raise ValidationError("Release ID cannot be empty")
        release = self.session.get(FirmwareRelease, release_id)
        if release is None:
            raise NotFoundError(f"Release {release_id} not found")
        return release

    def get_release_by_version(self, template_id: str, version: str, channel: str) -> Optional[FirmwareRelease]:
        statement = select(FirmwareRelease).where(
            FirmwareRelease.template_id == template_id,
            FirmwareRelease.version == version,
            FirmwareRelease.channel == channel,
        )
        return self.session.exec(statement).first()

    def list_releases(self, template_id: Optional[str] = None, channel: Optional[str] = None) -> List[FirmwareRelease]:
        """Releases newest first, optionally filtered by template and channel"""
        statement = select(FirmwareRelease)
        if template_id:
            statement = statement.where(FirmwareRelease.template_id == template_id)
        if channel:
            statement = statement.where(FirmwareRelease.channel == channel)
        statement = statement.order_by(FirmwareRelease.created_at.desc())
        return list(self.session.exec(statement).all())

    def delete_release(self, release_id: str) -> None:
        release = self.get_release(release_id)
        self.session.delete(release)
        self.session.commit()

    def release_exists(self, release_id: str) -> bool:
        return self.session.get(FirmwareRelease, release_id) is not None

    # Deployments

    def create_deployment(self, deployment: OTADeployment, commit: bool = True) -> OTADeployment:
        self.session.add(deployment)
        if commit:
            self.session.commit()
            self.session.refresh(deployment)
        return deployment

    def find_deployment(self, deployment_id: str) -> Optional[OTADeployment]:
        return self.session.get(OTADeployment, deployment_id)

    def get_deployment(self, deployment_id: str) -> OTADeployment:
        if not deployment_id:
            raise ValidationError("Deployment ID cannot be empty")
        deployment = self.session.get(OTADeployment, deployment_id)
        if deployment is None:
            raise NotFoundError(f"Deployment {deployment_id} not found")
        return deployment

    def update_deployment(self, deployment: OTADeployment, values: dict) -> bool:
        """
        Compare-and-swap write of ``values`` onto a deployment.

        The row is only written if its version still equals the version the
        caller loaded. Returns False when another writer got there first;
        the session is rolled back in that case so the next read is fresh.
        """
        expected_version = deployment.version
        values = dict(values, version=expected_version + 1, updated_at=datetime.utcnow())
        statement = (
            update(OTADeployment)
            .where(OTADeployment.deployment_id == deployment.deployment_id)
            .where(OTADeployment.version == expected_version)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = self.session.exec(statement)
        if result.rowcount != 1:
            self.session.rollback()
            return False
        self.session.commit()
        return True

    def mutate_deployment(
        self,
        deployment_id: str,
        mutate: Callable[[OTADeployment], Optional[dict]],
        attempts: int = 5,
    ) -> OTADeployment:
        """
        Reload, compute changes and write them with ``update_deployment``,
        retrying on version conflicts. ``mutate`` must not modify the
        deployment it is given; it returns the column values to write, or
        None when there is nothing to change.
        """
        for attempt in range(1, attempts + 1):
            deployment = self.get_deployment(deployment_id)
            self.session.refresh(deployment)
            values = mutate(deployment)
            if not values:
                return deployment
            if self.update_deployment(deployment, values):
                return self.get_deployment(deployment_id)
            logger.warning(f"Version conflict writing deployment {deployment_id} (attempt {attempt}/{attempts})")
        raise ConcurrencyError(f"Deployment {deployment_id} kept changing; gave up after {attempts} attempts")

    def list_deployments(self, release_id: Optional[str] = None) -> List[OTADeployment]:
        statement = select(OTADeployment)
        if release_id:
            statement = statement.where(OTADeployment.release_id == release_id)
        statement = statement.order_by(OTADeployment.created_at.desc())
        return list(self.session.exec(statement).all())

    def get_active_deployments(self) -> List[OTADeployment]:
        statement = select(OTADeployment).where(
            OTADeployment.status == DeploymentStatus.ACTIVE.value
        ).order_by(OTADeployment.created_at.desc())
        return list(self.session.exec(statement).all())

    # Device updates

    def create_device_update(self, device_update: DeviceUpdate, commit: bool = True) -> DeviceUpdate:
        self.session.add(device_update)
        if commit:
            self.session.commit()
            self.session.refresh(device_update)
        return device_update

    def find_device_update(self, device_id: str, release_id: str) -> Optional[DeviceUpdate]:
        return self.session.get(DeviceUpdate, (device_id, release_id))

    def get_device_update(self, device_id: str, release_id: str) -> DeviceUpdate:
        if not device_id or not release_id:
            raise ValidationError("Device ID and release ID cannot be empty")
        device_update = self.find_device_update(device_id, release_id)
        if device_update is None:
            raise NotFoundError(f"Device update not found for device {device_id} and release {release_id}")
        return device_update

    def get_latest_update_for_device(self, device_id: str) -> Optional[DeviceUpdate]:
        statement = select(DeviceUpdate).where(
            DeviceUpdate.device_id == device_id
        ).order_by(DeviceUpdate.started_at.desc())
        return self.session.exec(statement).first()

    def update_device_update(self, device_update: DeviceUpdate) -> DeviceUpdate:
        self.session.add(device_update)
        self.session.commit()
        self.session.refresh(device_update)
        return device_update

    def list_device_updates(self, deployment_id: str) -> List[DeviceUpdate]:
        statement = select(DeviceUpdate).where(
            DeviceUpdate.deployment_id == deployment_id
        ).order_by(DeviceUpdate.started_at.desc())
        return list(self.session.exec(statement).all())

    def get_device_updates_by_status(self, deployment_id: str, status: str) -> List[DeviceUpdate]:
        statement = select(DeviceUpdate).where(
            DeviceUpdate.deployment_id == deployment_id,
            DeviceUpdate.status == status,
        ).order_by(DeviceUpdate.started_at.desc())
        return list(self.session.exec(statement).all())

    def get_devices_pending_update(self, deployment_id: str, limit: int = 0) -> List[DeviceUpdate]:
        """Oldest pending updates first"""
        statement = select(DeviceUpdate).where(
            DeviceUpdate.deployment_id == deployment_id,
            DeviceUpdate.status == UpdateStatus.PENDING.value,
        ).order_by(DeviceUpdate.started_at)
        if limit > 0:
            statement = statement.limit(limit)
        return list(self.session.exec(statement).all())

    def get_deployment_stats(self, deployment_id: str) -> DeploymentStats:
        """Count every device update row of the deployment by outcome"""
        statement = select(DeviceUpdate.status, func.count()).where(
            DeviceUpdate.deployment_id == deployment_id
        ).group_by(DeviceUpdate.status)
        counts = dict(self.session.exec(statement).all())
        return DeploymentStats(
            success_count=counts.get(UpdateStatus.COMPLETED.value, 0),
            failure_count=counts.get(UpdateStatus.FAILED.value, 0),
            pending_count=sum(
                counts.get(status.value, 0)
                for status in (UpdateStatus.PENDING, UpdateStatus.DOWNLOADING, UpdateStatus.INSTALLING)
            ),
        )
