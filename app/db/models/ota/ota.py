# app/db/models/ota/ota.py
from enum import Enum
from typing import List, Optional
from sqlalchemy import JSON, Column
from sqlmodel import SQLModel, Field
from datetime import datetime
import uuid


class ReleaseChannel(str, Enum):
    STABLE = "stable"
    BETA = "beta"
    ALPHA = "alpha"


class DeploymentStrategy(str, Enum):
    IMMEDIATE = "immediate"
    STAGED = "staged"
    CANARY = "canary"


class DeploymentStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"


class UpdateStatus(str, Enum):
    PENDING = "pending"
    DOWNLOADING = "downloading"
    INSTALLING = "installing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_DEPLOYMENT_STATUSES = {
    DeploymentStatus.COMPLETED.value,
    DeploymentStatus.FAILED.value,
    DeploymentStatus.ROLLED_BACK.value,
}

TERMINAL_UPDATE_STATUSES = {UpdateStatus.COMPLETED.value, UpdateStatus.FAILED.value}

# Forward order of a device update; failed is reachable from any non-terminal step
UPDATE_STATUS_ORDER = {
    UpdateStatus.PENDING.value: 0,
    UpdateStatus.DOWNLOADING.value: 1,
    UpdateStatus.INSTALLING.value: 2,
    UpdateStatus.COMPLETED.value: 3,
}


class FirmwareRelease(SQLModel, table=True):
    """Signed firmware binary published for one template on one channel"""
    __tablename__ = "firmware_releases"

    release_id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    template_id: str = Field(max_length=100, index=True)
    version: str = Field(max_length=50)  # e.g., "1.0.4"
    channel: str = Field(max_length=10, index=True)  # stable / beta / alpha
    binary_hash: str = Field(max_length=64)  # SHA256 hex digest
    binary_path: str = Field(max_length=500)  # Opaque storage reference
    binary_size: int = Field()  # Size in bytes
    signature: str = Field()  # Base64 RSA-PSS signature
    release_notes: Optional[str] = Field(default=None)
    created_at: datetime = Field(default_factory=datetime.utcnow, index=True)
    created_by: Optional[str] = Field(default=None, max_length=100)


class OTADeployment(SQLModel, table=True):
    """Rollout of one release to a frozen set of devices"""
    __tablename__ = "ota_deployments"

    deployment_id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    release_id: str = Field(max_length=36, index=True)
    strategy: str = Field(max_length=20)
    rollout_percentage: int = Field(default=100)
    target_devices: List[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    status: str = Field(max_length=20, index=True)
    failure_threshold: int = Field(default=10)  # Percent of target devices
    success_count: int = Field(default=0)
    failure_count: int = Field(default=0)
    version: int = Field(default=0)  # Bumped on every write, see OTARepository.update_deployment
    created_at: datetime = Field(default_factory=datetime.utcnow, index=True)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class DeviceUpdate(SQLModel, table=True):
    """One device's progress through one release"""
    __tablename__ = "device_updates"

    device_id: str = Field(max_length=100, primary_key=True)
    release_id: str = Field(max_length=36, primary_key=True)
    deployment_id: str = Field(max_length=36, index=True)
    status: str = Field(max_length=20, index=True)
    progress: int = Field(default=0)  # 0-100
    error_message: Optional[str] = Field(default=None, max_length=500)
    started_at: datetime = Field(default_factory=datetime.utcnow, index=True)
    completed_at: Optional[datetime] = Field(default=None)
