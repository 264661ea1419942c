from typing import List, Optional
from pydantic import BaseModel, Field
from datetime import datetime


class FirmwareReleaseResponse(BaseModel):
    """Response schema for a firmware release"""
    release_id: str
    template_id: str
    version: str
    channel: str
    binary_hash: str
    binary_path: str
    binary_size: int
    signature: str
    release_notes: Optional[str] = None
    created_at: datetime
    created_by: Optional[str] = None

    model_config = {"from_attributes": True}


class ReleaseListResponse(BaseModel):
    count: int
    releases: List[FirmwareReleaseResponse]


class VerifyReleaseResponse(BaseModel):
    verified: bool
    message: str


class DeploymentConfig(BaseModel):
    """Rollout parameters of a new deployment"""
    strategy: str = Field(..., description="'immediate', 'staged' or 'canary'")
    rollout_percentage: Optional[int] = Field(100, ge=0, le=100, description="Share of eligible devices for staged rollouts")
    failure_threshold: Optional[int] = Field(None, ge=0, le=100, description="Percent of target devices allowed to fail")
    target_devices: Optional[List[str]] = Field(None, description="Explicit device IDs instead of a registry lookup")


class CreateDeploymentRequest(BaseModel):
    release_id: str
    config: DeploymentConfig


class DeploymentResponse(BaseModel):
    """Response schema for a deployment"""
    deployment_id: str
    release_id: str
    strategy: str
    rollout_percentage: int
    target_devices: List[str]
    status: str
    failure_threshold: int
    success_count: int
    failure_count: int
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class DeploymentListResponse(BaseModel):
    count: int
    deployments: List[DeploymentResponse]


class DeploymentStatusReport(BaseModel):
    """Aggregated progress of a deployment, classified from its device updates"""
    deployment_id: str
    release_id: str
    status: str
    strategy: str
    total_devices: int
    pending_count: int = 0
    downloading_count: int = 0
    installing_count: int = 0
    completed_count: int = 0
    failed_count: int = 0
    progress_percentage: int = 0
    created_at: datetime
    updated_at: datetime


class DeviceUpdateResponse(BaseModel):
    device_id: str
    release_id: str
    deployment_id: str
    status: str
    progress: int
    error_message: Optional[str] = None
    started_at: datetime
    completed_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class DeviceUpdateListResponse(BaseModel):
    count: int
    updates: List[DeviceUpdateResponse]


class FirmwareUpdate(BaseModel):
    """What a device needs to download, check and install an update"""
    release_id: str
    version: str
    binary_url: str
    binary_hash: str
    binary_size: int
    signature: str


class UpdateStatusReport(BaseModel):
    """Request schema for an update status report from a device"""
    device_id: str = Field(..., min_length=1, description="Device identifier")
    release_id: str = Field(..., min_length=1, description="Release being installed")
    status: str = Field(..., description="'downloading', 'installing', 'completed' or 'failed'")
    progress: int = Field(0, ge=0, le=100, description="Progress percentage (0-100)")
    error_message: Optional[str] = Field(None, max_length=500, description="Error message if status is 'failed'")


class MessageResponse(BaseModel):
    success: bool = True
    message: str
    deployment_id: Optional[str] = None
