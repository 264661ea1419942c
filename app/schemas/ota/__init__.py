# OTA schemas
from .ota import (
    FirmwareReleaseResponse,
    ReleaseListResponse,
    VerifyReleaseResponse,
    DeploymentConfig,
    CreateDeploymentRequest,
    DeploymentResponse,
    DeploymentListResponse,
    DeploymentStatusReport,
    DeviceUpdateResponse,
    DeviceUpdateListResponse,
    FirmwareUpdate,
    UpdateStatusReport,
    MessageResponse,
)

__all__ = [
    "FirmwareReleaseResponse",
    "ReleaseListResponse",
    "VerifyReleaseResponse",
    "DeploymentConfig",
    "CreateDeploymentRequest",
    "DeploymentResponse",
    "DeploymentListResponse",
    "DeploymentStatusReport",
    "DeviceUpdateResponse",
    "DeviceUpdateListResponse",
    "FirmwareUpdate",
    "UpdateStatusReport",
    "MessageResponse",
]
