from .ota import (
    ReleaseChannel,
    DeploymentStrategy,
    DeploymentStatus,
    UpdateStatus,
    TERMINAL_DEPLOYMENT_STATUSES,
    TERMINAL_UPDATE_STATUSES,
    UPDATE_STATUS_ORDER,
    FirmwareRelease,
    OTADeployment,
    DeviceUpdate,
)

__all__ = [
    "ReleaseChannel",
    "DeploymentStrategy",
    "DeploymentStatus",
    "UpdateStatus",
    "TERMINAL_DEPLOYMENT_STATUSES",
    "TERMINAL_UPDATE_STATUSES",
    "UPDATE_STATUS_ORDER",
    "FirmwareRelease",
    "OTADeployment",
    "DeviceUpdate",
]
