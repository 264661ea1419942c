# Database models
from .ota import FirmwareRelease, OTADeployment, DeviceUpdate

__all__ = ["FirmwareRelease", "OTADeployment", "DeviceUpdate"]
