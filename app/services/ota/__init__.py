from .ota_service import OTAService
from .runtime import OTARuntime

__all__ = ["OTAService", "OTARuntime"]
