# app/core/errors.py
"""
Error kinds raised by the OTA services.

Callers branch on the exception type; the ``code`` and ``status_code``
attributes are only used when rendering an error to an HTTP client.
"""
from typing import Any, Optional


class OTAError(Exception):
    """Base class for all OTA errors"""

    code = "OTA_ERROR"
    status_code = 500

    def __init__(self, message: str, detail: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, "detail": self.detail}


class ValidationError(OTAError):
    """Caller supplied invalid or incomplete input; never retried"""

    code = "VALIDATION_ERROR"
    status_code = 400


class NotFoundError(OTAError):
    """Unknown release, deployment or device update"""

    code = "NOT_FOUND"
    status_code = 404


class NoPendingUpdateError(OTAError):
    """The device has nothing to install right now"""

    code = "NO_PENDING_UPDATE"
    status_code = 404


class IntegrityError(OTAError):
    """Hash mismatch or signature failure on a stored release"""

    code = "INTEGRITY_ERROR"
    status_code = 422


class StorageError(OTAError):
    """Binary storage backend unavailable or timed out"""

    code = "STORAGE_ERROR"
    status_code = 503


class DeviceRegistryError(OTAError):
    """Device registry could not be queried"""

    code = "DEVICE_REGISTRY_ERROR"
    status_code = 502


class ConcurrencyError(OTAError):
    """A versioned deployment write kept losing to concurrent writers"""

    code = "CONCURRENCY_ERROR"
    status_code = 409
