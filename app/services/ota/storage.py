# app/services/ota/storage.py
import hashlib
import hmac
import logging
import os
import time
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from typing import Optional
from urllib.parse import urlencode

from app.core.errors import StorageError

logger = logging.getLogger(__name__)

BINARY_FILENAME = "firmware.bin"


class StorageBackend(ABC):
    """Binary object storage for firmware images"""

    @abstractmethod
    def store_binary(self, release_id: str, data: bytes) -> str:
        """Store ``data`` and return an opaque path"""

    @abstractmethod
    def get_binary(self, path: str) -> bytes:
        ...

    @abstractmethod
    def get_binary_url(self, path: str, expiry_seconds: int) -> str:
        """Time-limited download URL for a stored binary"""

    @abstractmethod
    def delete_binary(self, path: str) -> None:
        ...


class LocalStorageBackend(StorageBackend):
    """
    Stores binaries under ``base_dir/<release_id>/firmware.bin``.

    Download URLs point at this service's ``/api/ota/binaries`` endpoint
    and carry an expiry timestamp plus an HMAC-SHA256 signature over
    ``path`` and expiry, checked by ``verify_url_signature``.
    """

    def __init__(self, base_dir: str, base_url: str, url_secret: str):
        self.base_dir = os.path.abspath(base_dir)
        self.base_url = base_url.rstrip("/")
        self._url_secret = url_secret.encode("utf-8")
        # Ensure storage directory exists
        os.makedirs(self.base_dir, exist_ok=True)

    def resolve_path(self, path: str) -> str:
        """Absolute file path for a stored binary; rejects paths escaping base_dir"""
        full_path = os.path.abspath(os.path.join(self.base_dir, path))
        if os.path.commonpath([self.base_dir, full_path]) != self.base_dir:
            raise StorageError(f"Invalid binary path: {path}")
        return full_path

    def store_binary(self, release_id: str, data: bytes) -> str:
        path = f"{release_id}/{BINARY_FILENAME}"
        full_path = self.resolve_path(path)
        try:
            os.makedirs(os.path.dirname(full_path), exist_ok=True)
            with open(full_path, "wb") as f:
                f.write(data)
        except OSError as e:
            raise StorageError(f"Failed to write binary file: {e}") from e
        return path

    def get_binary(self, path: str) -> bytes:
        full_path = self.resolve_path(path)
        try:
            with open(full_path, "rb") as f:
                return f.read()
        except OSError as e:
            raise StorageError(f"Failed to read binary file: {e}") from e

    def _url_signature(self, path: str, expires: int) -> str:
        message = f"{path}:{expires}".encode("utf-8")
        return hmac.new(self._url_secret, message, hashlib.sha256).hexdigest()

    def get_binary_url(self, path: str, expiry_seconds: int) -> str:
        full_path = self.resolve_path(path)
        if not os.path.exists(full_path):
            raise StorageError(f"Binary file not found: {path}")
        expires = int(time.time()) + int(expiry_seconds)
        query = urlencode({"expires": expires, "signature": self._url_signature(path, expires)})
        return f"{self.base_url}/api/ota/binaries/{path}?{query}"

    def verify_url_signature(self, path: str, expires: int, signature: str) -> bool:
        if expires < int(time.time()):
            return False
        return hmac.compare_digest(self._url_signature(path, expires), signature)

    def delete_binary(self, path: str) -> None:
        full_path = self.resolve_path(path)
        try:
            os.remove(full_path)
        except FileNotFoundError:
            pass
        except OSError as e:
            raise StorageError(f"Failed to delete binary file: {e}") from e

        # Remove the release directory once it is empty
        parent = os.path.dirname(full_path)
        if parent != self.base_dir and os.path.isdir(parent) and not os.listdir(parent):
            os.rmdir(parent)


class TimedStorage:
    """
    Runs every storage backend call on an owned worker pool with a bound
    timeout. A call that times out is cancelled if it has not started yet
    and reported as StorageError; the caller never waits past the timeout.
    A store that was already running when it timed out is deleted again as
    soon as it completes, so no binary outlives a failed release creation.
    """

    def __init__(self, backend: StorageBackend, timeout_seconds: float, max_workers: int = 4):
        self.backend = backend
        self.timeout_seconds = timeout_seconds
        self.max_workers = max_workers
        self._executor: Optional[ThreadPoolExecutor] = None

    def start(self) -> None:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="ota-storage")

    def stop(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True, cancel_futures=True)
            self._executor = None

    @property
    def running(self) -> bool:
        return self._executor is not None

    def _call(self, operation: str, fn, *args, on_abandoned=None):
        if self._executor is None:
            raise StorageError("Storage worker pool is not running")
        future = self._executor.submit(fn, *args)
        try:
            return future.result(timeout=self.timeout_seconds)
        except FutureTimeoutError as e:
            if not future.cancel() and on_abandoned is not None:
                # Already running; undo its effect once it finishes
                future.add_done_callback(on_abandoned)
            logger.error(f"Storage {operation} timed out after {self.timeout_seconds}s")
            raise StorageError(f"Storage {operation} timed out") from e
        except StorageError:
            raise
        except OSError as e:
            raise StorageError(f"Storage {operation} failed: {e}") from e

    def store_binary(self, release_id: str, data: bytes) -> str:
        return self._call(
            "store", self.backend.store_binary, release_id, data, on_abandoned=self._discard_late_store
        )

    def _discard_late_store(self, future) -> None:
        """Remove a binary whose store finished after the caller gave up on it"""
        if future.cancelled() or future.exception() is not None:
            return
        path = future.result()
        try:
            self.backend.delete_binary(path)
        except (StorageError, OSError) as e:
            logger.error(f"Failed to remove late-stored binary {path}: {e}")
            return
        logger.warning(f"Removed binary {path} stored after its timeout")

    def get_binary(self, path: str) -> bytes:
        return self._call("read", self.backend.get_binary, path)

    def get_binary_url(self, path: str, expiry_seconds: int) -> str:
        return self._call("url signing", self.backend.get_binary_url, path, expiry_seconds)

    def delete_binary(self, path: str) -> None:
        return self._call("delete", self.backend.delete_binary, path)
