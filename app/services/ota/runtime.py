# app/services/ota/runtime.py
import logging
import threading
import weakref
from contextlib import contextmanager
from typing import Iterator, Optional

from app.core.config import Settings
from app.services.ota.device_registry import DeviceRegistry, HTTPDeviceRegistry
from app.services.ota.notification_service import NotificationService
from app.services.ota.signing import Signer
from app.services.ota.storage import LocalStorageBackend, StorageBackend, TimedStorage

logger = logging.getLogger(__name__)


class DeploymentLocks:
    """
    One lock per deployment ID; deployments never block each other.

    Entries are weak: a lock disappears once no caller holds or waits on
    it, so finished deployments leave nothing behind.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks = weakref.WeakValueDictionary()

    def __len__(self) -> int:
        return len(self._locks)

    @contextmanager
    def hold(self, deployment_id: str) -> Iterator[None]:
        with self._guard:
            lock = self._locks.get(deployment_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[deployment_id] = lock
        with lock:
            yield

    def clear(self) -> None:
        with self._guard:
            self._locks.clear()


class OTARuntime:
    """
    Long-lived collaborators shared by every request: signer, storage,
    device registry, notifier and the per-deployment locks.

    Created once in the application lifespan and kept on ``app.state``;
    ``start()`` must be called before use and ``stop()`` on shutdown.
    """

    def __init__(
        self,
        settings: Settings,
        signer: Signer,
        storage_backend: StorageBackend,
        device_registry: DeviceRegistry,
        notifier: Optional[NotificationService] = None,
    ):
        self.settings = settings
        self.signer = signer
        self.storage_backend = storage_backend
        self.storage = TimedStorage(
            storage_backend,
            timeout_seconds=settings.STORAGE_TIMEOUT_SECONDS,
            max_workers=settings.STORAGE_WORKERS,
        )
        self.device_registry = device_registry
        self.notifier = notifier
        self.deployment_locks = DeploymentLocks()

    @classmethod
    def from_settings(cls, settings: Settings) -> "OTARuntime":
        signer = Signer.from_files(settings.SIGNING_PRIVATE_KEY_PATH, settings.SIGNING_PUBLIC_KEY_PATH)
        storage_backend = LocalStorageBackend(
            base_dir=settings.FIRMWARE_DIR,
            base_url=settings.BASE_URL,
            url_secret=settings.URL_SIGNING_SECRET,
        )
        device_registry = HTTPDeviceRegistry(
            base_url=settings.DEVICE_REGISTRY_URL,
            timeout=settings.DEVICE_REGISTRY_TIMEOUT_SECONDS,
            page_size=settings.DEVICE_REGISTRY_PAGE_SIZE,
        )
        return cls(settings, signer, storage_backend, device_registry, NotificationService())

    def start(self) -> None:
        self.storage.start()
        logger.info("OTA runtime started")

    def stop(self) -> None:
        self.storage.stop()
        self.deployment_locks.clear()
        logger.info("OTA runtime stopped")
