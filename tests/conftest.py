from datetime import datetime
from typing import Dict, List, Optional, Tuple

import pytest
from sqlmodel import Session

from app.core.config import Settings
from app.db.session import build_engine, init_db
from app.services.ota.ota_service import OTAService
from app.services.ota.runtime import OTARuntime
from app.services.ota.signing import Signer, generate_key_pair
from app.services.ota.storage import LocalStorageBackend


class FakeDeviceRegistry:
    def __init__(self):
        self.devices: Dict[Tuple[str, str], List[str]] = {}
        self.calls: List[Tuple[str, str]] = []

    def add(self, template_id: str, channel: str, *device_ids: str):
        self.devices.setdefault((template_id, channel), []).extend(device_ids)

    def list_devices(self, template_id: str, ota_channel: str) -> List[str]:
        self.calls.append((template_id, ota_channel))
        return list(self.devices.get((template_id, ota_channel), []))


class FakeNotifier:
    def __init__(self):
        self.sent = []

    def send_release_notification(self, template_id, version, channel, release_notes=None):
        self.sent.append(("release", version))
        return True

    def send_deployment_failed_notification(self, deployment_id, failure_count, total_devices):
        self.sent.append(("failed", deployment_id))
        return True

    def send_rollback_notification(self, deployment_id, rollback_deployment_id, version):
        self.sent.append(("rollback", deployment_id, version))
        return True


@pytest.fixture(scope="session")
def signing_keys():
    # RSA generation is slow; one pair for the whole run
    return generate_key_pair()


@pytest.fixture
def engine():
    engine = build_engine("sqlite://")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def registry():
    return FakeDeviceRegistry()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def test_settings(tmp_path):
    return Settings(
        DATABASE_URL="sqlite://",
        BASE_URL="http://testserver",
        FIRMWARE_DIR=str(tmp_path / "firmware"),
        URL_SIGNING_SECRET="test-url-secret",
        STORAGE_TIMEOUT_SECONDS=5.0,
        DEFAULT_FAILURE_THRESHOLD=10,
        AUTO_ROLLBACK_ENABLED=True,
    )


@pytest.fixture
def storage_backend(test_settings):
    return LocalStorageBackend(
        base_dir=test_settings.FIRMWARE_DIR,
        base_url=test_settings.BASE_URL,
        url_secret=test_settings.URL_SIGNING_SECRET,
    )


@pytest.fixture
def runtime(test_settings, signing_keys, storage_backend, registry, notifier):
    private_pem, public_pem = signing_keys
    runtime = OTARuntime(
        test_settings,
        Signer(private_pem, public_pem),
        storage_backend,
        registry,
        notifier=notifier,
    )
    runtime.start()
    yield runtime
    runtime.stop()


@pytest.fixture
def ota_service(session, runtime):
    return OTAService(session, runtime)


@pytest.fixture
def make_release(ota_service, session):
    def _make(version: str = "1.0.0", template_id: str = "esp32-sensor", channel: str = "stable",
              data: Optional[bytes] = None, created_at: Optional[datetime] = None):
        release = ota_service.releases.create_release(
            template_id, version, channel, data or f"firmware image {version}".encode()
        )
        if created_at is not None:
            release.created_at = created_at
            session.add(release)
            session.commit()
            session.refresh(release)
        return release
    return _make
