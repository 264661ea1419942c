import os
import threading
from datetime import datetime

import pytest
from sqlmodel import Session

from app.core.errors import IntegrityError, NotFoundError, StorageError, ValidationError
from app.db.models.ota import FirmwareRelease
from app.services.ota.signing import Signer, compute_hash, generate_key_pair
from app.services.ota.storage import LocalStorageBackend, TimedStorage


def test_create_release_hashes_signs_and_stores(ota_service, runtime, notifier):
    data = b"\x7fELF firmware 1.0.0"
    release = ota_service.releases.create_release("esp32-sensor", "1.0.0", "stable", data, release_notes="first")

    assert release.binary_hash == compute_hash(data)
    assert release.binary_size == len(data)
    assert release.release_notes == "first"
    runtime.signer.verify(data, release.signature)
    assert runtime.storage.get_binary(release.binary_path) == data
    assert ("release", "1.0.0") in notifier.sent

    ota_service.releases.verify_release(release.release_id)


def test_create_release_validation(ota_service):
    with pytest.raises(ValidationError):
        ota_service.releases.create_release("", "1.0.0", "stable", b"data")
    with pytest.raises(ValidationError):
        ota_service.releases.create_release("esp32-sensor", "1.0.0", "stable", b"")
    with pytest.raises(ValidationError):
        ota_service.releases.create_release("esp32-sensor", "1.0.0", "nightly", b"data")


def test_create_release_too_large(ota_service, runtime, monkeypatch):
    monkeypatch.setattr(runtime.settings, "FIRMWARE_MAX_SIZE", 4)
    with pytest.raises(ValidationError):
        ota_service.releases.create_release("esp32-sensor", "1.0.0", "stable", b"12345")


def test_duplicate_version_rejected(ota_service, make_release):
    make_release("1.0.0")
    with pytest.raises(ValidationError):
        make_release("1.0.0")
    # Same version on another channel is a different release
    make_release("1.0.0", channel="beta")


def test_signing_failure_stores_nothing(ota_service, runtime, signing_keys, test_settings):
    runtime.signer = Signer(public_key_pem=signing_keys[1])
    with pytest.raises(IntegrityError):
        ota_service.releases.create_release("esp32-sensor", "1.0.0", "stable", b"data")
    assert ota_service.releases.list_releases() == []
    assert os.listdir(test_settings.FIRMWARE_DIR) == []


def test_failed_insert_removes_stored_binary(ota_service, test_settings, monkeypatch):
    def boom(release, commit=True):
        raise RuntimeError("database is down")

    monkeypatch.setattr(ota_service.repository, "create_release", boom)
    with pytest.raises(RuntimeError):
        ota_service.releases.create_release("esp32-sensor", "1.0.0", "stable", b"data")
    assert os.listdir(test_settings.FIRMWARE_DIR) == []


def test_verify_detects_modified_binary(ota_service, make_release, storage_backend):
    release = make_release("1.0.0")
    with open(storage_backend.resolve_path(release.binary_path), "wb") as f:
        f.write(b"tampered image")

    with pytest.raises(IntegrityError, match="hash"):
        ota_service.releases.verify_release(release.release_id)


def test_verify_detects_foreign_signature(ota_service, make_release, session):
    release = make_release("1.0.0")
    release.signature = Signer(*generate_key_pair()).sign(b"firmware image 1.0.0")
    session.add(release)
    session.commit()

    with pytest.raises(IntegrityError, match="Signature"):
        ota_service.releases.verify_release(release.release_id)


def test_list_releases_filters_and_orders(ota_service, make_release):
    make_release("1.0.0", created_at=datetime(2024, 1, 1))
    make_release("1.1.0", created_at=datetime(2024, 2, 1))
    make_release("0.9.0", channel="beta")
    make_release("2.0.0", template_id="other")

    stable = ota_service.releases.list_releases("esp32-sensor", "stable")
    assert [r.version for r in stable] == ["1.1.0", "1.0.0"]
    assert len(ota_service.releases.list_releases()) == 4
    with pytest.raises(ValidationError):
        ota_service.releases.list_releases(channel="nightly")


def test_delete_release(ota_service, make_release, storage_backend):
    release = make_release("1.0.0")
    path = storage_backend.resolve_path(release.binary_path)

    ota_service.releases.delete_release(release.release_id)

    assert not os.path.exists(path)
    with pytest.raises(NotFoundError):
        ota_service.releases.get_release(release.release_id)


def test_get_unknown_release(ota_service):
    with pytest.raises(NotFoundError):
        ota_service.releases.get_release("missing")


class GatedBackend(LocalStorageBackend):
    """Local storage whose writes block until released"""

    def __init__(self, base_dir):
        super().__init__(base_dir, "http://testserver", "test-url-secret")
        self.gate = threading.Event()

    def store_binary(self, release_id, data):
        self.gate.wait(5)
        return super().store_binary(release_id, data)


def test_store_timeout_leaves_no_binary(ota_service, runtime, test_settings):
    backend = GatedBackend(test_settings.FIRMWARE_DIR)
    runtime.storage.stop()
    runtime.storage = TimedStorage(backend, timeout_seconds=0.05, max_workers=1)
    runtime.storage.start()

    with pytest.raises(StorageError, match="timed out"):
        ota_service.releases.create_release("esp32-sensor", "1.0.0", "stable", b"slow image")

    backend.gate.set()
    runtime.storage.stop()

    assert ota_service.releases.list_releases() == []
    assert os.listdir(test_settings.FIRMWARE_DIR) == []


def test_release_timestamps_are_naive_utc(ota_service, engine):
    before = datetime.utcnow()
    release = ota_service.releases.create_release("esp32-sensor", "1.0.0", "stable", b"image")

    with Session(engine) as other:
        stored = other.get(FirmwareRelease, release.release_id)
        assert stored.created_at.tzinfo is None
        assert before <= stored.created_at <= datetime.utcnow()
