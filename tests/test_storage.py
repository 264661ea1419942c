import os
import threading
import time
from urllib.parse import parse_qs, urlparse

import pytest

from app.core.errors import StorageError
from app.services.ota.storage import LocalStorageBackend, TimedStorage


@pytest.fixture
def backend(tmp_path):
    return LocalStorageBackend(str(tmp_path / "fw"), "http://ota.local/", "secret")


def test_store_and_read_binary(backend):
    path = backend.store_binary("rel-1", b"\x00\x01firmware")
    assert path == "rel-1/firmware.bin"
    assert backend.get_binary(path) == b"\x00\x01firmware"


def test_path_traversal_rejected(backend):
    with pytest.raises(StorageError):
        backend.get_binary("../../etc/passwd")


def test_read_missing_binary(backend):
    with pytest.raises(StorageError):
        backend.get_binary("nope/firmware.bin")


def test_signed_url_round_trip(backend):
    path = backend.store_binary("rel-1", b"data")
    url = backend.get_binary_url(path, 60)

    parsed = urlparse(url)
    assert parsed.netloc == "ota.local"
    assert parsed.path == "/api/ota/binaries/rel-1/firmware.bin"
    query = parse_qs(parsed.query)
    expires = int(query["expires"][0])
    signature = query["signature"][0]

    assert backend.verify_url_signature(path, expires, signature)
    assert not backend.verify_url_signature("rel-2/firmware.bin", expires, signature)
    assert not backend.verify_url_signature(path, expires + 1, signature)


def test_expired_url_rejected(backend):
    path = backend.store_binary("rel-1", b"data")
    expires = int(time.time()) - 10
    assert not backend.verify_url_signature(path, expires, backend._url_signature(path, expires))


def test_url_for_missing_binary(backend):
    with pytest.raises(StorageError):
        backend.get_binary_url("missing/firmware.bin", 60)


def test_delete_removes_release_directory(backend):
    path = backend.store_binary("rel-1", b"data")
    backend.delete_binary(path)
    assert not os.path.exists(os.path.join(backend.base_dir, "rel-1"))
    # Deleting twice is fine
    backend.delete_binary(path)


class SlowBackend(LocalStorageBackend):
    def __init__(self, base_dir):
        super().__init__(base_dir, "http://ota.local", "secret")
        self.release = threading.Event()

    def store_binary(self, release_id, data):
        self.release.wait(5)
        return super().store_binary(release_id, data)


def test_timed_storage_times_out(tmp_path):
    backend = SlowBackend(str(tmp_path))
    storage = TimedStorage(backend, timeout_seconds=0.05, max_workers=1)
    storage.start()
    try:
        with pytest.raises(StorageError, match="timed out"):
            storage.store_binary("rel-1", b"data")
    finally:
        backend.release.set()
        storage.stop()


def test_store_finishing_after_timeout_is_removed(tmp_path):
    backend = SlowBackend(str(tmp_path))
    storage = TimedStorage(backend, timeout_seconds=0.05, max_workers=1)
    storage.start()
    with pytest.raises(StorageError, match="timed out"):
        storage.store_binary("rel-1", b"data")

    backend.release.set()
    # Waits for the in-flight store and its cleanup
    storage.stop()

    assert os.listdir(backend.base_dir) == []


def test_timed_storage_requires_start(backend):
    storage = TimedStorage(backend, timeout_seconds=1)
    assert not storage.running
    with pytest.raises(StorageError):
        storage.get_binary("rel-1/firmware.bin")


def test_timed_storage_passes_through(backend):
    storage = TimedStorage(backend, timeout_seconds=1)
    storage.start()
    try:
        path = storage.store_binary("rel-1", b"data")
        assert storage.get_binary(path) == b"data"
        storage.delete_binary(path)
    finally:
        storage.stop()
    assert not storage.running
