# tests/test_storage/test_object_store.py

import io
import threading
import time

import pytest
from botocore.stub import Stubber

from app.core.exceptions import StorageUnavailable
from app.schemas.enums import StorageClass
from app.services.object_store import MemoryObjectStore, ObjectStoreConfig, S3ObjectStore
from app.utils.aws import S3Client, S3StorageError


class FakeS3:
    """Duck-typed stand-in for `S3Client`; fails the first `failures` calls."""

    def __init__(self, failures: int = 0):
        self.failures = failures
        self.calls = []
        self.objects = {}

    def _maybe_fail(self, op):
        self.calls.append(op)
        if self.failures > 0:
            self.failures -= 1
            raise S3StorageError(f"{op} failed")

    def put_bytes(self, key, data, *, content_type, storage_class, cache_control):
        self._maybe_fail("put")
        self.objects[key] = (data, storage_class)

    def upload_fileobj(self, key, fileobj, *, content_type, storage_class, cache_control):
        self._maybe_fail("put")
        self.objects[key] = (fileobj.read(), storage_class)

    def get_bytes(self, key):
        self._maybe_fail("get")
        return self.objects[key][0]

    def delete(self, key):
        self._maybe_fail("delete")
        self.objects.pop(key, None)
        return True

    def cdn_url(self, key):
        return None

    def object_url(self, key):
        return f"https://bucket.s3.amazonaws.com/{key}"


def _store(fake: FakeS3, attempts: int = 3) -> S3ObjectStore:
    cfg = ObjectStoreConfig(bucket="primary", retry_attempts=attempts, retry_base_delay=0, retry_max_delay=0)
    return S3ObjectStore(cfg, client=fake)


@pytest.mark.anyio
async def test_s3_put_retries_then_succeeds():
    fake = FakeS3(failures=2)
    store = _store(fake)
    url = await store.put("artists/a/x.png", b"png", content_type="image/png", storage_class=StorageClass.COOL)
    assert url == "https://bucket.s3.amazonaws.com/artists/a/x.png"
    assert fake.calls == ["put", "put", "put"]
    assert fake.objects["artists/a/x.png"] == (b"png", "STANDARD_IA")


@pytest.mark.anyio
async def test_s3_exhaustion_raises_storage_unavailable():
    fake = FakeS3(failures=10)
    store = _store(fake, attempts=3)
    with pytest.raises(StorageUnavailable) as ei:
        await store.get("artists/a/x.png")
    assert ei.value.status_code == 503
    assert ei.value.attempts == 3
    assert ei.value.key == "artists/a/x.png"
    assert len(fake.calls) == 3


@pytest.mark.anyio
async def test_s3_streams_file_objects():
    fake = FakeS3()
    store = _store(fake)
    body = io.BytesIO(b"streamed")
    body.read()
    await store.put("artists/a/y.mp4", body, content_type="video/mp4")
    assert fake.objects["artists/a/y.mp4"] == (b"streamed", "STANDARD")


@pytest.mark.anyio
async def test_memory_store_contract():
    store = MemoryObjectStore(bucket="primary", base_url="https://cdn.test/")
    key = "artists/a/cover.png"

    assert await store.put(key, b"one", content_type="image/png") == f"https://cdn.test/primary/{key}"
    await store.put(key, io.BytesIO(b"two"), content_type="image/png", storage_class=StorageClass.ARCHIVE)
    assert await store.get(key) == b"two"
    assert store.objects[key].storage_class == "GLACIER_IR"
    assert store.objects[key].cache_control.startswith("public, max-age=31536000")

    assert await store.list_prefix("artists/a/") == [key]
    assert await store.signed_url(key, 60) == f"https://cdn.test/primary/{key}?expires_in=60"

    assert await store.delete(key) is True
    assert await store.delete(key) is True
    assert not await store.exists(key)
    with pytest.raises(KeyError):
        await store.get(key)


@pytest.mark.anyio
async def test_memory_copy_keeps_bytes_and_sets_class():
    src = MemoryObjectStore(bucket="primary")
    dst = MemoryObjectStore(bucket="backup")
    await src.put("artists/a/song.mp3", b"audio", content_type="audio/mpeg")
    await src.copy_to("artists/a/song.mp3", dst, "backups/x/artists/a/song.mp3", storage_class="DEEP_ARCHIVE")
    copied = dst.objects["backups/x/artists/a/song.mp3"]
    assert copied.data == b"audio"
    assert copied.storage_class == "DEEP_ARCHIVE"


@pytest.mark.anyio
async def test_memory_store_rejects_traversal_keys():
    store = MemoryObjectStore()
    with pytest.raises(ValueError):
        await store.put("artists/../secrets", b"x", content_type="text/plain")


class SlowFakeS3(FakeS3):
    """Uploads block for `delay` seconds and record how many overlap."""

    def __init__(self, delay: float):
        super().__init__()
        self.delay = delay
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def upload_fileobj(self, key, fileobj, *, content_type, storage_class, cache_control):
        with self._lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            time.sleep(self.delay)
            super().upload_fileobj(key, fileobj, content_type=content_type,
                                   storage_class=storage_class, cache_control=cache_control)
        finally:
            with self._lock:
                self.active -= 1


class MissingFakeS3(FakeS3):
    def get_bytes(self, key):
        self.calls.append("get")
        raise KeyError(key)

    def download_file(self, key, path):
        self.calls.append("get")
        raise KeyError(key)


@pytest.mark.anyio
async def test_slow_upload_is_not_retried_over_a_live_transfer():
    fake = SlowFakeS3(delay=0.3)
    cfg = ObjectStoreConfig(bucket="primary", retry_base_delay=0, retry_max_delay=0, operation_timeout=0.1)
    store = S3ObjectStore(cfg, client=fake)
    await store.put("artists/a/big.mp4", io.BytesIO(b"spooled"), content_type="video/mp4")
    assert fake.calls == ["put"]
    assert fake.max_active == 1
    assert fake.objects["artists/a/big.mp4"] == (b"spooled", "STANDARD")


def test_operation_timeout_reaches_botocore(monkeypatch):
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    cfg = ObjectStoreConfig(bucket="primary", region="us-east-1", operation_timeout=7)
    store = S3ObjectStore(cfg)
    assert store._s3.client.meta.config.read_timeout == 7


@pytest.mark.anyio
async def test_missing_key_raises_key_error_without_retry(tmp_path):
    fake = MissingFakeS3()
    store = _store(fake, attempts=3)
    with pytest.raises(KeyError):
        await store.get("artists/a/gone.png")
    with pytest.raises(KeyError):
        await store.download_to("artists/a/gone.png", str(tmp_path / "gone.png"))
    assert fake.calls == ["get", "get"]


def test_s3_client_maps_no_such_key_to_key_error(monkeypatch):
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    s3 = S3Client("primary", region_name="us-east-1", cdn_base_url="")
    with Stubber(s3.client) as stub:
        stub.add_client_error("get_object", service_error_code="NoSuchKey", http_status_code=404)
        stub.add_client_error("get_object", service_error_code="AccessDenied", http_status_code=403)
        with pytest.raises(KeyError):
            s3.get_bytes("artists/a/gone.png")
        with pytest.raises(S3StorageError):
            s3.get_bytes("artists/a/locked.png")
