from __future__ import annotations

"""
Object Store Adapter
====================

Async `ObjectStore` interface over a durable blob store, with two
implementations:

- `S3ObjectStore`     boto3 via `app.utils.aws.S3Client`; blocking calls run in
                      worker threads, every call goes through `retry_async`,
                      exhaustion raises `StorageUnavailable` and a missing
                      key raises `KeyError` without retrying.
- `MemoryObjectStore` in-process dict with the same contract (dev + tests).

Contract
--------
- `put` under an existing key overwrites (idempotent for identical bytes).
- `delete` of a missing key succeeds.
- Storage classes map hot/cool/archive → STANDARD/STANDARD_IA/GLACIER_IR.
- Canonical objects and variants are written with a one-year `Cache-Control`.
"""

import asyncio
import io
import logging
from dataclasses import dataclass
from typing import Any, BinaryIO, Callable, Dict, List, Optional, Protocol, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field

from app.core.config import Settings
from app.core.exceptions import StorageUnavailable
from app.core.retry import RetryPolicy, retry_async
from app.core.storage import S3_STORAGE_CLASS, STATIC_CACHE_CONTROL
from app.schemas.enums import StorageClass
from app.utils.aws import S3Client, S3StorageError, _normalize_key

logger = logging.getLogger(__name__)

T = TypeVar("T")
Body = Union[bytes, BinaryIO]


class ObjectStoreConfig(BaseModel):
    """Connection + retry policy for one bucket."""

    model_config = ConfigDict(frozen=True)

    bucket: str = Field(min_length=1)
    region: Optional[str] = None
    endpoint_url: Optional[str] = None
    cdn_base_url: str = ""
    retry_attempts: int = Field(3, ge=1, le=10)
    retry_base_delay: float = Field(0.25, ge=0)
    retry_max_delay: float = Field(2.0, ge=0)
    operation_timeout: float = Field(30.0, gt=0)

    @classmethod
    def from_settings(cls, s: Settings, *, bucket: Optional[str] = None, region: Optional[str] = None,
                      endpoint_url: Optional[str] = None) -> "ObjectStoreConfig":
        return cls(
            bucket=bucket or s.AWS_BUCKET_NAME or "fanvault-media",
            region=region or s.AWS_REGION,
            endpoint_url=endpoint_url or s.AWS_S3_ENDPOINT_URL,
            cdn_base_url=s.cdn_base_url,
            retry_attempts=s.STORE_RETRY_ATTEMPTS,
            retry_base_delay=s.STORE_RETRY_BASE_DELAY,
            retry_max_delay=s.STORE_RETRY_MAX_DELAY,
            operation_timeout=s.STORE_OPERATION_TIMEOUT,
        )

    @property
    def retry_policy(self) -> RetryPolicy:
        # `operation_timeout` is a botocore socket timeout, never a `wait_for`
        # around the worker thread.
        return RetryPolicy(
            attempts=self.retry_attempts,
            base_delay=self.retry_base_delay,
            max_delay=self.retry_max_delay,
        )


class ObjectStore(Protocol):
    name: str
    bucket: str
    region: Optional[str]

    async def put(self, key: str, body: Body, *, content_type: str,
                  storage_class: StorageClass = StorageClass.HOT,
                  cache_control: Optional[str] = STATIC_CACHE_CONTROL) -> str: ...
    async def get(self, key: str) -> bytes: ...
    async def download_to(self, key: str, path: str) -> None: ...
    async def copy_to(self, key: str, dest: "ObjectStore", dest_key: str, *,
                      storage_class: Optional[str] = None) -> None: ...
    async def delete(self, key: str) -> bool: ...
    async def exists(self, key: str) -> bool: ...
    async def list_prefix(self, prefix: str) -> List[str]: ...
    async def signed_url(self, key: str, ttl: int) -> str: ...
    def public_url(self, key: str) -> str: ...


def _rewind(body: Body) -> Body:
    if hasattr(body, "seek"):
        body.seek(0)  # type: ignore[union-attr]
    return body


# ─────────────────────────────────────────────────────────────────────────────
# ☁️ S3
# ─────────────────────────────────────────────────────────────────────────────
class S3ObjectStore:
    """`ObjectStore` over one S3 bucket."""

    def __init__(self, config: ObjectStoreConfig, *, name: str = "primary", client: Optional[S3Client] = None) -> None:
        self.config = config
        self.name = name
        self.bucket = config.bucket
        self.region = config.region
        self._s3 = client or S3Client(
            config.bucket,
            region_name=config.region,
            endpoint_url=config.endpoint_url,
            cdn_base_url=config.cdn_base_url,
            read_timeout=config.operation_timeout,
        )
        self._policy = config.retry_policy

    async def _call(self, operation: str, key: Optional[str], fn: Callable[[], T]) -> T:
        async def _attempt() -> T:
            return await asyncio.to_thread(fn)

        result = await retry_async(
            _attempt,
            policy=self._policy,
            operation=f"s3.{operation}",
            retry_on=(S3StorageError, OSError),
        )
        if not result.ok:
            raise StorageUnavailable(operation, key, attempts=result.attempts, cause=repr(result.error))
        return result.value  # type: ignore[return-value]

    async def put(self, key: str, body: Body, *, content_type: str,
                  storage_class: StorageClass = StorageClass.HOT,
                  cache_control: Optional[str] = STATIC_CACHE_CONTROL) -> str:
        sc = S3_STORAGE_CLASS[storage_class]
        if isinstance(body, (bytes, bytearray)):
            payload = bytes(body)
            await self._call("put", key, lambda: self._s3.put_bytes(
                key, payload, content_type=content_type, storage_class=sc, cache_control=cache_control))
        else:
            await self._call("put", key, lambda: self._s3.upload_fileobj(
                key, _rewind(body), content_type=content_type, storage_class=sc, cache_control=cache_control))
        return self.public_url(key)

    async def get(self, key: str) -> bytes:
        return await self._call("get", key, lambda: self._s3.get_bytes(key))

    async def download_to(self, key: str, path: str) -> None:
        await self._call("get", key, lambda: self._s3.download_file(key, path))

    async def copy_to(self, key: str, dest: ObjectStore, dest_key: str, *,
                      storage_class: Optional[str] = None) -> None:
        # Server-side copy only works inside one provider endpoint.
        if isinstance(dest, S3ObjectStore) and dest.config.endpoint_url == self.config.endpoint_url:
            await dest._call("copy", dest_key, lambda: dest._s3.copy_from(
                self.bucket, key, dest_key, storage_class=storage_class))
            return
        data = await self.get(key)
        await dest.put(dest_key, data, content_type="application/octet-stream")

    async def delete(self, key: str) -> bool:
        return await self._call("delete", key, lambda: self._s3.delete(key))

    async def exists(self, key: str) -> bool:
        return await self._call("head", key, lambda: self._s3.exists(key))

    async def list_prefix(self, prefix: str) -> List[str]:
        return await self._call("list", prefix, lambda: self._s3.list_keys(prefix))

    async def signed_url(self, key: str, ttl: int) -> str:
        return await self._call("sign", key, lambda: self._s3.presigned_get(key, expires_in=ttl))

    def public_url(self, key: str) -> str:
        return self._s3.cdn_url(key) or self._s3.object_url(key)


# ─────────────────────────────────────────────────────────────────────────────
# 🧪 Memory
# ─────────────────────────────────────────────────────────────────────────────
@dataclass
class StoredObject:
    data: bytes
    content_type: str
    storage_class: str
    cache_control: Optional[str] = None


class MemoryObjectStore:
    """Dict-backed `ObjectStore`; keys are validated like S3 keys."""

    def __init__(self, *, name: str = "memory", bucket: str = "memory", region: Optional[str] = None,
                 base_url: str = "memory://") -> None:
        self.name = name
        self.bucket = bucket
        self.region = region
        self.base_url = base_url.rstrip("/")
        self.objects: Dict[str, StoredObject] = {}

    @staticmethod
    def _key(key: str) -> str:
        try:
            return _normalize_key(key)
        except S3StorageError as e:
            raise ValueError(str(e)) from e

    async def put(self, key: str, body: Body, *, content_type: str,
                  storage_class: StorageClass = StorageClass.HOT,
                  cache_control: Optional[str] = STATIC_CACHE_CONTROL) -> str:
        k = self._key(key)
        if isinstance(body, (bytes, bytearray)):
            data = bytes(body)
        else:
            data = _rewind(body).read()  # type: ignore[union-attr]
        self.objects[k] = StoredObject(data, content_type, S3_STORAGE_CLASS[storage_class], cache_control)
        return self.public_url(k)

    async def get(self, key: str) -> bytes:
        k = self._key(key)
        if k not in self.objects:
            raise KeyError(k)
        return self.objects[k].data

    async def download_to(self, key: str, path: str) -> None:
        data = await self.get(key)
        await asyncio.to_thread(_write_file, path, data)

    async def copy_to(self, key: str, dest: ObjectStore, dest_key: str, *,
                      storage_class: Optional[str] = None) -> None:
        obj = self.objects.get(self._key(key))
        if obj is None:
            raise KeyError(key)
        if isinstance(dest, MemoryObjectStore):
            dest.objects[dest._key(dest_key)] = StoredObject(
                obj.data, obj.content_type, storage_class or obj.storage_class, obj.cache_control)
            return
        await dest.put(dest_key, io.BytesIO(obj.data), content_type=obj.content_type)

    async def delete(self, key: str) -> bool:
        self.objects.pop(self._key(key), None)
        return True

    async def exists(self, key: str) -> bool:
        return self._key(key) in self.objects

    async def list_prefix(self, prefix: str) -> List[str]:
        p = str(prefix or "").lstrip("/")
        return sorted(k for k in self.objects if k.startswith(p))

    async def signed_url(self, key: str, ttl: int) -> str:
        return f"{self.base_url}/{self.bucket}/{self._key(key)}?expires_in={int(ttl)}"

    def public_url(self, key: str) -> str:
        return f"{self.base_url}/{self.bucket}/{self._key(key)}"


def _write_file(path: str, data: bytes) -> None:
    with open(path, "wb") as fh:
        fh.write(data)


def build_object_store(s: Settings, **overrides: Any) -> ObjectStore:
    """Primary store for the configured backend."""
    if s.STORAGE_BACKEND == "s3":
        return S3ObjectStore(ObjectStoreConfig.from_settings(s, **overrides))
    return MemoryObjectStore(name="primary", bucket=overrides.get("bucket") or "primary", base_url=s.cdn_base_url or "memory://")


__all__ = [
    "ObjectStore",
    "ObjectStoreConfig",
    "S3ObjectStore",
    "MemoryObjectStore",
    "StoredObject",
    "build_object_store",
]
