"""
🧩 Pipeline fixtures:
- `test_settings`   explicit Settings (memory backends, small quota, no retry delay)
- `redis_mock`      a `RedisClient` wrapper bound to `MockRedisClient`
- `codec`           FakeCodec (override per test with `registry.codec = ...` before use)
- `registry`        ClientRegistry wired with in-memory parts; drained on teardown
- `service`         the registry's ContentService
- `app` / `async_client`   FastAPI app over the same registry + httpx client
"""

from typing import AsyncGenerator

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from app.core.config import Settings
from app.core.redis_client import RedisClient
from app.main import create_app
from app.repositories.content import MemoryContentRepository
from app.repositories.quota import MemoryQuotaRepository
from app.services.access import StaticAccessClient
from app.services.client_registry import ClientRegistry
from app.services.lifecycle import BackupTarget
from app.services.object_store import MemoryObjectStore
from tests.fixtures.media import MIB
from tests.fixtures.mocks.codec import FakeCodec
from tests.fixtures.mocks.redis import MockRedisClient

SIGNING_SECRET = "unit-test-signing-secret"


@pytest.fixture()
def test_settings() -> Settings:
    return Settings(
        ENV="development",
        STORAGE_BACKEND="memory",
        REGISTRY_BACKEND="memory",
        MEDIA_URL_SIGNING_SECRET=SIGNING_SECRET,
        DEFAULT_QUOTA_BYTES=100 * MIB,
        STORE_RETRY_BASE_DELAY=0,
        STORE_RETRY_MAX_DELAY=0,
        CDN_REGIONS="us-east,us-west,eu-west,ap-southeast",
        UPLOAD_CHUNK_SIZE=64 * 1024,
        UPLOAD_SPOOL_MAX_MEMORY=1 * MIB,
    )


@pytest.fixture()
def redis_mock() -> RedisClient:
    wrapper = RedisClient("redis://unit-test")
    wrapper._client = MockRedisClient()
    return wrapper


@pytest.fixture()
def codec() -> FakeCodec:
    return FakeCodec()


@pytest.fixture()
def primary_store() -> MemoryObjectStore:
    return MemoryObjectStore(name="primary", bucket="primary", region="us-east-1", base_url="https://cdn.test")


@pytest.fixture()
def backup_store() -> MemoryObjectStore:
    return MemoryObjectStore(name="secondary_region", bucket="backup", region="us-west-2")


@pytest.fixture()
async def registry(test_settings, redis_mock, codec, primary_store, backup_store) -> AsyncGenerator[ClientRegistry, None]:
    reg = ClientRegistry(
        settings=test_settings,
        store=primary_store,
        content_repo=MemoryContentRepository(),
        quota_repo=MemoryQuotaRepository(),
        codec=codec,
        access=StaticAccessClient(),
        backup_targets=[
            BackupTarget("secondary_region", backup_store, storage_class="STANDARD_IA"),
            BackupTarget("cold_storage", primary_store, storage_class="DEEP_ARCHIVE"),
        ],
        redis=redis_mock,
    )
    yield reg
    await reg.aclose(timeout=10)


@pytest.fixture()
def service(registry):
    return registry.service


@pytest.fixture()
def app(registry) -> FastAPI:
    return create_app(registry)


@pytest.fixture()
async def async_client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """🌐 HTTP client over the ASGI app (lifespan not run; the registry is preset)."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
