# tests/conftest.py
"""
Global test bootstrap
- Pins the environment to memory backends BEFORE the app is imported
- Mounts a mock Redis client into app.core.redis_client (nothing talks to a real Redis)
- Runs every async test on asyncio through anyio
"""

from __future__ import annotations

import os

import pytest

# ──────────────────────────────────────────────────────────────────────────────
# 🌱 Test env (set before importing app modules; Settings reads it at import)
# ──────────────────────────────────────────────────────────────────────────────
os.environ.setdefault("ENV", "development")
os.environ.setdefault("STORAGE_BACKEND", "memory")
os.environ.setdefault("REGISTRY_BACKEND", "memory")
os.environ.setdefault("DATABASE_URL_OVERRIDE", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("LOG_LEVEL", "WARNING")

# ──────────────────────────────────────────────────────────────────────────────
# 🧪 Install mock Redis globally before any tests run
# ──────────────────────────────────────────────────────────────────────────────
from app.core.redis_client import redis_wrapper  # noqa: E402
from tests.fixtures.mocks.redis import MockRedisClient  # noqa: E402

redis_wrapper._client = MockRedisClient()

# ──────────────────────────────────────────────────────────────────────────────
# 📦 Pull in the rest of the fixtures
# ──────────────────────────────────────────────────────────────────────────────
from tests.fixtures.db import *        # noqa: F401,F403,E402
from tests.fixtures.pipeline import *  # noqa: F401,F403,E402


@pytest.fixture(scope="session", autouse=True)
def anyio_backend():
    return "asyncio"
