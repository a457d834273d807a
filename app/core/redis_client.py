# app/core/redis_client.py
from __future__ import annotations

"""
FanVault Media — Redis Client (Async)
=====================================
Central, **single source of truth** for Redis access in the app.

What this provides
------------------
• Resilient connection manager with retries & backoff
• Generic JSON set/get helpers (analytics cache)
• List queue helpers (CDN invalidation retry queue)
• Async **distributed lock** (maintenance jobs run on one replica at a time)

Public API (imported as `redis_wrapper`)
----------------------------------------
- await redis_wrapper.connect() / await redis_wrapper.close() / await redis_wrapper.is_connected()
- redis_wrapper.client
- await redis_wrapper.json_set(key, value, ttl_seconds=None)
- await redis_wrapper.json_get(key, default=None)
- await redis_wrapper.queue_push(key, *values) / await redis_wrapper.queue_pop(key, count)
- async with redis_wrapper.lock(name, timeout=10, blocking_timeout=3): ...

Design notes
------------
• **Strict** on locks: raise `TimeoutError` if not acquired within `blocking_timeout`.
• Compatible with test mocks that lack `blocking_timeout` on `lock()`.
"""

import asyncio
import inspect
import json
import logging
import os
import random
from contextlib import asynccontextmanager
from typing import Any, List, Optional, Protocol

import redis.asyncio as redis
from redis.asyncio.lock import Lock
from redis.exceptions import RedisError

from app.core.config import settings

logger = logging.getLogger("redis")

# ─────────────────────────────────────────────────────────────────────────────
# Tunables (env-aware sensible defaults)
# ─────────────────────────────────────────────────────────────────────────────
MAX_RETRIES = int(os.getenv("REDIS_CONNECT_MAX_RETRIES", "5"))
BASE_DELAY = float(os.getenv("REDIS_CONNECT_BASE_DELAY", "0.3"))  # seconds
HEALTH_CHECK_INTERVAL = int(os.getenv("REDIS_HEALTH_CHECK_INTERVAL", "30"))  # seconds
SOCKET_TIMEOUT = float(os.getenv("REDIS_SOCKET_TIMEOUT", "3"))
SOCKET_CONNECT_TIMEOUT = float(os.getenv("REDIS_SOCKET_CONNECT_TIMEOUT", "3"))
POOL_MAX_CONNECTIONS = int(os.getenv("REDIS_POOL_MAX_CONNECTIONS", "64"))
CLIENT_NAME = os.getenv("REDIS_CLIENT_NAME", "fanvault-media")


class _RedisProto(Protocol):
    async def ping(self) -> Any: ...
    async def set(self, name: str, value: Any, *, ex: Optional[int] = None, nx: Optional[bool] = None) -> Any: ...
    async def get(self, name: str) -> Any: ...
    async def delete(self, *names: Any) -> Any: ...
    async def rpush(self, name: str, *values: Any) -> Any: ...
    async def lpop(self, name: str, count: Optional[int] = None) -> Any: ...
    def lock(self, name: str, timeout: int = ..., blocking_timeout: int = ..., sleep: float = ...) -> Lock: ...
    async def close(self) -> Any: ...


# ─────────────────────────────────────────────────────────────────────────────
# Client
# ─────────────────────────────────────────────────────────────────────────────
class RedisClient:
    """
    Singleton Redis connection manager (asyncio).

    Features
    --------
    • Resilient connect with exponential backoff + jitter
    • Pooled connections, health checks
    • JSON + queue helpers
    • Async distributed lock helper
    """

    def __init__(self, redis_url: str):
        self.redis_url = redis_url
        self._client: Optional[_RedisProto] = None

    # ── lifecycle ────────────────────────────────────────────────────────────
    async def connect(self) -> None:
        """
        Establish a connection with retries.

        Steps
        -----
        - **[Step 1]** Reuse a healthy client when possible.
        - **[Step 2]** Attempt connection with backoff and jitter.
        """
        # ── [Step 1] Reuse an existing healthy client ───────────────────────
        if self._client:
            try:
                await self._client.ping()
                logger.debug("Redis already connected.")
                return
            except Exception:
                self._client = None  # stale client → reconnect

        attempt = 0
        last_err: Optional[Exception] = None

        # ── [Step 2] Retry with backoff ─────────────────────────────────────
        while attempt < MAX_RETRIES:
            attempt += 1
            try:
                self._client = self._build_client()
                await self._client.ping()
                logger.info("✅ Connected to Redis")
                return
            except Exception as e:  # noqa: BLE001
                last_err = e
                delay = self._backoff(attempt)
                logger.warning(
                    "Redis connect attempt %s/%s failed: %s (retrying in %.2fs)",
                    attempt, MAX_RETRIES, repr(e), delay,
                )
                await asyncio.sleep(delay)

        self._client = None
        logger.error("❌ Redis connection failed after %s retries.", MAX_RETRIES)
        raise RuntimeError("Redis connection failed") from last_err

    async def close(self) -> None:
        """Gracefully close connection & pool."""
        if not self._client:
            return
        try:
            await self._client.close()
            logger.info("🛑 Redis connection closed.")
        except RedisError as e:
            logger.warning("Error closing Redis connection: %s", e)
        finally:
            self._client = None

    async def is_connected(self) -> bool:
        """Return True if `PING` succeeds (healthy connection)."""
        if not self._client:
            return False
        try:
            return bool(await self._client.ping())
        except RedisError:
            return False

    @property
    def client(self) -> _RedisProto:
        """Low-level client; ensure `connect()` was called at startup."""
        if not self._client:
            raise RuntimeError("Redis client not initialized. Call connect() first.")
        return self._client

    # ── helpers: JSON / queue / lock ────────────────────────────────────────
    async def json_set(self, key: str, value: Any, *, ttl_seconds: Optional[int] = None) -> None:
        """Generic JSON setter with optional TTL."""
        data = json.dumps(value, separators=(",", ":"), ensure_ascii=False, default=str)
        if ttl_seconds:
            await self.client.set(key, data, ex=ttl_seconds)
        else:
            await self.client.set(key, data)

    async def json_get(self, key: str, default: Any = None) -> Any:
        """Generic JSON getter with sensible default on parse errors/None."""
        raw = await self.client.get(key)
        if raw is None:
            return default
        if isinstance(raw, (bytes, bytearray)):
            raw = raw.decode("utf-8", errors="replace")
        try:
            return json.loads(raw)
        except ValueError:
            return default

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return int(await self.client.delete(*keys) or 0)

    async def queue_push(self, key: str, *values: str) -> int:
        """Append values to a list queue; returns the new length."""
        if not values:
            return 0
        return int(await self.client.rpush(key, *values))

    async def queue_pop(self, key: str, count: int = 100) -> List[str]:
        """Pop up to `count` values from the head of a list queue."""
        out: List[str] = []
        for _ in range(max(0, count)):
            raw = await self.client.lpop(key)
            if raw is None:
                break
            out.append(raw.decode("utf-8") if isinstance(raw, (bytes, bytearray)) else str(raw))
        return out

    @asynccontextmanager
    async def lock(
        self,
        name: str,
        *,
        timeout: int = 10,
        blocking_timeout: int = 3,
        sleep: float = 0.2,
    ):
        """
        Async distributed lock backed by the client's native `lock()`.

        Failure semantics
        -----------------
        - If Redis is **not connected**, raise `RuntimeError`.
        - If not acquired within `blocking_timeout`, raise **built-in** `TimeoutError`.
        - Releases are best-effort.
        """
        rc = self.client

        async def _maybe_await(res):
            return await res if inspect.isawaitable(res) else res

        try:
            lock_obj = rc.lock(name, timeout=timeout, blocking_timeout=blocking_timeout, sleep=sleep)
        except TypeError:
            # skinny mock: no blocking_timeout kwarg
            lock_obj = rc.lock(name, timeout=timeout)

        acquired = False
        try:
            try:
                res = lock_obj.acquire(blocking=True, blocking_timeout=blocking_timeout)
            except TypeError:
                res = lock_obj.acquire()
            acquired = bool(await _maybe_await(res))
            if not acquired:
                raise TimeoutError(f"Failed to acquire lock: {name}")

            yield  # critical section

        finally:
            if acquired:
                try:
                    await _maybe_await(lock_obj.release())
                except Exception:
                    logger.debug("Redis lock release failed (best-effort).", exc_info=True)

    # ── internals ───────────────────────────────────────────────────────────
    def _build_client(self) -> _RedisProto:
        return redis.Redis.from_url(
            self.redis_url.strip(),
            decode_responses=True,
            health_check_interval=HEALTH_CHECK_INTERVAL,
            socket_keepalive=True,
            socket_timeout=SOCKET_TIMEOUT,
            socket_connect_timeout=SOCKET_CONNECT_TIMEOUT,
            retry_on_timeout=True,
            max_connections=POOL_MAX_CONNECTIONS,
            client_name=CLIENT_NAME,
        )

    @staticmethod
    def _backoff(attempt: int) -> float:
        # Exponential backoff with jitter (cap at 3s)
        return min(3.0, BASE_DELAY * (2 ** (attempt - 1))) + random.uniform(0, 0.25)


# ─────────────────────────────────────────────────────────────────────────────
# Singleton instance
# ─────────────────────────────────────────────────────────────────────────────
redis_wrapper = RedisClient(getattr(settings, "REDIS_URL", "redis://localhost:6379/0"))

__all__ = ["RedisClient", "redis_wrapper"]
