from __future__ import annotations

"""
Dedicated maintenance worker for background schedulers.

Responsibilities:
- Lifecycle sweep (grace-period hard deletes)
- Backup sweep (missing replicas)
- Quota reconciliation (drift correction)
- CDN invalidation queue drain

Env toggles:
  MAINTENANCE_SCHEDULER=true|false (default true)

Run:
  python scripts/worker.py
"""

import asyncio
import logging
import os

from app.core import logger as _logsetup  # noqa: F401  (loguru sinks + stdlib intercept)
from app.core.redis_client import redis_wrapper
from app.services.client_registry import ClientRegistry
from app.utils.maintenance import start_maintenance_scheduler

log = logging.getLogger("worker")


def _truthy(name: str, default: str = "true") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


async def run() -> None:
    registry = ClientRegistry.build()
    try:
        await redis_wrapper.connect()
    except RuntimeError:
        log.exception("Redis connect failed; maintenance jobs will run without distributed locks")
        registry.redis = None

    scheduler = None
    if _truthy("MAINTENANCE_SCHEDULER", "true"):
        scheduler = start_maintenance_scheduler(registry)
    else:
        log.warning("MAINTENANCE_SCHEDULER disabled; worker idle")

    try:
        await asyncio.Event().wait()
    finally:
        if scheduler is not None:
            scheduler.shutdown(wait=False)
        await registry.aclose()
        await redis_wrapper.close()


def main() -> None:
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
