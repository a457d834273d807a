from __future__ import annotations

"""
FanVault Media — maintenance jobs
---------------------------------
- Lifecycle sweep: hard-delete soft-deleted items whose grace period elapsed
- Backup sweep: copy originals missing a completed backup to every target
- Quota reconciliation: recompute `used` from the registry, log drift
- CDN queue drain: resubmit invalidations parked in Redis

Each job runs under a Redis distributed lock, so running the scheduler on
several replicas is safe; a replica that cannot get the lock skips the run.
"""

import logging
from datetime import timezone
from typing import Awaitable, Callable, Dict, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from app.services.client_registry import ClientRegistry

logger = logging.getLogger("maintenance")

LOCK_KEY = "maintenance:{job}:lock"


class MaintenanceJobs:
    def __init__(self, registry: ClientRegistry, *, lock_ttl_seconds: int = 600) -> None:
        self.registry = registry
        self.lock_ttl_seconds = lock_ttl_seconds

    async def _locked(self, job: str, fn: Callable[[], Awaitable[object]]) -> Optional[object]:
        redis = self.registry.redis
        try:
            if redis is None:
                return await fn()
            async with redis.lock(LOCK_KEY.format(job=job), timeout=self.lock_ttl_seconds, blocking_timeout=2):
                return await fn()
        except TimeoutError:
            logger.debug("%s skipped; lock held by another worker", job)
        except Exception:
            logger.exception("%s failed", job)
        return None

    # ── jobs ─────────────────────────────────────────────────
    async def lifecycle_sweep(self) -> None:
        results = await self._locked("lifecycle-sweep", self.registry.lifecycle.sweep)
        if results:
            logger.info("Lifecycle sweep | removed=%s", sum(r.removed for r in results))

    async def backup_sweep(self) -> None:
        count = await self._locked("backup-sweep", self.registry.lifecycle.backup_sweep)
        if count:
            logger.info("Backup sweep | items=%s", count)

    async def quota_reconcile(self) -> None:
        owners = await self._locked("quota-reconcile", self.registry.ledger.reconcile_all)
        if owners:
            logger.info("Quota reconciliation | owners=%s", len(owners))

    async def cdn_drain(self) -> None:
        submitted = await self._locked("cdn-drain", self.registry.cdn.drain_queue)
        if submitted:
            logger.info("CDN queue drained | paths=%s", submitted)

    # ── scheduling ───────────────────────────────────────────
    def intervals(self) -> Dict[str, int]:
        s = self.registry.settings
        return {
            "lifecycle_sweep": s.LIFECYCLE_SWEEP_INTERVAL_MINUTES,
            "backup_sweep": s.BACKUP_SWEEP_INTERVAL_MINUTES,
            "quota_reconcile": s.QUOTA_RECONCILE_INTERVAL_MINUTES,
            "cdn_drain": s.CDN_QUEUE_DRAIN_INTERVAL_MINUTES,
        }

    def schedule(self, scheduler: AsyncIOScheduler, *, jitter_seconds: int = 15) -> None:
        for job_id, minutes in self.intervals().items():
            scheduler.add_job(
                getattr(self, job_id),
                IntervalTrigger(minutes=minutes, jitter=jitter_seconds, timezone=timezone.utc),
                id=job_id,
                max_instances=1,
                coalesce=True,
                replace_existing=True,
            )


def start_maintenance_scheduler(registry: ClientRegistry, *, jitter_seconds: int = 15) -> AsyncIOScheduler:
    """Start all maintenance jobs on an `AsyncIOScheduler` bound to the running loop."""
    jobs = MaintenanceJobs(registry)
    scheduler = AsyncIOScheduler(timezone=timezone.utc)
    jobs.schedule(scheduler, jitter_seconds=jitter_seconds)
    scheduler.start()
    logger.info("Maintenance scheduler started | intervals=%s", jobs.intervals())
    return scheduler


__all__ = ["MaintenanceJobs", "start_maintenance_scheduler"]
