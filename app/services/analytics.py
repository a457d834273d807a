from __future__ import annotations

"""
Analytics / Cost Estimator
==========================

Read-only aggregation over the registry and the quota ledger.

- `storage_analytics(owner_id)`  summary, breakdowns (type / month / storage
  class), month-over-month growth and optimization recommendations. Cached in
  Redis for five minutes under `storage:analytics:{owner_id}`; uploads and
  deletes drop the entry.
- `estimate_costs(size, type, duration)`  monthly / one-time / annual cost of
  keeping one file.
- `library_overview(owner_id)`  counts by type and year, duplicates.

Prices are USD. Storage prices are per GB-day, so a month is ×30.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from redis.exceptions import RedisError

from app.core.config import GIB
from app.repositories.content import ContentRepositoryProtocol
from app.schemas.analytics import (
    CostEstimate,
    LibraryOverview,
    MonthBucket,
    Optimization,
    Recommendation,
    StorageAnalytics,
    StorageBreakdown,
    StorageClassBucket,
    StorageSummary,
    TypeBucket,
)
from app.schemas.content import ContentItem, utcnow
from app.schemas.enums import ContentType, StorageClass
from app.services.quota_ledger import QuotaLedger

logger = logging.getLogger(__name__)

STORAGE_COST_PER_GB_DAY: Dict[StorageClass, float] = {
    StorageClass.HOT: 0.023,
    StorageClass.COOL: 0.01,
    StorageClass.ARCHIVE: 0.00099,
}
BANDWIDTH_COST_PER_GB = 0.085
MONTHLY_VIEWS: Dict[ContentType, int] = {
    ContentType.VIDEO: 1000,
    ContentType.AUDIO: 500,
    ContentType.IMAGE: 2000,
    ContentType.DOCUMENT: 100,
}
VIDEO_PROCESSING_PER_MINUTE_PER_QUALITY = 0.015
IMAGE_PROCESSING_COST = 0.01
DEFAULT_VIDEO_MINUTES = 5.0
CDN_COST_PER_REGION = 0.50
ARCHIVE_AFTER_DAYS = 180
CACHE_TTL_SECONDS = 300
CACHE_KEY = "storage:analytics:{owner_id}"


def _gb(size: int) -> float:
    return size / GIB


def _month_cost(size: int, storage_class: StorageClass) -> float:
    return _gb(size) * STORAGE_COST_PER_GB_DAY[storage_class] * 30


class AnalyticsService:
    def __init__(
        self,
        repo: ContentRepositoryProtocol,
        ledger: QuotaLedger,
        *,
        redis: Any = None,
        cdn_regions: Optional[List[str]] = None,
        video_quality_count: int = 5,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.repo = repo
        self.ledger = ledger
        self.redis = redis
        self.cdn_regions = list(cdn_regions if cdn_regions is not None else ["us-east", "us-west", "eu-west", "ap-southeast"])
        self.video_quality_count = video_quality_count
        self.clock = clock

    # ── cache ────────────────────────────────────────────────
    async def _cache_get(self, owner_id: str) -> Optional[StorageAnalytics]:
        if self.redis is None:
            return None
        try:
            raw = await self.redis.json_get(CACHE_KEY.format(owner_id=owner_id))
        except (RedisError, RuntimeError) as e:
            logger.debug("Analytics cache read skipped: %r", e)
            return None
        return StorageAnalytics.model_validate(raw) if raw else None

    async def _cache_set(self, result: StorageAnalytics) -> None:
        if self.redis is None:
            return
        try:
            await self.redis.json_set(
                CACHE_KEY.format(owner_id=result.owner_id), result.model_dump(mode="json"), ttl_seconds=CACHE_TTL_SECONDS,
            )
        except (RedisError, RuntimeError) as e:
            logger.debug("Analytics cache write skipped: %r", e)

    async def invalidate(self, owner_id: str) -> None:
        if self.redis is None:
            return
        try:
            await self.redis.delete(CACHE_KEY.format(owner_id=owner_id))
        except (RedisError, RuntimeError) as e:
            logger.debug("Analytics cache invalidation skipped: %r", e)

    # ── storage analytics ────────────────────────────────────
    async def storage_analytics(self, owner_id: str, *, use_cache: bool = True) -> StorageAnalytics:
        if use_cache:
            cached = await self._cache_get(owner_id)
            if cached is not None:
                return cached

        items = await self.repo.find_by_owner(owner_id)
        record = await self.ledger.get(owner_id)
        total_size = sum(i.size_bytes for i in items)

        summary = StorageSummary(
            total_files=len(items),
            total_size=total_size,
            used_quota=record.used_bytes,
            reserved_quota=record.reserved_bytes,
            available_quota=record.available_bytes,
            quota_percentage=round(record.used_bytes / record.quota_bytes * 100, 2) if record.quota_bytes else 0.0,
        )

        breakdown = StorageBreakdown()
        for item in items:
            t = breakdown.by_type.setdefault(item.type.value, TypeBucket())
            t.count += 1
            t.size += item.size_bytes

            m = breakdown.by_month.setdefault(item.uploaded_at.strftime("%Y-%m"), MonthBucket())
            m.count += 1
            m.size += item.size_bytes
            m.uploads += 1

            c = breakdown.by_storage_class.setdefault(item.storage_class.value, StorageClassBucket())
            c.count += 1
            c.size += item.size_bytes

        for t in breakdown.by_type.values():
            t.percentage = round(t.size / total_size * 100, 2) if total_size else 0.0
        for name, c in breakdown.by_storage_class.items():
            c.monthly_cost = round(_month_cost(c.size, StorageClass(name)), 4)

        months = sorted(breakdown.by_month)
        growth = 0.0
        if len(months) >= 2:
            last, prev = breakdown.by_month[months[-1]], breakdown.by_month[months[-2]]
            growth = round((last.size - prev.size) / prev.size * 100, 2) if prev.size else 0.0

        result = StorageAnalytics(
            owner_id=owner_id,
            summary=summary,
            breakdown=breakdown,
            monthly_growth=growth,
            optimization=self._optimization(items),
        )
        await self._cache_set(result)
        return result

    def _optimization(self, items: List[ContentItem]) -> Optimization:
        recs: List[Recommendation] = []
        savings = 0.0

        cutoff = self.clock() - timedelta(days=ARCHIVE_AFTER_DAYS)
        old = [i for i in items if i.uploaded_at < cutoff and i.storage_class is not StorageClass.ARCHIVE]
        if old:
            per_gb = STORAGE_COST_PER_GB_DAY[StorageClass.HOT] - STORAGE_COST_PER_GB_DAY[StorageClass.ARCHIVE]
            monthly = _gb(sum(i.size_bytes for i in old)) * per_gb * 30
            savings += monthly
            recs.append(Recommendation(
                type="archive_old_content",
                message=f"Archive {len(old)} files older than 6 months",
                impact=f"Save ${monthly:.2f}/month",
                items=[i.id for i in old],
            ))

        dups = [i for i in items if i.is_duplicate]
        if dups:
            recs.append(Recommendation(
                type="remove_duplicates",
                message=f"{len(dups)} duplicate files found",
                impact=f"Free up {_gb(sum(i.size_bytes for i in dups)):.2f}GB",
                items=[i.id for i in dups],
            ))
        return Optimization(recommendations=recs, potential_savings=round(savings, 2))

    # ── cost estimate ────────────────────────────────────────
    def estimate_costs(self, size_bytes: int, content_type: ContentType, *,
                       duration_minutes: Optional[float] = None) -> CostEstimate:
        storage = {sc.value: round(_month_cost(size_bytes, sc), 4) for sc in StorageClass}
        bandwidth_gb = _gb(size_bytes) * MONTHLY_VIEWS[content_type]
        bandwidth_cost = bandwidth_gb * BANDWIDTH_COST_PER_GB

        processing = 0.0
        if content_type is ContentType.VIDEO:
            minutes = duration_minutes if duration_minutes is not None else DEFAULT_VIDEO_MINUTES
            processing = minutes * VIDEO_PROCESSING_PER_MINUTE_PER_QUALITY * self.video_quality_count
        elif content_type is ContentType.IMAGE:
            processing = IMAGE_PROCESSING_COST

        cdn = len(self.cdn_regions) * CDN_COST_PER_REGION
        monthly = _month_cost(size_bytes, StorageClass.HOT) + bandwidth_cost + cdn

        recs: List[Recommendation] = []
        if monthly > 10:
            recs.append(Recommendation(
                type="cost_optimization",
                message="Consider using adaptive bitrate streaming to reduce bandwidth costs",
            ))
        if content_type is ContentType.VIDEO and size_bytes > GIB:
            recs.append(Recommendation(
                type="compression",
                message="Large video file detected. Consider compressing before upload",
            ))

        return CostEstimate(
            storage=storage,
            bandwidth_gb=round(bandwidth_gb, 4),
            bandwidth_cost=round(bandwidth_cost, 2),
            processing_cost=round(processing, 2),
            cdn_cost=round(cdn, 2),
            monthly=round(monthly, 2),
            one_time=round(processing, 2),
            annual=round(monthly * 12 + processing, 2),
            recommendations=recs,
        )

    # ── library overview ─────────────────────────────────────
    async def library_overview(self, owner_id: str) -> LibraryOverview:
        items = await self.repo.find_by_owner(owner_id)
        out = LibraryOverview(owner_id=owner_id, total_files=len(items), total_size=sum(i.size_bytes for i in items))
        for item in items:
            out.by_type[item.type.value] = out.by_type.get(item.type.value, 0) + 1
            year = str(item.uploaded_at.year)
            out.by_year[year] = out.by_year.get(year, 0) + 1
            if item.is_duplicate:
                out.duplicates.append(item.id)
        if len(out.duplicates) > 5:
            out.recommendations.append(Recommendation(
                type="cleanup",
                message=f"Found {len(out.duplicates)} duplicate files. Consider removing them to save space.",
                items=list(out.duplicates),
            ))
        return out


__all__ = [
    "AnalyticsService",
    "BANDWIDTH_COST_PER_GB",
    "CDN_COST_PER_REGION",
    "MONTHLY_VIEWS",
    "STORAGE_COST_PER_GB_DAY",
]
