from __future__ import annotations

"""
CDN Distributor
===============

Keeps edge caches honest after an item is created, updated or deleted.

- Only `access_level=public` items are touched; everything else is served
  through signed URLs and never cached publicly.
- Invalidation is one CloudFront `create_invalidation` listing the canonical
  key and every variant key (renditions sit in `images/`, `videos/`,
  `thumbnails/` and `audio/` folders, not under the canonical key), retried
  with bounded backoff in a worker thread.
- When no distribution is configured or retries are exhausted, the paths are
  pushed to the Redis list `cdn:invalidate:queue`; the maintenance worker
  drains it later (`drain_queue`).
- `priority=high` items are pre-warmed on create: one HTTP HEAD per edge
  endpoint via httpx.

Nothing here raises to the caller: the triggering upload/delete has already
succeeded, so a CDN problem is logged, counted and queued.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from uuid import uuid4

import httpx
from pydantic import BaseModel, ConfigDict, Field

from app.core.config import Settings
from app.core.metrics import inc_cdn_invalidation
from app.core.retry import RetryPolicy, retry_async
from app.core.storage import cdn_path
from app.schemas.content import ContentItem
from app.schemas.enums import AccessLevel, CdnEvent, Priority

logger = logging.getLogger(__name__)

QUEUE_KEY = "cdn:invalidate:queue"


class CdnConfig(BaseModel):
    """
    - distribution_id   CloudFront distribution; unset → every invalidation is queued
    - base_url          public CDN origin used for pre-warm when no edge endpoints exist
    - edge_endpoints    region → edge base URL for pre-warm
    - queue_key         Redis list holding paths awaiting invalidation
    """

    model_config = ConfigDict(frozen=True)

    distribution_id: Optional[str] = None
    base_url: str = ""
    edge_endpoints: Dict[str, str] = Field(default_factory=dict)
    regions: List[str] = Field(default_factory=lambda: ["us-east", "us-west", "eu-west", "ap-southeast"])
    retry_attempts: int = Field(3, ge=1, le=10)
    retry_base_delay: float = Field(0.5, ge=0)
    retry_max_delay: float = Field(4.0, ge=0)
    queue_key: str = QUEUE_KEY
    prewarm_timeout: float = Field(5.0, gt=0)

    @classmethod
    def from_settings(cls, s: Settings) -> "CdnConfig":
        return cls(
            distribution_id=s.CLOUDFRONT_DISTRIBUTION_ID,
            base_url=s.cdn_base_url,
            edge_endpoints=s.cdn_edge_endpoints,
            regions=s.cdn_regions_list,
            retry_attempts=s.STORE_RETRY_ATTEMPTS,
            prewarm_timeout=s.CDN_PREWARM_TIMEOUT_SECONDS,
        )

    @property
    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(attempts=self.retry_attempts, base_delay=self.retry_base_delay, max_delay=self.retry_max_delay)


@dataclass
class CdnResult:
    status: str                     # skipped | submitted | queued | dropped
    paths: List[str] = field(default_factory=list)
    invalidation_id: Optional[str] = None
    prewarmed: Dict[str, int] = field(default_factory=dict)


class CdnDistributor:
    def __init__(
        self,
        config: CdnConfig,
        *,
        cloudfront: Any = None,
        redis: Any = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.config = config
        self.cloudfront = cloudfront
        self.redis = redis
        self._transport = transport

    # ── publish ──────────────────────────────────────────────
    @staticmethod
    def paths_for(item: ContentItem) -> List[str]:
        """Canonical object plus every variant key (variants live in sibling folders)."""
        keys = [item.storage_key] + [v.storage_key for v in item.variants if v.storage_key]
        return list(dict.fromkeys(cdn_path(k) for k in keys))

    async def publish(self, item: ContentItem, event: CdnEvent) -> CdnResult:
        if item.access_level is not AccessLevel.PUBLIC:
            return CdnResult("skipped")
        result = await self.invalidate(self.paths_for(item))
        if event is CdnEvent.CREATED and item.priority is Priority.HIGH:
            result.prewarmed = await self.prewarm(item.storage_key)
        logger.info(
            "CDN publish %s: %s", event.value, result.status,
            extra={"content_id": str(item.id), "paths": result.paths},
        )
        return result

    async def invalidate(self, paths: List[str]) -> CdnResult:
        paths = [p if p.startswith("/") else "/" + p for p in paths if p]
        paths = list(dict.fromkeys(paths))
        if not paths:
            return CdnResult("skipped")
        if not (self.config.distribution_id and self.cloudfront is not None):
            return await self._enqueue(paths)

        def _call() -> Dict[str, Any]:
            return self.cloudfront.create_invalidation(
                DistributionId=self.config.distribution_id,
                InvalidationBatch={
                    "Paths": {"Quantity": len(paths), "Items": paths},
                    "CallerReference": f"fv-{uuid4().hex}",
                },
            )

        async def _attempt() -> Dict[str, Any]:
            return await asyncio.to_thread(_call)

        outcome = await retry_async(_attempt, policy=self.config.retry_policy, operation="cdn.invalidate")
        if outcome.ok:
            inc_cdn_invalidation("submitted")
            inv_id = ((outcome.value or {}).get("Invalidation") or {}).get("Id")
            return CdnResult("submitted", paths, invalidation_id=inv_id)
        return await self._enqueue(paths)

    async def _enqueue(self, paths: List[str]) -> CdnResult:
        if self.redis is None:
            inc_cdn_invalidation("dropped")
            logger.error("CDN invalidation dropped (no distribution, no queue)", extra={"paths": paths})
            return CdnResult("dropped", paths)
        try:
            await self.redis.queue_push(self.config.queue_key, *paths)
        except Exception:
            inc_cdn_invalidation("dropped")
            logger.exception("CDN invalidation could not be queued", extra={"paths": paths})
            return CdnResult("dropped", paths)
        inc_cdn_invalidation("queued")
        return CdnResult("queued", paths)

    async def drain_queue(self, *, batch: int = 100) -> int:
        """Submit queued paths; returns how many were submitted."""
        if self.redis is None or not (self.config.distribution_id and self.cloudfront is not None):
            return 0
        paths = await self.redis.queue_pop(self.config.queue_key, batch)
        if not paths:
            return 0
        result = await self.invalidate(paths)
        if result.status != "submitted":
            logger.warning("CDN queue drain re-queued %s path(s)", len(paths))
            return 0
        return len(result.paths)

    # ── pre-warm ─────────────────────────────────────────────
    def _edge_urls(self, key: str) -> Dict[str, str]:
        key = key.lstrip("/")
        if self.config.edge_endpoints:
            return {region: f"{base.rstrip('/')}/{key}" for region, base in self.config.edge_endpoints.items()}
        if self.config.base_url:
            return {"default": f"{self.config.base_url.rstrip('/')}/{key}"}
        return {}

    async def prewarm(self, key: str) -> Dict[str, int]:
        """HEAD the object at every edge; region → status code (0 on transport error)."""
        urls = self._edge_urls(key)
        if not urls:
            return {}
        out: Dict[str, int] = {}
        async with httpx.AsyncClient(timeout=self.config.prewarm_timeout, transport=self._transport) as client:
            async def _head(region: str, url: str) -> None:
                try:
                    resp = await client.head(url)
                    out[region] = resp.status_code
                except httpx.HTTPError as e:
                    logger.warning("Pre-warm failed for %s: %r", region, e)
                    out[region] = 0

            await asyncio.gather(*(_head(r, u) for r, u in urls.items()))
        return out


__all__ = ["CdnConfig", "CdnDistributor", "CdnResult", "QUEUE_KEY"]
