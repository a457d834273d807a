from __future__ import annotations

"""
Client Registry
===============

Every provider client the pipeline talks to is built **once**, here, at
startup, and handed to the components that need it:

- primary object store (S3 or in-memory)
- backup targets: secondary region bucket, cold tier of the primary bucket,
  optional extra provider (any S3-compatible endpoint)
- CloudFront client (only when a distribution is configured)
- Redis wrapper (CDN retry queue, analytics cache, maintenance locks)
- codec tool (ffmpeg/ffprobe)
- registry + quota repositories (SQL or in-memory)
- access client (HTTP entitlement service, or static grants in dev)

`registry.service` wires the components into a `ContentService`; the HTTP
layer and the maintenance worker both reach the pipeline through it. Tests
construct a registry directly with in-memory parts.
"""

import logging
from dataclasses import dataclass, field
from functools import cached_property
from typing import Any, List, Optional

import boto3

from app.core.config import Settings, settings as default_settings
from app.core.redis_client import redis_wrapper
from app.repositories.content import ContentRepositoryProtocol, MemoryContentRepository, SqlContentRepository
from app.repositories.quota import MemoryQuotaRepository, QuotaRepositoryProtocol, SqlQuotaRepository
from app.services.access import AccessClient, HttpAccessClient, StaticAccessClient
from app.services.analytics import AnalyticsService
from app.services.cdn import CdnConfig, CdnDistributor
from app.services.content_service import ContentService
from app.services.dedup import DedupConfig, DedupIndex
from app.services.hashing import ValidationConfig
from app.services.lifecycle import BackupTarget, LifecycleConfig, LifecycleManager
from app.services.object_store import (
    MemoryObjectStore,
    ObjectStore,
    ObjectStoreConfig,
    S3ObjectStore,
    build_object_store,
)
from app.services.quota_ledger import QuotaConfig, QuotaLedger
from app.services.signing import SigningConfig, UrlSigner
from app.services.variants import CodecTool, FfmpegCodecTool, VariantConfig, VariantGenerator
from app.utils.background import BackgroundRunner
from app.utils.locks import KeyedLock

logger = logging.getLogger(__name__)


@dataclass
class ClientRegistry:
    settings: Settings
    store: ObjectStore
    content_repo: ContentRepositoryProtocol
    quota_repo: QuotaRepositoryProtocol
    codec: CodecTool
    access: AccessClient
    backup_targets: List[BackupTarget] = field(default_factory=list)
    cloudfront: Any = None
    redis: Any = None
    runner: BackgroundRunner = field(default_factory=BackgroundRunner)
    item_locks: KeyedLock = field(default_factory=KeyedLock)

    # ─────────────────────────────────────────────────────────
    # 🏗️ Construction from settings
    # ─────────────────────────────────────────────────────────
    @classmethod
    def build(cls, s: Optional[Settings] = None) -> "ClientRegistry":
        s = s or default_settings
        store = build_object_store(s)
        content_repo, quota_repo = _repositories(s)
        registry = cls(
            settings=s,
            store=store,
            content_repo=content_repo,
            quota_repo=quota_repo,
            codec=FfmpegCodecTool(ffmpeg=s.FFMPEG_BINARY, ffprobe=s.FFPROBE_BINARY),
            access=_access_client(s),
            backup_targets=_backup_targets(s, store),
            cloudfront=_cloudfront_client(s),
            redis=redis_wrapper,
        )
        logger.info(
            "Client registry built",
            extra={"storage": s.STORAGE_BACKEND, "registry": s.REGISTRY_BACKEND,
                   "backup_targets": [t.name for t in registry.backup_targets],
                   "cdn": bool(registry.cloudfront)},
        )
        return registry

    # ─────────────────────────────────────────────────────────
    # 🔌 Components
    # ─────────────────────────────────────────────────────────
    @cached_property
    def ledger(self) -> QuotaLedger:
        return QuotaLedger(self.quota_repo, self.content_repo, QuotaConfig.from_settings(self.settings))

    @cached_property
    def cdn(self) -> CdnDistributor:
        return CdnDistributor(CdnConfig.from_settings(self.settings), cloudfront=self.cloudfront, redis=self.redis)

    @cached_property
    def generator(self) -> VariantGenerator:
        return VariantGenerator(
            self.content_repo, self.store, self.ledger, self.codec,
            VariantConfig.from_settings(self.settings), item_locks=self.item_locks,
        )

    @cached_property
    def lifecycle(self) -> LifecycleManager:
        return LifecycleManager(
            self.content_repo, self.store, self.ledger, self.cdn,
            LifecycleConfig.from_settings(self.settings),
            backup_targets=self.backup_targets, item_locks=self.item_locks,
        )

    @cached_property
    def analytics(self) -> AnalyticsService:
        return AnalyticsService(self.content_repo, self.ledger, redis=self.redis,
                                cdn_regions=self.settings.cdn_regions_list)

    @cached_property
    def service(self) -> ContentService:
        return ContentService(
            repo=self.content_repo,
            store=self.store,
            ledger=self.ledger,
            dedup=DedupIndex(self.content_repo, DedupConfig.from_settings(self.settings)),
            generator=self.generator,
            lifecycle=self.lifecycle,
            cdn=self.cdn,
            analytics=self.analytics,
            signer=UrlSigner(SigningConfig.from_settings(self.settings)),
            access=self.access,
            runner=self.runner,
            validation=ValidationConfig.from_settings(self.settings),
        )

    async def aclose(self, *, timeout: Optional[float] = 30.0) -> None:
        """Let background work finish, then cancel whatever is still running."""
        await self.runner.drain(timeout=timeout)
        await self.runner.cancel_all()


# ─────────────────────────────────────────────────────────────
# 🧰 Builders
# ─────────────────────────────────────────────────────────────
def _repositories(s: Settings):
    if s.REGISTRY_BACKEND == "sql":
        from app.db.session import async_session_maker

        return SqlContentRepository(async_session_maker), SqlQuotaRepository(async_session_maker)
    return MemoryContentRepository(), MemoryQuotaRepository()


def _backup_targets(s: Settings, primary: ObjectStore) -> List[BackupTarget]:
    if not s.BACKUP_ENABLED:
        return []
    targets: List[BackupTarget] = []
    if s.STORAGE_BACKEND == "s3":
        if s.BACKUP_BUCKET_NAME:
            store = S3ObjectStore(
                ObjectStoreConfig.from_settings(s, bucket=s.BACKUP_BUCKET_NAME, region=s.BACKUP_REGION),
                name="secondary_region",
            )
            targets.append(BackupTarget("secondary_region", store, storage_class="STANDARD_IA"))
        else:
            logger.warning("BACKUP_BUCKET_NAME not set; secondary region backups disabled")
    else:
        store = MemoryObjectStore(name="secondary_region", bucket="backup", region=s.BACKUP_REGION)
        targets.append(BackupTarget("secondary_region", store, storage_class="STANDARD_IA"))

    if s.BACKUP_COLD_STORAGE:
        targets.append(BackupTarget("cold_storage", primary, storage_class="DEEP_ARCHIVE"))

    if s.BACKUP_EXTRA_BUCKET and s.STORAGE_BACKEND == "s3":
        store = S3ObjectStore(
            ObjectStoreConfig.from_settings(s, bucket=s.BACKUP_EXTRA_BUCKET,
                                            endpoint_url=s.BACKUP_EXTRA_ENDPOINT_URL),
            name=s.BACKUP_EXTRA_PROVIDER,
        )
        targets.append(BackupTarget(s.BACKUP_EXTRA_PROVIDER, store, provider=s.BACKUP_EXTRA_PROVIDER,
                                    storage_class="STANDARD"))
    return targets


def _cloudfront_client(s: Settings) -> Any:
    if not s.CLOUDFRONT_DISTRIBUTION_ID:
        return None
    return boto3.client(
        "cloudfront",
        aws_access_key_id=s.AWS_ACCESS_KEY_ID,
        aws_secret_access_key=s.AWS_SECRET_ACCESS_KEY.get_secret_value() if s.AWS_SECRET_ACCESS_KEY else None,
        aws_session_token=s.AWS_SESSION_TOKEN.get_secret_value() if s.AWS_SESSION_TOKEN else None,
        region_name=s.AWS_REGION,
    )


def _access_client(s: Settings) -> AccessClient:
    if s.ACCESS_SERVICE_URL:
        return HttpAccessClient(s.ACCESS_SERVICE_URL, timeout=s.ACCESS_SERVICE_TIMEOUT_SECONDS)
    if s.is_development:
        logger.warning("ACCESS_SERVICE_URL not set; granting every signed-URL request (DEV MODE)")
        return StaticAccessClient(allow_all=True)
    logger.warning("ACCESS_SERVICE_URL not set; non-owners are denied signed URLs")
    return StaticAccessClient()


__all__ = ["ClientRegistry"]
