# app/core/config.py
from __future__ import annotations

"""
# FanVault Media — Centralized Configuration (Pydantic v2)

Single `settings` object with strongly-typed, environment-driven config.

## Goals
- Safe defaults for local/dev; explicit where prod needs secrets.
- Robust URL normalization and CSV → list helpers.
- Optional external systems (S3/CloudFront/backup buckets) so imports never crash in dev.
- Component configs (validation, object store, variants, quota, lifecycle, CDN,
  signing) are built **from** these settings once, at startup, and injected.

## Usage
    from app.core.config import settings
"""

import logging
from typing import Dict, List, Literal, Optional

from dotenv import load_dotenv
from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

log = logging.getLogger(__name__)
load_dotenv()  # harmless in prod; convenient in dev

GIB = 1024 * 1024 * 1024
MIB = 1024 * 1024


# ─────────────────────────────────────────────────────────────
# Small helpers
# ─────────────────────────────────────────────────────────────
def _split_csv(v: str | None) -> list[str]:
    """Split a comma-separated string into a trimmed list (empty-safe)."""
    if not v:
        return []
    return [s.strip() for s in str(v).split(",") if s and s.strip()]


def _normalize_url_like(v: str | None, *, require_scheme: bool = True) -> str:
    """Normalize to a string URL without trailing slash."""
    s = (v or "").strip()
    if not s:
        return ""
    if require_scheme and not (s.startswith("http://") or s.startswith("https://")):
        s = "https://" + s
    return s.rstrip("/")


def _split_pairs(v: str | None) -> Dict[str, str]:
    """Parse `name=value,name2=value2` into a dict (empty-safe)."""
    out: Dict[str, str] = {}
    for item in _split_csv(v):
        name, sep, value = item.partition("=")
        if sep and name.strip() and value.strip():
            out[name.strip()] = value.strip()
    return out


# ─────────────────────────────────────────────────────────────
# Settings
# ─────────────────────────────────────────────────────────────
class Settings(BaseSettings):
    """
    Global application settings sourced from environment.

    Storage:
        - `STORAGE_BACKEND=s3` talks to S3 through `app.utils.aws.S3Client`;
          `memory` keeps objects in-process (dev/tests).
        - Backups go to `BACKUP_BUCKET_NAME` (secondary region), the cold tier
          of the primary bucket, and optionally `BACKUP_EXTRA_BUCKET`.

    Registry:
        - `REGISTRY_BACKEND=sql` persists content rows via SQLAlchemy;
          `memory` keeps them in-process.

    Notes:
        - Prefer the string convenience properties when composing URLs.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # don't crash on unknown keys
    )

    # ── App meta ──────────────────────────────────────────────
    PROJECT_NAME: str = "FanVault Media API"
    VERSION: str = "1.0.0"
    API_V1_STR: str = "/api/v1"
    ENV: Literal["development", "staging", "production"] = "development"
    ENABLE_DOCS: bool = True

    # ── Redis ─────────────────────────────────────────────────
    REDIS_URL: str = "redis://localhost:6379/0"

    # ── Database (PostgreSQL) ─────────────────────────────────
    POSTGRES_SERVER: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: SecretStr = SecretStr("postgres")
    POSTGRES_DB: str = "fanvault"
    DATABASE_URL_OVERRIDE: Optional[str] = None  # e.g. sqlite+aiosqlite:///./dev.db

    # ── Backends ──────────────────────────────────────────────
    STORAGE_BACKEND: Literal["s3", "memory"] = "memory"
    REGISTRY_BACKEND: Literal["sql", "memory"] = "memory"

    # ── AWS / S3 (optional in dev) ────────────────────────────
    AWS_ACCESS_KEY_ID: Optional[str] = None
    AWS_SECRET_ACCESS_KEY: Optional[SecretStr] = None
    AWS_SESSION_TOKEN: Optional[SecretStr] = None
    AWS_REGION: str = "us-east-1"
    AWS_BUCKET_NAME: Optional[str] = None
    AWS_S3_ENDPOINT_URL: Optional[str] = None
    AWS_SSE_MODE: Optional[Literal["AES256", "aws:kms"]] = "AES256"
    AWS_KMS_KEY_ID: Optional[str] = None

    # ── Backups ───────────────────────────────────────────────
    BACKUP_ENABLED: bool = True
    BACKUP_BUCKET_NAME: Optional[str] = None
    BACKUP_REGION: str = "us-west-2"
    BACKUP_COLD_STORAGE: bool = True
    BACKUP_EXTRA_PROVIDER: str = "secondary-provider"
    BACKUP_EXTRA_BUCKET: Optional[str] = None
    BACKUP_EXTRA_ENDPOINT_URL: Optional[str] = None

    # ── CDN ───────────────────────────────────────────────────
    CLOUDFRONT_DOMAIN: Optional[str] = None  # e.g., cdn.example.com or https://cdn.example.com
    CLOUDFRONT_DISTRIBUTION_ID: Optional[str] = None
    CDN_REGIONS: str = "us-east,us-west,eu-west,ap-southeast"
    CDN_EDGE_ENDPOINTS: Optional[str] = None  # CSV: region=https://edge-host
    CDN_PREWARM_TIMEOUT_SECONDS: float = Field(5.0, gt=0, le=60)

    # ── Upload validation ─────────────────────────────────────
    MAX_UPLOAD_BYTES: int = Field(5 * GIB, ge=1)
    STRICT_MIME: bool = False
    UPLOAD_SPOOL_MAX_MEMORY: int = Field(8 * MIB, ge=0)
    UPLOAD_CHUNK_SIZE: int = Field(1 * MIB, ge=1024)

    # ── Dedup / quota / lifecycle ─────────────────────────────
    DEDUP_CROSS_OWNER: bool = False
    DEFAULT_QUOTA_BYTES: int = Field(100 * GIB, ge=0)
    SOFT_DELETE_GRACE_DAYS: int = Field(30, ge=0, le=365)

    # ── Object store retry policy ─────────────────────────────
    STORE_RETRY_ATTEMPTS: int = Field(3, ge=1, le=10)
    STORE_RETRY_BASE_DELAY: float = Field(0.25, ge=0)
    STORE_RETRY_MAX_DELAY: float = Field(2.0, ge=0)
    STORE_OPERATION_TIMEOUT: float = Field(30.0, gt=0)

    # ── Variants / codec ──────────────────────────────────────
    FFMPEG_BINARY: str = "ffmpeg"
    FFPROBE_BINARY: str = "ffprobe"
    MEDIA_WORK_DIR: Optional[str] = None
    THUMBNAIL_POSITION: float = Field(0.10, ge=0, le=1)
    WAVEFORM_BUCKETS: int = Field(200, ge=10, le=5000)
    WEBP_QUALITY: int = Field(85, ge=1, le=100)

    # ── Signed URLs / access ──────────────────────────────────
    MEDIA_URL_SIGNING_SECRET: Optional[SecretStr] = None
    ALLOW_DEV_SIGNING: bool = False
    SIGNED_URL_TTL_SECONDS: int = Field(3600, ge=60, le=7 * 24 * 60 * 60)
    MEDIA_BASE_URL: str = "/media"
    ACCESS_SERVICE_URL: Optional[str] = None
    ACCESS_SERVICE_TIMEOUT_SECONDS: float = Field(3.0, gt=0, le=30)

    # ── Maintenance ───────────────────────────────────────────
    LIFECYCLE_SWEEP_INTERVAL_MINUTES: int = Field(60, ge=1)
    BACKUP_SWEEP_INTERVAL_MINUTES: int = Field(360, ge=1)
    QUOTA_RECONCILE_INTERVAL_MINUTES: int = Field(720, ge=1)
    CDN_QUEUE_DRAIN_INTERVAL_MINUTES: int = Field(5, ge=1)

    # ── Validators / normalizers ──────────────────────────────
    @field_validator("CLOUDFRONT_DOMAIN", mode="before")
    @classmethod
    def _normalize_cdn_domain(cls, v: str | None) -> str | None:
        """
        Accepts either 'cdn.example.com' or 'https://cdn.example.com' and
        normalizes to 'https://cdn.example.com' (no trailing slash).
        """
        s = (v or "").strip()
        if not s:
            return None
        return _normalize_url_like(s, require_scheme=not (s.startswith("http://") or s.startswith("https://")))

    @field_validator("ACCESS_SERVICE_URL", mode="before")
    @classmethod
    def _normalize_access_url(cls, v: str | None) -> str | None:
        s = (v or "").strip()
        return _normalize_url_like(s) if s else None

    # ── Derived / convenience properties ─────────────────────
    @property
    def is_production(self) -> bool:
        return self.ENV.lower() == "production"

    @property
    def is_development(self) -> bool:
        return self.ENV.lower() == "development"

    @property
    def DATABASE_URL(self) -> str:
        """Sync DSN."""
        return (
            f"postgresql://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD.get_secret_value()}"
            f"@{self.POSTGRES_SERVER}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    @property
    def ASYNC_DATABASE_URL(self) -> str:
        """Async SQLAlchemy DSN (override wins)."""
        if self.DATABASE_URL_OVERRIDE:
            return self.DATABASE_URL_OVERRIDE
        return self.DATABASE_URL.replace("postgresql://", "postgresql+asyncpg://")

    @property
    def cdn_base_url(self) -> str:
        """
        CloudFront base URL normalized to a full https URL without trailing slash.
        Examples:
          'cdn.example.com'             -> 'https://cdn.example.com'
          'https://cdn.example.com'     -> 'https://cdn.example.com'
        """
        d = (self.CLOUDFRONT_DOMAIN or "").strip().rstrip("/")
        if not d:
            return ""
        return d if d.startswith(("http://", "https://")) else f"https://{d}"

    @property
    def cdn_regions_list(self) -> List[str]:
        return _split_csv(self.CDN_REGIONS)

    @property
    def cdn_edge_endpoints(self) -> Dict[str, str]:
        """Region → edge base URL used for pre-warming."""
        return {k: _normalize_url_like(v) for k, v in _split_pairs(self.CDN_EDGE_ENDPOINTS).items()}


# Singleton instance
settings = Settings()
