# app/utils/aws.py
from __future__ import annotations

"""
🧊 FanVault Media • S3 Utilities
================================

Thin, hardened boto3 wrapper used by the object store adapter
(`app.services.object_store.S3ObjectStore`) and the backup targets.

🎯 Goals
--------
- Streamed server-side uploads (`upload_fileobj`) with SSE/KMS and storage class
- Server-side copies across buckets/regions (backups, cold tier)
- Short-lived signed GET (SigV4)
- Explicit timeouts + bounded botocore retries
- Defensive key normalization (no leading slash, no `..`)
- Optional CDN base URL for public asset links
- Zero secret leakage in logs

🔗 Contract
-----------
- Class: `S3Client`, `S3StorageError`
- Methods: `upload_fileobj`, `put_bytes`, `get_bytes`, `download_file`,
           `copy_from`, `delete`, `list_keys`, `presigned_get`,
           `head`, `exists`, `cdn_url`, `object_url`

Implementation notes
--------------------
- Blocking by design (boto3); callers run these in worker threads.
- S3-specific errors bubble as `S3StorageError`; retry policy lives one layer up.
"""

from typing import Any, BinaryIO, Dict, List, Optional
import logging
import re

import boto3
import botocore
from botocore.config import Config as BotoConfig
from pydantic import SecretStr

from app.core.config import settings

logger = logging.getLogger(__name__)

# ─────────────────────────────────────────────────────────────────────────────
# 🧱 Exceptions
# ─────────────────────────────────────────────────────────────────────────────

class S3StorageError(RuntimeError):
    """Raised when a storage operation fails (network, auth, policy, etc.)."""


# ─────────────────────────────────────────────────────────────────────────────
# 🧰 Key and value validation
# ─────────────────────────────────────────────────────────────────────────────

# Keep keys strict: readable + safe across tools, CDNs, and logs.
_KEY_ALLOWED_RE = re.compile(r"[A-Za-z0-9._\-/+=@() ]+")

def _normalize_key(key: str) -> str:
    """
    Normalize and validate S3 object keys.

    Steps
    -----
    1) Coerce to str, strip whitespace
    2) Remove leading '/'
    3) Collapse '//' runs
    4) Reject path traversal ('..') and disallowed characters

    Raises
    ------
    S3StorageError
        If key is empty or contains unsafe characters.
    """
    k = str(key or "").strip().lstrip("/")
    k = re.sub(r"/{2,}", "/", k)
    if not k:
        raise S3StorageError("Invalid storage key: empty")
    if ".." in k:
        raise S3StorageError("Invalid storage key: path traversal detected")
    if not _KEY_ALLOWED_RE.fullmatch(k):
        raise S3StorageError("Invalid storage key: contains forbidden characters")
    return k


def _secret_value(v: Optional[SecretStr | str]) -> Optional[str]:
    """Return the underlying secret string without raising if not SecretStr."""
    if v is None:
        return None
    return v.get_secret_value() if isinstance(v, SecretStr) else str(v)


def _is_not_found(e: Exception) -> bool:
    if isinstance(e, botocore.exceptions.ClientError):
        code = e.response.get("Error", {}).get("Code")
        return code in {"404", "NoSuchKey", "NotFound"}
    return False


# ─────────────────────────────────────────────────────────────────────────────
# 📦 S3 Client
# ─────────────────────────────────────────────────────────────────────────────

class S3Client:
    """
    High-level S3 wrapper with safe defaults.

    Parameters
    ----------
    bucket : str | None
        Destination bucket. Defaults to `settings.AWS_BUCKET_NAME`.
    region_name : str | None
        Region to use for the client. Defaults to `settings.AWS_REGION`.
    endpoint_url : str | None
        Custom S3-compatible endpoint (e.g., LocalStack/MinIO). Defaults
        to `settings.AWS_S3_ENDPOINT_URL` if present.
    cdn_base_url : str | None
        If set, `cdn_url()` joins this with normalized keys for public links.
    sse_mode : str | None
        "AES256" or "aws:kms". Defaults from `settings.AWS_SSE_MODE`.
    kms_key_id : str | None
        KMS key id/arn when `sse_mode="aws:kms"`. Defaults from settings.
    connect_timeout, read_timeout : float
        Socket timeouts (seconds) handed to botocore. These bound a single
        attempt; the worker thread is never abandoned mid-transfer.

    Notes
    -----
    * Credentials:
        - If `AWS_ACCESS_KEY_ID` + `AWS_SECRET_ACCESS_KEY` are in settings,
          they are used explicitly; otherwise we rely on the standard AWS
          credential chain (env, profile, ECS/EC2 role, IRSA).
    * Retries/Timeouts:
        - botocore does a small number of fast retries and enforces the socket
          timeouts; the adapter layer owns the bounded backoff policy that
          decides when storage is "unavailable".
    """

    # ────────────────────────────────────────────────────────────────────────
    # 🔧 Construction
    # ────────────────────────────────────────────────────────────────────────

    def __init__(
        self,
        bucket: Optional[str] = None,
        *,
        region_name: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        cdn_base_url: Optional[str] = None,
        sse_mode: Optional[str] = None,
        kms_key_id: Optional[str] = None,
        connect_timeout: float = 3,
        read_timeout: float = 30,
    ) -> None:
        # 1) Resolve configuration from explicit args → settings
        self.bucket = bucket or settings.AWS_BUCKET_NAME
        if not self.bucket:
            raise S3StorageError("AWS_BUCKET_NAME not configured")

        region_cfg = region_name or settings.AWS_REGION
        endpoint_cfg = endpoint_url or settings.AWS_S3_ENDPOINT_URL

        self._cdn_base = (cdn_base_url if cdn_base_url is not None else settings.cdn_base_url).rstrip("/")

        # SSE defaults (never log these)
        self._sse_mode = sse_mode or settings.AWS_SSE_MODE
        self._kms_key_id = kms_key_id or settings.AWS_KMS_KEY_ID

        # 2) Build the boto3 client with safe defaults
        cfg = BotoConfig(
            signature_version="s3v4",
            retries={"max_attempts": 2, "mode": "standard"},
            connect_timeout=connect_timeout,
            read_timeout=read_timeout,
            s3={"addressing_style": "virtual"},
        )

        ak = settings.AWS_ACCESS_KEY_ID
        sk = _secret_value(settings.AWS_SECRET_ACCESS_KEY)
        st = _secret_value(settings.AWS_SESSION_TOKEN)

        client_kwargs: Dict[str, Any] = {"config": cfg}
        if region_cfg:
            client_kwargs["region_name"] = region_cfg
        if endpoint_cfg:
            client_kwargs["endpoint_url"] = endpoint_cfg
        if ak and sk:
            client_kwargs["aws_access_key_id"] = ak
            client_kwargs["aws_secret_access_key"] = sk
            if st:
                client_kwargs["aws_session_token"] = st

        try:
            self.client = boto3.client("s3", **client_kwargs)
        except Exception as e:  # pragma: no cover
            raise S3StorageError(f"Failed to create S3 client: {e}") from e

        self.region = region_cfg
        self._repr = f"S3Client(bucket={self.bucket}, region={self.region}, endpoint={'yes' if endpoint_cfg else 'no'})"

    # ────────────────────────────────────────────────────────────────────────
    # 🔐 Signed URL helpers
    # ────────────────────────────────────────────────────────────────────────

    def presigned_get(
        self,
        key: str,
        *,
        expires_in: int = 300,
        response_content_type: Optional[str] = None,
        response_content_disposition: Optional[str] = None,
    ) -> str:
        """
        Generate a short-lived **presigned GET** URL.

        Parameters
        ----------
        key : str
            Object key (normalized).
        expires_in : int
            TTL seconds (default 300s = 5m).
        response_content_type : str | None
            Optional override for the `Content-Type` returned to the client.
        response_content_disposition : str | None
            e.g., `attachment; filename="..."` to force downloads.
        """
        k = _normalize_key(key)
        params: Dict[str, Any] = {"Bucket": self.bucket, "Key": k}
        if response_content_type:
            params["ResponseContentType"] = response_content_type
        if response_content_disposition:
            params["ResponseContentDisposition"] = response_content_disposition

        try:
            return self.client.generate_presigned_url(
                ClientMethod="get_object",
                Params=params,
                ExpiresIn=int(expires_in),
            )
        except Exception as e:
            raise S3StorageError(f"Failed to create presigned GET: {e}") from e

    # ────────────────────────────────────────────────────────────────────────
    # 🚀 Server-side writes
    # ────────────────────────────────────────────────────────────────────────

    def _write_args(
        self,
        *,
        content_type: str,
        storage_class: Optional[str],
        cache_control: Optional[str],
        extra_args: Optional[Dict[str, Any]],
    ) -> Dict[str, Any]:
        args: Dict[str, Any] = {"ContentType": content_type}
        if cache_control:
            args["CacheControl"] = cache_control
        if storage_class:
            args["StorageClass"] = storage_class

        sse_mode = (extra_args or {}).get("ServerSideEncryption") or self._sse_mode
        kms_key = (extra_args or {}).get("SSEKMSKeyId") or self._kms_key_id
        if sse_mode:
            args["ServerSideEncryption"] = sse_mode
            if sse_mode == "aws:kms" and kms_key:
                args["SSEKMSKeyId"] = kms_key

        for karg, varg in (extra_args or {}).items():
            if karg in {"Bucket", "Key", "Body"}:
                continue
            args[karg] = varg
        return args

    def upload_fileobj(
        self,
        key: str,
        fileobj: BinaryIO,
        *,
        content_type: str,
        storage_class: Optional[str] = None,
        cache_control: Optional[str] = None,
        extra_args: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Stream a file-like object to S3 (multipart for large bodies).

        Raises
        ------
        S3StorageError
            On upload failure or invalid key.
        """
        k = _normalize_key(key)
        args = self._write_args(
            content_type=content_type, storage_class=storage_class,
            cache_control=cache_control, extra_args=extra_args,
        )
        try:
            self.client.upload_fileobj(fileobj, self.bucket, k, ExtraArgs=args)
        except Exception as e:
            raise S3StorageError(f"Failed to upload object: {e}") from e

    def put_bytes(
        self,
        key: str,
        data: bytes,
        *,
        content_type: str,
        storage_class: Optional[str] = None,
        cache_control: Optional[str] = None,
        extra_args: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Upload a small payload generated server-side (variants, thumbnails)."""
        k = _normalize_key(key)
        args = self._write_args(
            content_type=content_type, storage_class=storage_class,
            cache_control=cache_control, extra_args=extra_args,
        )
        try:
            self.client.put_object(Bucket=self.bucket, Key=k, Body=data, **args)
        except Exception as e:
            raise S3StorageError(f"Failed to upload object: {e}") from e

    def copy_from(
        self,
        source_bucket: str,
        source_key: str,
        dest_key: str,
        *,
        storage_class: Optional[str] = None,
    ) -> None:
        """Server-side copy `source_bucket/source_key` → `self.bucket/dest_key`."""
        src = _normalize_key(source_key)
        dst = _normalize_key(dest_key)
        extra: Dict[str, Any] = {}
        if storage_class:
            extra["StorageClass"] = storage_class
        if self._sse_mode:
            extra["ServerSideEncryption"] = self._sse_mode
            if self._sse_mode == "aws:kms" and self._kms_key_id:
                extra["SSEKMSKeyId"] = self._kms_key_id
        try:
            self.client.copy(
                {"Bucket": source_bucket, "Key": src},
                self.bucket,
                dst,
                ExtraArgs=extra or None,
            )
        except Exception as e:
            raise S3StorageError(f"Failed to copy object: {e}") from e

    # ────────────────────────────────────────────────────────────────────────
    # 📤 Reads
    # ────────────────────────────────────────────────────────────────────────

    def get_bytes(self, key: str) -> bytes:
        k = _normalize_key(key)
        try:
            resp = self.client.get_object(Bucket=self.bucket, Key=k)
            return resp["Body"].read()
        except Exception as e:
            if _is_not_found(e):
                raise KeyError(k) from e
            raise S3StorageError(f"Failed to read object: {e}") from e

    def download_file(self, key: str, path: str) -> None:
        k = _normalize_key(key)
        try:
            self.client.download_file(self.bucket, k, path)
        except Exception as e:
            if _is_not_found(e):
                raise KeyError(k) from e
            raise S3StorageError(f"Failed to download object: {e}") from e

    def list_keys(self, prefix: str) -> List[str]:
        """All keys under `prefix` (follows continuation tokens)."""
        p = str(prefix or "").lstrip("/")
        keys: List[str] = []
        try:
            paginator = self.client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self.bucket, Prefix=p):
                keys.extend(obj["Key"] for obj in page.get("Contents") or [])
        except Exception as e:
            raise S3StorageError(f"Failed to list objects: {e}") from e
        return keys

    # ────────────────────────────────────────────────────────────────────────
    # 🗑️ Delete
    # ────────────────────────────────────────────────────────────────────────

    def delete(self, key: str) -> bool:
        """
        Idempotent delete.

        Behavior
        --------
        - Returns True on successful request submission.
        - Returns True for "NoSuchKey" (already gone).
        - Raises `S3StorageError` on anything else so the caller can retry.
        """
        k = _normalize_key(key)
        try:
            self.client.delete_object(Bucket=self.bucket, Key=k)
            return True
        except Exception as e:
            if _is_not_found(e):
                return True
            raise S3StorageError(f"Failed to delete object: {e}") from e

    # ────────────────────────────────────────────────────────────────────────
    # 🌐 Public URL helpers
    # ────────────────────────────────────────────────────────────────────────

    def cdn_url(self, key: str) -> Optional[str]:
        """CDN URL for a normalized key if a CDN base is configured, else None."""
        if not self._cdn_base:
            return None
        return f"{self._cdn_base}/{_normalize_key(key)}"

    def object_url(self, key: str) -> str:
        """
        Build a direct S3 HTTPS URL (non-signed). Private objects will still
        require auth at fetch time.

        For custom endpoints, uses the configured endpoint host.
        """
        k = _normalize_key(key)
        ep = getattr(self.client, "meta", None)
        if ep and getattr(ep, "endpoint_url", None) and settings.AWS_S3_ENDPOINT_URL:
            base = str(ep.endpoint_url).rstrip("/")
            return f"{base}/{self.bucket}/{k}"
        region = self.region or "us-east-1"
        return f"https://{self.bucket}.s3.{region}.amazonaws.com/{k}"

    # ────────────────────────────────────────────────────────────────────────
    # 🔎 Metadata helpers
    # ────────────────────────────────────────────────────────────────────────

    def head(self, key: str) -> Optional[Dict[str, Any]]:
        """
        HEAD the object and return metadata dictionary or None if not found.

        Raises `S3StorageError` on errors other than not-found so an
        unreachable store is never mistaken for a missing object.
        """
        k = _normalize_key(key)
        try:
            resp = self.client.head_object(Bucket=self.bucket, Key=k)
            return dict(resp or {})
        except Exception as e:
            if _is_not_found(e):
                return None
            raise S3StorageError(f"Failed to head object: {e}") from e

    def exists(self, key: str) -> bool:
        """Boolean existence check using `HEAD`."""
        return self.head(key) is not None

    def __repr__(self) -> str:  # pragma: no cover
        return self._repr
