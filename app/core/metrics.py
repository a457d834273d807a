from __future__ import annotations

"""Prometheus counters for the media pipeline.

Thin `inc_*` helpers keep label names in one place so call sites stay one line.
"""

from prometheus_client import Counter, Histogram

uploads_total = Counter(
    "media_uploads_total",
    "Upload attempts by outcome",
    labelnames=("content_type", "outcome"),
)
upload_bytes = Histogram(
    "media_upload_bytes",
    "Size of accepted uploads",
    labelnames=("content_type",),
    buckets=(1e5, 1e6, 1e7, 1e8, 5e8, 1e9, 5e9),
)
variants_total = Counter(
    "media_variants_total",
    "Variant generation results",
    labelnames=("kind", "result"),
)
quota_rejections_total = Counter(
    "media_quota_rejections_total",
    "Reservations refused because the owner ceiling would be crossed",
)
data_quality_total = Counter(
    "media_data_quality_events_total",
    "Ledger corrections (drift reconciled, clamped releases)",
    labelnames=("event",),
)
hard_deletes_total = Counter(
    "media_hard_deletes_total",
    "Completed hard deletes",
)
backups_total = Counter(
    "media_backups_total",
    "Backup copies by target and result",
    labelnames=("target", "result"),
)
cdn_invalidations_total = Counter(
    "media_cdn_invalidations_total",
    "CDN invalidations by result",
    labelnames=("result",),
)
store_retries_total = Counter(
    "media_store_retries_total",
    "Object store retry attempts",
    labelnames=("operation",),
)


def inc_upload(content_type: str, outcome: str) -> None:
    uploads_total.labels(content_type=content_type, outcome=outcome).inc()


def observe_upload_bytes(content_type: str, size: int) -> None:
    upload_bytes.labels(content_type=content_type).observe(size)


def inc_variant(kind: str, result: str) -> None:
    variants_total.labels(kind=kind, result=result).inc()


def inc_quota_rejection() -> None:
    quota_rejections_total.inc()


def inc_data_quality(event: str) -> None:
    data_quality_total.labels(event=event).inc()


def inc_hard_delete() -> None:
    hard_deletes_total.inc()


def inc_backup(target: str, result: str) -> None:
    backups_total.labels(target=target, result=result).inc()


def inc_cdn_invalidation(result: str) -> None:
    cdn_invalidations_total.labels(result=result).inc()


def inc_store_retry(operation: str) -> None:
    store_retries_total.labels(operation=operation).inc()


__all__ = [
    "inc_upload",
    "observe_upload_bytes",
    "inc_variant",
    "inc_quota_rejection",
    "inc_data_quality",
    "inc_hard_delete",
    "inc_backup",
    "inc_cdn_invalidation",
    "inc_store_retry",
]
