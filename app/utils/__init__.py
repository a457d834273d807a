"""Utility helpers for FanVault Media.

Submodules:
- aws: boto3 S3 wrapper (SSE, storage classes, presigned URLs)
- background: tracked asyncio tasks for out-of-band work
- locks: keyed asyncio locks (per owner / per item)
- maintenance: APScheduler jobs for sweeps, reconciliation and queue drains
"""

__all__: list[str] = []
