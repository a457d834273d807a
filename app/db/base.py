# app/db/base.py
"""
FanVault Media — SQLAlchemy Base registry
=========================================

Import all ORM models so their tables are registered on `Base.metadata`.
This is useful for Alembic autogeneration and ensures relationship
backrefs resolve at import time.

Tip: Keep this file import-only; no runtime logic.
"""

from app.db.base_class import Base

from app.db.models.content_item import ContentBackup, ContentItem, ContentVariant
from app.db.models.storage_record import StorageRecord

__all__ = [
    "Base",
    "ContentItem",
    "ContentVariant",
    "ContentBackup",
    "StorageRecord",
]
