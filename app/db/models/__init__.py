# app/db/models/__init__.py
"""
FanVault Media — ORM models

Importing this package registers every table on `Base.metadata`.
"""

from app.db.base_class import Base

from .content_item import ContentBackup, ContentItem, ContentVariant
from .storage_record import StorageRecord

__all__ = [
    "Base",
    "ContentItem",
    "ContentVariant",
    "ContentBackup",
    "StorageRecord",
]
