from __future__ import annotations

"""Response/request models for storage analytics and cost estimates."""

from typing import Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from app.schemas.enums import ContentType


class Recommendation(BaseModel):
    type: str
    message: str
    impact: Optional[str] = None
    items: List[UUID] = Field(default_factory=list)


class StorageSummary(BaseModel):
    total_files: int
    total_size: int
    used_quota: int
    reserved_quota: int
    available_quota: int
    quota_percentage: float


class TypeBucket(BaseModel):
    count: int = 0
    size: int = 0
    percentage: float = 0.0


class MonthBucket(BaseModel):
    count: int = 0
    size: int = 0
    uploads: int = 0


class StorageClassBucket(BaseModel):
    count: int = 0
    size: int = 0
    monthly_cost: float = 0.0


class StorageBreakdown(BaseModel):
    by_type: Dict[str, TypeBucket] = Field(default_factory=dict)
    by_month: Dict[str, MonthBucket] = Field(default_factory=dict)
    by_storage_class: Dict[str, StorageClassBucket] = Field(default_factory=dict)


class Optimization(BaseModel):
    recommendations: List[Recommendation] = Field(default_factory=list)
    potential_savings: float = 0.0


class StorageAnalytics(BaseModel):
    owner_id: str
    summary: StorageSummary
    breakdown: StorageBreakdown
    monthly_growth: float = 0.0
    optimization: Optimization


class CostEstimateRequest(BaseModel):
    size_bytes: int = Field(ge=0)
    type: ContentType
    duration_minutes: Optional[float] = Field(None, ge=0)


class CostEstimate(BaseModel):
    storage: Dict[str, float]
    bandwidth_gb: float
    bandwidth_cost: float
    processing_cost: float
    cdn_cost: float
    monthly: float
    one_time: float
    annual: float
    recommendations: List[Recommendation] = Field(default_factory=list)


class LibraryOverview(BaseModel):
    owner_id: str
    total_files: int
    total_size: int
    by_type: Dict[str, int] = Field(default_factory=dict)
    by_year: Dict[str, int] = Field(default_factory=dict)
    duplicates: List[UUID] = Field(default_factory=list)
    recommendations: List[Recommendation] = Field(default_factory=list)


__all__ = [
    "Recommendation",
    "StorageSummary",
    "TypeBucket",
    "MonthBucket",
    "StorageClassBucket",
    "StorageBreakdown",
    "Optimization",
    "StorageAnalytics",
    "CostEstimateRequest",
    "CostEstimate",
    "LibraryOverview",
]
