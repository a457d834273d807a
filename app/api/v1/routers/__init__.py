"""
🧭 FanVault Media • API v1 Router Aggregator
============================================

Exports the **combined `router`** and a `build_v1_router()` factory.

Quick usage
-----------
    from app.api.v1.routers import router as v1_router
    app.include_router(v1_router, prefix="/api/v1")
"""

from fastapi import APIRouter

from .content import router as content_router


def build_v1_router() -> APIRouter:
    """Compose the API v1 surface into a single `APIRouter`."""
    r = APIRouter()
    r.include_router(content_router)
    return r


router = build_v1_router()

__all__ = ["router", "build_v1_router", "content_router"]
