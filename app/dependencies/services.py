from __future__ import annotations

"""
Request-scoped access to the pipeline.

The `ClientRegistry` is built once in the app lifespan and parked on
`app.state.registry`; routes reach the `ContentService` through
`get_content_service`. The caller identity is set by the upstream gateway
in `X-User-Id` (authentication happens there, not here).
"""

from fastapi import Depends, Header, Request

from app.core.exceptions import AccessDenied
from app.services.client_registry import ClientRegistry
from app.services.content_service import ContentService


def get_registry(request: Request) -> ClientRegistry:
    registry = getattr(request.app.state, "registry", None)
    if registry is None:
        raise RuntimeError("Client registry not initialised; is the app lifespan running?")
    return registry


def get_content_service(registry: ClientRegistry = Depends(get_registry)) -> ContentService:
    return registry.service


def get_user_id(x_user_id: str = Header(..., alias="X-User-Id", min_length=1, max_length=128)) -> str:
    return x_user_id


def require_owner(owner_id: str, user_id: str = Depends(get_user_id)) -> str:
    """Owner-scoped views (listing, trash, analytics) are visible to the owner only."""
    if owner_id != user_id:
        raise AccessDenied("Only the owner may view this library", user_id=user_id)
    return owner_id


__all__ = ["get_registry", "get_content_service", "get_user_id", "require_owner"]
