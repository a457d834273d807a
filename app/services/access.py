from __future__ import annotations

"""
Access checks for non-public content.

The ticketing/entitlement system is external; we only ask it one question:
may `user_id` see `content_id`? `HttpAccessClient` calls

    GET {ACCESS_SERVICE_URL}/access/{content_id}?user_id=...

and expects `{"allowed": bool, "ticket_id": str|null, "reason": str|null}`.
Any transport failure counts as a denial.
"""

import logging
from typing import Iterable, Optional, Protocol, Set, Tuple
from uuid import UUID

import httpx

from app.schemas.content import AccessDecision

logger = logging.getLogger(__name__)


class AccessClient(Protocol):
    async def has_access(self, user_id: str, content_id: UUID) -> AccessDecision: ...


class HttpAccessClient:
    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 3.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def has_access(self, user_id: str, content_id: UUID) -> AccessDecision:
        url = f"{self.base_url}/access/{content_id}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.get(url, params={"user_id": user_id})
        except httpx.HTTPError as e:
            logger.warning("Access service unreachable", extra={"content_id": str(content_id), "error": repr(e)})
            return AccessDecision(allowed=False, reason="access_service_unavailable")

        if resp.status_code == 404:
            return AccessDecision(allowed=False, reason="no_entitlement")
        if resp.status_code != 200:
            logger.warning("Access service error", extra={"content_id": str(content_id), "status": resp.status_code})
            return AccessDecision(allowed=False, reason=f"access_service_status_{resp.status_code}")
        try:
            return AccessDecision.model_validate(resp.json())
        except ValueError:
            return AccessDecision(allowed=False, reason="access_service_bad_response")


class StaticAccessClient:
    """In-process grants; used in development and tests."""

    def __init__(self, grants: Iterable[Tuple[str, UUID]] = (), *, allow_all: bool = False) -> None:
        self.grants: Set[Tuple[str, str]] = {(u, str(c)) for u, c in grants}
        self.allow_all = allow_all

    def grant(self, user_id: str, content_id: UUID) -> None:
        self.grants.add((user_id, str(content_id)))

    async def has_access(self, user_id: str, content_id: UUID) -> AccessDecision:
        if self.allow_all or (user_id, str(content_id)) in self.grants:
            return AccessDecision(allowed=True, ticket_id=f"static-{user_id}")
        return AccessDecision(allowed=False, reason="no_entitlement")


__all__ = ["AccessClient", "HttpAccessClient", "StaticAccessClient"]
