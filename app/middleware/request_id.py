# app/middleware/request_id.py
from __future__ import annotations

"""
FanVault Media — Request context middleware (pure ASGI)

- Reuses a client-supplied `X-Request-ID` when it is a valid UUIDv4,
  otherwise generates one; echoes it on the response.
- Binds `request_id` and the gateway-provided `X-User-Id` into the loguru
  context for the whole request, so every pipeline log line carries them.
- Exposes the id on `request.state.request_id` (problem+json bodies use it).

Env
---
- `REQUEST_ID_HEADER_NAME` (default: `X-Request-ID`)
- `REQUEST_ID_TRUST_CLIENT_IDS` (default: "true")
"""

import os
import re
import uuid

from loguru import logger
from starlette.datastructures import Headers
from starlette.types import ASGIApp, Message, Receive, Scope, Send

HEADER_NAME = os.getenv("REQUEST_ID_HEADER_NAME", "X-Request-ID")
TRUST_CLIENT_IDS = os.getenv("REQUEST_ID_TRUST_CLIENT_IDS", "true").lower() == "true"

_UUID_V4_RE = re.compile(r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-4[0-9a-fA-F]{3}-[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}$")
_USER_ID_RE = re.compile(r"^[A-Za-z0-9_\-]{1,128}$")


class RequestIDMiddleware:
    def __init__(self, app: ASGIApp, header_name: str = HEADER_NAME) -> None:
        self.app = app
        self.header_name = header_name
        self._header_bytes = header_name.lower().encode("latin-1")

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope.get("type") != "http":
            return await self.app(scope, receive, send)

        headers = Headers(scope=scope)
        req_id = self._choose_request_id(headers)
        scope.setdefault("state", {})["request_id"] = req_id

        user_id = headers.get("x-user-id", "")
        if not _USER_ID_RE.fullmatch(user_id):
            user_id = "-"  # keep junk out of log lines

        async def _send(message: Message) -> None:
            if message.get("type") == "http.response.start":
                raw = [(k, v) for (k, v) in message.get("headers", []) if k.lower() != self._header_bytes]
                raw.append((self.header_name.encode("latin-1"), req_id.encode("latin-1")))
                message["headers"] = raw
            await send(message)

        with logger.contextualize(request_id=req_id, user_id=user_id):
            await self.app(scope, receive, _send)

    def _choose_request_id(self, headers: Headers) -> str:
        incoming = (headers.get(self.header_name) or headers.get("X-Correlation-ID") or "").strip()
        if TRUST_CLIENT_IDS and _UUID_V4_RE.fullmatch(incoming):
            return str(uuid.UUID(incoming))
        return str(uuid.uuid4())


def get_request_id(request) -> str:
    """Current request id from `request.state` ("" when absent)."""
    return getattr(getattr(request, "state", object()), "request_id", "") or ""


__all__ = ["RequestIDMiddleware", "get_request_id"]
