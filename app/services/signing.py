from __future__ import annotations

"""
Signing utilities for time-limited media URLs.

Token layout: ``base64url(json payload) + "." + hex(HMAC-SHA256)``; the
payload carries ``cid`` (content id), ``uid`` (user id), ``exp`` (epoch
seconds) and optionally ``tid`` (the ticket that granted access).

- Missing secret is a hard error unless dev signing is explicitly allowed.
- Verification uses a constant-time compare and checks the signature before
  looking at expiry, so a tampered token never reports "expired".
"""

import base64
import hashlib
import hmac
import json
import logging
import time
from typing import Any, Dict, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.core.config import Settings
from app.core.exceptions import AppException, InvalidSignature, SignatureExpired
from app.schemas.content import SignedUrl, VerifiedToken

logger = logging.getLogger(__name__)

DEV_SECRET = "dev-secret-change-me"


class SigningConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    secret: Optional[str] = None
    allow_dev: bool = False
    ttl_seconds: int = Field(3600, ge=1)
    base_url: str = "/media"

    @classmethod
    def from_settings(cls, s: Settings) -> "SigningConfig":
        secret = s.MEDIA_URL_SIGNING_SECRET.get_secret_value() if s.MEDIA_URL_SIGNING_SECRET else None
        return cls(
            secret=secret,
            allow_dev=s.ALLOW_DEV_SIGNING,
            ttl_seconds=s.SIGNED_URL_TTL_SECONDS,
            base_url=s.MEDIA_BASE_URL.rstrip("/") or "/media",
        )


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64decode(text: str) -> bytes:
    return base64.urlsafe_b64decode(text + "=" * (-len(text) % 4))


class UrlSigner:
    def __init__(self, config: Optional[SigningConfig] = None) -> None:
        self.config = config or SigningConfig()

    def _secret(self) -> bytes:
        if self.config.secret:
            return self.config.secret.encode("utf-8")
        if self.config.allow_dev:
            logger.warning("MEDIA_URL_SIGNING_SECRET missing; using dev-secret (DEV MODE)")
            return DEV_SECRET.encode("utf-8")
        raise AppException("Signing secret not configured", status_code=500, code="signing_not_configured")

    def _sign(self, body: str) -> str:
        return hmac.new(self._secret(), body.encode("ascii"), hashlib.sha256).hexdigest()

    def issue(
        self,
        content_id: UUID,
        user_id: str,
        *,
        ttl_seconds: Optional[int] = None,
        ticket_id: Optional[str] = None,
        now: Optional[int] = None,
    ) -> SignedUrl:
        """Mint a token and the media URL that carries it."""
        ttl = int(ttl_seconds if ttl_seconds is not None else self.config.ttl_seconds)
        if ttl <= 0:
            raise ValueError("ttl_seconds must be > 0")
        exp = int(now if now is not None else time.time()) + ttl

        payload: Dict[str, Any] = {"cid": str(content_id), "uid": user_id, "exp": exp}
        if ticket_id:
            payload["tid"] = ticket_id
        body = _b64encode(json.dumps(payload, separators=(",", ":"), sort_keys=True).encode("utf-8"))
        token = f"{body}.{self._sign(body)}"
        url = f"{self.config.base_url}/{content_id}?token={token}"
        return SignedUrl(url=url, token=token, expires_at=exp)

    def verify(self, token: str, *, now: Optional[int] = None) -> VerifiedToken:
        """Return the decoded claims or raise `InvalidSignature` / `SignatureExpired`."""
        body, sep, sig = (token or "").partition(".")
        if not sep or not body or not sig or not token.isascii():
            raise InvalidSignature("Malformed token")
        if not hmac.compare_digest(self._sign(body), sig.lower()):
            raise InvalidSignature()

        try:
            payload = json.loads(_b64decode(body))
            claims = VerifiedToken(
                content_id=UUID(payload["cid"]),
                user_id=str(payload["uid"]),
                ticket_id=payload.get("tid"),
                expires_at=int(payload["exp"]),
            )
        except (ValueError, KeyError, TypeError) as e:
            raise InvalidSignature("Malformed token payload") from e

        current = int(now if now is not None else time.time())
        if current >= claims.expires_at:
            raise SignatureExpired()
        return claims


__all__ = ["DEV_SECRET", "SigningConfig", "UrlSigner"]
