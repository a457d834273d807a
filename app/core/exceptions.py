# app/core/exceptions.py
from __future__ import annotations

"""
FanVault Media — Application Exceptions
=======================================
A small, consistent layer on top of FastAPI/Starlette's `HTTPException` that
lets us attach structured metadata and integrate cleanly with the problem+json
shape from `app.core.exception_handlers`.

Key ideas
---------
- One base `AppException` that carries `code`, `request_id`, `user_id`, `details`, `extra`.
- Pipeline exceptions inherit from it and set their own status/code, so the
  services raise them directly and the HTTP layer renders them uniformly.
- Duplicate uploads are **not** an error (see `UploadOutcome.DUPLICATE_DETECTED`).

Taxonomy
--------
- `ValidationError`     400  bad input; `details` lists every violated rule; never retried
- `QuotaExceeded`       403  owner ceiling would be crossed; never retried until quota frees
- `StorageUnavailable`  503  object store failed after bounded retries
- `ProcessingFailed`    422  one variant failed (raised only by an explicit retry)
- `NotFound`            404
- `InvalidTransition`   409  lifecycle/processing state machine violation
- `AccessDenied`        403
- `InvalidSignature`    401 / `SignatureExpired` 410
"""

from typing import Any, Dict, List, Optional

from fastapi import HTTPException, status

__all__ = [
    "AppException",
    "ValidationError",
    "QuotaExceeded",
    "StorageUnavailable",
    "ProcessingFailed",
    "NotFound",
    "InvalidTransition",
    "AccessDenied",
    "InvalidSignature",
    "SignatureExpired",
]


# ──────────────────────────────────────────────────────────────
# 📦 Core: AppException
# ──────────────────────────────────────────────────────────────
class AppException(HTTPException):
    """Base application-level exception with optional metadata.

    Attributes
    -----------
    status_code : int
        HTTP status code (e.g., 400/401/403/404/409/422/503).
    message : str
        Human-readable error message (serialized as `detail` as well).
    code : str
        Stable machine-readable error code (e.g. ``quota_exceeded``).
    request_id : str | None
        Optional request correlation id.
    user_id : str | None
        User id for auditing/context.
    details : dict | list | str | None
        Machine-readable details (e.g., violated rules, ids).
    extra : dict | None
        Additional non-sensitive metadata to surface to clients.
    headers : dict | None
        Optional headers.
    """

    default_status: int = status.HTTP_400_BAD_REQUEST
    default_code: str = "error"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
        request_id: Optional[str] = None,
        user_id: Optional[str] = None,
        details: Optional[Any] = None,
        extra: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        status_code = int(status_code or self.default_status)
        super().__init__(status_code=status_code, detail=message, headers=headers)
        self.code: str = code or self.default_code
        self.message: str = message
        self.request_id: Optional[str] = request_id
        self.user_id: Optional[str] = user_id
        self.details: Optional[Any] = details
        self.extra: Dict[str, Any] = extra or {}

    def __str__(self) -> str:
        return self.message

    # ── [Helper] Canonical body used by handlers ───────────────────────────
    def to_problem(self, *, fallback_request_id: Optional[str] = None) -> Dict[str, Any]:
        """Return a dict matching our problem-like JSON shape."""
        body: Dict[str, Any] = {
            "error": True,
            "message": self.message,
            "code": self.code,
            "request_id": self.request_id or fallback_request_id or "N/A",
        }
        if self.details is not None:
            body["details"] = self.details
        extra_sanitized = dict(self.extra) if self.extra else {}
        for k in ("token", "authorization", "password", "secret"):
            extra_sanitized.pop(k, None)
        body.update(extra_sanitized)
        return body


# ──────────────────────────────────────────────────────────────
# 📥 Ingest errors
# ──────────────────────────────────────────────────────────────
class ValidationError(AppException):
    """Malformed upload; `errors` enumerates every violated rule."""

    default_status = status.HTTP_400_BAD_REQUEST
    default_code = "validation_error"

    def __init__(self, errors: List[str], *, message: str = "Upload rejected", **kwargs: Any) -> None:
        self.errors: List[str] = list(errors)
        super().__init__(message, details={"errors": self.errors}, **kwargs)


class QuotaExceeded(AppException):
    default_status = status.HTTP_403_FORBIDDEN
    default_code = "quota_exceeded"

    def __init__(self, owner_id: str, *, requested: int, used: int, reserved: int, quota: int) -> None:
        self.owner_id = owner_id
        self.requested = requested
        super().__init__(
            "Storage quota exceeded",
            details={
                "owner_id": owner_id,
                "requested_bytes": requested,
                "used_bytes": used,
                "reserved_bytes": reserved,
                "quota_bytes": quota,
            },
        )


# ──────────────────────────────────────────────────────────────
# 🗄️ Storage / processing
# ──────────────────────────────────────────────────────────────
class StorageUnavailable(AppException):
    """Object store failed after every retry attempt was spent."""

    default_status = status.HTTP_503_SERVICE_UNAVAILABLE
    default_code = "storage_unavailable"

    def __init__(self, operation: str, key: Optional[str] = None, *, attempts: int = 0, cause: Optional[str] = None) -> None:
        self.operation = operation
        self.key = key
        self.attempts = attempts
        super().__init__(
            f"Storage {operation} failed",
            details={"operation": operation, "key": key, "attempts": attempts, "cause": cause},
        )


class ProcessingFailed(AppException):
    default_status = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_code = "processing_failed"

    def __init__(self, content_id: str, label: str, reason: str) -> None:
        self.content_id = content_id
        self.label = label
        self.reason = reason
        super().__init__(
            f"Variant '{label}' failed",
            details={"content_id": content_id, "label": label, "reason": reason},
        )


# ──────────────────────────────────────────────────────────────
# 🔁 Lookup / state
# ──────────────────────────────────────────────────────────────
class NotFound(AppException):
    default_status = status.HTTP_404_NOT_FOUND
    default_code = "not_found"

    def __init__(self, what: str = "Content", ident: Optional[str] = None) -> None:
        super().__init__(f"{what} not found", details={"id": ident} if ident else None)


class InvalidTransition(AppException):
    default_status = status.HTTP_409_CONFLICT
    default_code = "invalid_transition"

    def __init__(self, machine: str, current: str, target: str) -> None:
        self.machine = machine
        self.current = current
        self.target = target
        super().__init__(
            f"Cannot move {machine} from '{current}' to '{target}'",
            details={"machine": machine, "from": current, "to": target},
        )


# ──────────────────────────────────────────────────────────────
# 🔐 Access / signatures
# ──────────────────────────────────────────────────────────────
class AccessDenied(AppException):
    default_status = status.HTTP_403_FORBIDDEN
    default_code = "access_denied"

    def __init__(self, message: str = "Access denied", **kwargs: Any) -> None:
        super().__init__(message, **kwargs)


class InvalidSignature(AppException):
    default_status = status.HTTP_401_UNAUTHORIZED
    default_code = "invalid_signature"

    def __init__(self, message: str = "Invalid signature") -> None:
        super().__init__(message)


class SignatureExpired(InvalidSignature):
    default_status = status.HTTP_410_GONE
    default_code = "signature_expired"

    def __init__(self, message: str = "Signed URL expired") -> None:
        super().__init__(message)
