from __future__ import annotations

"""
Problem+JSON exception handlers (RFC 7807).

FastAPI integrates these via app/main.py. All HTTP errors are rendered as
application/problem+json with a stable schema; `AppException` subclasses add
their typed `code` and `details` (e.g. the full list of violated upload rules).
"""

import logging

from fastapi import Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.core.exceptions import AppException
from app.middleware.request_id import get_request_id

logger = logging.getLogger(__name__)


def _problem(title: str, detail: str, status_code: int, request: Request, **fields) -> JSONResponse:
    content = {
        "type": "about:blank",
        "title": title,
        "detail": detail,
        "status": status_code,
        "instance": str(request.url),
        "request_id": get_request_id(request) or None,
    }
    content.update({k: v for k, v in fields.items() if v is not None})
    return JSONResponse(status_code=status_code, content=jsonable_encoder(content), media_type="application/problem+json")


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:  # type: ignore
    title = exc.__class__.__name__
    return _problem(title, exc.message, exc.status_code, request, code=exc.code, details=exc.details)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:  # type: ignore
    if isinstance(exc, AppException):
        return await app_exception_handler(request, exc)
    title = exc.__class__.__name__.replace("Exception", "").strip() or "Error"
    detail = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    return _problem(title, detail, exc.status_code, request)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:  # type: ignore
    detail = "Validation error"
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "type": "about:blank",
            "title": detail,
            "detail": detail,
            "status": status.HTTP_422_UNPROCESSABLE_ENTITY,
            "instance": str(request.url),
            "errors": jsonable_encoder(exc.errors()),
        },
        media_type="application/problem+json",
    )


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:  # type: ignore
    logger.exception("Unhandled error on %s", request.url.path)
    return _problem("Internal Server Error", "An unexpected error occurred.", status.HTTP_500_INTERNAL_SERVER_ERROR, request)


__all__ = [
    "app_exception_handler",
    "http_exception_handler",
    "validation_exception_handler",
    "global_exception_handler",
]
