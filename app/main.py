# app/main.py
from __future__ import annotations

"""
# FanVault Media API — Application Entrypoint (FastAPI)

ASGI application factory and lifecycle for the media storage pipeline.

## Design Goals
- Deterministic, testable **app factory** (`create_app`) with explicit lifespan.
- Provider clients built **once** at startup (`ClientRegistry`) and injected.
- Middleware order: 1) request id → 2) gzip → 3) strip `Server` header.
- Centralized problem+json exception handling.
- Graceful local/dev behavior (Redis is best-effort; memory backends by default).

## Probes
- `/healthz` — liveness (process up).
- `/readyz` — readiness (Redis ping, DB `SELECT 1` when the SQL registry is on).
- `/metrics` — Prometheus exposition of the pipeline counters.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Optional
import logging
import os

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.gzip import GZipMiddleware
from starlette.responses import JSONResponse, Response

from app.core import logger as _logsetup  # noqa: F401  (loguru sinks + stdlib intercept)
from app.api.v1.routers import router as api_v1_router
from app.core.config import settings
from app.core.exception_handlers import (
    global_exception_handler,
    http_exception_handler,
    validation_exception_handler,
)
from app.core.redis_client import redis_wrapper
from app.middleware.request_id import RequestIDMiddleware
from app.services.client_registry import ClientRegistry

logger = logging.getLogger("fanvault")


# ─────────────────────────────────────────────────────────────────────────────
# 🔄 Lifespan: startup & shutdown
# ─────────────────────────────────────────────────────────────────────────────
def _lifespan(registry: Optional[ClientRegistry]):
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """
        Startup:
            - Build (or adopt) the client registry.
            - Best-effort connect to Redis (CDN queue and analytics cache degrade without it).
            - Optionally start the maintenance scheduler in-process.

        Shutdown:
            - Drain background work (variants, backups), stop the scheduler.
            - Dispose the DB engine when the SQL registry is on; close Redis.
        """
        logger.info("✅ FanVault Media API starting up")
        reg = registry or ClientRegistry.build(settings)
        app.state.registry = reg

        if reg.redis is redis_wrapper:
            try:
                await redis_wrapper.connect()
            except RuntimeError:
                logger.exception("Redis connect failed (continuing in degraded mode)")

        scheduler = None
        if os.getenv("MAINTENANCE_SCHEDULER", "false").lower() == "true":
            from app.utils.maintenance import start_maintenance_scheduler

            scheduler = start_maintenance_scheduler(reg)

        try:
            yield
        finally:
            if scheduler is not None:
                scheduler.shutdown(wait=False)
            await reg.aclose()

            if reg.settings.REGISTRY_BACKEND == "sql":
                from app.db.session import async_engine

                await async_engine.dispose()
                logger.info("🛑 Database engine disposed")

            if reg.redis is redis_wrapper:
                await redis_wrapper.close()
            logger.info("🛑 FanVault Media API shutting down")

    return lifespan


# ─────────────────────────────────────────────────────────────────────────────
# 🏗️ App factory
# ─────────────────────────────────────────────────────────────────────────────
def create_app(registry: Optional[ClientRegistry] = None) -> FastAPI:
    """
    Build and configure the FastAPI app instance.

    Args:
        registry: pre-built client registry (tests); built from settings when omitted.
    """
    enable_docs = settings.ENABLE_DOCS
    app = FastAPI(
        title=settings.PROJECT_NAME,
        version=settings.VERSION,
        docs_url="/docs" if enable_docs else None,
        redoc_url="/redoc" if enable_docs else None,
        openapi_url="/openapi.json" if enable_docs else None,
        lifespan=_lifespan(registry),
    )
    if registry is not None:
        # Available even when the lifespan is not run (e.g. bare ASGITransport in tests).
        app.state.registry = registry

    # ── Middlewares (order matters) ─────────────────────────────────────────
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(GZipMiddleware, minimum_size=1024)

    @app.middleware("http")
    async def _strip_server_header(request: Request, call_next: Callable) -> Response:
        """Remove the `Server` header to avoid leaking implementation details."""
        response: Response = await call_next(request)
        if "server" in response.headers:
            del response.headers["server"]
        return response

    # ── Exception handlers (problem+json) ───────────────────────────────────
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(HTTPException, http_exception_handler)           # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, global_exception_handler)             # type: ignore[arg-type]

    # ── Routers (versioned API) ─────────────────────────────────────────────
    app.include_router(api_v1_router, prefix=settings.API_V1_STR)

    # ── Meta endpoints ──────────────────────────────────────────────────────
    @app.get("/healthz", tags=["meta"])
    async def healthz() -> dict[str, bool]:
        """Liveness probe: `{"ok": True}` when the process is responsive."""
        return {"ok": True}

    @app.get("/readyz", tags=["meta"])
    async def readyz(request: Request) -> dict[str, object]:
        """Readiness probe (Redis + optional DB)."""
        reg: ClientRegistry = request.app.state.registry
        checks: dict[str, bool] = {}
        checks["redis"] = bool(reg.redis is None or await reg.redis.is_connected())
        if reg.settings.REGISTRY_BACKEND == "sql":
            from app.db.session import db_healthcheck

            checks["db"] = await db_healthcheck()
        return {"ready": all(checks.values()), "checks": checks}

    @app.get("/metrics", tags=["meta"], include_in_schema=False)
    def metrics() -> Response:
        """Prometheus scrape endpoint (default registry)."""
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @app.get("/", include_in_schema=False)
    async def root() -> JSONResponse:
        return JSONResponse({"name": settings.PROJECT_NAME, "docs": app.docs_url or "", "version": settings.VERSION})

    return app


# ─────────────────────────────────────────────────────────────────────────────
# 🚀 Module-level ASGI app for Uvicorn/Gunicorn
# ─────────────────────────────────────────────────────────────────────────────
app = create_app()
__all__ = ["create_app", "app"]


# Local dev runner (prefer: `uvicorn app.main:app --reload`)
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8000")),
        reload=os.getenv("RELOAD", "1") == "1",
        log_level=os.getenv("LOG_LEVEL", "info"),
    )
