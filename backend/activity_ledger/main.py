"""
Activity Ledger FastAPI application factory.

Application lifecycle:
  startup  → configure logging, run DB migrations
  shutdown → dispose DB engine pool

Run with:
  uvicorn activity_ledger.main:create_app --factory
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

import structlog
from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from activity_ledger.api.deps import SessionFactory
from activity_ledger.api.v1.router import router as v1_router
from activity_ledger.config.logging_config import configure_logging
from activity_ledger.config.settings import Settings, get_settings
from activity_ledger.core.errors import AppError
from activity_ledger.core.middleware import (
    CORRELATION_HEADER,
    CorrelationIDMiddleware,
    SecurityHeadersMiddleware,
    app_error_handler,
    unhandled_exception_handler,
)

_log = structlog.get_logger(__name__)

ALEMBIC_INI = Path(__file__).resolve().parents[1] / "alembic.ini"


def _create_limiter(settings: Settings) -> Limiter:
    return Limiter(
        key_func=get_remote_address,
        default_limits=[settings.rate_limit_default],
    )


def _run_migrations(settings: Settings) -> None:
    from alembic import command
    from alembic.config import Config

    alembic_cfg = Config(str(ALEMBIC_INI))
    alembic_cfg.set_main_option("script_location", str(ALEMBIC_INI.parent / "alembic"))
    alembic_cfg.attributes["database_url"] = settings.database_url
    command.upgrade(alembic_cfg, "head")


def create_app(settings: Settings | None = None) -> FastAPI:
    """Application factory. Returns a configured FastAPI instance."""
    settings = settings or get_settings()
    is_production = settings.environment.value == "production"

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        configure_logging(log_level=settings.log_level.value, json_logs=settings.log_json)
        _log.info(
            "activity_ledger_starting",
            version=settings.app_version,
            environment=settings.environment.value,
        )
        if settings.run_migrations_on_startup:
            # Alembic drives a sync engine; keep it off the event loop
            import anyio

            await anyio.to_thread.run_sync(_run_migrations, settings)
            _log.info("migrations_applied")
        _log.info("activity_ledger_ready", host=settings.host, port=settings.port)

        yield

        from activity_ledger.db.session import dispose_engine

        await dispose_engine()
        _log.info("activity_ledger_shutdown")

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Tamper-evident, hash-chained activity log.",
        docs_url=None if is_production else "/docs",
        redoc_url=None if is_production else "/redoc",
        openapi_url=None if is_production else "/openapi.json",
        lifespan=lifespan,
    )
    app.dependency_overrides[get_settings] = lambda: settings

    # ── Rate Limiting ─────────────────────────────────────────────────── #
    limiter = _create_limiter(settings)
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)  # type: ignore[arg-type]
    app.add_middleware(SlowAPIMiddleware)

    # ── CORS ──────────────────────────────────────────────────────────── #
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[CORRELATION_HEADER],
    )

    # ── Custom Middleware (applied in reverse order) ───────────────────── #
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(CorrelationIDMiddleware)

    # ── Exception Handlers ────────────────────────────────────────────── #
    app.add_exception_handler(AppError, app_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, unhandled_exception_handler)

    # ── Routes ────────────────────────────────────────────────────────── #
    app.include_router(v1_router)

    # ── Health ────────────────────────────────────────────────────────── #
    @app.get("/health", tags=["health"], summary="Health check")
    async def health(factory: SessionFactory) -> dict[str, object]:
        """Returns service health including database reachability."""
        import sqlalchemy as sa

        db_ok = False
        try:
            async with factory() as db:
                await db.execute(sa.text("SELECT 1"))
            db_ok = True
        except Exception:
            _log.warning("health_database_unreachable", exc_info=True)

        return {
            "status": "healthy" if db_ok else "degraded",
            "database": "ok" if db_ok else "unavailable",
            "version": settings.app_version,
        }

    # ── Metrics (Prometheus) ──────────────────────────────────────────── #
    @app.get("/metrics", tags=["observability"], summary="Prometheus metrics")
    async def metrics() -> Response:
        from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return app
