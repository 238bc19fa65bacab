"""FastAPI application factory.

Creates the app with logging middleware, metrics middleware, CORS, Sentry,
lifespan events for database and sync engine initialization, and the v1
API router.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.requests import Request
from fastapi.responses import Response

from src.storesync.api.middleware.logging import LoggingMiddleware, configure_structlog
from src.storesync.api.v1.router import router as v1_router
from src.storesync.config import get_settings
from src.storesync.core.database import close_db, init_db
from src.storesync.core.monitoring import MetricsMiddleware, get_metrics_response, init_sentry
from src.storesync.services import build_services, create_http_client, seed_credentials


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: init DB, Sentry, and the sync engine; close on shutdown."""
    log = structlog.get_logger(__name__)
    settings = get_settings()

    configure_structlog()

    # Initialize Sentry if DSN is configured
    if settings.SENTRY_DSN:
        init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT.value)

    if settings.is_database_configured():
        try:
            await init_db()
        except Exception:
            log.error("startup.database_init_failed", exc_info=True)
    else:
        log.warning("startup.database_not_configured")

    http_client = create_http_client(settings)
    app.state.http_client = http_client

    # ── Zoho Sync Engine ────────────────────────────────────────────────
    try:
        services = build_services(settings, http_client)
        seeded = await seed_credentials(services.token_manager, settings)
        app.state.token_manager = services.token_manager
        app.state.inventory_client = services.inventory
        app.state.sync_orchestrator = services.orchestrator
        log.info(
            "startup.sync_engine_initialized",
            store_configured=services.orchestrator.is_store_configured(),
            seeded_keys=seeded,
        )
    except Exception as exc:
        log.warning("startup.sync_engine_init_failed", error=str(exc))
        app.state.token_manager = None
        app.state.inventory_client = None
        app.state.sync_orchestrator = None

    yield

    await http_client.aclose()
    await close_db()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="StoreSync API",
        version="0.1.0",
        description="Zoho Inventory and CRM sync for the commerce store",
        lifespan=lifespan,
    )

    # Middleware is added in reverse order (last added = outermost)

    # CORS middleware
    if settings.CORS_ALLOWED_ORIGINS == "*":
        origins = ["*"]
    else:
        origins = [o.strip() for o in settings.CORS_ALLOWED_ORIGINS.split(",")]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Logging middleware (logs every request with timing)
    app.add_middleware(LoggingMiddleware)

    # Metrics middleware (outermost -- records Prometheus metrics for all requests)
    app.add_middleware(MetricsMiddleware)

    app.include_router(v1_router, prefix="/v1")

    # Prometheus metrics endpoint (infrastructure route, outside v1 router)
    @app.get("/metrics", include_in_schema=False)
    async def metrics(request: Request) -> Response:
        """Prometheus metrics endpoint."""
        return get_metrics_response()

    return app


# Module-level app for uvicorn
app = create_app()
