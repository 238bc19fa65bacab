"""Health check endpoints.

Provides liveness (/health) and readiness (/health/ready). Readiness fails
when the commerce database is unreachable or not configured; Zoho
configuration is reported but does not fail readiness.
"""

from __future__ import annotations

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy import text

from src.storesync.config import get_settings
from src.storesync.core.database import get_engine

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check():
    """Basic liveness check. No external dependencies are checked."""
    settings = get_settings()
    return {"status": "ok", "environment": settings.ENVIRONMENT.value}


async def _check_dependencies(request: Request) -> dict:
    """Check database connectivity and Zoho configuration. Returns check results dict."""
    checks: dict = {"database": "ok", "zoho": "ok"}

    settings = get_settings()
    if not settings.is_database_configured():
        checks["database"] = "not_configured"
    else:
        try:
            engine = get_engine()
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except Exception as e:
            checks["database"] = "error"
            checks["database_error"] = str(e)

    token_manager = getattr(request.app.state, "token_manager", None)
    if token_manager is None:
        checks["zoho"] = "not_initialized"
    else:
        try:
            if not await token_manager.is_configured():
                checks["zoho"] = "not_configured"
        except Exception as e:
            checks["zoho"] = "error"
            checks["zoho_error"] = str(e)

    return checks


@router.get("/health/ready")
async def readiness_check(request: Request):
    """Readiness check: 200 when the database answers, 503 otherwise."""
    checks = await _check_dependencies(request)
    ready = checks.get("database") == "ok"

    return JSONResponse(
        status_code=status.HTTP_200_OK if ready else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "ready" if ready else "degraded",
            "checks": checks,
        },
    )
