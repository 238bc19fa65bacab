"""REST API endpoints for running Zoho sync passes.

All endpoints require an admin bearer token. When the commerce store is not
configured the POST endpoints answer 503 with a zeroed, success=false payload
carrying the single error "store configuration missing" (never a 500), and
GET /status reports not_configured.
"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from src.storesync.api.deps import get_orchestrator, get_token_manager, require_admin
from src.storesync.zoho.schemas import (
    FullSyncResult,
    ProductSyncResult,
    SyncDirection,
    SyncModule,
    SyncOptions,
    SyncResult,
)
from src.storesync.zoho.sync import SyncOrchestrator
from src.storesync.zoho.tokens import TokenManager

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/sync", tags=["sync"])


# ── Request Schemas ──────────────────────────────────────────────────────────


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class FullSyncRequest(_CamelModel):
    """Request body for a full sync."""

    direction: SyncDirection = SyncDirection.to_external
    modules: list[SyncModule] = Field(default_factory=lambda: [SyncModule.crm, SyncModule.inventory])
    batch_size: int = Field(default=50, ge=1, le=500)
    dry_run: bool = False


class ProductSyncRequest(_CamelModel):
    """Request body for a product sync."""

    direction: SyncDirection = SyncDirection.to_external
    product_ids: list[int] | None = None
    batch_size: int = Field(default=50, ge=1, le=500)
    dry_run: bool = False


class OrderSyncRequest(_CamelModel):
    """Request body for an order sync."""

    order_ids: list[int] | None = None
    batch_size: int = Field(default=50, ge=1, le=500)
    dry_run: bool = False


class CustomerSyncRequest(_CamelModel):
    """Request body for a customer sync."""

    customer_ids: list[str] | None = None
    batch_size: int = Field(default=50, ge=1, le=500)
    dry_run: bool = False


# ── Response Schemas ─────────────────────────────────────────────────────────


class FullSyncSummary(_CamelModel):
    total_synced: int = 0
    total_failed: int = 0
    direction: SyncDirection
    modules: list[SyncModule]


class FullSyncResponse(_CamelModel):
    """Response for a full sync: per-module results plus a summary."""

    success: bool
    message: str
    summary: FullSyncSummary
    results: FullSyncResult
    errors: list[str] = Field(default_factory=list)


# ── Helpers ──────────────────────────────────────────────────────────────────


def _dump(model: BaseModel) -> dict[str, Any]:
    return model.model_dump(mode="json", by_alias=True)


def _store_missing(payload: BaseModel) -> JSONResponse:
    logger.warning("sync_api.store_not_configured")
    return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content=_dump(payload))


# ── Endpoints ────────────────────────────────────────────────────────────────


@router.post("/full")
async def full_sync(
    body: FullSyncRequest,
    _admin: dict = require_admin,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> Any:
    """Run the requested modules (customers before orders)."""
    modules = list(dict.fromkeys(body.modules))

    if not orchestrator.is_store_configured():
        missing = SyncResult.missing_configuration()
        zeroed = SyncResult(success=False)
        return _store_missing(
            FullSyncResponse(
                success=False,
                message="Sync failed",
                summary=FullSyncSummary(direction=body.direction, modules=modules),
                results=FullSyncResult(
                    customers=zeroed, products=ProductSyncResult(success=False), orders=zeroed
                ),
                errors=missing.errors,
            )
        )

    options = SyncOptions(
        direction=body.direction,
        modules=set(modules),
        batch_size=body.batch_size,
        dry_run=body.dry_run,
    )
    results = await orchestrator.full_sync(options)
    module_results = results.module_results()
    success = all(r.success for r in module_results)
    if not success:
        message = "Sync failed"
    elif results.total_failed:
        message = "Sync completed with errors"
    else:
        message = "Sync completed"

    return FullSyncResponse(
        success=success,
        message=message,
        summary=FullSyncSummary(
            total_synced=results.total_synced,
            total_failed=results.total_failed,
            direction=body.direction,
            modules=modules,
        ),
        results=results,
        errors=results.all_errors,
    ).model_dump(mode="json", by_alias=True)


@router.post("/products")
async def sync_products(
    body: ProductSyncRequest,
    _admin: dict = require_admin,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> Any:
    """Sync products in one direction, or both (merged counts and errors)."""
    if not orchestrator.is_store_configured():
        return _store_missing(SyncResult.missing_configuration())
    result = await orchestrator.sync_products(
        body.direction,
        product_ids=body.product_ids,
        batch_size=body.batch_size,
        dry_run=body.dry_run,
    )
    return _dump(result)


@router.post("/orders")
async def sync_orders(
    body: OrderSyncRequest,
    _admin: dict = require_admin,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> Any:
    """Push orders to Zoho Inventory (and CRM deals for linked customers)."""
    if not orchestrator.is_store_configured():
        return _store_missing(SyncResult.missing_configuration())
    result = await orchestrator.sync_orders_to_external(
        order_ids=body.order_ids, batch_size=body.batch_size, dry_run=body.dry_run
    )
    return _dump(result)


@router.post("/customers")
async def sync_customers(
    body: CustomerSyncRequest,
    _admin: dict = require_admin,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> Any:
    """Push customer profiles to Zoho CRM contacts."""
    if not orchestrator.is_store_configured():
        return _store_missing(SyncResult.missing_configuration())
    result = await orchestrator.sync_customers_to_external(
        customer_ids=body.customer_ids, batch_size=body.batch_size, dry_run=body.dry_run
    )
    return _dump(result)


@router.get("/status")
async def sync_status(
    _admin: dict = require_admin,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
    token_manager: TokenManager = Depends(get_token_manager),
) -> Any:
    """Report local and Zoho product counts, readiness, and the last audited sync."""
    zoho_configured = await token_manager.is_configured()
    result = await orchestrator.sync_status(zoho_configured)
    return _dump(result)
