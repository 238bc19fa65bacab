"""REST API endpoints for Zoho integration setup and stock adjustment.

Covers the OAuth consent flow (authorization URL + code exchange), client
credential configuration, configuration status, and manual stock changes.
All endpoints require an admin bearer token.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from src.storesync.api.deps import get_orchestrator, get_token_manager, require_admin
from src.storesync.zoho.errors import (
    ConfigurationMissingError,
    ExternalAPIError,
    LocalStoreError,
)
from src.storesync.zoho.sync import SyncOrchestrator
from src.storesync.zoho.tokens import TokenManager

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/zoho", tags=["zoho"])


# ── Schemas ──────────────────────────────────────────────────────────────────


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ZohoStatusResponse(_CamelModel):
    configured: bool
    organization_id: str | None = None


class AuthUrlResponse(_CamelModel):
    auth_url: str


class ExchangeCodeRequest(_CamelModel):
    code: str = Field(min_length=1)


class ExchangeCodeResponse(_CamelModel):
    success: bool = True
    expires_at: str


class ZohoConfigRequest(_CamelModel):
    """Credential fields to store; omitted fields are left unchanged."""

    client_id: str | None = None
    client_secret: str | None = None
    organization_id: str | None = None


class StockAdjustRequest(_CamelModel):
    product_id: int
    quantity: int = Field(ge=0)
    reason: str = "Stock adjustment"


# ── Endpoints ────────────────────────────────────────────────────────────────


@router.get("/status")
async def zoho_status(
    _admin: dict = require_admin,
    token_manager: TokenManager = Depends(get_token_manager),
) -> Any:
    """Report whether credentials, organization, and a usable token resolve."""
    config = await token_manager.get_config()
    configured = await token_manager.is_configured()
    return ZohoStatusResponse(
        configured=configured, organization_id=config.organization_id
    ).model_dump(by_alias=True)


@router.get("/auth")
async def zoho_auth_url(
    _admin: dict = require_admin,
    token_manager: TokenManager = Depends(get_token_manager),
) -> Any:
    """Return the Zoho consent URL for the stored client id."""
    try:
        url = await token_manager.authorization_url()
    except ConfigurationMissingError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return AuthUrlResponse(auth_url=url).model_dump(by_alias=True)


@router.post("/auth")
async def zoho_exchange_code(
    body: ExchangeCodeRequest,
    _admin: dict = require_admin,
    token_manager: TokenManager = Depends(get_token_manager),
) -> Any:
    """Exchange an authorization code and persist the resulting token pair."""
    try:
        record = await token_manager.exchange_code(body.code)
    except ConfigurationMissingError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except ExternalAPIError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))
    except httpx.HTTPError as e:
        logger.error("zoho_api.code_exchange_transport_error", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY, detail="Zoho accounts unreachable"
        )
    except LocalStoreError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
    return ExchangeCodeResponse(expires_at=record.expires_at.isoformat()).model_dump(by_alias=True)


@router.put("/config")
async def zoho_store_config(
    body: ZohoConfigRequest,
    request: Request,
    _admin: dict = require_admin,
    token_manager: TokenManager = Depends(get_token_manager),
) -> Any:
    """Store OAuth client credentials and/or the organization id."""
    if not (body.client_id or body.client_secret or body.organization_id):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="At least one of clientId, clientSecret, organizationId is required",
        )
    try:
        await token_manager.store_config(
            client_id=body.client_id,
            client_secret=body.client_secret,
            organization_id=body.organization_id,
        )
    except LocalStoreError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))

    inventory = getattr(request.app.state, "inventory_client", None)
    if body.organization_id and inventory is not None:
        inventory.reset_organization()
    return {"success": True}


@router.post("/stock/adjust")
async def zoho_adjust_stock(
    body: StockAdjustRequest,
    _admin: dict = require_admin,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> Any:
    """Set a product's stock locally and mirror the change into Zoho Inventory."""
    try:
        result = await orchestrator.adjust_stock(body.product_id, body.quantity, body.reason)
    except ConfigurationMissingError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
    except LookupError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except LocalStoreError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
    return result.model_dump(mode="json", by_alias=True)
