"""Pydantic read/write schemas for commerce entities as seen by the sync engine."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field


class CustomerRead(BaseModel):
    """Customer profile with its Zoho CRM linkage."""

    id: str
    email: str | None = None
    full_name: str | None = None
    phone: str | None = None
    mobile: str | None = None
    address_line1: str | None = None
    city: str | None = None
    state: str | None = None
    postal_code: str | None = None
    country: str | None = None
    external_id: str | None = None
    synced_at: datetime | None = None
    created_at: datetime | None = None


class ProductRead(BaseModel):
    """Catalogue product with its Zoho Inventory linkage."""

    id: int
    name: str | None = None
    sku: str | None = None
    description: str | None = None
    price: Decimal = Decimal("0")
    stock_quantity: int = 0
    is_active: bool = True
    external_id: str | None = None
    synced_at: datetime | None = None
    created_at: datetime | None = None


class ProductWrite(BaseModel):
    """Local product payload produced by inbound mapping.

    Every field carries a concrete default so an inbound write never
    propagates a missing value into the store.
    """

    name: str
    sku: str = ""
    description: str = ""
    price: Decimal = Decimal("0.00")
    stock_quantity: int = 0
    is_active: bool = True


class OrderItemRead(BaseModel):
    """Order line, with the linked product's Zoho item id when known."""

    id: int
    product_id: int | None = None
    name: str | None = None
    price: Decimal = Decimal("0")
    quantity: int = 1
    discount: Decimal = Decimal("0")
    product_name: str | None = None
    product_external_id: str | None = None


class OrderRead(BaseModel):
    """Order with its customer, lines, and Zoho linkage."""

    id: int
    order_number: str | None = None
    status: str = "pending"
    total_amount: Decimal = Decimal("0")
    shipping_cost: Decimal = Decimal("0")
    notes: str | None = None
    customer: CustomerRead | None = None
    items: list[OrderItemRead] = Field(default_factory=list)
    external_id: str | None = None
    deal_external_id: str | None = None
    synced_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class SyncLogCreate(BaseModel):
    """Audit entry for one orchestrator operation."""

    module: str
    direction: str
    synced: int = 0
    failed: int = 0
    duration_ms: int | None = None
    status: str
    error_message: str | None = None
    sync_details: list[dict] | None = None


class SyncLogRead(SyncLogCreate):
    """Stored audit row."""

    id: int
    created_at: datetime | None = None
