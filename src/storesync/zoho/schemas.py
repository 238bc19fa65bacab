"""Sync engine schemas: options, per-item outcomes, results, and token records."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from src.storesync.zoho.errors import STORE_CONFIGURATION_MISSING


class SyncDirection(str, Enum):
    to_external = "to_external"
    from_external = "from_external"
    bidirectional = "bidirectional"


class SyncModule(str, Enum):
    crm = "crm"
    inventory = "inventory"
    products = "products"
    orders = "orders"
    customers = "customers"


class SyncOptions(BaseModel):
    """Module/direction selection for a full sync."""

    direction: SyncDirection = SyncDirection.to_external
    modules: set[SyncModule] = Field(
        default_factory=lambda: {SyncModule.crm, SyncModule.inventory}
    )
    batch_size: int = Field(default=50, ge=1, le=500)
    dry_run: bool = False

    def wants_customers(self) -> bool:
        return bool(self.modules & {SyncModule.crm, SyncModule.customers})

    def wants_products(self) -> bool:
        return bool(self.modules & {SyncModule.inventory, SyncModule.products})

    def wants_orders(self) -> bool:
        return bool(self.modules & {SyncModule.inventory, SyncModule.orders})

    @property
    def outbound(self) -> bool:
        return self.direction in (SyncDirection.to_external, SyncDirection.bidirectional)

    @property
    def inbound(self) -> bool:
        return self.direction in (SyncDirection.from_external, SyncDirection.bidirectional)


class ItemOutcome(BaseModel):
    """Result of syncing one entity."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    local_id: str
    external_id: str | None = None
    status: Literal["synced", "error"]
    message: str | None = None


class SyncResult(BaseModel):
    """Aggregated outcome of one sync operation.

    success reports only whether the operation hit a fatal (non-item) error;
    item failures are carried by failed/errors/details.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    success: bool = True
    synced: int = 0
    failed: int = 0
    errors: list[str] = Field(default_factory=list)
    details: list[ItemOutcome] = Field(default_factory=list)

    @property
    def attempted(self) -> int:
        return self.synced + self.failed

    @classmethod
    def missing_configuration(cls) -> SyncResult:
        """Fast-fail result used when the commerce store is not configured."""
        return cls(success=False, errors=[STORE_CONFIGURATION_MISSING])

    @classmethod
    def fatal(cls, message: str) -> SyncResult:
        return cls(success=False, errors=[message])

    def merge(self, other: SyncResult) -> SyncResult:
        """Combine two results (e.g. outbound + inbound passes of one module)."""
        return SyncResult(
            success=self.success and other.success,
            synced=self.synced + other.synced,
            failed=self.failed + other.failed,
            errors=[*self.errors, *other.errors],
            details=[*self.details, *other.details],
        )


class ProductSyncResult(SyncResult):
    """Product sync result; bidirectional runs keep both passes."""

    to_external: SyncResult | None = None
    from_external: SyncResult | None = None


class FullSyncResult(BaseModel):
    """Per-module results of a full sync. Absent modules were not requested."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    customers: SyncResult | None = None
    products: ProductSyncResult | None = None
    orders: SyncResult | None = None

    def module_results(self) -> list[SyncResult]:
        return [r for r in (self.customers, self.products, self.orders) if r is not None]

    @property
    def total_synced(self) -> int:
        return sum(r.synced for r in self.module_results())

    @property
    def total_failed(self) -> int:
        return sum(r.failed for r in self.module_results())

    @property
    def all_errors(self) -> list[str]:
        return [e for r in self.module_results() for e in r.errors]


class StockAdjustmentResult(BaseModel):
    """Outcome of a stock adjustment (local update + optional Zoho adjustment)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    product_id: int
    new_quantity: int
    local_updated: bool
    external_adjusted: bool = False
    external_error: str | None = None


class LastSync(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    module: str
    direction: str
    status: str
    synced: int = 0
    failed: int = 0
    at: datetime | None = None


class SyncStatus(BaseModel):
    """Integration readiness with local and Zoho product counts."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    sync_status: Literal["not_configured", "ready", "connection_error"]
    local_products: int = 0
    zoho_items: int = 0
    last_sync: LastSync | None = None
    error: str | None = None


# ── Token / Credential Records ──────────────────────────────────────────────


class TokenRecord(BaseModel):
    """Current token pair. The access token is usable only while now < expires_at."""

    access_token: str
    refresh_token: str | None = None
    expires_at: datetime

    def is_valid(self, now: datetime | None = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return bool(self.access_token) and now < self.expires_at


class CredentialConfig(BaseModel):
    """OAuth client credentials and organization id."""

    client_id: str | None = None
    client_secret: str | None = None
    organization_id: str | None = None
