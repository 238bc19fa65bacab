"""Zoho sync orchestrator: customers, products, and orders.

Outbound passes (local -> Zoho) load the candidate set oldest-first, then
hand each entity to the batch runner. The per-item step maps the entity,
updates the Zoho record when a linkage (zoho_* id) exists or creates one
otherwise, and writes the linkage back with a fresh synced_at.

The inbound product pass (Zoho -> local) upserts by Zoho item id, the same
linkage key the outbound pass writes, so repeated runs never duplicate rows.

Only precondition and enumeration failures make a result unsuccessful; item
failures are counted and reported. Public operations never raise.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone

import structlog

from src.storesync.commerce.repository import CommerceRepository
from src.storesync.commerce.schemas import CustomerRead, OrderRead, ProductRead, SyncLogCreate
from src.storesync.core.monitoring import sync_duration_seconds
from src.storesync.zoho.batch import process_in_batches
from src.storesync.zoho.crm import ZohoCRMClient
from src.storesync.zoho.errors import (
    STORE_CONFIGURATION_MISSING,
    ConfigurationMissingError,
    LocalStoreError,
    MappingError,
)
from src.storesync.zoho.field_mapping import (
    customer_to_contact,
    item_to_product,
    order_to_deal,
    order_to_sales_order,
    product_to_item,
)
from src.storesync.zoho.inventory import ZohoInventoryClient
from src.storesync.zoho.schemas import (
    FullSyncResult,
    ItemOutcome,
    LastSync,
    ProductSyncResult,
    StockAdjustmentResult,
    SyncDirection,
    SyncOptions,
    SyncResult,
    SyncStatus,
)

logger = structlog.get_logger(__name__)

MAX_LOGGED_DETAILS = 200


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _dry_run(local_id: str, external_id: str | None) -> ItemOutcome:
    action = "update" if external_id else "create"
    return ItemOutcome(
        local_id=local_id,
        external_id=external_id,
        status="synced",
        message=f"dry run: would {action}",
    )


class SyncOrchestrator:
    """Runs sync passes between the commerce store and Zoho.

    Args:
        repository: Commerce store. None means the store is not configured;
            every operation then returns the missing-configuration result.
        inventory: Zoho Inventory client (items, sales orders, stock).
        crm: Zoho CRM client (contacts, deals).
        batch_size: Default chunk size when a call does not pass one.
        batch_delay_ms: Pause between chunks.
        clock: Returns the current aware datetime. Injectable for tests.
        sleep: Pacing sleep. Injectable for tests.
    """

    def __init__(
        self,
        repository: CommerceRepository | None,
        inventory: ZohoInventoryClient,
        crm: ZohoCRMClient,
        batch_size: int = 50,
        batch_delay_ms: int = 1000,
        clock: Callable[[], datetime] = _utcnow,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        self._repository = repository
        self._inventory = inventory
        self._crm = crm
        self._batch_size = batch_size
        self._batch_delay_ms = batch_delay_ms
        self._clock = clock
        self._sleep = sleep
        # One lock per module: overlapping calls for the same module serialize
        self._locks = {
            "customers": asyncio.Lock(),
            "products": asyncio.Lock(),
            "orders": asyncio.Lock(),
        }

    def is_store_configured(self) -> bool:
        return self._repository is not None

    # ── Customers ───────────────────────────────────────────────────────────

    async def sync_customers_to_external(
        self,
        customer_ids: list[str] | None = None,
        batch_size: int | None = None,
        dry_run: bool = False,
    ) -> SyncResult:
        """Push customer profiles to Zoho CRM as Contacts."""

        async def run(repository: CommerceRepository) -> SyncResult:
            return await self._run_batches(
                "customers",
                lambda: repository.list_customers(customer_ids),
                lambda customer: self._sync_customer(customer, dry_run),
                lambda customer: customer.id,
                batch_size,
            )

        return await self._operation("customers", SyncDirection.to_external, run)

    async def _sync_customer(self, customer: CustomerRead, dry_run: bool) -> ItemOutcome:
        repository = self._require_repository()
        payload = customer_to_contact(customer)

        if dry_run:
            return _dry_run(customer.id, customer.external_id)

        if customer.external_id:
            external_id = customer.external_id
            await self._crm.update_contact(external_id, payload)
            message = "updated"
        else:
            existing = (
                await self._crm.search_contact_by_email(customer.email)
                if customer.email
                else None
            )
            if existing and existing.get("id"):
                external_id = str(existing["id"])
                await self._crm.update_contact(external_id, payload)
                message = "linked existing contact"
                logger.info(
                    "zoho_sync.contact_matched_by_email",
                    customer_id=customer.id,
                    contact_id=external_id,
                )
            else:
                external_id = await self._crm.create_contact(payload)
                message = "created"

        await repository.set_customer_linkage(customer.id, external_id, self._clock())
        return ItemOutcome(
            local_id=customer.id, external_id=external_id, status="synced", message=message
        )

    # ── Products ────────────────────────────────────────────────────────────

    async def sync_products_to_external(
        self,
        product_ids: list[int] | None = None,
        batch_size: int | None = None,
        dry_run: bool = False,
    ) -> SyncResult:
        """Push products to Zoho Inventory as items."""

        async def run(repository: CommerceRepository) -> SyncResult:
            return await self._run_batches(
                "products",
                lambda: repository.list_products(product_ids),
                lambda product: self._push_product(product, dry_run),
                lambda product: product.id,
                batch_size,
            )

        return await self._operation("products", SyncDirection.to_external, run)

    async def _push_product(self, product: ProductRead, dry_run: bool) -> ItemOutcome:
        repository = self._require_repository()
        local_id = str(product.id)

        if product.external_id:
            payload = product_to_item(product)
            if dry_run:
                return _dry_run(local_id, product.external_id)
            external_id = product.external_id
            await self._inventory.update_item(external_id, payload)
            message = "updated"
        else:
            payload = product_to_item(product, include_initial_stock=True)
            if dry_run:
                return _dry_run(local_id, None)
            external_id = await self._inventory.create_item(payload)
            message = "created"

        await repository.set_product_linkage(product.id, external_id, self._clock())
        return ItemOutcome(
            local_id=local_id, external_id=external_id, status="synced", message=message
        )

    async def sync_products_from_external(
        self,
        batch_size: int | None = None,
        dry_run: bool = False,
    ) -> SyncResult:
        """Pull Zoho Inventory items into the local catalogue (upsert by item id)."""

        async def run(repository: CommerceRepository) -> SyncResult:
            return await self._run_batches(
                "products",
                self._inventory.list_all_items,
                lambda record: self._pull_product(repository, record, dry_run),
                lambda record: record.get("item_id") or "unknown",
                batch_size,
            )

        return await self._operation("products", SyncDirection.from_external, run)

    async def _pull_product(
        self, repository: CommerceRepository, record: dict, dry_run: bool
    ) -> ItemOutcome:
        external_id = str(record.get("item_id") or "")
        if not external_id:
            raise MappingError("zoho item has no item_id")
        data = item_to_product(record)
        existing = await repository.get_product_by_external_id(external_id)

        if dry_run:
            local_id = str(existing.id) if existing else external_id
            return _dry_run(local_id, external_id if existing else None)

        now = self._clock()
        if existing:
            await repository.update_product(existing.id, data, now)
            local_id, message = str(existing.id), "updated"
        else:
            created = await repository.insert_product(data, external_id, now)
            local_id, message = str(created.id), "created"
        return ItemOutcome(
            local_id=local_id, external_id=external_id, status="synced", message=message
        )

    async def sync_products(
        self,
        direction: SyncDirection = SyncDirection.to_external,
        product_ids: list[int] | None = None,
        batch_size: int | None = None,
        dry_run: bool = False,
    ) -> ProductSyncResult:
        """Run the product pass(es) for a direction.

        Bidirectional runs push first, then pull, and merge counts and errors;
        the per-direction results are kept alongside.
        """
        outbound = inbound = None
        if direction in (SyncDirection.to_external, SyncDirection.bidirectional):
            outbound = await self.sync_products_to_external(product_ids, batch_size, dry_run)
        if direction in (SyncDirection.from_external, SyncDirection.bidirectional):
            inbound = await self.sync_products_from_external(batch_size, dry_run)

        if outbound and inbound:
            merged = outbound.merge(inbound)
        else:
            merged = outbound or inbound or SyncResult()
        return ProductSyncResult(
            success=merged.success,
            synced=merged.synced,
            failed=merged.failed,
            errors=merged.errors,
            details=merged.details,
            to_external=outbound,
            from_external=inbound,
        )

    # ── Orders ──────────────────────────────────────────────────────────────

    async def sync_orders_to_external(
        self,
        order_ids: list[int] | None = None,
        batch_size: int | None = None,
        dry_run: bool = False,
    ) -> SyncResult:
        """Push orders to Zoho Inventory as sales orders, and to CRM as deals."""

        async def run(repository: CommerceRepository) -> SyncResult:
            return await self._run_batches(
                "orders",
                lambda: repository.list_orders(order_ids),
                lambda order: self._sync_order(order, dry_run),
                lambda order: order.id,
                batch_size,
            )

        return await self._operation("orders", SyncDirection.to_external, run)

    async def _sync_order(self, order: OrderRead, dry_run: bool) -> ItemOutcome:
        repository = self._require_repository()
        local_id = str(order.id)
        notes: list[str] = []

        contact_id = order.customer.external_id if order.customer else None
        if order.customer and not contact_id:
            if dry_run:
                notes.append("customer would be linked first")
            else:
                contact_id = await self._link_order_customer(order, notes)

        payload = order_to_sales_order(order, contact_id)
        if dry_run:
            outcome = _dry_run(local_id, order.external_id)
            if notes:
                outcome.message = "; ".join([outcome.message or "", *notes])
            return outcome

        if order.external_id:
            external_id = order.external_id
            await self._inventory.update_sales_order(external_id, payload)
            notes.insert(0, "updated")
        else:
            external_id = await self._inventory.create_sales_order(payload)
            notes.insert(0, "created")
        await repository.set_order_linkage(order.id, external_id, self._clock())

        if contact_id:
            await self._sync_order_deal(order, contact_id, notes)

        return ItemOutcome(
            local_id=local_id,
            external_id=external_id,
            status="synced",
            message="; ".join(notes),
        )

    async def _link_order_customer(self, order: OrderRead, notes: list[str]) -> str | None:
        """Sync the order's unlinked customer first. Failure is noted, not raised.

        The order's customer is a snapshot taken when the pass started, so the
        linkage is re-read under the customers lock: an earlier order in the
        same pass may already have linked this customer.
        """
        customer = order.customer
        try:
            async with self._locks["customers"]:
                current = await self._require_repository().get_customer(customer.id)
                if current is not None and current.external_id:
                    return current.external_id
                outcome = await self._sync_customer(current or customer, dry_run=False)
        except Exception as exc:
            logger.warning(
                "zoho_sync.order_customer_link_failed",
                order_id=order.id,
                customer_id=customer.id,
                error=str(exc),
            )
            notes.append(f"customer not linked: {exc}")
            return None
        logger.info(
            "zoho_sync.order_customer_linked",
            order_id=order.id,
            customer_id=customer.id,
            contact_id=outcome.external_id,
        )
        return outcome.external_id

    async def _sync_order_deal(self, order: OrderRead, contact_id: str, notes: list[str]) -> None:
        repository = self._require_repository()
        try:
            deal = order_to_deal(order, contact_id)
            if order.deal_external_id:
                await self._crm.update_deal(order.deal_external_id, deal)
            else:
                deal_id = await self._crm.create_deal(deal)
                await repository.set_order_deal(order.id, deal_id)
        except Exception as exc:
            logger.warning("zoho_sync.deal_failed", order_id=order.id, error=str(exc))
            notes.append(f"deal not synced: {exc}")

    # ── Full Sync ───────────────────────────────────────────────────────────

    async def full_sync(self, options: SyncOptions | None = None) -> FullSyncResult:
        """Run every requested module in dependency order.

        Customers always run before orders, and products before orders so
        order lines can reference linked items. A module's failure does not
        stop later modules. Customers and orders are outbound-only and are
        skipped for from_external runs.
        """
        options = options or SyncOptions()
        result = FullSyncResult()
        logger.info(
            "zoho_sync.full_sync_started",
            direction=options.direction.value,
            modules=sorted(m.value for m in options.modules),
            dry_run=options.dry_run,
        )

        if options.wants_customers() and options.outbound:
            result.customers = await self.sync_customers_to_external(
                batch_size=options.batch_size, dry_run=options.dry_run
            )
        if options.wants_products():
            result.products = await self.sync_products(
                options.direction, batch_size=options.batch_size, dry_run=options.dry_run
            )
        if options.wants_orders() and options.outbound:
            result.orders = await self.sync_orders_to_external(
                batch_size=options.batch_size, dry_run=options.dry_run
            )

        logger.info(
            "zoho_sync.full_sync_complete",
            total_synced=result.total_synced,
            total_failed=result.total_failed,
        )
        return result

    # ── Stock ───────────────────────────────────────────────────────────────

    async def adjust_stock(
        self, product_id: int, quantity: int, reason: str = "Stock adjustment"
    ) -> StockAdjustmentResult:
        """Set a product's stock locally and mirror the delta into Zoho Inventory.

        The local update is kept even when the Zoho adjustment fails; that
        failure is reported in external_error.

        Raises:
            ConfigurationMissingError: If the store is not configured.
            LookupError: If the product does not exist.
            LocalStoreError: If the local update fails.
        """
        repository = self._require_repository()
        async with self._locks["products"]:
            product = await repository.get_product(product_id)
            if product is None:
                raise LookupError(f"product {product_id} not found")
            await repository.set_product_stock(product_id, quantity)
            result = StockAdjustmentResult(
                product_id=product_id, new_quantity=quantity, local_updated=True
            )
            if not product.external_id:
                return result

            try:
                current = await self._inventory.get_stock_on_hand(product.external_id)
                delta = quantity - current
                if delta:
                    await self._inventory.adjust_stock(product.external_id, delta, reason)
                result.external_adjusted = True
            except Exception as exc:
                logger.warning(
                    "zoho_sync.stock_adjust_failed",
                    product_id=product_id,
                    item_id=product.external_id,
                    error=str(exc),
                )
                result.external_error = str(exc)
            return result

    # ── Status ──────────────────────────────────────────────────────────────

    async def sync_status(self, zoho_configured: bool) -> SyncStatus:
        """Report product counts on both sides and the latest audited pass.

        not_configured when the store or the Zoho credentials are missing;
        connection_error when either count cannot be read. Never raises.
        """
        if self._repository is None or not zoho_configured:
            error = STORE_CONFIGURATION_MISSING if self._repository is None else "zoho not configured"
            return SyncStatus(sync_status="not_configured", error=error)

        try:
            local_products = await self._repository.count_products()
            latest = await self._repository.latest_sync_log()
        except LocalStoreError as exc:
            logger.warning("zoho_sync.status_store_failed", error=str(exc))
            return SyncStatus(sync_status="connection_error", error="local store unavailable")

        last_sync = None
        if latest is not None:
            last_sync = LastSync(
                module=latest.module,
                direction=latest.direction,
                status=latest.status,
                synced=latest.synced,
                failed=latest.failed,
                at=latest.created_at,
            )

        try:
            zoho_items = await self._inventory.count_items()
        except Exception as exc:
            logger.warning("zoho_sync.status_zoho_failed", error=str(exc))
            return SyncStatus(
                sync_status="connection_error",
                local_products=local_products,
                last_sync=last_sync,
                error="Failed to connect to Zoho API",
            )

        return SyncStatus(
            sync_status="ready",
            local_products=local_products,
            zoho_items=zoho_items,
            last_sync=last_sync,
        )

    # ── Internals ───────────────────────────────────────────────────────────

    def _require_repository(self) -> CommerceRepository:
        if self._repository is None:
            raise ConfigurationMissingError()
        return self._repository

    async def _run_batches(
        self,
        module: str,
        load: Callable[[], Awaitable[list]],
        handler: Callable[[object], Awaitable[ItemOutcome]],
        identify: Callable[[object], object],
        batch_size: int | None,
    ) -> SyncResult:
        try:
            candidates = await load()
        except Exception as exc:
            logger.error("zoho_sync.enumeration_failed", module=module, error=str(exc))
            return SyncResult.fatal(f"failed to load {module}: {exc}")

        if not candidates:
            logger.info("zoho_sync.nothing_to_sync", module=module)
            return SyncResult()

        return await process_in_batches(
            candidates,
            batch_size or self._batch_size,
            handler,
            self._batch_delay_ms,
            identify=identify,
            module=module,
            sleep=self._sleep,
        )

    async def _operation(
        self,
        module: str,
        direction: SyncDirection,
        run: Callable[[CommerceRepository], Awaitable[SyncResult]],
    ) -> SyncResult:
        """Guard, time, log, and audit one module pass."""
        if self._repository is None:
            logger.warning("zoho_sync.store_not_configured", module=module)
            return SyncResult.missing_configuration()

        start = time.perf_counter()
        async with self._locks[module]:
            try:
                result = await run(self._repository)
            except Exception as exc:
                logger.exception("zoho_sync.operation_failed", module=module, error=str(exc))
                result = SyncResult.fatal(str(exc))
        duration = time.perf_counter() - start

        sync_duration_seconds.labels(module=module, direction=direction.value).observe(duration)
        logger.info(
            f"zoho_sync.{module}_complete",
            direction=direction.value,
            success=result.success,
            synced=result.synced,
            failed=result.failed,
            duration_ms=int(duration * 1000),
        )
        await self._audit(module, direction, result, int(duration * 1000))
        return result

    async def _audit(
        self, module: str, direction: SyncDirection, result: SyncResult, duration_ms: int
    ) -> None:
        """Write a zoho_sync_logs row. Failures are logged only."""
        if not result.success:
            status = "failed"
        elif result.failed:
            status = "partial"
        else:
            status = "success"
        entry = SyncLogCreate(
            module=module,
            direction=direction.value,
            synced=result.synced,
            failed=result.failed,
            duration_ms=duration_ms,
            status=status,
            error_message=result.errors[0] if result.errors else None,
            sync_details=[
                d.model_dump(mode="json") for d in result.details[:MAX_LOGGED_DETAILS]
            ],
        )
        try:
            await self._repository.record_sync_log(entry)
        except LocalStoreError as exc:
            logger.warning("zoho_sync.audit_failed", module=module, error=str(exc))
