"""Commerce repository -- async reads and linkage writes for the sync engine.

Provides CommerceRepository with the session_factory callable pattern.
Handles serialization between SQLAlchemy models and the Pydantic read
schemas the orchestrator works with.

Every SQLAlchemy failure is re-raised as LocalStoreError so the orchestrator
can tell store failures apart from Zoho failures. Candidate queries are
ordered oldest-first by created_at, which fixes the per-batch item order.
"""

from __future__ import annotations

import functools
import uuid
from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import datetime
from typing import Any, TypeVar

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from src.storesync.commerce.models import (
    OrderItemModel,
    OrderModel,
    ProductModel,
    ProfileModel,
    SyncLogModel,
)
from src.storesync.commerce.schemas import (
    CustomerRead,
    OrderItemRead,
    OrderRead,
    ProductRead,
    ProductWrite,
    SyncLogCreate,
    SyncLogRead,
)
from src.storesync.zoho.errors import LocalStoreError

logger = structlog.get_logger(__name__)

T = TypeVar("T")


def _store_errors(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
    """Wrap SQLAlchemy errors raised by a repository method in LocalStoreError."""

    @functools.wraps(func)
    async def wrapper(*args: Any, **kwargs: Any) -> T:
        try:
            return await func(*args, **kwargs)
        except SQLAlchemyError as exc:
            logger.error("commerce_store.error", operation=func.__name__, error=str(exc))
            raise LocalStoreError(f"{func.__name__} failed: {exc}") from exc

    return wrapper


# ── Serialization Helpers ───────────────────────────────────────────────────


def _model_to_customer(model: ProfileModel) -> CustomerRead:
    """Convert ProfileModel to CustomerRead schema."""
    return CustomerRead(
        id=str(model.id),
        email=model.email,
        full_name=model.full_name,
        phone=model.phone,
        mobile=model.mobile,
        address_line1=model.address_line1,
        city=model.city,
        state=model.state,
        postal_code=model.postal_code,
        country=model.country,
        external_id=model.zoho_crm_id,
        synced_at=model.zoho_synced_at,
        created_at=model.created_at,
    )


def _model_to_product(model: ProductModel) -> ProductRead:
    """Convert ProductModel to ProductRead schema."""
    return ProductRead(
        id=model.id,
        name=model.name,
        sku=model.sku,
        description=model.description,
        price=model.price,
        stock_quantity=model.stock_quantity,
        is_active=model.is_active,
        external_id=model.zoho_item_id,
        synced_at=model.zoho_synced_at,
        created_at=model.created_at,
    )


def _model_to_order_item(model: OrderItemModel) -> OrderItemRead:
    """Convert OrderItemModel (with product loaded) to OrderItemRead."""
    return OrderItemRead(
        id=model.id,
        product_id=model.product_id,
        name=model.name,
        price=model.price,
        quantity=model.quantity,
        discount=model.discount,
        product_name=model.product.name if model.product else None,
        product_external_id=model.product.zoho_item_id if model.product else None,
    )


def _model_to_order(model: OrderModel) -> OrderRead:
    """Convert OrderModel (with customer and items loaded) to OrderRead."""
    return OrderRead(
        id=model.id,
        order_number=model.order_number,
        status=model.status,
        total_amount=model.total_amount,
        shipping_cost=model.shipping_cost,
        notes=model.notes,
        customer=_model_to_customer(model.customer) if model.customer else None,
        items=[_model_to_order_item(i) for i in model.items],
        external_id=model.zoho_order_id,
        deal_external_id=model.zoho_deal_id,
        synced_at=model.zoho_synced_at,
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


# ── Repository ──────────────────────────────────────────────────────────────


class CommerceRepository:
    """Async store operations used by the sync orchestrator.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    # ── Customers ───────────────────────────────────────────────────────────

    @_store_errors
    async def list_customers(
        self, customer_ids: list[str] | None = None
    ) -> list[CustomerRead]:
        """List customers oldest-first, optionally restricted to the given ids."""
        async for session in self._session_factory():
            stmt = select(ProfileModel).order_by(ProfileModel.created_at.asc())
            if customer_ids:
                stmt = stmt.where(ProfileModel.id.in_([uuid.UUID(c) for c in customer_ids]))
            result = await session.execute(stmt)
            return [_model_to_customer(m) for m in result.scalars().all()]
        return []

    @_store_errors
    async def get_customer(self, customer_id: str) -> CustomerRead | None:
        """Get a customer by local id, with its current linkage."""
        async for session in self._session_factory():
            model = await session.get(ProfileModel, uuid.UUID(customer_id))
            return _model_to_customer(model) if model else None
        return None

    @_store_errors
    async def set_customer_linkage(
        self, customer_id: str, external_id: str, synced_at: datetime
    ) -> None:
        """Record the Zoho CRM contact id and sync time on a customer."""
        async for session in self._session_factory():
            await session.execute(
                update(ProfileModel)
                .where(ProfileModel.id == uuid.UUID(customer_id))
                .values(zoho_crm_id=external_id, zoho_synced_at=synced_at)
            )
            await session.commit()

    # ── Products ────────────────────────────────────────────────────────────

    @_store_errors
    async def list_products(self, product_ids: list[int] | None = None) -> list[ProductRead]:
        """List products oldest-first, optionally restricted to the given ids."""
        async for session in self._session_factory():
            stmt = select(ProductModel).order_by(ProductModel.created_at.asc())
            if product_ids:
                stmt = stmt.where(ProductModel.id.in_(product_ids))
            result = await session.execute(stmt)
            return [_model_to_product(m) for m in result.scalars().all()]
        return []

    @_store_errors
    async def count_products(self) -> int:
        """Number of local products."""
        async for session in self._session_factory():
            result = await session.execute(select(func.count()).select_from(ProductModel))
            return int(result.scalar_one())
        return 0

    @_store_errors
    async def get_product(self, product_id: int) -> ProductRead | None:
        """Get a product by local id."""
        async for session in self._session_factory():
            model = await session.get(ProductModel, product_id)
            return _model_to_product(model) if model else None
        return None

    @_store_errors
    async def get_product_by_external_id(self, external_id: str) -> ProductRead | None:
        """Get the product carrying the given Zoho item id, if any."""
        async for session in self._session_factory():
            stmt = select(ProductModel).where(ProductModel.zoho_item_id == external_id)
            result = await session.execute(stmt)
            model = result.scalars().first()
            return _model_to_product(model) if model else None
        return None

    @_store_errors
    async def insert_product(
        self, data: ProductWrite, external_id: str, synced_at: datetime
    ) -> ProductRead:
        """Insert a product pulled from Zoho, linked to its item id."""
        async for session in self._session_factory():
            model = ProductModel(
                **data.model_dump(),
                zoho_item_id=external_id,
                zoho_synced_at=synced_at,
            )
            session.add(model)
            await session.commit()
            await session.refresh(model)
            return _model_to_product(model)
        raise LocalStoreError("insert_product failed: no session")

    @_store_errors
    async def update_product(
        self, product_id: int, data: ProductWrite, synced_at: datetime
    ) -> None:
        """Overwrite a product's fields with a payload pulled from Zoho."""
        async for session in self._session_factory():
            await session.execute(
                update(ProductModel)
                .where(ProductModel.id == product_id)
                .values(**data.model_dump(), zoho_synced_at=synced_at)
            )
            await session.commit()

    @_store_errors
    async def set_product_linkage(
        self, product_id: int, external_id: str, synced_at: datetime
    ) -> None:
        """Record the Zoho item id and sync time on a product."""
        async for session in self._session_factory():
            await session.execute(
                update(ProductModel)
                .where(ProductModel.id == product_id)
                .values(zoho_item_id=external_id, zoho_synced_at=synced_at)
            )
            await session.commit()

    @_store_errors
    async def set_product_stock(self, product_id: int, quantity: int) -> None:
        """Set a product's local stock quantity."""
        async for session in self._session_factory():
            await session.execute(
                update(ProductModel)
                .where(ProductModel.id == product_id)
                .values(stock_quantity=quantity)
            )
            await session.commit()

    # ── Orders ──────────────────────────────────────────────────────────────

    @_store_errors
    async def list_orders(self, order_ids: list[int] | None = None) -> list[OrderRead]:
        """List orders oldest-first with customer and lines (and line products) loaded."""
        async for session in self._session_factory():
            stmt = (
                select(OrderModel)
                .options(
                    selectinload(OrderModel.customer),
                    selectinload(OrderModel.items).selectinload(OrderItemModel.product),
                )
                .order_by(OrderModel.created_at.asc())
            )
            if order_ids:
                stmt = stmt.where(OrderModel.id.in_(order_ids))
            result = await session.execute(stmt)
            return [_model_to_order(m) for m in result.scalars().all()]
        return []

    @_store_errors
    async def set_order_linkage(
        self, order_id: int, external_id: str, synced_at: datetime
    ) -> None:
        """Record the Zoho sales order id and sync time on an order."""
        async for session in self._session_factory():
            await session.execute(
                update(OrderModel)
                .where(OrderModel.id == order_id)
                .values(zoho_order_id=external_id, zoho_synced_at=synced_at)
            )
            await session.commit()

    @_store_errors
    async def set_order_deal(self, order_id: int, deal_id: str) -> None:
        """Record the Zoho CRM deal id on an order."""
        async for session in self._session_factory():
            await session.execute(
                update(OrderModel).where(OrderModel.id == order_id).values(zoho_deal_id=deal_id)
            )
            await session.commit()

    # ── Audit ───────────────────────────────────────────────────────────────

    @_store_errors
    async def record_sync_log(self, entry: SyncLogCreate) -> None:
        """Append a sync audit row."""
        async for session in self._session_factory():
            session.add(SyncLogModel(**entry.model_dump()))
            await session.commit()

    @_store_errors
    async def latest_sync_log(self) -> SyncLogRead | None:
        """Most recent audit row, or None before the first sync."""
        async for session in self._session_factory():
            result = await session.execute(
                select(SyncLogModel).order_by(SyncLogModel.created_at.desc()).limit(1)
            )
            model = result.scalar_one_or_none()
            if model is None:
                return None
            return SyncLogRead(
                id=model.id,
                created_at=model.created_at,
                module=model.module,
                direction=model.direction,
                synced=model.synced,
                failed=model.failed,
                duration_ms=model.duration_ms,
                status=model.status,
                error_message=model.error_message,
                sync_details=model.sync_details,
            )
        return None
