"""Zoho Inventory client: items, sales orders, and stock adjustments.

Every request carries the organization_id query parameter, resolved lazily
from the token store and cached for the client's lifetime.
"""

from __future__ import annotations

from datetime import date
from typing import Any

import structlog

from src.storesync.zoho.client import ZohoAPIClient
from src.storesync.zoho.errors import ConfigurationMissingError, ExternalAPIError

logger = structlog.get_logger(__name__)

DEFAULT_PAGE_SIZE = 200


class ZohoInventoryClient(ZohoAPIClient):
    """Typed operations over the Zoho Inventory v1 API."""

    api_name = "inventory"

    def __init__(self, *args: Any, organization_id: str | None = None, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._organization_id = organization_id

    async def _default_params(self) -> dict[str, Any]:
        if not self._organization_id:
            config = await self._tokens.get_config()
            if not config.organization_id:
                raise ConfigurationMissingError("zoho organization id missing")
            self._organization_id = config.organization_id
        return {"organization_id": self._organization_id}

    def reset_organization(self) -> None:
        """Drop the cached organization id (after a config change)."""
        self._organization_id = None

    # ── Items ───────────────────────────────────────────────────────────────

    async def list_items(
        self, page: int = 1, per_page: int = DEFAULT_PAGE_SIZE
    ) -> tuple[list[dict[str, Any]], bool]:
        """Return one page of items and whether another page follows."""
        body = await self.request("GET", "/items", params={"page": page, "per_page": per_page})
        items = body.get("items") or []
        has_more = bool((body.get("page_context") or {}).get("has_more_page"))
        return items, has_more

    async def list_all_items(self, per_page: int = DEFAULT_PAGE_SIZE) -> list[dict[str, Any]]:
        """Walk every page of /items."""
        items: list[dict[str, Any]] = []
        page = 1
        while True:
            batch, has_more = await self.list_items(page=page, per_page=per_page)
            items.extend(batch)
            if not has_more or not batch:
                break
            page += 1
        logger.info("zoho_inventory.items_listed", count=len(items), pages=page)
        return items

    async def count_items(self) -> int:
        """Total item count from page_context; walks all pages when Zoho omits it."""
        body = await self.request("GET", "/items", params={"page": 1, "per_page": 1})
        total = (body.get("page_context") or {}).get("total")
        if total is not None:
            return int(total)
        return len(await self.list_all_items())

    async def get_item(self, item_id: str) -> dict[str, Any]:
        body = await self.request("GET", f"/items/{item_id}")
        return body.get("item") or {}

    async def create_item(self, payload: dict[str, Any]) -> str:
        """Create an item and return its Zoho item_id."""
        body = await self.request("POST", "/items", json=payload)
        return _require_id(body, "item", "item_id")

    async def update_item(self, item_id: str, payload: dict[str, Any]) -> None:
        await self.request("PUT", f"/items/{item_id}", json=payload)

    # ── Sales Orders ────────────────────────────────────────────────────────

    async def create_sales_order(self, payload: dict[str, Any]) -> str:
        """Create a sales order and return its Zoho salesorder_id."""
        body = await self.request("POST", "/salesorders", json=payload)
        return _require_id(body, "salesorder", "salesorder_id")

    async def update_sales_order(self, salesorder_id: str, payload: dict[str, Any]) -> None:
        await self.request("PUT", f"/salesorders/{salesorder_id}", json=payload)

    # ── Stock ───────────────────────────────────────────────────────────────

    async def get_stock_on_hand(self, item_id: str) -> float:
        item = await self.get_item(item_id)
        return float(item.get("stock_on_hand") or 0)

    async def adjust_stock(
        self,
        item_id: str,
        quantity_adjusted: float,
        reason: str,
        adjustment_date: date | None = None,
    ) -> str | None:
        """Record a quantity adjustment. Returns the inventory_adjustment_id if present."""
        payload = {
            "adjustment_type": "quantity",
            "reason": reason,
            "date": (adjustment_date or date.today()).isoformat(),
            "line_items": [{"item_id": item_id, "quantity_adjusted": quantity_adjusted}],
        }
        body = await self.request("POST", "/inventoryadjustments", json=payload)
        adjustment = body.get("inventory_adjustment") or {}
        logger.info(
            "zoho_inventory.stock_adjusted",
            item_id=item_id,
            quantity_adjusted=quantity_adjusted,
        )
        return adjustment.get("inventory_adjustment_id")


def _require_id(body: dict[str, Any], envelope: str, id_field: str) -> str:
    record = body.get(envelope) or {}
    external_id = record.get(id_field)
    if not external_id:
        raise ExternalAPIError(200, f"response missing {envelope}.{id_field}")
    return str(external_id)
