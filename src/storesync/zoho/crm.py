"""Zoho CRM v3 client: Contacts and Deals.

CRM wraps request and response records in {"data": [...]}. Write responses
report each record individually, so a 2xx response can still carry a
per-record error that is raised here as ExternalAPIError.
"""

from __future__ import annotations

from typing import Any

import structlog

from src.storesync.zoho.client import ZohoAPIClient
from src.storesync.zoho.errors import ExternalAPIError

logger = structlog.get_logger(__name__)


class ZohoCRMClient(ZohoAPIClient):
    """Typed operations over the Zoho CRM v3 API."""

    api_name = "crm"

    # ── Contacts ────────────────────────────────────────────────────────────

    async def search_contact_by_email(self, email: str) -> dict[str, Any] | None:
        """Return the first Contact whose Email equals *email*, or None."""
        body = await self.request(
            "GET", "/Contacts/search", params={"criteria": f"(Email:equals:{email})"}
        )
        records = body.get("data") or []
        return records[0] if records else None

    async def create_contact(self, record: dict[str, Any]) -> str:
        body = await self.request("POST", "/Contacts", json={"data": [record]})
        return _record_id(body)

    async def update_contact(self, contact_id: str, record: dict[str, Any]) -> None:
        body = await self.request("PUT", f"/Contacts/{contact_id}", json={"data": [record]})
        _record_id(body, fallback=contact_id)

    # ── Deals ───────────────────────────────────────────────────────────────

    async def create_deal(self, record: dict[str, Any]) -> str:
        body = await self.request("POST", "/Deals", json={"data": [record]})
        return _record_id(body)

    async def update_deal(self, deal_id: str, record: dict[str, Any]) -> None:
        body = await self.request("PUT", f"/Deals/{deal_id}", json={"data": [record]})
        _record_id(body, fallback=deal_id)


def _record_id(body: dict[str, Any], fallback: str | None = None) -> str:
    """Extract data[0].details.id, raising on a per-record error status."""
    records = body.get("data") or []
    if not records:
        if fallback:
            return fallback
        raise ExternalAPIError(200, "CRM response contained no records")
    first = records[0]
    if str(first.get("status", "success")).lower() == "error":
        logger.error("zoho_crm.record_rejected", code=first.get("code"), message=first.get("message"))
        raise ExternalAPIError(
            400, f"{first.get('code', 'ERROR')}: {first.get('message', 'record rejected')}"
        )
    record_id = (first.get("details") or {}).get("id") or fallback
    if not record_id:
        raise ExternalAPIError(200, "CRM response missing details.id")
    return str(record_id)
