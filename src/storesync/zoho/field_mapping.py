"""Field mapping between commerce entities and Zoho Inventory / CRM records.

Defines:
- Typed Zoho record models (ZohoContact, ZohoItem, ZohoSalesOrder, ZohoDeal).
  Unknown fields in Zoho responses are ignored, never passed through.
- customer_to_contact(): Profiles -> CRM Contacts.
- product_to_item() / item_to_product(): Products <-> Inventory items.
- order_to_sales_order() / order_to_deal(): Orders -> Inventory / CRM.
- ORDER_STATUS_TO_DEAL_STAGE: order status -> CRM deal stage.

All functions are pure. Outbound mappers raise MappingError for entities
missing a required field; optional fields that are absent are omitted from
the payload. Inbound mappers substitute defaults for every missing field.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from src.storesync.commerce.schemas import CustomerRead, OrderRead, ProductRead, ProductWrite
from src.storesync.zoho.errors import MappingError

DEFAULT_COUNTRY = "India"
LOCAL_PRODUCT_ID_FIELD = "cf_local_product_id"
LOCAL_ORDER_ID_FIELD = "cf_local_order_id"


# ── Zoho Record Models ─────────────────────────────────────────────────────


class _ZohoRecord(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True, coerce_numbers_to_str=True)

    def payload(self) -> dict[str, Any]:
        """Serialize for the Zoho API, dropping fields that are unset."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ZohoContact(_ZohoRecord):
    id: str | None = None
    First_Name: str | None = None
    Last_Name: str
    Email: str | None = None
    Phone: str | None = None
    Mobile: str | None = None
    Mailing_Street: str | None = None
    Mailing_City: str | None = None
    Mailing_State: str | None = None
    Mailing_Zip: str | None = None
    Mailing_Country: str | None = None
    Description: str | None = None


class ZohoCustomField(_ZohoRecord):
    api_name: str | None = None
    value: Any = None


class ZohoItem(_ZohoRecord):
    item_id: str | None = None
    name: str
    sku: str | None = None
    description: str | None = None
    rate: float = 0.0
    stock_on_hand: float | None = None
    initial_stock: float | None = None
    initial_stock_rate: float | None = None
    status: str | None = None
    custom_fields: list[ZohoCustomField] | None = None


class ZohoLineItem(_ZohoRecord):
    item_id: str | None = None
    name: str | None = None
    rate: float
    quantity: int
    discount: float | None = None


class ZohoSalesOrder(_ZohoRecord):
    salesorder_id: str | None = None
    customer_id: str | None = None
    salesorder_number: str | None = None
    reference_number: str | None = None
    date: str
    shipment_date: str | None = None
    line_items: list[ZohoLineItem] = Field(min_length=1)
    notes: str | None = None
    shipping_charge: float | None = None
    custom_fields: list[ZohoCustomField] | None = None


class ZohoContactRef(_ZohoRecord):
    id: str


class ZohoDeal(_ZohoRecord):
    id: str | None = None
    Deal_Name: str
    Amount: float = 0.0
    Stage: str
    Closing_Date: str | None = None
    Description: str | None = None
    Contact_Name: ZohoContactRef | None = None


# ── Deal Stages ────────────────────────────────────────────────────────────

ORDER_STATUS_TO_DEAL_STAGE: dict[str, str] = {
    "pending": "Qualification",
    "processing": "Needs Analysis",
    "confirmed": "Proposal/Price Quote",
    "shipped": "Negotiation/Review",
    "delivered": "Closed Won",
    "cancelled": "Closed Lost",
    "refunded": "Closed Lost",
}
DEFAULT_DEAL_STAGE = "Qualification"


def map_order_status_to_stage(status: str | None) -> str:
    return ORDER_STATUS_TO_DEAL_STAGE.get((status or "").lower(), DEFAULT_DEAL_STAGE)


# ── Customers ──────────────────────────────────────────────────────────────


def customer_to_contact(customer: CustomerRead) -> dict[str, Any]:
    """Map a customer profile to a CRM Contact record.

    The first word of full_name becomes First_Name and the remainder
    Last_Name; CRM requires Last_Name, so a single-word name fills both.

    Raises:
        MappingError: If the customer has neither a name nor an email.
    """
    name = (customer.full_name or "").strip()
    if not name and not customer.email:
        raise MappingError(f"customer {customer.id} has no name or email")
    parts = name.split() if name else [customer.email.split("@")[0]]
    first = parts[0]
    last = " ".join(parts[1:]) or first

    contact = _build(
        ZohoContact,
        customer.id,
        First_Name=first,
        Last_Name=last,
        Email=customer.email or None,
        Phone=customer.phone or None,
        Mobile=customer.mobile or customer.phone or None,
        Mailing_Street=customer.address_line1 or None,
        Mailing_City=customer.city or None,
        Mailing_State=customer.state or None,
        Mailing_Zip=customer.postal_code or None,
        Mailing_Country=customer.country or DEFAULT_COUNTRY,
        Description=f"Customer ID: {customer.id}",
    )
    return contact.payload()


# ── Products ───────────────────────────────────────────────────────────────


def product_to_item(product: ProductRead, include_initial_stock: bool = False) -> dict[str, Any]:
    """Map a product to an Inventory item payload.

    Opening stock is only sent on create; Inventory rejects it on update.

    Raises:
        MappingError: If the product has no name or a non-numeric price.
    """
    if not (product.name or "").strip():
        raise MappingError(f"product {product.id} has no name")
    rate = _to_float(product.price, f"product {product.id} price")

    fields: dict[str, Any] = {
        "name": product.name.strip(),
        "sku": product.sku or str(product.id),
        "description": product.description or "",
        "rate": rate,
        "custom_fields": [{"api_name": LOCAL_PRODUCT_ID_FIELD, "value": str(product.id)}],
    }
    if include_initial_stock:
        fields["initial_stock"] = float(product.stock_quantity or 0)
        fields["initial_stock_rate"] = rate
    return _build(ZohoItem, product.id, **fields).payload()


def item_to_product(record: dict[str, Any]) -> ProductWrite:
    """Map an Inventory item to a local product write.

    Deterministic: the same record always yields an equal ProductWrite.
    """
    try:
        item = ZohoItem.model_validate({**record, "name": record.get("name") or ""})
    except ValidationError as exc:
        raise MappingError(f"zoho item {record.get('item_id')} invalid: {exc.errors()[0]['msg']}") from exc
    try:
        price = Decimal(str(item.rate or 0)).quantize(Decimal("0.01"))
    except InvalidOperation:
        price = Decimal("0.00")
    return ProductWrite(
        name=item.name or item.sku or f"Zoho item {item.item_id or ''}".strip(),
        sku=item.sku or "",
        description=item.description or "",
        price=price,
        stock_quantity=int(item.stock_on_hand or 0),
        is_active=(item.status or "active") == "active",
    )


# ── Orders ─────────────────────────────────────────────────────────────────


def order_to_sales_order(order: OrderRead, customer_external_id: str | None) -> dict[str, Any]:
    """Map an order to an Inventory sales order payload.

    Lines whose product is linked to a Zoho item reference it by item_id;
    unlinked lines are sent by name and rate only.

    Raises:
        MappingError: If the order has no lines.
    """
    if not order.items:
        raise MappingError(f"order {order.id} has no line items")

    line_items = [
        {
            "item_id": line.product_external_id,
            "name": line.name or line.product_name,
            "rate": _to_float(line.price, f"order {order.id} line {line.id} price"),
            "quantity": line.quantity,
            "discount": _to_float(line.discount, f"order {order.id} line {line.id} discount") or None,
        }
        for line in order.items
    ]
    order_date = _as_date(order.created_at)
    fields: dict[str, Any] = {
        "customer_id": customer_external_id,
        "salesorder_number": order.order_number or None,
        "reference_number": order.order_number or str(order.id),
        "date": order_date,
        "shipment_date": order_date,
        "line_items": line_items,
        "notes": order.notes or None,
        "shipping_charge": _to_float(order.shipping_cost, f"order {order.id} shipping") or None,
        "custom_fields": [{"api_name": LOCAL_ORDER_ID_FIELD, "value": str(order.id)}],
    }
    return _build(ZohoSalesOrder, order.id, **fields).payload()


def order_to_deal(order: OrderRead, contact_external_id: str | None) -> dict[str, Any]:
    """Map an order to a CRM Deal record linked to the customer's Contact."""
    fields: dict[str, Any] = {
        "Deal_Name": f"Order #{order.order_number or order.id}",
        "Amount": _to_float(order.total_amount, f"order {order.id} total"),
        "Stage": map_order_status_to_stage(order.status),
        "Closing_Date": _as_date(order.updated_at or order.created_at),
        "Description": order.notes or None,
        "Contact_Name": {"id": contact_external_id} if contact_external_id else None,
    }
    return _build(ZohoDeal, order.id, **fields).payload()


# ── Helpers ────────────────────────────────────────────────────────────────


def _build(model: type[_ZohoRecord], local_id: Any, **fields: Any) -> _ZohoRecord:
    try:
        return model.model_validate(fields)
    except ValidationError as exc:
        raise MappingError(f"{model.__name__} for {local_id} invalid: {exc.errors()[0]['msg']}") from exc


def _to_float(value: Any, label: str) -> float:
    if value is None:
        return 0.0
    try:
        return float(Decimal(str(value)))
    except (InvalidOperation, ValueError) as exc:
        raise MappingError(f"{label} is not numeric: {value!r}") from exc


def _as_date(value: datetime | date | None) -> str:
    if value is None:
        return date.today().isoformat()
    if isinstance(value, datetime):
        return value.date().isoformat()
    return value.isoformat()
