"""Tests for the Zoho HTTP clients: auth header, 401 replay, retries, envelopes.

Zoho Accounts and the Zoho APIs are both served by one httpx.MockTransport
handler; tenacity waits are disabled with wait_none().
"""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest
from tenacity import wait_none

from src.storesync.zoho.crm import ZohoCRMClient
from src.storesync.zoho.errors import (
    AuthExpiredError,
    ConfigurationMissingError,
    ExternalAPIError,
    TransientAPIError,
)
from src.storesync.zoho.inventory import ZohoInventoryClient
from src.storesync.zoho.token_store import (
    CLIENT_ID,
    CLIENT_SECRET,
    ORGANIZATION_ID,
    REFRESH_TOKEN,
    MemoryTokenStore,
)
from src.storesync.zoho.sync import SyncOrchestrator
from src.storesync.zoho.tokens import TokenManager
from tests.doubles import FakeClock, make_product

ACCOUNTS_URL = "https://accounts.zoho.in"
INVENTORY_URL = "https://www.zohoapis.in/inventory/v1"
CRM_URL = "https://www.zohoapis.in/crm/v3"


# ── Helpers ────────────────────────────────────────────────────────────────


class ZohoStub:
    """Scripted responses for API calls; token grants answer token_response."""

    def __init__(self) -> None:
        self.api_requests: list[httpx.Request] = []
        self.token_requests: list[httpx.Request] = []
        self.queue: list[httpx.Response | Exception] = []
        self.token_response = httpx.Response(
            200, json={"access_token": "fresh-access", "expires_in": 3600}
        )

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.host == "accounts.zoho.in":
            self.token_requests.append(request)
            return self.token_response
        self.api_requests.append(request)
        if not self.queue:
            return httpx.Response(200, json={})
        nxt = self.queue.pop(0)
        if isinstance(nxt, Exception):
            raise nxt
        return nxt

    def reply(self, *responses: httpx.Response | Exception) -> None:
        self.queue.extend(responses)


@pytest.fixture
def stub() -> ZohoStub:
    return ZohoStub()


@pytest.fixture
async def http_client(stub):
    async with httpx.AsyncClient(transport=httpx.MockTransport(stub)) as client:
        yield client


@pytest.fixture
def store() -> MemoryTokenStore:
    return MemoryTokenStore(
        {
            CLIENT_ID: "client-1",
            CLIENT_SECRET: "secret-1",
            REFRESH_TOKEN: "refresh-1",
            ORGANIZATION_ID: "org-1",
        }
    )


@pytest.fixture
async def tokens(store, http_client) -> TokenManager:
    manager = TokenManager(store=store, http_client=http_client, accounts_url=ACCOUNTS_URL, clock=FakeClock())
    await manager.store_tokens("tok-1", expires_in=3600)
    return manager


@pytest.fixture
def inventory(http_client, tokens) -> ZohoInventoryClient:
    return ZohoInventoryClient(http_client, tokens, INVENTORY_URL, retry_wait=wait_none())


@pytest.fixture
def crm(http_client, tokens) -> ZohoCRMClient:
    return ZohoCRMClient(http_client, tokens, CRM_URL, retry_wait=wait_none())


def _json(request: httpx.Request) -> dict:
    return json.loads(request.content)


# ── Authentication ─────────────────────────────────────────────────────────


class TestAuthentication:
    async def test_bearer_header_and_organization_param(self, inventory, stub):
        stub.reply(httpx.Response(200, json={"item": {"item_id": "9", "name": "Lota"}}))

        item = await inventory.get_item("9")

        request = stub.api_requests[0]
        assert item["name"] == "Lota"
        assert request.headers["Authorization"] == "Zoho-oauthtoken tok-1"
        assert request.url.params["organization_id"] == "org-1"
        assert request.url.path == "/inventory/v1/items/9"

    async def test_explicit_organization_overrides_store(self, http_client, tokens, stub):
        client = ZohoInventoryClient(
            http_client, tokens, INVENTORY_URL, retry_wait=wait_none(), organization_id="org-x"
        )

        await client.get_item("9")

        assert stub.api_requests[0].url.params["organization_id"] == "org-x"

    async def test_missing_organization_sends_nothing(self, http_client, stub, store):
        store._rows.pop(ORGANIZATION_ID)
        manager = TokenManager(store=store, http_client=http_client, accounts_url=ACCOUNTS_URL)
        await manager.store_tokens("tok-1")
        client = ZohoInventoryClient(http_client, manager, INVENTORY_URL, retry_wait=wait_none())

        with pytest.raises(ConfigurationMissingError, match="organization id"):
            await client.get_item("9")
        assert stub.api_requests == []

    async def test_no_usable_token_sends_nothing(self, http_client, stub):
        manager = TokenManager(
            store=MemoryTokenStore({ORGANIZATION_ID: "org-1"}),
            http_client=http_client,
            accounts_url=ACCOUNTS_URL,
        )
        client = ZohoInventoryClient(http_client, manager, INVENTORY_URL, retry_wait=wait_none())

        with pytest.raises(AuthExpiredError):
            await client.get_item("9")
        assert stub.api_requests == []
        assert stub.token_requests == []

    async def test_401_refreshes_once_and_replays(self, inventory, stub):
        stub.reply(
            httpx.Response(401, json={"code": 57, "message": "invalid oauth token"}),
            httpx.Response(201, json={"item": {"item_id": "5001"}}),
        )

        item_id = await inventory.create_item({"name": "Lota", "rate": 10})

        assert item_id == "5001"
        assert len(stub.token_requests) == 1
        assert [r.headers["Authorization"] for r in stub.api_requests] == [
            "Zoho-oauthtoken tok-1",
            "Zoho-oauthtoken fresh-access",
        ]
        assert _json(stub.api_requests[1]) == {"name": "Lota", "rate": 10}

    async def test_second_401_is_not_refreshed_again(self, inventory, stub):
        stub.reply(httpx.Response(401, text="nope"), httpx.Response(401, text="still nope"))

        with pytest.raises(ExternalAPIError) as excinfo:
            await inventory.get_item("9")

        assert excinfo.value.status_code == 401
        assert len(stub.token_requests) == 1
        assert len(stub.api_requests) == 2

    async def test_401_with_failed_refresh_raises_auth_expired(self, inventory, stub, store):
        store._rows.pop(REFRESH_TOKEN)
        stub.reply(httpx.Response(401, text="expired"))

        with pytest.raises(AuthExpiredError):
            await inventory.get_item("9")
        assert len(stub.api_requests) == 1

    async def test_concurrent_401s_share_one_refresh(self, store):
        token_posts: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "accounts.zoho.in":
                token_posts.append(request)
                return httpx.Response(200, json={"access_token": "fresh-access", "expires_in": 3600})
            if request.headers["Authorization"] == "Zoho-oauthtoken tok-1":
                return httpx.Response(401, json={"code": 57, "message": "invalid oauth token"})
            return httpx.Response(200, json={"item": {"item_id": request.url.path.rsplit("/", 1)[-1]}})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            manager = TokenManager(store=store, http_client=client, accounts_url=ACCOUNTS_URL)
            await manager.store_tokens("tok-1", expires_in=3600)
            inventory = ZohoInventoryClient(client, manager, INVENTORY_URL, retry_wait=wait_none())

            items = await asyncio.gather(inventory.get_item("1"), inventory.get_item("2"))

        assert [i["item_id"] for i in items] == ["1", "2"]
        assert len(token_posts) == 1


# ── Retries ────────────────────────────────────────────────────────────────


class TestRetries:
    async def test_rate_limit_is_retried(self, inventory, stub):
        stub.reply(
            httpx.Response(429, text="slow down"),
            httpx.Response(200, json={"item": {"item_id": "9"}}),
        )

        assert (await inventory.get_item("9"))["item_id"] == "9"
        assert len(stub.api_requests) == 2

    async def test_server_errors_exhaust_attempts(self, inventory, stub):
        stub.reply(*(httpx.Response(503, text="down") for _ in range(3)))

        with pytest.raises(TransientAPIError) as excinfo:
            await inventory.get_item("9")

        assert excinfo.value.status_code == 503
        assert len(stub.api_requests) == 3

    async def test_transport_error_is_retried(self, inventory, stub):
        stub.reply(
            httpx.ConnectError("connection reset"),
            httpx.Response(200, json={"item": {"item_id": "9"}}),
        )

        assert (await inventory.get_item("9"))["item_id"] == "9"

    async def test_client_error_is_not_retried(self, inventory, stub):
        stub.reply(httpx.Response(400, json={"code": 1001, "message": "bad rate"}))

        with pytest.raises(ExternalAPIError) as excinfo:
            await inventory.create_item({"name": "x"})

        assert excinfo.value.status_code == 400
        assert "bad rate" in str(excinfo.value)
        assert len(stub.api_requests) == 1


# ── Inventory ──────────────────────────────────────────────────────────────


class TestInventoryClient:
    async def test_list_all_items_walks_pages(self, inventory, stub):
        stub.reply(
            httpx.Response(
                200,
                json={"items": [{"item_id": "1"}, {"item_id": "2"}], "page_context": {"has_more_page": True}},
            ),
            httpx.Response(
                200,
                json={"items": [{"item_id": "3"}], "page_context": {"has_more_page": False}},
            ),
        )

        items = await inventory.list_all_items(per_page=2)

        assert [i["item_id"] for i in items] == ["1", "2", "3"]
        assert [r.url.params["page"] for r in stub.api_requests] == ["1", "2"]
        assert stub.api_requests[0].url.params["per_page"] == "2"

    async def test_create_without_id_in_response_raises(self, inventory, stub):
        stub.reply(httpx.Response(201, json={"code": 0, "item": {}}))

        with pytest.raises(ExternalAPIError, match="item.item_id"):
            await inventory.create_item({"name": "x"})

    async def test_create_sales_order_returns_id(self, inventory, stub):
        stub.reply(httpx.Response(201, json={"salesorder": {"salesorder_id": "SO-77"}}))

        assert await inventory.create_sales_order({"line_items": []}) == "SO-77"
        assert stub.api_requests[0].url.path == "/inventory/v1/salesorders"

    async def test_adjust_stock_posts_quantity_adjustment(self, inventory, stub):
        stub.reply(
            httpx.Response(
                201, json={"inventory_adjustment": {"inventory_adjustment_id": "ADJ-1"}}
            )
        )

        adjustment_id = await inventory.adjust_stock("9", -2.0, "Damaged in transit")

        body = _json(stub.api_requests[0])
        assert adjustment_id == "ADJ-1"
        assert body["adjustment_type"] == "quantity"
        assert body["reason"] == "Damaged in transit"
        assert body["line_items"] == [{"item_id": "9", "quantity_adjusted": -2.0}]

    async def test_stock_on_hand(self, inventory, stub):
        stub.reply(httpx.Response(200, json={"item": {"item_id": "9", "stock_on_hand": 14}}))

        assert await inventory.get_stock_on_hand("9") == 14.0

    async def test_reset_organization_reloads_from_store(self, inventory, stub, store):
        await inventory.get_item("9")
        await store.put(ORGANIZATION_ID, "org-2")
        inventory.reset_organization()

        await inventory.get_item("9")

        assert [r.url.params["organization_id"] for r in stub.api_requests] == ["org-1", "org-2"]


# ── CRM ────────────────────────────────────────────────────────────────────


class TestCRMClient:
    async def test_search_with_no_match_returns_none(self, crm, stub):
        stub.reply(httpx.Response(204))

        assert await crm.search_contact_by_email("asha@example.com") is None
        request = stub.api_requests[0]
        assert request.url.params["criteria"] == "(Email:equals:asha@example.com)"
        assert "organization_id" not in request.url.params

    async def test_search_returns_first_match(self, crm, stub):
        stub.reply(httpx.Response(200, json={"data": [{"id": "C1"}, {"id": "C2"}]}))

        assert await crm.search_contact_by_email("asha@example.com") == {"id": "C1"}

    async def test_create_contact_wraps_record_and_reads_id(self, crm, stub):
        stub.reply(
            httpx.Response(
                201,
                json={"data": [{"code": "SUCCESS", "status": "success", "details": {"id": "C9"}}]},
            )
        )

        contact_id = await crm.create_contact({"Last_Name": "Rao"})

        assert contact_id == "C9"
        assert _json(stub.api_requests[0]) == {"data": [{"Last_Name": "Rao"}]}

    async def test_per_record_error_raises(self, crm, stub):
        stub.reply(
            httpx.Response(
                202,
                json={
                    "data": [
                        {"code": "DUPLICATE_DATA", "status": "error", "message": "duplicate data"}
                    ]
                },
            )
        )

        with pytest.raises(ExternalAPIError, match="DUPLICATE_DATA"):
            await crm.create_deal({"Deal_Name": "Order #1"})

    async def test_update_accepts_empty_body(self, crm, stub):
        stub.reply(httpx.Response(200, json={}))

        await crm.update_deal("D1", {"Stage": "Closed Won"})

        assert stub.api_requests[0].method == "PUT"
        assert stub.api_requests[0].url.path == "/crm/v3/Deals/D1"


# ── Sync Against Zoho ──────────────────────────────────────────────────────


class TestSyncWithRejectedRefresh:
    async def test_one_grant_for_whole_batch(self, http_client, stub, store, repository):
        stub.token_response = httpx.Response(400, json={"error": "invalid_client"})
        manager = TokenManager(
            store=store, http_client=http_client, accounts_url=ACCOUNTS_URL, clock=FakeClock()
        )
        for product_id in range(1, 6):
            repository.add_product(make_product(id=product_id, sku=f"SKU-{product_id}"))

        async def no_sleep(seconds: float) -> None:
            return None

        orchestrator = SyncOrchestrator(
            repository=repository,
            inventory=ZohoInventoryClient(http_client, manager, INVENTORY_URL, retry_wait=wait_none()),
            crm=ZohoCRMClient(http_client, manager, CRM_URL, retry_wait=wait_none()),
            clock=FakeClock(),
            sleep=no_sleep,
        )

        result = await orchestrator.sync_products_to_external()

        assert result.success is True
        assert result.failed == 5
        assert len(stub.token_requests) == 1
        assert stub.api_requests == []
