"""Unit tests for TokenManager: caching, expiry, refresh, persistence, config.

Uses MemoryTokenStore and httpx.MockTransport for the Zoho Accounts token
endpoint -- no real database or network calls.
"""

from __future__ import annotations

import asyncio
from datetime import timedelta
from urllib.parse import parse_qsl, parse_qs, urlparse

import httpx
import pytest

from src.storesync.zoho.errors import ConfigurationMissingError, ExternalAPIError, LocalStoreError
from src.storesync.zoho.token_store import (
    ACCESS_TOKEN,
    CLIENT_ID,
    CLIENT_SECRET,
    ORGANIZATION_ID,
    REFRESH_TOKEN,
    MemoryTokenStore,
)
from src.storesync.zoho.tokens import REFRESH_RETRY_AFTER, TokenManager
from tests.doubles import FakeClock

ACCOUNTS_URL = "https://accounts.zoho.in"
TOKEN_URL = f"{ACCOUNTS_URL}/oauth/v2/token"


# ── Helpers ────────────────────────────────────────────────────────────────


class TokenEndpoint:
    """MockTransport handler standing in for the Zoho token endpoint."""

    def __init__(self, responses: list[httpx.Response] | None = None) -> None:
        self.requests: list[dict[str, str]] = []
        self.responses = responses or []
        self.default = httpx.Response(
            200, json={"access_token": "fresh-access", "expires_in": 3600}
        )

    def __call__(self, request: httpx.Request) -> httpx.Response:
        assert str(request.url) == TOKEN_URL
        self.requests.append(dict(parse_qsl(request.content.decode())))
        if self.responses:
            return self.responses.pop(0)
        return self.default


class FailingWriteStore(MemoryTokenStore):
    async def put(self, key, value, expires_at=None):
        raise LocalStoreError("write failed")


class FailingReadStore(MemoryTokenStore):
    async def get(self, key):
        raise LocalStoreError("read failed")

    async def get_many(self, keys):
        raise LocalStoreError("read failed")


def _credentials(**extra: str) -> dict[str, str]:
    values = {
        CLIENT_ID: "client-1",
        CLIENT_SECRET: "secret-1",
        ORGANIZATION_ID: "org-1",
        REFRESH_TOKEN: "refresh-1",
    }
    values.update(extra)
    return values


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def endpoint() -> TokenEndpoint:
    return TokenEndpoint()


@pytest.fixture
async def http_client(endpoint):
    async with httpx.AsyncClient(transport=httpx.MockTransport(endpoint)) as client:
        yield client


def _manager(store, http_client, clock) -> TokenManager:
    return TokenManager(
        store=store,
        http_client=http_client,
        accounts_url=ACCOUNTS_URL,
        redirect_uri="https://shop.example.com/admin/zoho/callback",
        clock=clock,
    )


# ── Access Token Caching ──────────────────────────────────────────────────


class TestGetAccessToken:
    async def test_valid_token_served_without_network(self, http_client, endpoint, clock):
        """Two calls inside the validity window make zero token requests."""
        store = MemoryTokenStore(_credentials())
        manager = _manager(store, http_client, clock)
        await manager.store_tokens("cached-access", expires_in=3600)

        assert await manager.get_access_token() == "cached-access"
        clock.advance(minutes=30)
        assert await manager.get_access_token() == "cached-access"
        assert endpoint.requests == []

    async def test_expired_token_triggers_exactly_one_refresh(self, http_client, endpoint, clock):
        store = MemoryTokenStore(_credentials())
        manager = _manager(store, http_client, clock)
        await manager.store_tokens("old-access", expires_in=60)

        clock.advance(seconds=61)
        assert await manager.get_access_token() == "fresh-access"
        assert await manager.get_access_token() == "fresh-access"

        assert len(endpoint.requests) == 1
        form = endpoint.requests[0]
        assert form["grant_type"] == "refresh_token"
        assert form["refresh_token"] == "refresh-1"
        assert form["client_id"] == "client-1"
        assert form["client_secret"] == "secret-1"

        stored = await store.get(ACCESS_TOKEN)
        assert stored.value == "fresh-access"
        assert stored.expires_at == clock.now + timedelta(seconds=3600)

    async def test_token_loaded_from_store_when_cache_empty(self, http_client, endpoint, clock):
        """A fresh manager (e.g. after restart) reuses a still-valid stored token."""
        store = MemoryTokenStore(_credentials())
        await store.put(ACCESS_TOKEN, "persisted", expires_at=clock.now + timedelta(minutes=10))
        manager = _manager(store, http_client, clock)

        assert await manager.get_access_token() == "persisted"
        assert endpoint.requests == []

    async def test_seeded_token_without_expiry_is_refreshed(self, http_client, endpoint, clock):
        store = MemoryTokenStore(_credentials(**{ACCESS_TOKEN: "seeded-access"}))
        manager = _manager(store, http_client, clock)

        assert await manager.get_access_token() == "fresh-access"
        assert len(endpoint.requests) == 1

    async def test_no_stored_access_token_bootstraps_from_refresh_token(
        self, http_client, endpoint, clock
    ):
        manager = _manager(MemoryTokenStore(_credentials()), http_client, clock)

        assert await manager.get_access_token() == "fresh-access"
        assert len(endpoint.requests) == 1

    async def test_concurrent_callers_share_one_refresh(self, http_client, endpoint, clock):
        manager = _manager(MemoryTokenStore(_credentials()), http_client, clock)

        tokens = await asyncio.gather(*(manager.get_access_token() for _ in range(5)))

        assert tokens == ["fresh-access"] * 5
        assert len(endpoint.requests) == 1

    async def test_store_unavailable_returns_none(self, http_client, endpoint, clock):
        manager = _manager(FailingReadStore(), http_client, clock)

        assert await manager.get_access_token() is None
        assert endpoint.requests == []


# ── Refresh Failure Semantics ──────────────────────────────────────────────


class TestRefreshToken:
    async def test_missing_refresh_token_fails_closed(self, http_client, endpoint, clock):
        """No refresh token: None, no request, stored access token untouched."""
        values = _credentials()
        del values[REFRESH_TOKEN]
        store = MemoryTokenStore(values)
        await store.put(ACCESS_TOKEN, "expired-access", expires_at=clock.now - timedelta(seconds=1))
        manager = _manager(store, http_client, clock)

        assert await manager.refresh_token() is None
        assert endpoint.requests == []
        stored = await store.get(ACCESS_TOKEN)
        assert stored.value == "expired-access"

    async def test_missing_client_credentials_fails_fast(self, http_client, endpoint, clock):
        store = MemoryTokenStore({REFRESH_TOKEN: "refresh-1", CLIENT_ID: "client-1"})
        manager = _manager(store, http_client, clock)

        assert await manager.refresh_token() is None
        assert endpoint.requests == []

    async def test_rejected_grant_leaves_store_untouched(self, http_client, endpoint, clock):
        endpoint.responses.append(httpx.Response(400, json={"error": "invalid_client"}))
        store = MemoryTokenStore(_credentials())
        await store.put(ACCESS_TOKEN, "old-access", expires_at=clock.now - timedelta(seconds=1))
        manager = _manager(store, http_client, clock)

        assert await manager.get_access_token() is None
        assert (await store.get(ACCESS_TOKEN)).value == "old-access"

    async def test_error_body_with_200_is_a_rejection(self, http_client, endpoint, clock):
        endpoint.responses.append(httpx.Response(200, json={"error": "invalid_code"}))
        manager = _manager(MemoryTokenStore(_credentials()), http_client, clock)

        assert await manager.refresh_token() is None

    async def test_network_error_returns_none(self, clock):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            manager = _manager(MemoryTokenStore(_credentials()), client, clock)
            assert await manager.refresh_token() is None

    async def test_rotated_refresh_token_is_persisted(self, http_client, endpoint, clock):
        endpoint.responses.append(
            httpx.Response(
                200,
                json={"access_token": "a2", "refresh_token": "refresh-2", "expires_in": 1800},
            )
        )
        store = MemoryTokenStore(_credentials())
        manager = _manager(store, http_client, clock)

        assert await manager.refresh_token() == "a2"
        assert (await store.get(REFRESH_TOKEN)).value == "refresh-2"
        assert (await store.get(ACCESS_TOKEN)).expires_at == clock.now + timedelta(seconds=1800)

    async def test_store_write_failure_returns_none(self, http_client, endpoint, clock):
        store = FailingWriteStore(_credentials())
        manager = _manager(store, http_client, clock)

        assert await manager.refresh_token() is None
        assert len(endpoint.requests) == 1

    async def test_non_json_body_is_a_rejection(self, http_client, endpoint, clock):
        """A maintenance page served with 200 must not escape as a decode error."""
        endpoint.default = httpx.Response(200, text="<html>maintenance</html>")
        manager = _manager(MemoryTokenStore(_credentials()), http_client, clock)

        assert await manager.is_configured() is False
        assert await manager.refresh_token() is None
        assert len(endpoint.requests) == 2

    async def test_unparseable_expiry_is_a_rejection(self, http_client, endpoint, clock):
        endpoint.responses.append(
            httpx.Response(200, json={"access_token": "a2", "expires_in": "soon"})
        )
        store = MemoryTokenStore(_credentials())
        manager = _manager(store, http_client, clock)

        assert await manager.refresh_token() is None
        assert await store.get(ACCESS_TOKEN) is None

    async def test_exchange_code_with_bad_expiry_raises_api_error(self, http_client, endpoint, clock):
        endpoint.responses.append(
            httpx.Response(200, json={"access_token": "granted", "expires_in": "soon"})
        )
        manager = _manager(MemoryTokenStore(_credentials()), http_client, clock)

        with pytest.raises(ExternalAPIError, match="expires_in"):
            await manager.exchange_code("1000.abc")


# ── Refresh Back-off ───────────────────────────────────────────────────────


class TestRefreshBackOff:
    @pytest.fixture
    def rejecting(self, endpoint) -> TokenEndpoint:
        endpoint.default = httpx.Response(400, json={"error": "invalid_client"})
        return endpoint

    async def test_rejected_grant_is_not_repeated(self, http_client, rejecting, clock):
        manager = _manager(MemoryTokenStore(_credentials()), http_client, clock)

        for _ in range(5):
            assert await manager.get_access_token() is None

        assert len(rejecting.requests) == 1

    async def test_refresh_retried_after_back_off(self, http_client, rejecting, clock):
        manager = _manager(MemoryTokenStore(_credentials()), http_client, clock)
        assert await manager.get_access_token() is None

        clock.advance(seconds=REFRESH_RETRY_AFTER.total_seconds() - 1)
        assert await manager.get_access_token() is None
        assert len(rejecting.requests) == 1

        rejecting.default = httpx.Response(200, json={"access_token": "fresh-access"})
        clock.advance(seconds=1)
        assert await manager.get_access_token() == "fresh-access"
        assert len(rejecting.requests) == 2

    async def test_new_credentials_lift_back_off(self, http_client, rejecting, clock):
        manager = _manager(MemoryTokenStore(_credentials()), http_client, clock)
        assert await manager.get_access_token() is None

        rejecting.default = httpx.Response(200, json={"access_token": "fresh-access"})
        await manager.store_config(client_secret="secret-2")

        assert await manager.get_access_token() == "fresh-access"
        assert rejecting.requests[-1]["client_secret"] == "secret-2"

    async def test_clear_cache_lifts_back_off(self, http_client, rejecting, clock):
        manager = _manager(MemoryTokenStore(_credentials()), http_client, clock)
        assert await manager.get_access_token() is None

        manager.clear_cache()
        assert await manager.get_access_token() is None

        assert len(rejecting.requests) == 2


# ── Forced Refresh ─────────────────────────────────────────────────────────


class TestForceRefresh:
    async def test_concurrent_rejections_share_one_grant(self, http_client, endpoint, clock):
        manager = _manager(MemoryTokenStore(_credentials()), http_client, clock)
        await manager.store_tokens("tok-1", expires_in=3600)

        tokens = await asyncio.gather(*(manager.force_refresh("tok-1") for _ in range(3)))

        assert tokens == ["fresh-access"] * 3
        assert len(endpoint.requests) == 1

    async def test_rejected_token_is_never_returned(self, http_client, endpoint, clock):
        endpoint.default = httpx.Response(400, json={"error": "invalid_client"})
        manager = _manager(MemoryTokenStore(_credentials()), http_client, clock)
        await manager.store_tokens("tok-1", expires_in=3600)

        assert await manager.force_refresh("tok-1") is None
        assert await manager.force_refresh("tok-1") is None
        assert len(endpoint.requests) == 1


# ── Persistence ────────────────────────────────────────────────────────────


class TestStoreTokens:
    async def test_store_failure_does_not_populate_cache(self, http_client, endpoint, clock):
        manager = _manager(FailingWriteStore(_credentials()), http_client, clock)

        with pytest.raises(LocalStoreError):
            await manager.store_tokens("never-cached", "r", 3600)

        # The cache must not hold a token the store never received
        assert manager._cache is None

    async def test_store_tokens_is_idempotent(self, http_client, clock):
        store = MemoryTokenStore()
        manager = _manager(store, http_client, clock)

        await manager.store_tokens("a1", "r1", 3600)
        await manager.store_tokens("a1", "r1", 3600)

        assert (await store.get(ACCESS_TOKEN)).value == "a1"
        assert (await store.get(REFRESH_TOKEN)).value == "r1"

    async def test_refresh_token_kept_when_not_provided(self, http_client, clock):
        store = MemoryTokenStore({REFRESH_TOKEN: "keep-me"})
        manager = _manager(store, http_client, clock)

        await manager.store_tokens("a1", None, 3600)

        assert (await store.get(REFRESH_TOKEN)).value == "keep-me"

    async def test_clear_cache_forces_store_read(self, http_client, endpoint, clock):
        store = MemoryTokenStore(_credentials())
        manager = _manager(store, http_client, clock)
        await manager.store_tokens("a1", expires_in=3600)
        await store.put(ACCESS_TOKEN, "rotated-elsewhere", expires_at=clock.now + timedelta(hours=1))

        assert await manager.get_access_token() == "a1"
        manager.clear_cache()
        assert await manager.get_access_token() == "rotated-elsewhere"


# ── Configuration ──────────────────────────────────────────────────────────


class TestConfiguration:
    async def test_is_configured_true_with_all_parts(self, http_client, clock):
        manager = _manager(MemoryTokenStore(_credentials()), http_client, clock)

        assert await manager.is_configured() is True

    async def test_is_configured_false_without_organization(self, http_client, endpoint, clock):
        values = _credentials()
        del values[ORGANIZATION_ID]
        manager = _manager(MemoryTokenStore(values), http_client, clock)

        assert await manager.is_configured() is False

    async def test_is_configured_false_without_token(self, http_client, endpoint, clock):
        values = _credentials()
        del values[REFRESH_TOKEN]
        manager = _manager(MemoryTokenStore(values), http_client, clock)

        assert await manager.is_configured() is False

    async def test_store_config_writes_only_provided_fields(self, http_client, clock):
        store = MemoryTokenStore({CLIENT_SECRET: "old-secret"})
        manager = _manager(store, http_client, clock)

        await manager.store_config(client_id="new-client", organization_id="org-9")
        config = await manager.get_config()

        assert config.client_id == "new-client"
        assert config.client_secret == "old-secret"
        assert config.organization_id == "org-9"

    async def test_seed_skips_keys_already_stored(self, http_client, clock):
        store = MemoryTokenStore({CLIENT_ID: "from-db"})
        manager = _manager(store, http_client, clock)

        written = await manager.seed({CLIENT_ID: "from-env", CLIENT_SECRET: "s", REFRESH_TOKEN: ""})

        assert written == [CLIENT_SECRET]
        assert (await store.get(CLIENT_ID)).value == "from-db"
        assert await store.get(REFRESH_TOKEN) is None


# ── Authorization Code Grant ───────────────────────────────────────────────


class TestAuthorizationCode:
    async def test_authorization_url_carries_client_and_scope(self, http_client, clock):
        manager = _manager(MemoryTokenStore(_credentials()), http_client, clock)

        url = await manager.authorization_url()
        parsed = urlparse(url)
        query = parse_qs(parsed.query)

        assert f"{parsed.scheme}://{parsed.netloc}{parsed.path}" == f"{ACCOUNTS_URL}/oauth/v2/auth"
        assert query["client_id"] == ["client-1"]
        assert query["access_type"] == ["offline"]
        assert "ZohoInventory.FullAccess.all" in query["scope"][0]

    async def test_authorization_url_requires_client_id(self, http_client, clock):
        manager = _manager(MemoryTokenStore(), http_client, clock)

        with pytest.raises(ConfigurationMissingError):
            await manager.authorization_url()

    async def test_exchange_code_persists_both_tokens(self, http_client, endpoint, clock):
        endpoint.responses.append(
            httpx.Response(
                200,
                json={"access_token": "granted", "refresh_token": "granted-refresh", "expires_in": 3600},
            )
        )
        store = MemoryTokenStore({CLIENT_ID: "client-1", CLIENT_SECRET: "secret-1"})
        manager = _manager(store, http_client, clock)

        record = await manager.exchange_code("1000.abc")

        assert record.access_token == "granted"
        assert endpoint.requests[0]["grant_type"] == "authorization_code"
        assert endpoint.requests[0]["code"] == "1000.abc"
        assert (await store.get(REFRESH_TOKEN)).value == "granted-refresh"
        assert await manager.get_access_token() == "granted"

    async def test_exchange_code_requires_credentials(self, http_client, endpoint, clock):
        manager = _manager(MemoryTokenStore({CLIENT_ID: "client-1"}), http_client, clock)

        with pytest.raises(ConfigurationMissingError):
            await manager.exchange_code("1000.abc")
        assert endpoint.requests == []
