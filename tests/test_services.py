"""Tests for service wiring without a database."""

from __future__ import annotations

import httpx
import pytest

from src.storesync.config import Settings
from src.storesync.services import build_services, seed_credentials
from src.storesync.zoho.token_store import CLIENT_ID, ORGANIZATION_ID, REFRESH_TOKEN, MemoryTokenStore


@pytest.fixture
def settings() -> Settings:
    return Settings(
        DATABASE_URL="",
        ZOHO_CLIENT_ID="env-client",
        ZOHO_ORGANIZATION_ID="env-org",
        ZOHO_REFRESH_TOKEN="env-refresh",
        SYNC_BATCH_SIZE=25,
    )


class TestBuildServices:
    async def test_without_database_store_is_unconfigured(self, settings):
        async with httpx.AsyncClient() as http_client:
            services = build_services(settings, http_client)

            assert services.orchestrator.is_store_configured() is False
            result = await services.orchestrator.sync_products_to_external()
            assert result.errors == ["store configuration missing"]

    async def test_seed_writes_env_values_into_empty_rows(self, settings):
        store = MemoryTokenStore({CLIENT_ID: "stored-client"})
        async with httpx.AsyncClient() as http_client:
            services = build_services(settings, http_client, store=store)

            written = await seed_credentials(services.token_manager, settings)

        assert sorted(written) == [ORGANIZATION_ID, REFRESH_TOKEN]
        assert (await store.get(CLIENT_ID)).value == "stored-client"
        assert (await store.get(ORGANIZATION_ID)).value == "env-org"
