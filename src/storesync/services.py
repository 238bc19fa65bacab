"""Construction of the sync engine's services from Settings.

Shared by the FastAPI lifespan and the command-line sync script so both
wire TokenManager, the Zoho clients, and SyncOrchestrator the same way.
"""

from __future__ import annotations

from dataclasses import dataclass

import httpx
import structlog

from src.storesync.commerce.repository import CommerceRepository
from src.storesync.config import Settings
from src.storesync.core.database import get_session
from src.storesync.zoho.crm import ZohoCRMClient
from src.storesync.zoho.errors import LocalStoreError
from src.storesync.zoho.inventory import ZohoInventoryClient
from src.storesync.zoho.sync import SyncOrchestrator
from src.storesync.zoho.token_store import (
    ACCESS_TOKEN,
    CLIENT_ID,
    CLIENT_SECRET,
    ORGANIZATION_ID,
    REFRESH_TOKEN,
    MemoryTokenStore,
    SqlTokenStore,
    TokenStore,
)
from src.storesync.zoho.tokens import TokenManager

log = structlog.get_logger(__name__)


@dataclass
class SyncServices:
    token_manager: TokenManager
    inventory: ZohoInventoryClient
    crm: ZohoCRMClient
    orchestrator: SyncOrchestrator


def create_http_client(settings: Settings) -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=httpx.Timeout(settings.ZOHO_HTTP_TIMEOUT))


def build_services(
    settings: Settings,
    http_client: httpx.AsyncClient,
    store: TokenStore | None = None,
    repository: CommerceRepository | None = None,
) -> SyncServices:
    """Wire the sync engine.

    Without a configured database the repository stays None, so every sync
    operation answers with the missing-configuration result.
    """
    if settings.is_database_configured():
        store = store or SqlTokenStore(session_factory=get_session)
        repository = repository or CommerceRepository(session_factory=get_session)
    elif store is None:
        store = MemoryTokenStore()

    token_manager = TokenManager(
        store=store,
        http_client=http_client,
        accounts_url=settings.ZOHO_ACCOUNTS_URL,
        redirect_uri=settings.ZOHO_REDIRECT_URI,
    )
    inventory = ZohoInventoryClient(
        http_client,
        token_manager,
        settings.ZOHO_INVENTORY_API_URL,
        max_attempts=settings.ZOHO_MAX_RETRIES,
    )
    crm = ZohoCRMClient(
        http_client,
        token_manager,
        settings.ZOHO_CRM_API_URL,
        max_attempts=settings.ZOHO_MAX_RETRIES,
    )
    orchestrator = SyncOrchestrator(
        repository=repository,
        inventory=inventory,
        crm=crm,
        batch_size=settings.SYNC_BATCH_SIZE,
        batch_delay_ms=settings.SYNC_BATCH_DELAY_MS,
    )
    return SyncServices(
        token_manager=token_manager,
        inventory=inventory,
        crm=crm,
        orchestrator=orchestrator,
    )


async def seed_credentials(token_manager: TokenManager, settings: Settings) -> list[str]:
    """Write ZOHO_* bootstrap values into empty token store rows."""
    try:
        return await token_manager.seed(
            {
                CLIENT_ID: settings.ZOHO_CLIENT_ID,
                CLIENT_SECRET: settings.ZOHO_CLIENT_SECRET,
                ORGANIZATION_ID: settings.ZOHO_ORGANIZATION_ID,
                ACCESS_TOKEN: settings.ZOHO_ACCESS_TOKEN,
                REFRESH_TOKEN: settings.ZOHO_REFRESH_TOKEN,
            }
        )
    except LocalStoreError:
        log.warning("zoho_tokens.seed_failed", exc_info=True)
        return []
