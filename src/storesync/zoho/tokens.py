"""Zoho OAuth2 token lifecycle -- caching, expiry detection, refresh, persistence.

State machine:
    Valid --(time passes)--> Expired --(refresh)--> Valid | Invalid

Invalid (no refresh token stored, or the refresh grant is rejected) only
recovers when an operator re-issues credentials out of band (exchange_code
or store_config + seed). After a failed grant no further refresh is
attempted until REFRESH_RETRY_AFTER has passed or new credentials arrive.

Every failure on the token path is logged and surfaced as None, never raised:
an unusable token means "integration unavailable", which the orchestrator
reports per item instead of crashing the batch.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any
from urllib.parse import urlencode

import httpx
import structlog

from src.storesync.core.monitoring import token_refresh_total
from src.storesync.zoho.errors import ConfigurationMissingError, ExternalAPIError, LocalStoreError
from src.storesync.zoho.schemas import CredentialConfig, TokenRecord
from src.storesync.zoho.token_store import (
    ACCESS_TOKEN,
    CLIENT_ID,
    CLIENT_SECRET,
    ORGANIZATION_ID,
    REFRESH_TOKEN,
    TokenStore,
)

logger = structlog.get_logger(__name__)

DEFAULT_EXPIRES_IN = 3600
DEFAULT_SCOPE = "ZohoInventory.FullAccess.all,ZohoCRM.modules.ALL,ZohoCRM.settings.ALL"
# A rejected refresh grant is not retried before this elapses
REFRESH_RETRY_AFTER = timedelta(minutes=5)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _token_prefix(token: str) -> str:
    return f"{token[:6]}..." if token else ""


class TokenManager:
    """Owns the Zoho access/refresh token pair for this process.

    The in-memory cache is only ever populated after the store write it
    mirrors has succeeded, so a reader can see a stale cache but never a
    cached token the store does not hold.

    Args:
        store: Persisted key/value store for credentials and tokens.
        http_client: httpx.AsyncClient used for the token endpoint.
        accounts_url: Zoho Accounts base URL (e.g. https://accounts.zoho.in).
        redirect_uri: OAuth redirect URI registered for the client.
        scope: OAuth scopes requested by authorization_url().
        clock: Returns the current aware datetime. Injectable for tests.
    """

    def __init__(
        self,
        store: TokenStore,
        http_client: httpx.AsyncClient,
        accounts_url: str,
        redirect_uri: str = "",
        scope: str = DEFAULT_SCOPE,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._http = http_client
        self._accounts_url = accounts_url.rstrip("/")
        self._redirect_uri = redirect_uri
        self._scope = scope
        self._clock = clock
        self._cache: TokenRecord | None = None
        self._refresh_lock = asyncio.Lock()
        self._refresh_failed_at: datetime | None = None

    @property
    def token_url(self) -> str:
        return f"{self._accounts_url}/oauth/v2/token"

    # ── Access Token ────────────────────────────────────────────────────────

    async def get_access_token(self) -> str | None:
        """Return a valid access token, refreshing once if the stored one expired.

        Returns None when no usable token can be obtained; callers treat that
        as "integration unavailable" and must not retry internally.
        """
        if self._cache is not None and self._cache.is_valid(self._clock()):
            return self._cache.access_token

        try:
            entry = await self._store.get(ACCESS_TOKEN)
        except LocalStoreError:
            logger.warning("zoho_tokens.store_unavailable")
            return None

        now = self._clock()
        if entry and entry.value and entry.expires_at and now < entry.expires_at:
            refresh = self._cache.refresh_token if self._cache else None
            self._cache = TokenRecord(
                access_token=entry.value,
                refresh_token=refresh,
                expires_at=entry.expires_at,
            )
            return entry.value

        logger.info("zoho_tokens.access_token_expired", has_stored_token=bool(entry and entry.value))
        async with self._refresh_lock:
            # Another caller may have refreshed while we waited
            if self._cache is not None and self._cache.is_valid(self._clock()):
                return self._cache.access_token
            if self._refresh_backing_off():
                return None
            return await self.refresh_token()

    async def force_refresh(self, rejected_token: str) -> str | None:
        """Refresh after Zoho rejected *rejected_token* with a 401.

        Shares the refresh lock with get_access_token, so concurrent callers
        holding the same rejected token trigger a single grant: later callers
        get the token the first one obtained.
        """
        async with self._refresh_lock:
            cache = self._cache
            if (
                cache is not None
                and cache.access_token != rejected_token
                and cache.is_valid(self._clock())
            ):
                return cache.access_token
            if self._refresh_backing_off():
                return None
            return await self.refresh_token()

    def _refresh_backing_off(self) -> bool:
        if self._refresh_failed_at is None:
            return False
        if self._clock() - self._refresh_failed_at >= REFRESH_RETRY_AFTER:
            return False
        logger.info(
            "zoho_tokens.refresh_suppressed",
            failed_at=self._refresh_failed_at.isoformat(),
        )
        return True

    async def refresh_token(self) -> str | None:
        """Exchange the stored refresh token for a new access token.

        Fails fast (None, structured warning) when the refresh token or the
        client credentials are missing. A rejected grant, an unreadable
        response or a network error also returns None, leaves the stored
        tokens untouched, and suspends automatic refreshes for
        REFRESH_RETRY_AFTER (until new credentials or tokens are stored).
        """
        try:
            entries = await self._store.get_many([REFRESH_TOKEN, CLIENT_ID, CLIENT_SECRET])
        except LocalStoreError:
            logger.warning("zoho_tokens.refresh_skipped", reason="store_unavailable")
            token_refresh_total.labels(outcome="unavailable").inc()
            return None

        refresh_token = _value(entries, REFRESH_TOKEN)
        client_id = _value(entries, CLIENT_ID)
        client_secret = _value(entries, CLIENT_SECRET)

        if not refresh_token:
            logger.warning("zoho_tokens.refresh_skipped", reason="no_refresh_token")
            token_refresh_total.labels(outcome="unavailable").inc()
            return None
        if not client_id or not client_secret:
            logger.warning("zoho_tokens.refresh_skipped", reason="missing_client_credentials")
            token_refresh_total.labels(outcome="unavailable").inc()
            return None

        try:
            data = await self._token_request(
                {
                    "grant_type": "refresh_token",
                    "client_id": client_id,
                    "client_secret": client_secret,
                    "refresh_token": refresh_token,
                }
            )
            expires_in = self._expires_in(data)
        except (httpx.HTTPError, ExternalAPIError) as exc:
            logger.error("zoho_tokens.refresh_failed", error=str(exc))
            token_refresh_total.labels(outcome="rejected").inc()
            self._refresh_failed_at = self._clock()
            return None

        access_token = data["access_token"]
        try:
            await self.store_tokens(access_token, data.get("refresh_token"), expires_in)
        except LocalStoreError:
            token_refresh_total.labels(outcome="store_failed").inc()
            self._refresh_failed_at = self._clock()
            return None

        token_refresh_total.labels(outcome="success").inc()
        logger.info("zoho_tokens.refreshed", access_token=_token_prefix(access_token))
        return access_token

    async def store_tokens(
        self,
        access_token: str,
        refresh_token: str | None = None,
        expires_in: int = DEFAULT_EXPIRES_IN,
    ) -> TokenRecord:
        """Persist a token pair, then mirror it in the cache.

        Idempotent upsert. A refresh token is only written when provided
        (Zoho does not rotate it on every refresh).

        Raises:
            LocalStoreError: If the store write fails; the cache is left unchanged.
        """
        expires_at = self._clock() + timedelta(seconds=expires_in)

        try:
            await self._store.put(ACCESS_TOKEN, access_token, expires_at=expires_at)
            if refresh_token:
                await self._store.put(REFRESH_TOKEN, refresh_token)
        except LocalStoreError:
            logger.error("zoho_tokens.store_failed")
            raise

        previous_refresh = self._cache.refresh_token if self._cache else None
        self._refresh_failed_at = None
        self._cache = TokenRecord(
            access_token=access_token,
            refresh_token=refresh_token or previous_refresh,
            expires_at=expires_at,
        )
        logger.info("zoho_tokens.stored", expires_at=expires_at.isoformat())
        return self._cache

    # ── Authorization Code Grant ────────────────────────────────────────────

    async def authorization_url(self) -> str:
        """Build the Zoho consent URL for the stored client id.

        Raises:
            ConfigurationMissingError: If no client id is stored.
        """
        config = await self.get_config()
        if not config.client_id:
            raise ConfigurationMissingError("zoho client id missing")
        params = {
            "response_type": "code",
            "client_id": config.client_id,
            "scope": self._scope,
            "redirect_uri": self._redirect_uri,
            "access_type": "offline",
            "prompt": "consent",
        }
        return f"{self._accounts_url}/oauth/v2/auth?{urlencode(params)}"

    async def exchange_code(self, code: str) -> TokenRecord:
        """Exchange an authorization code for a token pair and persist both.

        Raises:
            ConfigurationMissingError: If client credentials are not stored.
            ExternalAPIError: If Zoho rejects the code.
            httpx.HTTPError: On transport failure.
        """
        config = await self.get_config()
        if not config.client_id or not config.client_secret:
            raise ConfigurationMissingError("zoho client credentials missing")

        data = await self._token_request(
            {
                "grant_type": "authorization_code",
                "client_id": config.client_id,
                "client_secret": config.client_secret,
                "redirect_uri": self._redirect_uri,
                "code": code,
            }
        )
        record = await self.store_tokens(
            data["access_token"], data.get("refresh_token"), self._expires_in(data)
        )
        logger.info(
            "zoho_tokens.code_exchanged",
            has_refresh_token=bool(data.get("refresh_token")),
        )
        return record

    async def _token_request(self, form: dict[str, str]) -> dict[str, Any]:
        """POST a grant to the token endpoint and return the JSON body.

        Zoho answers some rejected grants with 200 + {"error": ...}, so a
        body without access_token is treated as a rejection too.
        """
        response = await self._http.post(self.token_url, data=form)
        if response.status_code >= 400:
            logger.error(
                "zoho_tokens.grant_rejected",
                grant_type=form.get("grant_type"),
                status_code=response.status_code,
                response=response.text[:300],
            )
            raise ExternalAPIError(response.status_code, response.text, self.token_url)

        try:
            data = response.json()
        except ValueError:
            logger.error(
                "zoho_tokens.grant_rejected",
                grant_type=form.get("grant_type"),
                status_code=response.status_code,
                response=response.text[:300],
            )
            raise ExternalAPIError(response.status_code, "invalid token response", self.token_url)
        if not isinstance(data, dict) or not data.get("access_token"):
            error = data.get("error") if isinstance(data, dict) else "unexpected response"
            logger.error(
                "zoho_tokens.grant_rejected",
                grant_type=form.get("grant_type"),
                status_code=response.status_code,
                error=error,
            )
            raise ExternalAPIError(response.status_code, str(error), self.token_url)
        return data

    def _expires_in(self, data: dict[str, Any]) -> int:
        """Token lifetime in seconds; a missing value means DEFAULT_EXPIRES_IN."""
        raw = data.get("expires_in") or DEFAULT_EXPIRES_IN
        try:
            expires_in = int(raw)
        except (TypeError, ValueError):
            logger.error("zoho_tokens.invalid_expiry", expires_in=str(raw)[:50])
            raise ExternalAPIError(200, f"invalid expires_in: {raw!r}", self.token_url) from None
        if expires_in <= 0:
            raise ExternalAPIError(200, f"invalid expires_in: {raw!r}", self.token_url)
        return expires_in

    # ── Credential Configuration ────────────────────────────────────────────

    async def store_config(
        self,
        client_id: str | None = None,
        client_secret: str | None = None,
        organization_id: str | None = None,
    ) -> None:
        """Persist any provided credential fields; omitted fields are untouched."""
        updates = {
            CLIENT_ID: client_id,
            CLIENT_SECRET: client_secret,
            ORGANIZATION_ID: organization_id,
        }
        for key, value in updates.items():
            if value:
                await self._store.put(key, value)
        self._refresh_failed_at = None
        logger.info(
            "zoho_tokens.config_stored",
            fields=[k for k, v in updates.items() if v],
        )

    async def get_config(self) -> CredentialConfig:
        """Load client credentials and organization id. Empty rows read as None."""
        try:
            entries = await self._store.get_many([CLIENT_ID, CLIENT_SECRET, ORGANIZATION_ID])
        except LocalStoreError:
            logger.warning("zoho_tokens.config_unavailable")
            return CredentialConfig()
        return CredentialConfig(
            client_id=_value(entries, CLIENT_ID),
            client_secret=_value(entries, CLIENT_SECRET),
            organization_id=_value(entries, ORGANIZATION_ID),
        )

    async def seed(self, values: dict[str, str]) -> list[str]:
        """Write bootstrap values for keys whose stored row is empty.

        Seeded access tokens carry no expiry and are therefore refreshed on
        first use. Returns the keys that were written.
        """
        candidates = {k: v for k, v in values.items() if v}
        if not candidates:
            return []
        existing = await self._store.get_many(candidates.keys())
        written = []
        for key, value in candidates.items():
            if _value(existing, key):
                continue
            await self._store.put(key, value)
            written.append(key)
        if written:
            self._refresh_failed_at = None
            logger.info("zoho_tokens.seeded", keys=written)
        return written

    def clear_cache(self) -> None:
        """Forget the cached token pair and any refresh back-off."""
        self._cache = None
        self._refresh_failed_at = None
        logger.info("zoho_tokens.cache_cleared")

    async def is_configured(self) -> bool:
        """True iff client id, organization id, and a usable access token all resolve."""
        config = await self.get_config()
        if not config.client_id or not config.organization_id:
            return False
        return bool(await self.get_access_token())


def _value(entries: dict[str, Any], key: str) -> str | None:
    entry = entries.get(key)
    if entry is None or not entry.value:
        return None
    return entry.value
