"""Token store -- persisted key/value rows for Zoho OAuth credentials and tokens.

Keys: access_token, refresh_token, client_id, client_secret, organization_id.
Each row carries an expires_at column that is only consulted for access_token.

TokenStore is the abstract interface the TokenManager depends on;
SqlTokenStore implements it over the zoho_config table and MemoryTokenStore
keeps rows in process memory.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncGenerator, Callable, Iterable
from datetime import datetime, timezone

import structlog
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.storesync.commerce.models import ZohoConfigModel
from src.storesync.zoho.errors import LocalStoreError

logger = structlog.get_logger(__name__)

ACCESS_TOKEN = "access_token"
REFRESH_TOKEN = "refresh_token"
CLIENT_ID = "client_id"
CLIENT_SECRET = "client_secret"
ORGANIZATION_ID = "organization_id"

SECRET_KEYS = frozenset({ACCESS_TOKEN, REFRESH_TOKEN, CLIENT_SECRET})


class ConfigEntry(BaseModel):
    """One stored key/value row."""

    key: str
    value: str
    expires_at: datetime | None = None


class TokenStore(ABC):
    """Abstract key/value store for credentials and tokens.

    Empty values are treated as absent by callers; implementations return
    rows as stored.
    """

    @abstractmethod
    async def get(self, key: str) -> ConfigEntry | None:
        """Fetch a single row by key."""
        ...

    @abstractmethod
    async def get_many(self, keys: Iterable[str]) -> dict[str, ConfigEntry]:
        """Fetch several rows, keyed by config key. Missing keys are omitted."""
        ...

    @abstractmethod
    async def put(self, key: str, value: str, expires_at: datetime | None = None) -> None:
        """Insert or overwrite a row (idempotent upsert)."""
        ...


class SqlTokenStore(TokenStore):
    """TokenStore backed by the zoho_config table.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    async def get(self, key: str) -> ConfigEntry | None:
        entries = await self.get_many([key])
        return entries.get(key)

    async def get_many(self, keys: Iterable[str]) -> dict[str, ConfigEntry]:
        wanted = list(keys)
        try:
            async for session in self._session_factory():
                result = await session.execute(
                    select(ZohoConfigModel).where(ZohoConfigModel.config_key.in_(wanted))
                )
                return {
                    row.config_key: ConfigEntry(
                        key=row.config_key,
                        value=row.config_value,
                        expires_at=_as_utc(row.expires_at),
                    )
                    for row in result.scalars().all()
                }
        except SQLAlchemyError as exc:
            logger.error("zoho_token_store.read_failed", keys=wanted, error=str(exc))
            raise LocalStoreError(f"token store read failed: {exc}") from exc
        return {}

    async def put(self, key: str, value: str, expires_at: datetime | None = None) -> None:
        try:
            async for session in self._session_factory():
                result = await session.execute(
                    select(ZohoConfigModel).where(ZohoConfigModel.config_key == key)
                )
                row = result.scalar_one_or_none()
                if row is None:
                    row = ZohoConfigModel(config_key=key)
                    session.add(row)
                row.config_value = value
                row.encrypted = key in SECRET_KEYS
                if key == ACCESS_TOKEN:
                    row.expires_at = expires_at
                await session.commit()
        except SQLAlchemyError as exc:
            logger.error("zoho_token_store.write_failed", key=key, error=str(exc))
            raise LocalStoreError(f"token store write failed: {exc}") from exc


def _as_utc(value: datetime | None) -> datetime | None:
    """Normalize naive datetimes from drivers without tz support to UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class MemoryTokenStore(TokenStore):
    """Process-local TokenStore, used when no database is configured.

    Rows live only as long as the process; seeded environment credentials
    are re-written on every start.
    """

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._rows: dict[str, ConfigEntry] = {
            key: ConfigEntry(key=key, value=value) for key, value in (initial or {}).items()
        }

    async def get(self, key: str) -> ConfigEntry | None:
        return self._rows.get(key)

    async def get_many(self, keys: Iterable[str]) -> dict[str, ConfigEntry]:
        return {key: self._rows[key] for key in keys if key in self._rows}

    async def put(self, key: str, value: str, expires_at: datetime | None = None) -> None:
        previous = self._rows.get(key)
        if key != ACCESS_TOKEN:
            expires_at = previous.expires_at if previous else None
        self._rows[key] = ConfigEntry(key=key, value=value, expires_at=expires_at)
