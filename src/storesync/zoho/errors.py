"""Exception taxonomy for the Zoho sync engine.

Only precondition and enumeration failures are fatal to a sync call; every
other error is caught per item by the batch runner and reported in the
SyncResult.
"""

from __future__ import annotations

STORE_CONFIGURATION_MISSING = "store configuration missing"
AUTHENTICATION_UNAVAILABLE = "authentication unavailable"


class SyncError(Exception):
    """Base class for sync engine errors."""


class ConfigurationMissingError(SyncError):
    """Backing store or credentials are not configured."""

    def __init__(self, message: str = STORE_CONFIGURATION_MISSING) -> None:
        super().__init__(message)


class AuthExpiredError(SyncError):
    """No usable access token (refresh failed or no refresh token stored)."""

    def __init__(self, message: str = AUTHENTICATION_UNAVAILABLE) -> None:
        super().__init__(message)


class ExternalAPIError(SyncError):
    """Non-2xx response from a Zoho API."""

    def __init__(self, status_code: int, body: str, url: str = "") -> None:
        self.status_code = status_code
        self.body = body
        self.url = url
        super().__init__(f"Zoho API error {status_code}: {body[:300]}")


class RateLimitedError(ExternalAPIError):
    """HTTP 429 from Zoho. Retried with backoff before surfacing."""


class TransientAPIError(ExternalAPIError):
    """HTTP 5xx from Zoho. Retried with backoff before surfacing."""


class MappingError(SyncError):
    """A local entity could not be converted to the external shape."""


class LocalStoreError(SyncError):
    """Reading or writing the commerce store failed."""
