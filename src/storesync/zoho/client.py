"""Authenticated HTTP base for the Zoho REST APIs.

ZohoAPIClient wraps an httpx.AsyncClient with:
- Bearer resolution through TokenManager (AuthExpiredError, no request, when
  no usable token exists)
- A single forced refresh + replay when Zoho answers 401
- tenacity retry with exponential backoff for 429, 5xx, and transport errors
- ExternalAPIError for every other non-2xx response
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from src.storesync.core.monitoring import zoho_requests_total
from src.storesync.zoho.errors import (
    AuthExpiredError,
    ExternalAPIError,
    RateLimitedError,
    TransientAPIError,
)
from src.storesync.zoho.tokens import TokenManager

logger = structlog.get_logger(__name__)

RETRYABLE_ERRORS = (RateLimitedError, TransientAPIError, httpx.TransportError)


class ZohoAPIClient:
    """Base client for one Zoho API family (Inventory, CRM).

    Args:
        http_client: Shared httpx.AsyncClient (carries the request timeout).
        token_manager: Supplies and refreshes the OAuth bearer token.
        base_url: API base, e.g. https://www.zohoapis.in/inventory/v1.
        max_attempts: Total attempts for retryable failures.
        retry_wait: tenacity wait strategy between attempts.
    """

    api_name = "zoho"

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        token_manager: TokenManager,
        base_url: str,
        max_attempts: int = 3,
        retry_wait: wait_base | None = None,
    ) -> None:
        self._http = http_client
        self._tokens = token_manager
        self._base_url = base_url.rstrip("/")
        self._max_attempts = max(1, max_attempts)
        self._retry_wait = retry_wait or wait_exponential(multiplier=1, min=1, max=10)

    def _url(self, path: str) -> str:
        return f"{self._base_url}/{path.lstrip('/')}"

    async def _default_params(self) -> dict[str, Any]:
        """Query parameters added to every request (e.g. organization_id)."""
        return {}

    async def request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Send an authenticated request and return the decoded JSON body.

        Raises:
            AuthExpiredError: If no usable token exists (no request is sent).
            ExternalAPIError: On a non-2xx response after retries.
            httpx.TransportError: On network failure after retries.
        """
        token = await self._tokens.get_access_token()
        if not token:
            raise AuthExpiredError()

        query = {**(await self._default_params()), **(params or {})}
        url = self._url(path)

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._max_attempts),
            wait=self._retry_wait,
            retry=retry_if_exception_type(RETRYABLE_ERRORS),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                response = await self._send(method, url, token, query, json)
                if response.status_code == 401:
                    logger.info("zoho_api.unauthorized_refreshing", api=self.api_name, url=url)
                    token = await self._tokens.force_refresh(token)
                    if not token:
                        raise AuthExpiredError()
                    response = await self._send(method, url, token, query, json)
                return self._decode(response, url)
        raise AssertionError("unreachable")  # pragma: no cover

    async def _send(
        self,
        method: str,
        url: str,
        token: str,
        params: dict[str, Any],
        json: dict[str, Any] | None,
    ) -> httpx.Response:
        headers = {"Authorization": f"Zoho-oauthtoken {token}"}
        logger.debug("zoho_api.request", api=self.api_name, method=method, url=url)
        try:
            response = await self._http.request(
                method, url, params=params, json=json, headers=headers
            )
        except httpx.TransportError as exc:
            zoho_requests_total.labels(api=self.api_name, method=method, status="transport_error").inc()
            logger.warning("zoho_api.transport_error", api=self.api_name, url=url, error=str(exc))
            raise
        zoho_requests_total.labels(
            api=self.api_name, method=method, status=str(response.status_code)
        ).inc()
        return response

    def _decode(self, response: httpx.Response, url: str) -> dict[str, Any]:
        status_code = response.status_code
        if status_code == 429:
            logger.warning("zoho_api.rate_limited", api=self.api_name, url=url)
            raise RateLimitedError(status_code, response.text, url)
        if status_code >= 500:
            logger.error(
                "zoho_api.server_error",
                api=self.api_name,
                url=url,
                status_code=status_code,
                response=response.text[:500],
            )
            raise TransientAPIError(status_code, response.text, url)
        if status_code >= 400:
            logger.error(
                "zoho_api.http_error",
                api=self.api_name,
                url=url,
                status_code=status_code,
                response=response.text[:500],
            )
            raise ExternalAPIError(status_code, response.text, url)
        if status_code == 204 or not response.content:
            return {}
        body = response.json()
        return body if isinstance(body, dict) else {"data": body}
