"""
Shopee Open Platform HTTP transport.
Sends one request (directly or through the forwarding proxy) and turns every
failure into a tagged ShopeeError subclass. Callers never inspect error strings.
"""

import logging
from typing import Any, Optional
import httpx

from shopads.config import Settings

logger = logging.getLogger(__name__)

# Shopee reports failures in the JSON body: {"error": "<code>", "message": "..."}
AUTH_ERROR_CODES = {"error_auth", "invalid_access_token", "invalid_acceess_token"}
AUTH_MESSAGE_MARKERS = ("invalid access_token", "invalid access token")
TRANSIENT_ERROR_CODES = {"error_server", "error_busy", "error_inner", "error_network", "error_system_busy"}


class ShopeeError(Exception):
    """Base class for failed Shopee calls."""

    retryable = False

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        request_id: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.request_id = request_id


class RemoteAuthFailure(ShopeeError):
    """The access token was rejected. Recoverable by one refresh + retry."""

    retryable = True


class RemoteValidationFailure(ShopeeError):
    """Missing or invalid parameters. Never retried."""


class RemoteTransientFailure(ShopeeError):
    """Network error, timeout, throttling or 5xx."""


def classify_response(status_code: int, payload: Any) -> Optional[ShopeeError]:
    """Map a Shopee response to an error, or None when the call succeeded."""
    body = payload if isinstance(payload, dict) else {}
    code = body.get("error") or None
    message = body.get("message") or ""
    request_id = body.get("request_id")

    if code:
        detail = message or code
        lowered = message.lower()
        if code in AUTH_ERROR_CODES or any(m in lowered for m in AUTH_MESSAGE_MARKERS):
            return RemoteAuthFailure(detail, code, status_code, request_id)
        if code in TRANSIENT_ERROR_CODES:
            return RemoteTransientFailure(detail, code, status_code, request_id)
        return RemoteValidationFailure(detail, code, status_code, request_id)

    if status_code in (401, 403):
        return RemoteAuthFailure(f"HTTP {status_code}", None, status_code, request_id)
    if status_code == 429 or status_code >= 500:
        return RemoteTransientFailure(f"HTTP {status_code}", None, status_code, request_id)
    if status_code >= 400:
        return RemoteValidationFailure(f"HTTP {status_code}", None, status_code, request_id)
    return None


class ShopeeClient:
    """
    Thin async transport. One instance per process; pass an httpx.AsyncClient
    to share a connection pool (tests pass one backed by httpx.MockTransport).
    """

    def __init__(self, settings: Settings, http_client: Optional[httpx.AsyncClient] = None):
        self.base_url = settings.shopee_base_url
        self.proxy_url = settings.shopee_proxy_url
        self.timeout = settings.request_timeout_seconds
        self._http_client = http_client

    def target_url(self, path: str, query: Optional[dict] = None) -> httpx.URL:
        return httpx.URL(f"{self.base_url}{path}", params=query or {})

    async def request(
        self,
        method: str,
        path: str,
        query: Optional[dict] = None,
        body: Optional[dict] = None,
    ) -> dict:
        """Send one request and return the decoded JSON body, or raise a ShopeeError."""
        target = self.target_url(path, query)
        if self.proxy_url:
            url, params = self.proxy_url, {"url": str(target)}
            logger.debug(f"Shopee {method} {path} via proxy")
        else:
            url, params = str(target), None

        try:
            if self._http_client is not None:
                response = await self._send(self._http_client, method, url, params, body)
            else:
                async with httpx.AsyncClient() as client:
                    response = await self._send(client, method, url, params, body)
        except httpx.TimeoutException as e:
            raise RemoteTransientFailure(f"Timed out after {self.timeout}s calling {path}") from e
        except httpx.HTTPError as e:
            raise RemoteTransientFailure(f"Network error calling {path}: {e}") from e

        try:
            payload = response.json()
        except ValueError:
            error = classify_response(response.status_code, None)
            if error is None:
                error = RemoteTransientFailure(
                    f"Non-JSON response from {path}", status_code=response.status_code
                )
            raise error

        error = classify_response(response.status_code, payload)
        if error is not None:
            logger.info(f"Shopee {path} failed: {type(error).__name__} code={error.code} request_id={error.request_id}")
            raise error
        return payload

    async def _send(
        self,
        client: httpx.AsyncClient,
        method: str,
        url: str,
        params: Optional[dict],
        body: Optional[dict],
    ) -> httpx.Response:
        return await client.request(
            method,
            url,
            params=params,
            json=body if method.upper() != "GET" else None,
            headers={"Content-Type": "application/json"},
            timeout=self.timeout,
        )
