"""
Remote Call Gateway: the one place that signs shop-level Shopee calls and
recovers from a rejected token. Every call site goes through ``call``.
"""

import logging
import secrets
import time
from dataclasses import dataclass
from typing import Optional

from shopads.domain import Token
from shopads.shopee_client import RemoteAuthFailure, ShopeeClient
from shopads.signing import SigningService
from shopads.services.token_service import TokenRefreshCoordinator

logger = logging.getLogger(__name__)


def generate_reference_id(prefix: str = "budget") -> str:
    """Idempotency reference; a new one is generated for every attempt."""
    return f"{prefix}-{int(time.time() * 1000)}-{secrets.token_hex(4)}"


@dataclass
class RemoteResult:
    payload: dict
    attempts: int
    refreshed: bool = False

    @property
    def response(self) -> dict:
        return self.payload.get("response") or {}


class RemoteCallGateway:
    def __init__(
        self,
        coordinator: TokenRefreshCoordinator,
        resolver,
        client: ShopeeClient,
        signer: SigningService,
    ):
        self.coordinator = coordinator
        self.resolver = resolver
        self.client = client
        self.signer = signer

    async def call(
        self,
        principal_id: int,
        path: str,
        method: str = "POST",
        body: Optional[dict] = None,
        query: Optional[dict] = None,
        reference_key: Optional[str] = None,
    ) -> RemoteResult:
        """
        Issue a signed shop-level call. If Shopee rejects the token, refresh once
        and retry once; the retry's outcome is final.
        """
        token = await self.coordinator.obtain(principal_id)
        try:
            payload = await self._send(token, path, method, body, query, reference_key)
            return RemoteResult(payload=payload, attempts=1)
        except RemoteAuthFailure as first:
            logger.warning(f"Auth failure on {path} for shop {principal_id} ({first.message}), refreshing and retrying once")
            self.coordinator.mark_invalid(token)

        token = await self.coordinator.force_refresh(principal_id, token.refresh_secret)
        try:
            payload = await self._send(token, path, method, body, query, reference_key)
        except RemoteAuthFailure as second:
            second.retryable = False
            logger.error(f"Auth failure on {path} for shop {principal_id} persisted after refresh")
            raise
        return RemoteResult(payload=payload, attempts=2, refreshed=True)

    async def _send(
        self,
        token: Token,
        path: str,
        method: str,
        body: Optional[dict],
        query: Optional[dict],
        reference_key: Optional[str],
    ) -> dict:
        credentials = await self.resolver.resolve(token.principal_id)
        params = dict(query or {})
        params.update(self.signer.signed_query(
            path,
            int(time.time()),
            credentials,
            principal_id=token.principal_id,
            access_secret=token.access_secret,
        ))
        payload = dict(body) if body is not None else None
        if reference_key:
            payload = payload or {}
            payload[reference_key] = generate_reference_id()
        return await self.client.request(method, path, query=params, body=payload)
