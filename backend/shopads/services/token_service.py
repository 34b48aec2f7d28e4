"""
Token Service: keeps each shop's Shopee access token usable.
Checks expiry before every call, refreshes ahead of the deadline, and performs
the forced refresh the gateway asks for after the remote rejects a token.
"""

import asyncio
import enum
import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from shopads.config import Settings
from shopads.domain import Token
from shopads.shopee_client import (
    RemoteAuthFailure,
    RemoteValidationFailure,
    ShopeeClient,
    ShopeeError,
)
from shopads.signing import SigningService

logger = logging.getLogger(__name__)

REFRESH_PATH = "/api/v2/auth/access_token/get"


class TokenState(str, enum.Enum):
    VALID = "valid"
    EXPIRING = "expiring"
    EXPIRED = "expired"
    INVALID = "invalid"  # rejected by Shopee; only known after a failed call


class TokenNotFound(Exception):
    """No stored token for the shop. The shop must be re-authorized."""

    def __init__(self, principal_id: int):
        super().__init__(f"Token not found for shop {principal_id}. Please re-authorize the shop.")
        self.principal_id = principal_id


class RefreshDenied(Exception):
    """Shopee rejected the refresh token. Terminal until the shop is re-authorized."""

    def __init__(self, principal_id: int, reason: str):
        super().__init__(f"Token refresh denied for shop {principal_id}: {reason}")
        self.principal_id = principal_id
        self.reason = reason


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def token_state(token: Token, now: datetime, buffer) -> TokenState:
    if now >= token.expires_at:
        return TokenState.EXPIRED
    if now >= token.expires_at - buffer:
        return TokenState.EXPIRING
    return TokenState.VALID


class TokenRefreshCoordinator:
    """
    Refreshes for one shop never overlap within the process: every read-maybe-refresh
    sequence runs under that shop's asyncio.Lock.
    """

    def __init__(
        self,
        settings: Settings,
        store,
        resolver,
        client: ShopeeClient,
        signer: SigningService,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.refresh_buffer = settings.refresh_buffer
        self.store = store
        self.resolver = resolver
        self.client = client
        self.signer = signer
        self.clock = clock
        self._locks: dict[int, asyncio.Lock] = {}
        self._rejected: dict[int, str] = {}  # shop_id -> access secret Shopee rejected

    def _lock_for(self, principal_id: int) -> asyncio.Lock:
        lock = self._locks.get(principal_id)
        if lock is None:
            lock = self._locks[principal_id] = asyncio.Lock()
        return lock

    def state_of(self, token: Token, now: Optional[datetime] = None) -> TokenState:
        if self._rejected.get(token.principal_id) == token.access_secret:
            return TokenState.INVALID
        return token_state(token, now or self.clock(), self.refresh_buffer)

    def mark_invalid(self, token: Token) -> None:
        logger.warning(f"Access token for shop {token.principal_id} was rejected by Shopee")
        self._rejected[token.principal_id] = token.access_secret

    async def install(self, token: Token) -> Token:
        """Store a freshly authorized token, replacing whatever the shop had."""
        async with self._lock_for(token.principal_id):
            await self.store.upsert(token)
            self._rejected.pop(token.principal_id, None)
        logger.info(f"Installed new token for shop {token.principal_id}, expires in {token.ttl_seconds}s")
        return token

    async def obtain(self, principal_id: int) -> Token:
        """
        Return a token to call with. Refreshes when expiring or expired; if the
        refresh fails the stale token is returned, since it may still be accepted.
        """
        async with self._lock_for(principal_id):
            token = await self.store.get(principal_id)
            if token is None:
                raise TokenNotFound(principal_id)

            state = self.state_of(token)
            if state == TokenState.VALID:
                return token

            logger.info(f"Token {state.value} for shop {principal_id}, refreshing...")
            try:
                return await self._refresh(token)
            except (RefreshDenied, ShopeeError) as e:
                logger.error(f"Token refresh failed for shop {principal_id}, continuing with stale token: {e}")
                return token

    async def force_refresh(self, principal_id: int, refresh_secret: str) -> Token:
        """Unconditional refresh after Shopee rejected the access token. Raises RefreshDenied."""
        async with self._lock_for(principal_id):
            current = await self.store.get(principal_id)
            if current is None:
                raise TokenNotFound(principal_id)

            if current.refresh_secret != refresh_secret and self.state_of(current) == TokenState.VALID:
                # Another caller already rotated the pair; the old refresh secret is spent.
                logger.info(f"Token for shop {principal_id} was already refreshed, reusing it")
                return current

            return await self._refresh(current)

    async def _refresh(self, token: Token) -> Token:
        principal_id = token.principal_id
        credentials = await self.resolver.resolve(principal_id)
        now = self.clock()
        query = self.signer.signed_query(REFRESH_PATH, int(now.timestamp()), credentials)
        body = {
            "refresh_token": token.refresh_secret,
            "partner_id": credentials.partner_id,
            "shop_id": principal_id,
        }

        try:
            payload = await self.client.request("POST", REFRESH_PATH, query=query, body=body)
        except (RemoteAuthFailure, RemoteValidationFailure) as e:
            raise RefreshDenied(principal_id, e.message) from e

        access_secret = payload.get("access_token")
        ttl = payload.get("expire_in")
        if not access_secret or not ttl:
            raise RefreshDenied(principal_id, "refresh response did not include a new access token")

        refreshed = Token.issue(
            principal_id=principal_id,
            access_secret=access_secret,
            # Shopee rotates the refresh token on every refresh
            refresh_secret=payload.get("refresh_token") or token.refresh_secret,
            ttl_seconds=ttl,
            issued_at=now,
        )
        await self.store.upsert(refreshed)
        self._rejected.pop(principal_id, None)
        logger.info(f"Token refreshed for shop {principal_id}, expires in {refreshed.ttl_seconds}s")
        return refreshed
