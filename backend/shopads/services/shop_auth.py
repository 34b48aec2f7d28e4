"""
Shop Authorization: the OAuth entry point that puts a shop's first token into
the credential store.

The seller opens the partner authorization URL, Shopee redirects back with a
one-time ``code``, and the code is exchanged for the shop's token pair.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Callable, Optional

from shopads.domain import PartnerCredentials, Token
from shopads.shopee_client import RemoteValidationFailure, ShopeeClient
from shopads.signing import SigningService
from shopads.services.token_service import TokenRefreshCoordinator

logger = logging.getLogger(__name__)

AUTH_PARTNER_PATH = "/api/v2/shop/auth_partner"
TOKEN_GET_PATH = "/api/v2/auth/token/get"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ShopAuthorizer:
    def __init__(
        self,
        tokens: TokenRefreshCoordinator,
        resolver,
        client: ShopeeClient,
        signer: SigningService,
        shops=None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.tokens = tokens
        self.resolver = resolver
        self.client = client
        self.signer = signer
        self.shops = shops
        self.clock = clock

    async def _credentials(
        self, shop_id: Optional[int], partner_account_id: Optional[uuid.UUID]
    ) -> PartnerCredentials:
        if partner_account_id is not None:
            return await self.resolver.resolve_account(partner_account_id)
        return await self.resolver.resolve(shop_id)

    async def authorization_url(
        self, redirect_uri: str, partner_account_id: Optional[uuid.UUID] = None
    ) -> dict:
        """Signed URL the seller opens to grant this partner access to their shop."""
        credentials = await self._credentials(None, partner_account_id)
        timestamp = int(self.clock().timestamp())
        query = self.signer.signed_query(AUTH_PARTNER_PATH, timestamp, credentials)
        query["redirect"] = redirect_uri
        return {
            "auth_url": str(self.client.target_url(AUTH_PARTNER_PATH, query)),
            "partner_id": credentials.partner_id,
            "timestamp": timestamp,
        }

    async def exchange_code(
        self,
        code: str,
        shop_id: Optional[int] = None,
        main_account_id: Optional[int] = None,
        partner_account_id: Optional[uuid.UUID] = None,
    ) -> Token:
        """
        Trade an authorization code for the shop's token pair and store it.
        Raises ShopeeError when Shopee refuses the code.
        """
        credentials = await self._credentials(shop_id, partner_account_id)
        now = self.clock()
        query = self.signer.signed_query(TOKEN_GET_PATH, int(now.timestamp()), credentials)
        body = {"code": code, "partner_id": credentials.partner_id}
        if shop_id:
            body["shop_id"] = shop_id
        if main_account_id:
            body["main_account_id"] = main_account_id

        payload = await self.client.request("POST", TOKEN_GET_PATH, query=query, body=body)

        access_secret = payload.get("access_token")
        refresh_secret = payload.get("refresh_token")
        ttl = payload.get("expire_in")
        if not access_secret or not refresh_secret or not ttl:
            raise RemoteValidationFailure(
                "Token response did not include an access token",
                request_id=payload.get("request_id"),
            )

        shop_list = payload.get("shop_id_list") or []
        principal_id = payload.get("shop_id") or shop_id or (shop_list[0] if shop_list else None)
        if not principal_id:
            raise RemoteValidationFailure("Token response did not name a shop", request_id=payload.get("request_id"))

        token = Token.issue(
            principal_id=int(principal_id),
            access_secret=access_secret,
            refresh_secret=refresh_secret,
            ttl_seconds=ttl,
            issued_at=now,
        )
        if self.shops is not None:
            await self.shops.link(token.principal_id, partner_account_id)
        await self.tokens.install(token)
        logger.info(f"Shop {token.principal_id} authorized with partner {credentials.partner_id}")
        return token

    async def stored_token(self, shop_id: int) -> Optional[Token]:
        return await self.tokens.store.get(shop_id)
