"""
Credential Store: durable record of one OAuth token per shop, and resolution
of the partner signing identity a shop's calls must be signed with.

Each operation runs in its own short session so concurrent shop chains never
share an AsyncSession.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker

from shopads.config import Settings
from shopads.crypto import SecretBox
from shopads.domain import PartnerCredentials, Token
from shopads.models import PartnerAccount, Shop, ShopToken

logger = logging.getLogger(__name__)


class PartnerAccountNotFound(LookupError):
    def __init__(self, account_id):
        self.account_id = account_id
        super().__init__(f"Partner account {account_id} not found or inactive")


def _make_aware(dt: datetime) -> datetime:
    """Ensure a datetime is timezone-aware (UTC). DB may return naive datetimes."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def _naive_utc(dt: datetime) -> datetime:
    return _make_aware(dt).astimezone(timezone.utc).replace(tzinfo=None)


class CredentialStore:
    """Read/write access to ``shop_tokens``. Never deletes rows."""

    def __init__(self, session_factory: async_sessionmaker, secrets: SecretBox):
        self.session_factory = session_factory
        self.secrets = secrets

    async def get(self, principal_id: int) -> Optional[Token]:
        async with self.session_factory() as session:
            row = await session.get(ShopToken, principal_id)
            if row is None:
                return None
            return Token(
                principal_id=row.shop_id,
                access_secret=self.secrets.decrypt(row.access_token),
                refresh_secret=self.secrets.decrypt(row.refresh_token),
                issued_at=_make_aware(row.issued_at),
                ttl_seconds=row.expire_in,
            )

    async def upsert(self, token: Token) -> Token:
        """Replace the shop's token. Secrets and expiry are written in one transaction."""
        try:
            await self._write(token)
        except IntegrityError:
            # Another writer inserted the row first; overwrite it.
            logger.info(f"Token row for shop {token.principal_id} appeared concurrently, updating instead")
            await self._write(token)
        return token

    async def _write(self, token: Token) -> None:
        async with self.session_factory() as session:
            row = await session.get(ShopToken, token.principal_id)
            if row is None:
                row = ShopToken(shop_id=token.principal_id)
                session.add(row)
            row.access_token = self.secrets.encrypt(token.access_secret)
            row.refresh_token = self.secrets.encrypt(token.refresh_secret)
            row.issued_at = _naive_utc(token.issued_at)
            row.expire_in = token.ttl_seconds
            row.expires_at = _naive_utc(token.expires_at)
            await session.commit()


class PartnerCredentialResolver:
    """
    Resolves the signing identity for a shop: the shop's active partner
    account if it has one, otherwise the process-wide default.
    """

    def __init__(self, settings: Settings, session_factory: async_sessionmaker, secrets: SecretBox):
        self.default = PartnerCredentials(settings.shopee_partner_id, settings.shopee_partner_key)
        self.session_factory = session_factory
        self.secrets = secrets

    async def resolve(self, principal_id: Optional[int]) -> PartnerCredentials:
        if not principal_id:
            return self.default
        async with self.session_factory() as session:
            result = await session.execute(
                select(PartnerAccount)
                .join(Shop, Shop.partner_account_id == PartnerAccount.id)
                .where(Shop.shop_id == principal_id, PartnerAccount.is_active == True)  # noqa: E712
            )
            account = result.scalar_one_or_none()
        if account is None:
            return self.default
        logger.debug(f"Using partner {account.partner_id} for shop {principal_id}")
        return PartnerCredentials(account.partner_id, self.secrets.decrypt(account.partner_key))

    async def resolve_account(self, account_id: uuid.UUID) -> PartnerCredentials:
        """Credentials of one active partner account. Raises PartnerAccountNotFound."""
        async with self.session_factory() as session:
            account = await session.get(PartnerAccount, account_id)
        if account is None or not account.is_active:
            raise PartnerAccountNotFound(account_id)
        return PartnerCredentials(account.partner_id, self.secrets.decrypt(account.partner_key))


class ShopRegistry:
    """Keeps a ``shops`` row for every authorized shop."""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def link(self, shop_id: int, partner_account_id: Optional[uuid.UUID] = None) -> None:
        """Create the shop if needed and, when given, bind it to a partner account."""
        try:
            await self._write(shop_id, partner_account_id)
        except IntegrityError:
            await self._write(shop_id, partner_account_id)

    async def _write(self, shop_id: int, partner_account_id: Optional[uuid.UUID]) -> None:
        async with self.session_factory() as session:
            row = await session.get(Shop, shop_id)
            if row is None:
                row = Shop(shop_id=shop_id)
                session.add(row)
            if partner_account_id is not None:
                row.partner_account_id = partner_account_id
            await session.commit()
