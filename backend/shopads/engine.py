"""
Composition root. Builds the token engine and the budget scheduler from one
Settings value; nothing below this module reads the environment.
"""

from dataclasses import dataclass
from functools import lru_cache
from typing import Optional
import httpx
from sqlalchemy.ext.asyncio import async_sessionmaker

from shopads.config import Settings, get_settings
from shopads.crypto import SecretBox
from shopads.shopee_client import ShopeeClient
from shopads.signing import SigningService
from shopads.services.budget_dispatcher import BudgetAdjustmentDispatcher
from shopads.services.credential_store import CredentialStore, PartnerCredentialResolver, ShopRegistry
from shopads.services.gateway import RemoteCallGateway
from shopads.services.schedule_matcher import ScheduleMatcher
from shopads.services.schedule_store import AuditLogStore, RuleStore, ShopLeaseStore
from shopads.services.shop_auth import ShopAuthorizer
from shopads.services.token_service import TokenRefreshCoordinator


@dataclass
class Engine:
    settings: Settings
    client: ShopeeClient
    tokens: TokenRefreshCoordinator
    gateway: RemoteCallGateway
    matcher: ScheduleMatcher
    dispatcher: BudgetAdjustmentDispatcher
    authorizer: ShopAuthorizer


def build_engine(
    settings: Settings,
    session_factory: Optional[async_sessionmaker] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> Engine:
    if session_factory is None:
        from shopads.database import create_db_engine, create_session_factory
        session_factory = create_session_factory(create_db_engine(settings))

    secrets = SecretBox(settings)
    client = ShopeeClient(settings, http_client=http_client)
    signer = SigningService()
    store = CredentialStore(session_factory, secrets)
    resolver = PartnerCredentialResolver(settings, session_factory, secrets)
    tokens = TokenRefreshCoordinator(settings, store, resolver, client, signer)
    gateway = RemoteCallGateway(tokens, resolver, client, signer)
    matcher = ScheduleMatcher(settings)
    dispatcher = BudgetAdjustmentDispatcher(
        settings,
        rules=RuleStore(session_factory),
        matcher=matcher,
        gateway=gateway,
        audit_log=AuditLogStore(session_factory),
        leases=ShopLeaseStore(session_factory, settings.shop_lease_seconds),
    )
    authorizer = ShopAuthorizer(tokens, resolver, client, signer, shops=ShopRegistry(session_factory))
    return Engine(settings, client, tokens, gateway, matcher, dispatcher, authorizer)


@lru_cache
def get_engine() -> Engine:
    """Process-wide engine; shared so per-shop refresh locks are shared too."""
    from shopads.database import async_session
    return build_engine(get_settings(), async_session)
