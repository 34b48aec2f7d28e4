"""
In-memory stand-ins for the database-backed stores, and a scripted Shopee
backed by httpx.MockTransport.
"""

import json
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional
import httpx

from shopads.config import Settings
from shopads.domain import AdType, PartnerCredentials, ScheduledRule, Token
from shopads.shopee_client import ShopeeClient
from shopads.signing import SigningService
from shopads.services.budget_dispatcher import BudgetAdjustmentDispatcher
from shopads.services.credential_store import PartnerAccountNotFound
from shopads.services.gateway import RemoteCallGateway
from shopads.services.schedule_matcher import ScheduleMatcher
from shopads.services.token_service import REFRESH_PATH, TokenRefreshCoordinator

PARTNER_ID = 2001234
PARTNER_KEY = "test-partner-key"
CREDS = PartnerCredentials(PARTNER_ID, PARTNER_KEY)

# Monday 2026-03-02 09:00 in Asia/Ho_Chi_Minh (UTC+7)
NOW = datetime(2026, 3, 2, 2, 0, tzinfo=timezone.utc)

AUTO_PATH = "/api/v2/ads/edit_auto_product_ads"
MANUAL_PATH = "/api/v2/ads/edit_manual_product_ads"

OK = {"error": "", "message": "", "request_id": "req-ok", "response": {}}
AUTH_REJECTED = {"error": "error_auth", "message": "Invalid access_token.", "request_id": "req-auth"}


def make_settings(**overrides) -> Settings:
    values = dict(
        database_url="postgresql+asyncpg://localhost/test",
        shopee_base_url="https://partner.shopeemobile.com",
        shopee_partner_id=PARTNER_ID,
        shopee_partner_key=PARTNER_KEY,
        shop_dispatch_delay_seconds=0,
        max_concurrent_shops=4,
    )
    values.update(overrides)
    return Settings(**values)


def make_token(shop_id: int, access="access-1", refresh="refresh-1", age=timedelta(hours=1), ttl=14400) -> Token:
    return Token(
        principal_id=shop_id,
        access_secret=access,
        refresh_secret=refresh,
        issued_at=NOW - age,
        ttl_seconds=ttl,
    )


def make_rule(shop_id: int, campaign_id: int, budget: float = 100.0, hour_start: int = 8, hour_end: int = 20,
              kind: str = AdType.AUTO, days=(), active: bool = True) -> ScheduledRule:
    return ScheduledRule(
        rule_id=uuid.uuid4(),
        principal_id=shop_id,
        target_id=campaign_id,
        kind=kind,
        hour_start=hour_start,
        hour_end=hour_end,
        value=budget,
        days_of_week=frozenset(days),
        active=active,
    )


class FakeCredentialStore:
    def __init__(self, *tokens: Token):
        self.tokens = {t.principal_id: t for t in tokens}
        self.upserts: list[Token] = []

    async def get(self, principal_id: int) -> Optional[Token]:
        return self.tokens.get(principal_id)

    async def upsert(self, token: Token) -> Token:
        self.tokens[token.principal_id] = token
        self.upserts.append(token)
        return token


class FakeResolver:
    def __init__(self, credentials: PartnerCredentials = CREDS, accounts: Optional[dict] = None):
        self.credentials = credentials
        self.accounts = accounts or {}

    async def resolve(self, principal_id) -> PartnerCredentials:
        return self.credentials

    async def resolve_account(self, account_id) -> PartnerCredentials:
        if account_id not in self.accounts:
            raise PartnerAccountNotFound(account_id)
        return self.accounts[account_id]


class FakeShops:
    def __init__(self):
        self.links: dict[int, Optional[uuid.UUID]] = {}

    async def link(self, shop_id: int, partner_account_id=None) -> None:
        if partner_account_id is not None or shop_id not in self.links:
            self.links[shop_id] = partner_account_id


class FakeRuleStore:
    def __init__(self, *rules: ScheduledRule, error: Optional[Exception] = None):
        self.rules = list(rules)
        self.error = error

    async def list_active(self) -> list[ScheduledRule]:
        if self.error:
            raise self.error
        return [r for r in self.rules if r.active]


class FakeAuditLog:
    def __init__(self, fail: bool = False):
        self.records = []
        self.fail = fail

    async def append(self, record) -> None:
        if self.fail:
            raise RuntimeError("budget log table unavailable")
        self.records.append(record)


class FakeLeases:
    def __init__(self, denied=()):
        self.denied = set(denied)
        self.held: dict[int, str] = {}
        self.released: list[int] = []

    async def acquire(self, shop_id: int, holder: str) -> bool:
        if shop_id in self.denied:
            return False
        self.held[shop_id] = holder
        return True

    async def release(self, shop_id: int, holder: str) -> None:
        if self.held.get(shop_id) == holder:
            del self.held[shop_id]
        self.released.append(shop_id)


class FakeShopee:
    """
    Scripted Shopee. Each path has a queue of responses; once it is empty the
    path answers with ``default``. A response is ``(status, body)``, a raw
    ``httpx.Response``, or an exception to raise.
    """

    def __init__(self):
        self.scripts: dict[str, list] = {}
        self.requests: list[httpx.Request] = []
        self.refreshes = 0

    def script(self, path: str, *responses) -> "FakeShopee":
        self.scripts.setdefault(path, []).extend(responses)
        return self

    def calls_to(self, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if _target_path(r) == path]

    def bodies_to(self, path: str) -> list[dict]:
        return [json.loads(r.content) for r in self.calls_to(path)]

    def default(self, path: str):
        if path == REFRESH_PATH:
            self.refreshes += 1
            return 200, {
                "access_token": f"access-new-{self.refreshes}",
                "refresh_token": f"refresh-new-{self.refreshes}",
                "expire_in": 14400,
                "error": "",
                "message": "",
                "request_id": "req-refresh",
            }
        return 200, OK

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = _target_path(request)
        queue = self.scripts.get(path) or []
        response = queue.pop(0) if queue else self.default(path)
        if isinstance(response, Exception):
            raise response
        if isinstance(response, httpx.Response):
            return response
        status, body = response
        return httpx.Response(status, json=body)

    def http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


def _target_path(request: httpx.Request) -> str:
    """Path of the Shopee URL, unwrapping the forwarding proxy if one is used."""
    target = request.url.params.get("url")
    if target:
        return httpx.URL(target).path
    return request.url.path


def target_query(request: httpx.Request) -> dict:
    target = request.url.params.get("url")
    url = httpx.URL(target) if target else request.url
    return dict(url.params)


def build_stack(settings: Settings, shopee: FakeShopee, store: FakeCredentialStore, http_client=None):
    """Token coordinator + gateway wired to fakes, with a clock frozen at NOW."""
    client = ShopeeClient(settings, http_client=http_client or shopee.http_client())
    signer = SigningService()
    resolver = FakeResolver()
    tokens = TokenRefreshCoordinator(settings, store, resolver, client, signer, clock=lambda: NOW)
    gateway = RemoteCallGateway(tokens, resolver, client, signer)
    return tokens, gateway


def build_dispatcher(settings: Settings, shopee: FakeShopee, store: FakeCredentialStore, rules: FakeRuleStore,
                     audit_log: FakeAuditLog, leases=None) -> BudgetAdjustmentDispatcher:
    _, gateway = build_stack(settings, shopee, store)
    return BudgetAdjustmentDispatcher(
        settings,
        rules=rules,
        matcher=ScheduleMatcher(settings),
        gateway=gateway,
        audit_log=audit_log,
        leases=leases,
        clock=lambda: NOW,
    )
