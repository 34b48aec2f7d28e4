"""
Tests for signed shop calls, the one-shot auth recovery and transport error mapping.
"""

import httpx
import pytest

from shopads.shopee_client import (
    RemoteAuthFailure,
    RemoteTransientFailure,
    RemoteValidationFailure,
    classify_response,
)
from shopads.services.token_service import REFRESH_PATH
from fakes import (
    AUTH_REJECTED,
    AUTO_PATH,
    OK,
    FakeCredentialStore,
    FakeShopee,
    build_stack,
    make_settings,
    make_token,
    target_query,
)


@pytest.fixture
def anyio_backend():
    return "asyncio"


BODY = {"campaign_id": 777, "edit_action": "change_budget", "budget": 150.0}


@pytest.mark.anyio
async def test_call_signs_with_shop_token():
    shopee = FakeShopee()
    _, gateway = build_stack(make_settings(), shopee, FakeCredentialStore(make_token(5)))

    result = await gateway.call(5, AUTO_PATH, body=BODY, reference_key="reference_id")

    assert result.attempts == 1
    assert result.refreshed is False
    [request] = shopee.calls_to(AUTO_PATH)
    query = target_query(request)
    assert query["access_token"] == "access-1"
    assert query["shop_id"] == "5"
    assert query["partner_id"] == "2001234"
    assert len(query["sign"]) == 64
    assert shopee.bodies_to(AUTO_PATH)[0]["reference_id"].startswith("budget-")


@pytest.mark.anyio
async def test_auth_failure_refreshes_and_retries_once():
    shopee = FakeShopee().script(AUTO_PATH, (200, AUTH_REJECTED), (200, OK))
    store = FakeCredentialStore(make_token(5))
    _, gateway = build_stack(make_settings(), shopee, store)

    result = await gateway.call(5, AUTO_PATH, body=BODY, reference_key="reference_id")

    assert result.attempts == 2
    assert result.refreshed is True
    assert len(shopee.calls_to(REFRESH_PATH)) == 1
    first, second = shopee.calls_to(AUTO_PATH)
    assert target_query(first)["access_token"] == "access-1"
    assert target_query(second)["access_token"] == "access-new-1"
    first_body, second_body = shopee.bodies_to(AUTO_PATH)
    assert first_body["reference_id"] != second_body["reference_id"]
    assert store.tokens[5].access_secret == "access-new-1"


@pytest.mark.anyio
async def test_second_auth_failure_is_final():
    shopee = FakeShopee().script(AUTO_PATH, (200, AUTH_REJECTED), (200, AUTH_REJECTED), (200, OK))
    _, gateway = build_stack(make_settings(), shopee, FakeCredentialStore(make_token(5)))

    with pytest.raises(RemoteAuthFailure) as exc_info:
        await gateway.call(5, AUTO_PATH, body=BODY)

    assert exc_info.value.retryable is False
    assert len(shopee.calls_to(AUTO_PATH)) == 2
    assert len(shopee.calls_to(REFRESH_PATH)) == 1


@pytest.mark.anyio
async def test_validation_failure_is_not_retried():
    shopee = FakeShopee().script(AUTO_PATH, (200, {"error": "error_param", "message": "budget too low"}))
    _, gateway = build_stack(make_settings(), shopee, FakeCredentialStore(make_token(5)))

    with pytest.raises(RemoteValidationFailure, match="budget too low"):
        await gateway.call(5, AUTO_PATH, body=BODY)
    assert len(shopee.calls_to(AUTO_PATH)) == 1
    assert shopee.calls_to(REFRESH_PATH) == []


@pytest.mark.anyio
async def test_calls_go_through_proxy_when_configured():
    shopee = FakeShopee()
    settings = make_settings(shopee_proxy_url="https://proxy.example.com/forward/")
    _, gateway = build_stack(settings, shopee, FakeCredentialStore(make_token(5)))

    await gateway.call(5, AUTO_PATH, body=BODY)

    [request] = shopee.requests
    assert request.url.host == "proxy.example.com"
    assert request.url.path == "/forward"
    target = httpx.URL(request.url.params["url"])
    assert target.host == "partner.shopeemobile.com"
    assert target.path == AUTO_PATH
    assert "sign" in target.params


@pytest.mark.anyio
async def test_timeout_is_transient():
    shopee = FakeShopee().script(AUTO_PATH, httpx.ReadTimeout("timed out"))
    _, gateway = build_stack(make_settings(), shopee, FakeCredentialStore(make_token(5)))

    with pytest.raises(RemoteTransientFailure, match="Timed out"):
        await gateway.call(5, AUTO_PATH, body=BODY)
    assert len(shopee.calls_to(AUTO_PATH)) == 1


@pytest.mark.anyio
async def test_non_json_body_is_transient():
    shopee = FakeShopee().script(AUTO_PATH, httpx.Response(200, text="<html>bad gateway</html>"))
    _, gateway = build_stack(make_settings(), shopee, FakeCredentialStore(make_token(5)))

    with pytest.raises(RemoteTransientFailure):
        await gateway.call(5, AUTO_PATH, body=BODY)


@pytest.mark.parametrize("status,payload,expected", [
    (200, {"error": "error_auth", "message": ""}, RemoteAuthFailure),
    (200, {"error": "error_unknown", "message": "Invalid access_token"}, RemoteAuthFailure),
    (200, {"error": "invalid_access_token"}, RemoteAuthFailure),
    (403, {}, RemoteAuthFailure),
    (200, {"error": "error_param", "message": "campaign not found"}, RemoteValidationFailure),
    (400, {}, RemoteValidationFailure),
    (429, {}, RemoteTransientFailure),
    (502, {}, RemoteTransientFailure),
    (200, {"error": "error_server"}, RemoteTransientFailure),
])
def test_classify_response(status, payload, expected):
    assert isinstance(classify_response(status, payload), expected)


def test_classify_success():
    assert classify_response(200, OK) is None
