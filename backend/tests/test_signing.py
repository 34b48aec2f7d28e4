"""
Tests for Shopee request signing.
"""

import hashlib
import hmac
import pytest

from shopads.domain import PartnerCredentials
from shopads.signing import SignatureInputError, SigningService, build_base_string

CREDS = PartnerCredentials(partner_id=2001234, partner_key="test-partner-key")


def _hmac(base: str) -> str:
    return hmac.new(b"test-partner-key", base.encode(), hashlib.sha256).hexdigest()


def test_base_string_includes_token_and_shop():
    base = build_base_string(2001234, "/api/v2/ads/edit_auto_product_ads", 1700000000, "tok", 555)
    assert base == "2001234/api/v2/ads/edit_auto_product_ads1700000000tok555"


def test_base_string_omits_empty_token_and_zero_shop():
    assert build_base_string(2001234, "/api/v2/auth/access_token/get", 1700000000, "", 0) == \
        "2001234/api/v2/auth/access_token/get1700000000"
    assert build_base_string(2001234, "/api/v2/auth/access_token/get", 1700000000) == \
        "2001234/api/v2/auth/access_token/get1700000000"


def test_sign_is_lowercase_hex_hmac_sha256():
    signer = SigningService()
    sign = signer.sign(555, "/api/v2/shop/get_shop_info", 1700000000, "tok", CREDS)
    assert sign == _hmac("2001234/api/v2/shop/get_shop_info1700000000tok555")
    assert sign == sign.lower()
    assert len(sign) == 64


def test_sign_is_deterministic():
    signer = SigningService()
    first = signer.sign(555, "/api/v2/x", 1700000000, "tok", CREDS)
    second = signer.sign(555, "/api/v2/x", 1700000000, "tok", CREDS)
    assert first == second
    assert signer.sign(555, "/api/v2/x", 1700000001, "tok", CREDS) != first


def test_signed_query_for_refresh_has_no_token_or_shop():
    query = SigningService().signed_query("/api/v2/auth/access_token/get", 1700000000, CREDS)
    assert set(query) == {"partner_id", "timestamp", "sign"}
    assert query["partner_id"] == "2001234"
    assert query["sign"] == _hmac("2001234/api/v2/auth/access_token/get1700000000")


def test_signed_query_for_shop_call():
    query = SigningService().signed_query(
        "/api/v2/ads/edit_manual_product_ads", 1700000000, CREDS, principal_id=555, access_secret="tok",
    )
    assert query["access_token"] == "tok"
    assert query["shop_id"] == "555"
    assert query["sign"] == _hmac("2001234/api/v2/ads/edit_manual_product_ads1700000000tok555")


@pytest.mark.parametrize("path", ["", "api/v2/no/leading/slash"])
def test_sign_rejects_bad_path(path):
    with pytest.raises(SignatureInputError):
        SigningService().sign(555, path, 1700000000, "tok", CREDS)


def test_sign_rejects_negative_timestamp():
    with pytest.raises(SignatureInputError):
        SigningService().sign(555, "/api/v2/x", -1, "tok", CREDS)


def test_sign_requires_partner_key():
    with pytest.raises(SignatureInputError):
        SigningService().sign(555, "/api/v2/x", 1700000000, "tok", PartnerCredentials(2001234, ""))
