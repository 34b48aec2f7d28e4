"""
Request signing for the Shopee Open Platform.

base string = partner_id + path + timestamp [+ access_token] [+ shop_id]
sign        = HMAC-SHA256(partner_key, base string), lowercase hex

The field order and omission rule must match Shopee byte for byte. A wrong
signature is reported by Shopee exactly like an expired token.
"""

import hashlib
import hmac
import logging
from typing import Optional

from shopads.domain import PartnerCredentials

logger = logging.getLogger(__name__)


class SignatureInputError(ValueError):
    """Signing inputs that can never produce a verifiable signature."""


def build_base_string(
    partner_id: int,
    path: str,
    timestamp: int,
    access_secret: Optional[str] = None,
    principal_id: Optional[int] = None,
) -> str:
    base = f"{partner_id}{path}{timestamp}"
    if access_secret:
        base += access_secret
    if principal_id:
        base += str(principal_id)
    return base


class SigningService:
    def sign(
        self,
        principal_id: Optional[int],
        path: str,
        timestamp: int,
        access_secret: Optional[str],
        credentials: PartnerCredentials,
    ) -> str:
        if not path or not path.startswith("/"):
            raise SignatureInputError(f"Invalid API path: {path!r}")
        if timestamp < 0:
            raise SignatureInputError(f"Invalid timestamp: {timestamp}")
        if not credentials.partner_id or not credentials.partner_key:
            raise SignatureInputError("Partner id and key are required to sign requests")

        base = build_base_string(credentials.partner_id, path, timestamp, access_secret, principal_id)
        return hmac.new(
            credentials.partner_key.encode("utf-8"),
            base.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()

    def signed_query(
        self,
        path: str,
        timestamp: int,
        credentials: PartnerCredentials,
        principal_id: Optional[int] = None,
        access_secret: Optional[str] = None,
    ) -> dict[str, str]:
        """Common query parameters carried by every Shopee call."""
        params = {
            "partner_id": str(credentials.partner_id),
            "timestamp": str(timestamp),
        }
        if access_secret:
            params["access_token"] = access_secret
        if principal_id:
            params["shop_id"] = str(principal_id)
        params["sign"] = self.sign(principal_id, path, timestamp, access_secret, credentials)
        return params
