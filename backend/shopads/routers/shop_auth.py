"""
Shopee Auth Router: connects shops and inspects their stored token.

  get-auth-url      signed partner authorization URL for the seller to open
  get-token         exchange the code Shopee redirected with for a token pair
  get-stored-token  expiry details of a shop's current token (never the secrets)
  refresh-token     force a refresh of a shop's token
"""

import logging
from typing import Literal, Optional
from fastapi import APIRouter, Body, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from shopads.domain import Token
from shopads.engine import Engine, get_engine
from shopads.services.credential_store import PartnerAccountNotFound
from shopads.services.token_service import RefreshDenied, TokenNotFound
from shopads.shopee_client import RemoteTransientFailure, ShopeeError
from shopads.utils import parse_params, parse_uuid, require_shop

logger = logging.getLogger(__name__)

router = APIRouter()


class AuthRequest(BaseModel):
    model_config = ConfigDict(extra="allow")

    action: Literal["get-auth-url", "get-token", "get-stored-token", "refresh-token"]
    shop_id: Optional[int] = None
    partner_account_id: Optional[str] = None


class AuthUrlParams(BaseModel):
    redirect_uri: str = Field(min_length=1)


class TokenExchangeParams(BaseModel):
    code: str = Field(min_length=1)
    main_account_id: Optional[int] = None


def _token_to_response(token: Token, state: str) -> dict:
    return {
        "shop_id": token.principal_id,
        "issued_at": token.issued_at.isoformat(),
        "expire_in": token.ttl_seconds,
        "expires_at": token.expires_at.isoformat(),
        "state": state,
    }


def _shopee_error(e: ShopeeError) -> HTTPException:
    status = 502 if isinstance(e, RemoteTransientFailure) else 400
    return HTTPException(status_code=status, detail=e.message or "Shopee request failed")


@router.post("/shopee-auth")
async def shopee_auth(body: dict = Body(...), engine: Engine = Depends(get_engine)):
    request = parse_params(AuthRequest, body)
    params = dict(request.model_extra or {})
    account_id = parse_uuid(request.partner_account_id, "partner_account_id") if request.partner_account_id else None
    authorizer = engine.authorizer

    try:
        if request.action == "get-auth-url":
            payload = parse_params(AuthUrlParams, params)
            return {"success": True, **await authorizer.authorization_url(payload.redirect_uri, account_id)}

        if request.action == "get-token":
            payload = parse_params(TokenExchangeParams, params)
            if not request.shop_id and not payload.main_account_id:
                raise HTTPException(status_code=400, detail="shop_id or main_account_id is required")
            token = await authorizer.exchange_code(
                payload.code,
                shop_id=request.shop_id,
                main_account_id=payload.main_account_id,
                partner_account_id=account_id,
            )
            return {"success": True, "token": _token_to_response(token, engine.tokens.state_of(token).value)}

        shop_id = require_shop(request.shop_id)
        if request.action == "get-stored-token":
            token = await authorizer.stored_token(shop_id)
            if token is None:
                raise HTTPException(status_code=404, detail=f"No token stored for shop {shop_id}")
            return {"success": True, "token": _token_to_response(token, engine.tokens.state_of(token).value)}

        current = await authorizer.stored_token(shop_id)
        if current is None:
            raise TokenNotFound(shop_id)
        token = await engine.tokens.force_refresh(shop_id, current.refresh_secret)
        return {"success": True, "token": _token_to_response(token, engine.tokens.state_of(token).value)}

    except (PartnerAccountNotFound, TokenNotFound) as e:
        raise HTTPException(status_code=404, detail=str(e))
    except RefreshDenied as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ShopeeError as e:
        logger.warning(f"Shopee auth action {request.action} failed: {e}")
        raise _shopee_error(e)
