#!/usr/bin/env python3
"""
Force-refresh one shop's Shopee access token.

Run from backend directory:
  python scripts/refresh_token.py 123456
"""

import asyncio
import argparse
import logging
import sys
from pathlib import Path

backend_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(backend_root))

from shopads.engine import get_engine
from shopads.services.token_service import RefreshDenied, TokenNotFound

async def main(shop_id: int) -> int:
    engine = get_engine()
    try:
        current = await engine.tokens.store.get(shop_id)
        if current is None:
            raise TokenNotFound(shop_id)
        token = await engine.tokens.force_refresh(shop_id, current.refresh_secret)
    except (TokenNotFound, RefreshDenied) as e:
        print(f"Error: {e}")
        return 1

    print(f"Shop {shop_id}: new access token expires at {token.expires_at.isoformat()}")
    return 0


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    parser = argparse.ArgumentParser(description="Force a token refresh for one shop")
    parser.add_argument("shop_id", type=int, help="Shopee shop id")
    args = parser.parse_args()
    sys.exit(asyncio.run(main(args.shop_id)))
