"""
Shopee Ads Scheduler: FastAPI Backend
Keeps per-shop Shopee tokens fresh and applies scheduled campaign budgets
every hour. All data persisted to PostgreSQL.
"""

import logging
from contextlib import asynccontextmanager
from fastapi import Depends, FastAPI

from shopads.auth import require_auth
from shopads.database import init_db, check_db_connection
from shopads.routers import cron, scheduler, shop_auth

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

SERVICE_NAME = "Shopee Ads Scheduler"


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {SERVICE_NAME}...")
    try:
        await init_db()
        logger.info("Database initialized, all tables ready.")
    except Exception as e:
        logger.error(f"Startup failed (DB/init): {e}", exc_info=True)
        # Still yield so app can serve /api/health (degraded) and logs are visible
    yield
    logger.info("Shutting down...")


app = FastAPI(
    title=SERVICE_NAME,
    description="Shopee token lifecycle and scheduled ads budget adjustment",
    version="1.0.0",
    lifespan=lifespan,
)

# ── Register Routers ─────────────────────────────────────────────────
app.include_router(scheduler.router, prefix="/api", tags=["Ads Scheduler"], dependencies=[Depends(require_auth)])
app.include_router(shop_auth.router, prefix="/api", tags=["Shopee Auth"], dependencies=[Depends(require_auth)])
app.include_router(cron.router, prefix="/api")  # No API key; uses CRON_SECRET


@app.get("/api/health")
async def health_check():
    db_ok = await check_db_connection()
    return {
        "status": "healthy" if db_ok else "degraded",
        "service": SERVICE_NAME,
        "database": "connected" if db_ok else "disconnected",
    }
