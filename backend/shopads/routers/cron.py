"""
Cron / Scheduled Jobs: hourly trigger for the ads budget scheduler.

Called by QStash or any external cron at the top of every hour:
  POST https://your-app.railway.app/api/cron/ads-budget
  Header: X-Cron-Secret: <CRON_SECRET>   (or Authorization: Bearer <CRON_SECRET>)
"""

import logging
from fastapi import APIRouter, Depends

from shopads.auth import require_cron_secret
from shopads.engine import Engine, get_engine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cron", tags=["Cron"])


async def run_budget_pass(engine: Engine) -> dict:
    """
    Run one budget pass and return its report. Never raises: if the rule set
    can't be loaded the caller gets ``{"success": False, "error": ...}``.
    """
    try:
        report = await engine.dispatcher.run()
    except Exception as e:
        logger.exception("Budget pass aborted: could not load schedules")
        return {"success": False, "error": str(e) or type(e).__name__}
    return report.to_dict()


@router.post("/ads-budget")
async def cron_ads_budget(
    _: None = Depends(require_cron_secret),
    engine: Engine = Depends(get_engine),
):
    result = await run_budget_pass(engine)
    logger.info(f"Cron budget pass completed: processed={result.get('processed', 0)}")
    return result
