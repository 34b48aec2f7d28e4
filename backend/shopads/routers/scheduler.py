"""
Ads Budget Scheduler Router. One endpoint, switched on ``action``:

  create / update / delete / list  manage scheduled budget rules
  logs                            budget change history
  process                         run a full pass (what the cron calls hourly)
  run-now                         apply one rule immediately

Required fields are validated before anything touches the database or Shopee.
"""

import logging
from typing import Annotated, Literal, Optional
from fastapi import APIRouter, Body, Depends, HTTPException
from pydantic import AfterValidator, BaseModel, ConfigDict, Field, model_validator
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from shopads.database import get_db
from shopads.domain import AdType
from shopads.engine import Engine, get_engine
from shopads.models import AdsBudgetLog, ScheduledAdsBudget
from shopads.routers.cron import run_budget_pass
from shopads.services.schedule_store import get_rule, rule_from_row
from shopads.utils import parse_params, parse_uuid, require_shop, safe_error_detail

logger = logging.getLogger(__name__)

router = APIRouter()


# ── Schemas ──────────────────────────────────────────────────────────
class SchedulerRequest(BaseModel):
    model_config = ConfigDict(extra="allow")

    action: Literal["create", "update", "delete", "list", "logs", "process", "run-now"]
    shop_id: Optional[int] = None


def _check_days(days: Optional[list[int]]) -> Optional[list[int]]:
    if not days:
        return None
    if any(d < 0 or d > 6 for d in days):
        raise ValueError("days_of_week values must be 0 (Sunday) to 6 (Saturday)")
    return sorted(set(days))


DaysOfWeek = Annotated[Optional[list[int]], AfterValidator(_check_days)]


class ScheduleCreate(BaseModel):
    campaign_id: int = Field(gt=0)
    campaign_name: Optional[str] = None
    ad_type: AdType
    hour_start: int = Field(ge=0, le=23)
    hour_end: int = Field(ge=1, le=24)
    budget: float = Field(ge=0)
    days_of_week: DaysOfWeek = None

    @model_validator(mode="after")
    def _window(self) -> "ScheduleCreate":
        if self.hour_start >= self.hour_end:
            raise ValueError("hour_start must be before hour_end")
        return self


class ScheduleUpdate(BaseModel):
    schedule_id: str
    campaign_name: Optional[str] = None
    ad_type: Optional[AdType] = None
    hour_start: Optional[int] = Field(None, ge=0, le=23)
    hour_end: Optional[int] = Field(None, ge=1, le=24)
    budget: Optional[float] = Field(None, ge=0)
    days_of_week: DaysOfWeek = None
    is_active: Optional[bool] = None


class ScheduleRef(BaseModel):
    schedule_id: str


class ScheduleListParams(BaseModel):
    campaign_id: Optional[int] = None


class LogListParams(BaseModel):
    campaign_id: Optional[int] = None
    limit: int = Field(50, ge=1, le=500)


# ── Helpers ───────────────────────────────────────────────────────────
def _schedule_to_response(row: ScheduledAdsBudget) -> dict:
    return {
        "id": str(row.id),
        "shop_id": row.shop_id,
        "campaign_id": row.campaign_id,
        "campaign_name": row.campaign_name,
        "ad_type": row.ad_type,
        "hour_start": row.hour_start,
        "hour_end": row.hour_end,
        "days_of_week": row.days_of_week,
        "budget": row.budget,
        "is_active": row.is_active,
        "created_at": row.created_at.isoformat() if row.created_at else None,
        "updated_at": row.updated_at.isoformat() if row.updated_at else None,
    }


def _log_to_response(row: AdsBudgetLog) -> dict:
    return {
        "id": str(row.id),
        "shop_id": row.shop_id,
        "campaign_id": row.campaign_id,
        "schedule_id": str(row.schedule_id) if row.schedule_id else None,
        "new_budget": row.new_budget,
        "status": row.status,
        "error_message": row.error_message,
        "executed_at": row.executed_at.isoformat() if row.executed_at else None,
    }


# ── Actions ───────────────────────────────────────────────────────────
async def _create(shop_id: int, params: dict, db: AsyncSession) -> dict:
    payload = parse_params(ScheduleCreate, params)
    row = ScheduledAdsBudget(
        shop_id=shop_id,
        campaign_id=payload.campaign_id,
        campaign_name=payload.campaign_name,
        ad_type=payload.ad_type.value,
        hour_start=payload.hour_start,
        hour_end=payload.hour_end,
        days_of_week=payload.days_of_week,
        budget=payload.budget,
        is_active=True,
    )
    db.add(row)
    await db.flush()
    await db.refresh(row)
    logger.info(f"Created budget schedule {row.id} for campaign {row.campaign_id} (shop {shop_id})")
    return {"success": True, "schedule": _schedule_to_response(row)}


async def _update(shop_id: int, params: dict, db: AsyncSession) -> dict:
    payload = parse_params(ScheduleUpdate, params)
    row = await get_rule(db, parse_uuid(payload.schedule_id, "schedule_id"), shop_id)
    if not row:
        raise HTTPException(status_code=404, detail="Schedule not found")

    update_data = payload.model_dump(exclude_unset=True, exclude={"schedule_id"})
    hour_start = update_data.get("hour_start", row.hour_start)
    hour_end = update_data.get("hour_end", row.hour_end)
    if hour_start is None or hour_end is None or hour_start >= hour_end:
        raise HTTPException(status_code=400, detail="hour_start must be before hour_end")

    for key, value in update_data.items():
        if key == "ad_type" and value is not None:
            value = AdType(value).value
        setattr(row, key, value)
    await db.flush()
    await db.refresh(row)
    return {"success": True, "schedule": _schedule_to_response(row)}


async def _delete(shop_id: int, params: dict, db: AsyncSession) -> dict:
    payload = parse_params(ScheduleRef, params)
    await db.execute(
        delete(ScheduledAdsBudget).where(
            ScheduledAdsBudget.id == parse_uuid(payload.schedule_id, "schedule_id"),
            ScheduledAdsBudget.shop_id == shop_id,
        )
    )
    return {"success": True}


async def _list(shop_id: int, params: dict, db: AsyncSession) -> dict:
    payload = parse_params(ScheduleListParams, params)
    query = (
        select(ScheduledAdsBudget)
        .where(ScheduledAdsBudget.shop_id == shop_id)
        .order_by(ScheduledAdsBudget.campaign_id, ScheduledAdsBudget.hour_start)
    )
    if payload.campaign_id:
        query = query.where(ScheduledAdsBudget.campaign_id == payload.campaign_id)
    result = await db.execute(query)
    return {"success": True, "schedules": [_schedule_to_response(r) for r in result.scalars().all()]}


async def _logs(shop_id: int, params: dict, db: AsyncSession) -> dict:
    payload = parse_params(LogListParams, params)
    query = (
        select(AdsBudgetLog)
        .where(AdsBudgetLog.shop_id == shop_id)
        .order_by(AdsBudgetLog.executed_at.desc())
        .limit(payload.limit)
    )
    if payload.campaign_id:
        query = query.where(AdsBudgetLog.campaign_id == payload.campaign_id)
    result = await db.execute(query)
    return {"success": True, "logs": [_log_to_response(r) for r in result.scalars().all()]}


async def _run_now(shop_id: int, params: dict, db: AsyncSession, engine: Engine) -> dict:
    payload = parse_params(ScheduleRef, params)
    row = await get_rule(db, parse_uuid(payload.schedule_id, "schedule_id"), shop_id)
    if not row:
        raise HTTPException(status_code=404, detail="Schedule not found")

    record = await engine.dispatcher.run_rule(rule_from_row(row))
    response = {
        "success": record.success,
        "rule_id": str(record.rule_id),
        "target_id": record.target_id,
        "value": record.applied_value,
    }
    if record.error_detail:
        response["error"] = record.error_detail
    return response


_CRUD_ACTIONS = {
    "create": _create,
    "update": _update,
    "delete": _delete,
    "list": _list,
    "logs": _logs,
}


@router.post("/ads-scheduler")
async def ads_scheduler(
    body: dict = Body(...),
    db: AsyncSession = Depends(get_db),
    engine: Engine = Depends(get_engine),
):
    request = parse_params(SchedulerRequest, body)
    params = dict(request.model_extra or {})

    if request.action == "process":
        return await run_budget_pass(engine)

    shop_id = require_shop(request.shop_id)
    if request.action == "run-now":
        return await _run_now(shop_id, params, db, engine)

    try:
        return await _CRUD_ACTIONS[request.action](shop_id, params, db)
    except HTTPException:
        raise
    except SQLAlchemyError as e:
        raise HTTPException(status_code=400, detail=safe_error_detail(e, f"Could not {request.action} schedule"))
