"""
Persistence for the scheduler: budget rules (read side), the append-only budget
log, and the per-shop lease that keeps two passes off the same shop.
"""

import logging
from datetime import timedelta
from typing import Optional
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker

from shopads.domain import AuditRecord, ScheduledRule
from shopads.models import AdsBudgetLog, ScheduledAdsBudget, ShopLease
from shopads.utils import utcnow

logger = logging.getLogger(__name__)


def rule_from_row(row: ScheduledAdsBudget) -> ScheduledRule:
    return ScheduledRule(
        rule_id=row.id,
        principal_id=row.shop_id,
        target_id=row.campaign_id,
        kind=row.ad_type,
        hour_start=row.hour_start,
        hour_end=row.hour_end,
        value=row.budget,
        days_of_week=frozenset(row.days_of_week or ()),
        active=bool(row.is_active),
        target_name=row.campaign_name,
    )


class RuleStore:
    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def list_active(self) -> list[ScheduledRule]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(ScheduledAdsBudget).where(ScheduledAdsBudget.is_active == True)  # noqa: E712
            )
            return [rule_from_row(r) for r in result.scalars().all()]


class AuditLogStore:
    """Append-only sink. Rows are never updated."""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def append(self, record: AuditRecord) -> None:
        async with self.session_factory() as session:
            session.add(AdsBudgetLog(
                shop_id=record.principal_id,
                campaign_id=record.target_id,
                schedule_id=record.rule_id,
                new_budget=record.applied_value,
                status=record.status.value,
                error_message=record.error_detail,
                executed_at=record.executed_at.replace(tzinfo=None),
            ))
            await session.commit()


class ShopLeaseStore:
    """
    Soft lock per shop. A lease expires on its own after ``ttl``, so a crashed
    pass never blocks a shop for longer than that.
    """

    def __init__(self, session_factory: async_sessionmaker, ttl_seconds: int):
        self.session_factory = session_factory
        self.ttl = timedelta(seconds=ttl_seconds)

    async def acquire(self, shop_id: int, holder: str) -> bool:
        now = utcnow()
        async with self.session_factory() as session:
            row = await session.get(ShopLease, shop_id, with_for_update=True)
            if row is not None and row.holder != holder and row.locked_until > now:
                logger.warning(f"Shop {shop_id} is leased by {row.holder} until {row.locked_until.isoformat()}")
                return False
            if row is None:
                row = ShopLease(shop_id=shop_id)
                session.add(row)
            row.holder = holder
            row.locked_until = now + self.ttl
            try:
                await session.commit()
            except IntegrityError:
                logger.warning(f"Lost lease race for shop {shop_id}")
                return False
        return True

    async def release(self, shop_id: int, holder: str) -> None:
        async with self.session_factory() as session:
            await session.execute(
                delete(ShopLease).where(ShopLease.shop_id == shop_id, ShopLease.holder == holder)
            )
            await session.commit()


async def get_rule(session, rule_id, shop_id: Optional[int] = None) -> Optional[ScheduledAdsBudget]:
    query = select(ScheduledAdsBudget).where(ScheduledAdsBudget.id == rule_id)
    if shop_id is not None:
        query = query.where(ScheduledAdsBudget.shop_id == shop_id)
    result = await session.execute(query)
    return result.scalar_one_or_none()
