"""
Budget Adjustment Dispatcher: one scheduler pass.

Loads active budget rules, applies the ones whose window is open now, and writes
exactly one budget-log row per applied rule whatever the outcome. Shops run
concurrently; the rules of one shop run strictly one after another.
"""

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from shopads.config import Settings
from shopads.domain import AdType, AuditRecord, AuditStatus, PassReport, ScheduledRule
from shopads.shopee_client import ShopeeError
from shopads.services.gateway import RemoteCallGateway
from shopads.services.schedule_matcher import ScheduleMatcher, weekday_of
from shopads.services.token_service import RefreshDenied, TokenNotFound

logger = logging.getLogger(__name__)

EDIT_BUDGET_PATHS = {
    AdType.AUTO: "/api/v2/ads/edit_auto_product_ads",
    AdType.MANUAL: "/api/v2/ads/edit_manual_product_ads",
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BudgetAdjustmentDispatcher:
    def __init__(
        self,
        settings: Settings,
        rules,
        matcher: ScheduleMatcher,
        gateway: RemoteCallGateway,
        audit_log,
        leases=None,
        clock: Callable[[], datetime] = _utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.rules = rules
        self.matcher = matcher
        self.gateway = gateway
        self.audit_log = audit_log
        self.leases = leases
        self.clock = clock
        self.sleep = sleep
        self.dispatch_delay = settings.shop_dispatch_delay_seconds
        self.max_concurrent_shops = settings.max_concurrent_shops

    async def run(self, now: Optional[datetime] = None) -> PassReport:
        """
        Run one pass. Only a failure to load the rule set propagates; everything
        that goes wrong for a single rule or shop ends up in its budget-log row.
        """
        now = now or self.clock()
        local = self.matcher.local_time(now)
        hour, weekday = local.hour, weekday_of(local)

        rules = await self.rules.list_active()
        active = self.matcher.active_rules(now, rules)
        logger.info(f"Budget pass at {local.isoformat()} (hour {hour}, day {weekday}): "
                    f"{len(active)} of {len(rules)} active rules apply")

        by_shop: dict[int, list[ScheduledRule]] = {}
        for rule in active:
            by_shop.setdefault(rule.principal_id, []).append(rule)

        holder = f"pass-{uuid.uuid4().hex[:12]}"
        semaphore = asyncio.Semaphore(self.max_concurrent_shops)
        shop_results = await asyncio.gather(*(
            self._run_shop(shop_id, shop_rules, holder, semaphore, delay=i * self.dispatch_delay)
            for i, (shop_id, shop_rules) in enumerate(by_shop.items())
        ))

        records = [record for shop_records in shop_results for record in shop_records]
        failed = sum(1 for r in records if not r.success)
        logger.info(f"Budget pass finished: {len(records) - failed} succeeded, {failed} failed")
        return PassReport(hour=hour, weekday=weekday, records=records)

    async def run_rule(self, rule: ScheduledRule) -> AuditRecord:
        """Apply a single rule now, ignoring its window. Holds the shop's lease like a pass does."""
        holder = f"run-now-{uuid.uuid4().hex[:12]}"
        [record] = await self._run_shop(rule.principal_id, [rule], holder, asyncio.Semaphore(1))
        return record

    async def _run_shop(
        self,
        shop_id: int,
        rules: list[ScheduledRule],
        holder: str,
        semaphore: asyncio.Semaphore,
        delay: float = 0,
    ) -> list[AuditRecord]:
        if delay:
            await self.sleep(delay)

        async with semaphore:
            if self.leases is not None:
                try:
                    acquired = await self.leases.acquire(shop_id, holder)
                except Exception as e:
                    logger.exception(f"Could not acquire lease for shop {shop_id}")
                    return [await self._record(r, f"Could not lock shop: {e}") for r in rules]
                if not acquired:
                    return [await self._record(r, "Shop is being processed by another pass") for r in rules]

            try:
                records = []
                terminal_error: Optional[str] = None
                for rule in rules:
                    if terminal_error:
                        # Token is unusable for the rest of this pass; don't hit Shopee again.
                        records.append(await self._record(rule, terminal_error))
                        continue
                    record, terminal = await self._apply(rule)
                    records.append(record)
                    if terminal:
                        terminal_error = record.error_detail
                return records
            finally:
                if self.leases is not None:
                    try:
                        await self.leases.release(shop_id, holder)
                    except Exception as e:
                        logger.warning(f"Failed to release lease for shop {shop_id} (expires on its own): {e}")

    async def _apply(self, rule: ScheduledRule) -> tuple[AuditRecord, bool]:
        """Returns the rule's record and whether the shop's token is unusable for the rest of the pass."""
        error: Optional[str] = None
        terminal = False
        try:
            result = await self._edit_budget(rule)
            logger.info(f"Campaign {rule.target_id} (shop {rule.principal_id}) budget set to {rule.value}"
                        f"{' after token refresh' if result.refreshed else ''}")
        except (TokenNotFound, RefreshDenied) as e:
            error, terminal = str(e), True
            logger.error(f"Shop {rule.principal_id} needs re-authorization: {error}")
        except ShopeeError as e:
            error = str(e)
            logger.warning(f"Budget update failed for campaign {rule.target_id} (shop {rule.principal_id}): {error}")
        except Exception as e:
            logger.exception(f"Unexpected error for campaign {rule.target_id} (shop {rule.principal_id})")
            error = str(e) or type(e).__name__
        return await self._record(rule, error), terminal

    async def _edit_budget(self, rule: ScheduledRule):
        try:
            path = EDIT_BUDGET_PATHS[AdType(rule.kind)]
        except ValueError:
            raise ValueError(f"Invalid ad type: {rule.kind!r}") from None
        campaign_id = int(rule.target_id)
        if campaign_id <= 0:
            raise ValueError(f"Invalid campaign id: {rule.target_id!r}")
        if rule.value is None or rule.value < 0:
            raise ValueError(f"Invalid budget: {rule.value!r}")

        body = {
            "campaign_id": campaign_id,
            "edit_action": "change_budget",
            "budget": rule.value,
        }
        return await self.gateway.call(rule.principal_id, path, body=body, reference_key="reference_id")

    async def _record(self, rule: ScheduledRule, error: Optional[str]) -> AuditRecord:
        record = AuditRecord(
            rule_id=rule.rule_id,
            principal_id=rule.principal_id,
            target_id=rule.target_id,
            applied_value=rule.value,
            status=AuditStatus.FAILED if error else AuditStatus.SUCCESS,
            executed_at=self.clock(),
            error_detail=error,
        )
        try:
            await self.audit_log.append(record)
        except Exception:
            logger.exception(f"Failed to write budget log for rule {rule.rule_id}")
        return record
