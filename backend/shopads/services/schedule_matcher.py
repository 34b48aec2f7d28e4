"""
Schedule Matcher: decides which budget rules are active at a given instant.
Hour and weekday are read in the single configured scheduling timezone, never
the host's local zone.
"""

from datetime import datetime, timezone
from typing import Iterable

from shopads.config import Settings
from shopads.domain import ScheduledRule


def weekday_of(local: datetime) -> int:
    """0 = Sunday … 6 = Saturday."""
    return (local.weekday() + 1) % 7


def is_active_at(rule: ScheduledRule, hour: int, weekday: int) -> bool:
    if not rule.active:
        return False
    if not (rule.hour_start <= hour < rule.hour_end):
        return False
    return not rule.days_of_week or weekday in rule.days_of_week


class ScheduleMatcher:
    def __init__(self, settings: Settings):
        self.tz = settings.tz

    def local_time(self, now: datetime) -> datetime:
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        return now.astimezone(self.tz)

    def active_rules(self, now: datetime, rules: Iterable[ScheduledRule]) -> list[ScheduledRule]:
        local = self.local_time(now)
        hour, weekday = local.hour, weekday_of(local)
        active = [r for r in rules if is_active_at(r, hour, weekday)]
        return sorted(active, key=lambda r: (r.principal_id, str(r.rule_id)))
