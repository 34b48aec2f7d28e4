"""
Domain value types shared by the token engine and the budget scheduler.
Plain frozen dataclasses. ORM rows are converted into these at the store boundary.
"""

import enum
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional


class AdType(str, enum.Enum):
    AUTO = "auto"
    MANUAL = "manual"


class AuditStatus(str, enum.Enum):
    SUCCESS = "success"
    FAILED = "failed"


@dataclass(frozen=True)
class Token:
    """One shop's OAuth token pair. ``expires_at`` is always derived, never stored on its own."""

    principal_id: int
    access_secret: str
    refresh_secret: str
    issued_at: datetime
    ttl_seconds: int

    @property
    def expires_at(self) -> datetime:
        return self.issued_at + timedelta(seconds=self.ttl_seconds)

    @classmethod
    def issue(
        cls,
        principal_id: int,
        access_secret: str,
        refresh_secret: str,
        ttl_seconds: int,
        issued_at: Optional[datetime] = None,
    ) -> "Token":
        return cls(
            principal_id=principal_id,
            access_secret=access_secret,
            refresh_secret=refresh_secret,
            issued_at=issued_at or datetime.now(timezone.utc),
            ttl_seconds=int(ttl_seconds),
        )


@dataclass(frozen=True)
class PartnerCredentials:
    """Signing identity used to compute request signatures."""

    partner_id: int
    partner_key: str = field(repr=False)


@dataclass(frozen=True)
class ScheduledRule:
    """Set ``target_id``'s budget to ``value`` while the hour window is open."""

    rule_id: uuid.UUID
    principal_id: int
    target_id: int
    kind: str  # "auto" or "manual"; checked when the rule is applied
    hour_start: int
    hour_end: int
    value: float
    days_of_week: frozenset[int] = frozenset()
    active: bool = True
    target_name: Optional[str] = None


@dataclass(frozen=True)
class AuditRecord:
    rule_id: uuid.UUID
    principal_id: int
    target_id: int
    applied_value: float
    status: AuditStatus
    executed_at: datetime
    error_detail: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status == AuditStatus.SUCCESS

    def to_result(self) -> dict:
        """Per-rule entry of the pass report."""
        result = {
            "rule_id": str(self.rule_id),
            "target_id": self.target_id,
            "value": self.applied_value,
            "success": self.success,
        }
        if self.error_detail:
            result["error"] = self.error_detail
        return result


@dataclass(frozen=True)
class PassReport:
    """Outcome of one scheduler pass."""

    hour: int
    weekday: int
    records: list[AuditRecord]

    def to_dict(self) -> dict:
        return {
            "success": True,
            "processed": len(self.records),
            "hour": self.hour,
            "day": self.weekday,
            "results": [r.to_result() for r in self.records],
        }
