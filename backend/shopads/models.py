"""
Shopee Ads Scheduler: Database Models
One token row per shop, scheduled budget rules, and the append-only budget log.
"""

import uuid
from datetime import datetime, timezone
from sqlalchemy import (
    String, Text, Float, Integer, BigInteger, Boolean, DateTime,
    JSON, ForeignKey, Index, CheckConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.dialects.postgresql import UUID
from shopads.database import Base
from shopads.domain import AdType, AuditStatus


def _utcnow() -> datetime:
    """Naive UTC now, matching DB columns (TIMESTAMP WITHOUT TIME ZONE)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ══════════════════════════════════════════════════════════════════════
#  PARTNER ACCOUNTS: Per-shop signing identities
# ══════════════════════════════════════════════════════════════════════

class PartnerAccount(Base):
    """Shopee Open Platform partner (app) credentials."""
    __tablename__ = "partner_accounts"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    partner_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    partner_key: Mapped[str] = mapped_column(Text, nullable=False)  # encrypted
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, onupdate=_utcnow)

    shops: Mapped[list["Shop"]] = relationship("Shop", back_populates="partner_account")


class Shop(Base):
    """A connected seller shop (the principal)."""
    __tablename__ = "shops"

    shop_id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    shop_name: Mapped[str] = mapped_column(String(512), nullable=True)
    partner_account_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("partner_accounts.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)

    partner_account: Mapped["PartnerAccount"] = relationship("PartnerAccount", back_populates="shops")


# ══════════════════════════════════════════════════════════════════════
#  SHOP TOKENS: Exactly one current token per shop
# ══════════════════════════════════════════════════════════════════════

class ShopToken(Base):
    """
    OAuth token pair for a shop. Keyed by shop_id so writes are upserts.
    expires_at is always written together with the secrets.
    """
    __tablename__ = "shop_tokens"

    shop_id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    access_token: Mapped[str] = mapped_column(Text, nullable=False)  # encrypted
    refresh_token: Mapped[str] = mapped_column(Text, nullable=False)  # encrypted
    issued_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    expire_in: Mapped[int] = mapped_column(Integer, nullable=False, default=14400)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        Index("ix_shop_tokens_expires_at", "expires_at"),
    )


# ══════════════════════════════════════════════════════════════════════
#  SCHEDULED BUDGETS: Time-windowed budget rules
# ══════════════════════════════════════════════════════════════════════

class ScheduledAdsBudget(Base):
    """Set a campaign's budget while the hour window [hour_start, hour_end) is open."""
    __tablename__ = "scheduled_ads_budget"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    shop_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    campaign_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    campaign_name: Mapped[str] = mapped_column(String(512), nullable=True)
    ad_type: Mapped[str] = mapped_column(String(20), nullable=False, default=AdType.AUTO.value)
    hour_start: Mapped[int] = mapped_column(Integer, nullable=False)
    hour_end: Mapped[int] = mapped_column(Integer, nullable=False)
    days_of_week: Mapped[list] = mapped_column(JSON, nullable=True)  # 0 = Sunday; null = every day
    budget: Mapped[float] = mapped_column(Float, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        CheckConstraint("hour_start >= 0 AND hour_end <= 24 AND hour_start < hour_end", name="ck_budget_hour_window"),
        Index("ix_scheduled_ads_budget_shop_id", "shop_id"),
        Index("ix_scheduled_ads_budget_is_active", "is_active"),
        Index("ix_scheduled_ads_budget_campaign_id", "campaign_id"),
    )


# ══════════════════════════════════════════════════════════════════════
#  BUDGET LOGS: Append-only outcome of every applied rule
# ══════════════════════════════════════════════════════════════════════

class AdsBudgetLog(Base):
    """
    One row per rule per pass. schedule_id is intentionally not a foreign key
    so history survives rule deletion.
    """
    __tablename__ = "ads_budget_logs"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    shop_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    campaign_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    schedule_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=True)
    new_budget: Mapped[float] = mapped_column(Float, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=AuditStatus.SUCCESS.value)
    error_message: Mapped[str] = mapped_column(Text, nullable=True)
    executed_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)

    __table_args__ = (
        Index("ix_ads_budget_logs_shop_id", "shop_id"),
        Index("ix_ads_budget_logs_campaign_id", "campaign_id"),
        Index("ix_ads_budget_logs_executed_at", "executed_at"),
    )


# ══════════════════════════════════════════════════════════════════════
#  SHOP LEASES: Soft per-shop mutual exclusion across passes
# ══════════════════════════════════════════════════════════════════════

class ShopLease(Base):
    __tablename__ = "shop_leases"

    shop_id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    holder: Mapped[str] = mapped_column(String(64), nullable=False)
    locked_until: Mapped[datetime] = mapped_column(DateTime, nullable=False)
