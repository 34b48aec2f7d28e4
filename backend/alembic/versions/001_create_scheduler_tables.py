"""Create token, partner, budget schedule, budget log and lease tables.

Revision ID: 001
Revises:
Create Date: 2026-10-17

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    conn = op.get_bind()
    existing = set(sa.inspect(conn).get_table_names())

    if "partner_accounts" not in existing:
        op.create_table(
            "partner_accounts",
            sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
            sa.Column("name", sa.String(255), nullable=False),
            sa.Column("partner_id", sa.BigInteger(), nullable=False),
            sa.Column("partner_key", sa.Text(), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=True, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(), nullable=True, server_default=sa.text("now()")),
            sa.Column("updated_at", sa.DateTime(), nullable=True, server_default=sa.text("now()")),
            sa.PrimaryKeyConstraint("id"),
        )

    if "shops" not in existing:
        op.create_table(
            "shops",
            sa.Column("shop_id", sa.BigInteger(), autoincrement=False, nullable=False),
            sa.Column("shop_name", sa.String(512), nullable=True),
            sa.Column("partner_account_id", postgresql.UUID(as_uuid=True), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=True, server_default=sa.text("now()")),
            sa.ForeignKeyConstraint(["partner_account_id"], ["partner_accounts.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("shop_id"),
        )

    if "shop_tokens" not in existing:
        op.create_table(
            "shop_tokens",
            sa.Column("shop_id", sa.BigInteger(), autoincrement=False, nullable=False),
            sa.Column("access_token", sa.Text(), nullable=False),
            sa.Column("refresh_token", sa.Text(), nullable=False),
            sa.Column("issued_at", sa.DateTime(), nullable=False),
            sa.Column("expire_in", sa.Integer(), nullable=False, server_default="14400"),
            sa.Column("expires_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=True, server_default=sa.text("now()")),
            sa.PrimaryKeyConstraint("shop_id"),
        )
        op.create_index("ix_shop_tokens_expires_at", "shop_tokens", ["expires_at"], unique=False)

    if "scheduled_ads_budget" not in existing:
        op.create_table(
            "scheduled_ads_budget",
            sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
            sa.Column("shop_id", sa.BigInteger(), nullable=False),
            sa.Column("campaign_id", sa.BigInteger(), nullable=False),
            sa.Column("campaign_name", sa.String(512), nullable=True),
            sa.Column("ad_type", sa.String(20), nullable=False, server_default="auto"),
            sa.Column("hour_start", sa.Integer(), nullable=False),
            sa.Column("hour_end", sa.Integer(), nullable=False),
            sa.Column("days_of_week", postgresql.JSON(astext_type=sa.Text()), nullable=True),
            sa.Column("budget", sa.Float(), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=True, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(), nullable=True, server_default=sa.text("now()")),
            sa.Column("updated_at", sa.DateTime(), nullable=True, server_default=sa.text("now()")),
            sa.CheckConstraint(
                "hour_start >= 0 AND hour_end <= 24 AND hour_start < hour_end",
                name="ck_budget_hour_window",
            ),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_scheduled_ads_budget_shop_id", "scheduled_ads_budget", ["shop_id"], unique=False)
        op.create_index("ix_scheduled_ads_budget_is_active", "scheduled_ads_budget", ["is_active"], unique=False)
        op.create_index("ix_scheduled_ads_budget_campaign_id", "scheduled_ads_budget", ["campaign_id"], unique=False)

    if "ads_budget_logs" not in existing:
        op.create_table(
            "ads_budget_logs",
            sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
            sa.Column("shop_id", sa.BigInteger(), nullable=False),
            sa.Column("campaign_id", sa.BigInteger(), nullable=False),
            sa.Column("schedule_id", postgresql.UUID(as_uuid=True), nullable=True),
            sa.Column("new_budget", sa.Float(), nullable=False),
            sa.Column("status", sa.String(20), nullable=False, server_default="success"),
            sa.Column("error_message", sa.Text(), nullable=True),
            sa.Column("executed_at", sa.DateTime(), nullable=True, server_default=sa.text("now()")),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_ads_budget_logs_shop_id", "ads_budget_logs", ["shop_id"], unique=False)
        op.create_index("ix_ads_budget_logs_campaign_id", "ads_budget_logs", ["campaign_id"], unique=False)
        op.create_index("ix_ads_budget_logs_executed_at", "ads_budget_logs", ["executed_at"], unique=False)

    if "shop_leases" not in existing:
        op.create_table(
            "shop_leases",
            sa.Column("shop_id", sa.BigInteger(), autoincrement=False, nullable=False),
            sa.Column("holder", sa.String(64), nullable=False),
            sa.Column("locked_until", sa.DateTime(), nullable=False),
            sa.PrimaryKeyConstraint("shop_id"),
        )


def downgrade() -> None:
    op.drop_table("shop_leases")
    op.drop_index("ix_ads_budget_logs_executed_at", table_name="ads_budget_logs")
    op.drop_index("ix_ads_budget_logs_campaign_id", table_name="ads_budget_logs")
    op.drop_index("ix_ads_budget_logs_shop_id", table_name="ads_budget_logs")
    op.drop_table("ads_budget_logs")
    op.drop_index("ix_scheduled_ads_budget_campaign_id", table_name="scheduled_ads_budget")
    op.drop_index("ix_scheduled_ads_budget_is_active", table_name="scheduled_ads_budget")
    op.drop_index("ix_scheduled_ads_budget_shop_id", table_name="scheduled_ads_budget")
    op.drop_table("scheduled_ads_budget")
    op.drop_index("ix_shop_tokens_expires_at", table_name="shop_tokens")
    op.drop_table("shop_tokens")
    op.drop_table("shops")
    op.drop_table("partner_accounts")
