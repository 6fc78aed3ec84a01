"""Initial PromoWheel schema

Revision ID: 5c2e7a91d0f3
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "5c2e7a91d0f3"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create operators, campaigns, counters, play journal, participants, audit log."""
    op.create_table(
        "operators",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("business_name", sa.String(200), nullable=False),
        sa.Column("email", sa.String(320), nullable=True),
        sa.Column("plan_type", sa.String(30), nullable=False, server_default="free"),
        sa.Column("subscription_status", sa.String(30), nullable=True),
        sa.Column("plan_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("campaign_credits", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("lead_credits", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("campaign_credits >= 0", name="ck_operators_campaign_credits"),
        sa.CheckConstraint("lead_credits >= 0", name="ck_operators_lead_credits"),
    )

    op.create_table(
        "campaigns",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "operator_id",
            sa.String(36),
            sa.ForeignKey("operators.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("campaign_type", sa.String(20), nullable=False, server_default="spinwheel"),
        sa.Column("status", sa.String(20), nullable=False, server_default="draft"),
        sa.Column("is_published", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("start_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("end_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "prize_segments",
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        sa.Column("limit_per_email", sa.Integer(), nullable=True),
        sa.Column("limit_per_phone", sa.Integer(), nullable=True),
        sa.Column("limit_per_ip", sa.Integer(), nullable=True),
        sa.Column("limit_per_device", sa.Integer(), nullable=True),
        sa.Column("limit_per_day", sa.Integer(), nullable=True),
        sa.Column("limit_per_week", sa.Integer(), nullable=True),
        sa.Column("limit_total", sa.Integer(), nullable=True),
        sa.Column("cooldown_hours", sa.Integer(), nullable=True),
        sa.Column("spins_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("leads_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("redemption_expiry_days", sa.Integer(), nullable=False, server_default="7"),
        sa.Column("redemption_instructions", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_campaigns_operator", "campaigns", ["operator_id"])

    op.create_table(
        "attempt_counters",
        sa.Column(
            "campaign_id",
            sa.String(36),
            sa.ForeignKey("campaigns.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("dimension", sa.String(16), primary_key=True),
        sa.Column("value", sa.String(320), primary_key=True),
        sa.Column("attempt_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_attempt_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "play_events",
        sa.Column("id", sa.String(43), primary_key=True),
        sa.Column(
            "campaign_id",
            sa.String(36),
            sa.ForeignKey("campaigns.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("email", sa.String(320), nullable=True),
        sa.Column("phone", sa.String(50), nullable=True),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.Column("device_fingerprint", sa.String(200), nullable=True),
        sa.Column("segment_index", sa.Integer(), nullable=False),
        sa.Column("prize_label", sa.String(200), nullable=False),
        sa.Column("is_win", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("claimed_email", sa.String(320), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_play_events_campaign_time", "play_events", ["campaign_id", "created_at"]
    )

    op.create_table(
        "participants",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "campaign_id",
            sa.String(36),
            sa.ForeignKey("campaigns.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("name", sa.String(200), nullable=True),
        sa.Column("phone", sa.String(50), nullable=True),
        sa.Column("prize_won", sa.String(200), nullable=True),
        sa.Column("reference_number", sa.String(40), nullable=True),
        sa.Column("redemption_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_redeemed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("redeemed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("campaign_id", "email", name="uq_participants_campaign_email"),
    )
    op.create_index(
        "ix_participants_campaign_created", "participants", ["campaign_id", "created_at"]
    )

    op.create_table(
        "admin_log",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("actor_id", sa.String(64), nullable=False),
        sa.Column("action_type", sa.String(50), nullable=False),
        sa.Column("target_table", sa.String(50), nullable=False),
        sa.Column("target_id", sa.String(100), nullable=True),
        sa.Column("before_snapshot", postgresql.JSONB(), nullable=True),
        sa.Column("after_snapshot", postgresql.JSONB(), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_admin_log_actor_time", "admin_log", ["actor_id", "timestamp"])
    op.create_index(
        "ix_admin_log_target", "admin_log", ["target_table", "target_id", "timestamp"]
    )


def downgrade() -> None:
    """Drop every PromoWheel table."""
    op.drop_index("ix_admin_log_target", table_name="admin_log")
    op.drop_index("ix_admin_log_actor_time", table_name="admin_log")
    op.drop_table("admin_log")
    op.drop_index("ix_participants_campaign_created", table_name="participants")
    op.drop_table("participants")
    op.drop_index("ix_play_events_campaign_time", table_name="play_events")
    op.drop_table("play_events")
    op.drop_table("attempt_counters")
    op.drop_index("ix_campaigns_operator", table_name="campaigns")
    op.drop_table("campaigns")
    op.drop_table("operators")
