"""
promowheel.database.models — SQLAlchemy 2.0 Data Models
=========================================================

Tables:
- operators         — Businesses running campaigns, with their credit balance
- campaigns         — Campaign configuration, limits and monotonic counters
- attempt_counters  — Per (campaign, dimension, value) attempt tally
- play_events       — Append-only journal of recorded spins
- participants      — One row per (campaign, email): the captured lead / ticket
- admin_log         — Append-only audit trail for credit grants
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all PromoWheel ORM models."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class CampaignStatus(enum.StrEnum):
    """Operator-set intent stored on the campaign row."""
    DRAFT = "draft"
    ACTIVE = "active"
    PAUSED = "paused"
    ENDED = "ended"


class CampaignType(enum.StrEnum):
    SPINWHEEL = "spinwheel"
    SCRATCH = "scratch"


class Dimension(enum.StrEnum):
    """Identity dimensions tracked by attempt counters."""
    EMAIL = "email"
    PHONE = "phone"
    IP = "ip"
    DEVICE = "device"


class PlanType(enum.StrEnum):
    FREE = "free"
    STARTER = "starter"
    PRO = "pro"
    BUSINESS = "business"


# ---------------------------------------------------------------------------
# Operators — the businesses running campaigns
# ---------------------------------------------------------------------------
class Operator(Base):
    """A campaign owner together with its prepaid credit balance.

    ``plan_type``, ``subscription_status`` and ``plan_expires_at`` are
    entitlement context maintained by the (external) billing integration;
    the engine only reads them to decide whether leads are metered.
    """
    __tablename__ = "operators"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    business_name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str | None] = mapped_column(String(320), default=None)
    plan_type: Mapped[str] = mapped_column(
        String(30), nullable=False, default=PlanType.FREE.value
    )
    subscription_status: Mapped[str | None] = mapped_column(String(30), default=None)
    plan_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    campaign_credits: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    lead_credits: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    campaigns: Mapped[list[Campaign]] = relationship(
        back_populates="operator", cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint("campaign_credits >= 0", name="ck_operators_campaign_credits"),
        CheckConstraint("lead_credits >= 0", name="ck_operators_lead_credits"),
    )

    def __repr__(self) -> str:
        return f"<Operator id={self.id} name={self.business_name!r} plan={self.plan_type}>"


# ---------------------------------------------------------------------------
# Campaigns
# ---------------------------------------------------------------------------
class Campaign(Base):
    """A spin-the-wheel or scratch-card campaign.

    ``status`` is the operator's intent; the status participants see is
    always derived by :func:`promowheel.engine.lifecycle.resolve` and never
    stored.  ``spins_count`` and ``leads_count`` are the audit trail and are
    only ever incremented with single-statement updates.
    """
    __tablename__ = "campaigns"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    operator_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("operators.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    campaign_type: Mapped[str] = mapped_column(
        String(20), nullable=False, default=CampaignType.SPINWHEEL.value
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=CampaignStatus.DRAFT.value
    )
    is_published: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    start_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    end_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)

    # Ordered list of {"label", "prize_type", "is_no_win", ...}
    prize_segments: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)

    # Limits: NULL means "no cap"
    limit_per_email: Mapped[int | None] = mapped_column(Integer, default=None)
    limit_per_phone: Mapped[int | None] = mapped_column(Integer, default=None)
    limit_per_ip: Mapped[int | None] = mapped_column(Integer, default=None)
    limit_per_device: Mapped[int | None] = mapped_column(Integer, default=None)
    limit_per_day: Mapped[int | None] = mapped_column(Integer, default=None)
    limit_per_week: Mapped[int | None] = mapped_column(Integer, default=None)
    limit_total: Mapped[int | None] = mapped_column(Integer, default=None)
    cooldown_hours: Mapped[int | None] = mapped_column(Integer, default=None)

    # Counters
    spins_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    leads_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Redemption
    redemption_expiry_days: Mapped[int] = mapped_column(Integer, nullable=False, default=7)
    redemption_instructions: Mapped[str | None] = mapped_column(Text, default=None)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    operator: Mapped[Operator] = relationship(back_populates="campaigns")

    __table_args__ = (
        Index("ix_campaigns_operator", "operator_id"),
    )

    def __repr__(self) -> str:
        return f"<Campaign id={self.id} name={self.name!r} status={self.status}>"


# ---------------------------------------------------------------------------
# AttemptCounter — per identity value attempt tally
# ---------------------------------------------------------------------------
class AttemptCounter(Base):
    """One row per (campaign, dimension, value).

    Upserted with ``INSERT … ON CONFLICT DO UPDATE`` so concurrent plays from
    the same identity never lose an increment.
    """
    __tablename__ = "attempt_counters"

    campaign_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("campaigns.id", ondelete="CASCADE"), primary_key=True
    )
    dimension: Mapped[str] = mapped_column(String(16), primary_key=True)
    value: Mapped[str] = mapped_column(String(320), primary_key=True)
    attempt_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_attempt_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )

    def __repr__(self) -> str:
        return (
            f"<AttemptCounter campaign={self.campaign_id} "
            f"{self.dimension}={self.value!r} count={self.attempt_count}>"
        )


# ---------------------------------------------------------------------------
# PlayEvent — append-only spin journal
# ---------------------------------------------------------------------------
class PlayEvent(Base):
    """One recorded spin.

    ``id`` is an unguessable token handed to the participant as ``play_id``
    so a later claim can be verified against the server-side draw.
    ``claimed_email`` binds a winning play to exactly one participant.
    """
    __tablename__ = "play_events"

    id: Mapped[str] = mapped_column(String(43), primary_key=True)
    campaign_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False
    )
    email: Mapped[str | None] = mapped_column(String(320), default=None)
    phone: Mapped[str | None] = mapped_column(String(50), default=None)
    ip_address: Mapped[str | None] = mapped_column(String(45), default=None)
    device_fingerprint: Mapped[str | None] = mapped_column(String(200), default=None)
    segment_index: Mapped[int] = mapped_column(Integer, nullable=False)
    prize_label: Mapped[str] = mapped_column(String(200), nullable=False)
    is_win: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    claimed_email: Mapped[str | None] = mapped_column(String(320), default=None)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_play_events_campaign_time", "campaign_id", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<PlayEvent id={self.id[:8]!r}... campaign={self.campaign_id} "
            f"prize={self.prize_label!r} win={self.is_win}>"
        )


# ---------------------------------------------------------------------------
# Participant — the lead / prize ticket
# ---------------------------------------------------------------------------
class Participant(Base):
    """Captured participant, unique per (campaign_id, email).

    ``reference_number`` and ``redemption_expires_at`` are written once, on
    the first claim, and never regenerated.
    """
    __tablename__ = "participants"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    campaign_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False
    )
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    name: Mapped[str | None] = mapped_column(String(200), default=None)
    phone: Mapped[str | None] = mapped_column(String(50), default=None)
    prize_won: Mapped[str | None] = mapped_column(String(200), default=None)
    reference_number: Mapped[str | None] = mapped_column(String(40), default=None)
    redemption_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    is_redeemed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    redeemed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("campaign_id", "email", name="uq_participants_campaign_email"),
        Index("ix_participants_campaign_created", "campaign_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<Participant id={self.id} campaign={self.campaign_id} prize={self.prize_won!r}>"


# ---------------------------------------------------------------------------
# AdminLog — append-only audit trail
# ---------------------------------------------------------------------------
class AdminLog(Base):
    __tablename__ = "admin_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    actor_id: Mapped[str] = mapped_column(String(64), nullable=False)
    action_type: Mapped[str] = mapped_column(String(50), nullable=False)
    target_table: Mapped[str] = mapped_column(String(50), nullable=False)
    target_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    before_snapshot: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    after_snapshot: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_admin_log_actor_time", "actor_id", "timestamp"),
        Index("ix_admin_log_target", "target_table", "target_id", "timestamp"),
    )

    def __repr__(self) -> str:
        return f"<AdminLog id={self.id} actor={self.actor_id} action={self.action_type}>"
