"""
promowheel.services.campaign_service — Operator Campaign Management
=====================================================================

Everything an operator does to their own campaigns: create (costs one
campaign credit), edit, change status, publish/unpublish, list captured
participants, mark prizes redeemed, and read analytics.

Ownership is enforced on every call: a campaign id that belongs to another
operator is indistinguishable from one that doesn't exist (``NotFound``).
"""

from __future__ import annotations

import logging
import math
import uuid
from collections import Counter
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from promowheel.config import PromoWheelConfig
from promowheel.constants import as_utc, utcnow
from promowheel.database.engine import get_session
from promowheel.database.models import (
    Campaign,
    CampaignStatus,
    CampaignType,
    Operator,
    Participant,
    PlayEvent,
)
from promowheel.engine.draw import normalize_segments
from promowheel.engine.lifecycle import resolve, validate_transition
from promowheel.errors import NotFound, ValidationFailed
from promowheel.services import ledger
from promowheel.services.notifications import Notification, redemption_notice

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)

LIMIT_FIELDS: tuple[str, ...] = (
    "limit_per_email",
    "limit_per_phone",
    "limit_per_ip",
    "limit_per_device",
    "limit_per_day",
    "limit_per_week",
    "limit_total",
    "cooldown_hours",
)

EDITABLE_FIELDS: frozenset[str] = frozenset({
    "name",
    "campaign_type",
    "prize_segments",
    "start_at",
    "end_at",
    "redemption_expiry_days",
    "redemption_instructions",
    *LIMIT_FIELDS,
})

ANALYTICS_RANGES: dict[str, int | None] = {"7d": 7, "30d": 30, "all": None}

_DEFAULT_CONFIG = PromoWheelConfig()

# Widths of Campaign.name and PlayEvent.prize_label.
NAME_MAX = 200
LABEL_MAX = 200


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------
def _validate_segments(segments: Any) -> list[dict[str, Any]]:
    if not isinstance(segments, list):
        raise ValidationFailed("prize_segments must be a list")
    cleaned = []
    for position, raw in enumerate(segments):
        if not isinstance(raw, dict):
            raise ValidationFailed(f"Prize segment {position + 1} must be an object")
        segment = normalize_segments([raw])[0]
        if not segment.label:
            raise ValidationFailed(f"Prize segment {position + 1} needs a label")
        if len(segment.label) > LABEL_MAX:
            raise ValidationFailed(
                f"Prize segment {position + 1} label exceeds {LABEL_MAX} characters"
            )
        cleaned.append(segment.to_dict())
    return cleaned


def _validate_changes(changes: dict[str, Any]) -> dict[str, Any]:
    unknown = set(changes) - EDITABLE_FIELDS
    if unknown:
        raise ValidationFailed(f"Unknown campaign fields: {', '.join(sorted(unknown))}")

    cleaned = dict(changes)
    if "name" in cleaned:
        name = (cleaned["name"] or "").strip()
        if not name:
            raise ValidationFailed("Campaign name is required")
        if len(name) > NAME_MAX:
            raise ValidationFailed(f"Campaign name exceeds {NAME_MAX} characters")
        cleaned["name"] = name
    if "campaign_type" in cleaned:
        try:
            cleaned["campaign_type"] = CampaignType(cleaned["campaign_type"]).value
        except ValueError:
            raise ValidationFailed(
                f"campaign_type must be one of {', '.join(t.value for t in CampaignType)}"
            ) from None
    if "prize_segments" in cleaned:
        cleaned["prize_segments"] = _validate_segments(cleaned["prize_segments"])
    for field in LIMIT_FIELDS:
        value = cleaned.get(field)
        if value is not None and (not isinstance(value, int) or value < 0):
            raise ValidationFailed(f"{field} must be a non-negative integer or null")
    if "redemption_expiry_days" in cleaned:
        days = cleaned["redemption_expiry_days"]
        if not isinstance(days, int) or days < 1:
            raise ValidationFailed("redemption_expiry_days must be at least 1")
    for field in ("start_at", "end_at"):
        if field in cleaned:
            cleaned[field] = as_utc(cleaned[field])
    return cleaned


def _check_dates(campaign: Campaign) -> None:
    start, end = as_utc(campaign.start_at), as_utc(campaign.end_at)
    if start is not None and end is not None and end <= start:
        raise ValidationFailed("end_at must be after start_at")


# ---------------------------------------------------------------------------
# Lookups & projection
# ---------------------------------------------------------------------------
def _owned_campaign(session: Session, operator_id: str, campaign_id: str) -> Campaign:
    campaign = session.get(Campaign, campaign_id)
    if campaign is None or campaign.operator_id != operator_id:
        raise NotFound("campaign", campaign_id)
    return campaign


def campaign_to_dict(campaign: Campaign, now: datetime | None = None) -> dict[str, Any]:
    """Operator-facing projection including the derived lifecycle state."""
    state = resolve(campaign, as_utc(now) if now else utcnow())
    data = {
        "id": campaign.id,
        "operator_id": campaign.operator_id,
        "name": campaign.name,
        "campaign_type": campaign.campaign_type,
        "status": campaign.status,
        "is_published": campaign.is_published,
        "start_at": as_utc(campaign.start_at),
        "end_at": as_utc(campaign.end_at),
        "prize_segments": campaign.prize_segments or [],
        "spins_count": campaign.spins_count,
        "leads_count": campaign.leads_count,
        "redemption_expiry_days": campaign.redemption_expiry_days,
        "redemption_instructions": campaign.redemption_instructions,
        "lifecycle": state.to_dict(),
    }
    data.update({field: getattr(campaign, field) for field in LIMIT_FIELDS})
    return data


def participant_to_dict(participant: Participant) -> dict[str, Any]:
    return {
        "id": participant.id,
        "campaign_id": participant.campaign_id,
        "email": participant.email,
        "name": participant.name,
        "phone": participant.phone,
        "prize_won": participant.prize_won,
        "reference_number": participant.reference_number,
        "redemption_expires_at": as_utc(participant.redemption_expires_at),
        "is_redeemed": participant.is_redeemed,
        "redeemed_at": as_utc(participant.redeemed_at),
        "created_at": as_utc(participant.created_at),
    }


# ---------------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------------
def create_campaign(
    engine: Engine,
    operator_id: str,
    *,
    name: str,
    campaign_type: str = CampaignType.SPINWHEEL.value,
    prize_segments: list[dict[str, Any]] | None = None,
    config: PromoWheelConfig | None = None,
    **fields: Any,
) -> Campaign:
    """Spend one campaign credit and create a draft, unpublished campaign.

    Raises
    ------
    CreditsExhausted
        If the operator has no campaign credits left.  Nothing is created.
    """
    config = config or _DEFAULT_CONFIG
    fields.setdefault("redemption_expiry_days", config.default_redemption_expiry_days)
    values = _validate_changes({
        "name": name,
        "campaign_type": campaign_type,
        "prize_segments": prize_segments or [],
        **fields,
    })

    with get_session(engine) as session:
        if session.get(Operator, operator_id) is None:
            raise NotFound("operator", operator_id)
        ledger.reserve(session, operator_id, ledger.CreditKind.CAMPAIGN)

        campaign = Campaign(
            id=str(uuid.uuid4()),
            operator_id=operator_id,
            status=CampaignStatus.DRAFT.value,
            is_published=False,
            spins_count=0,
            leads_count=0,
            **values,
        )
        _check_dates(campaign)
        session.add(campaign)
        session.flush()
        logger.info("Campaign %s created by operator %s", campaign.id, operator_id)
        return campaign


def list_campaigns(engine: Engine, operator_id: str) -> list[Campaign]:
    with get_session(engine) as session:
        return list(session.scalars(
            select(Campaign)
            .where(Campaign.operator_id == operator_id)
            .order_by(Campaign.created_at.desc())
        ).all())


def get_campaign(engine: Engine, operator_id: str, campaign_id: str) -> Campaign:
    with get_session(engine) as session:
        return _owned_campaign(session, operator_id, campaign_id)


def update_campaign(
    engine: Engine, operator_id: str, campaign_id: str, **changes: Any
) -> Campaign:
    """Apply *changes* (any of :data:`EDITABLE_FIELDS`) to an owned campaign."""
    values = _validate_changes(changes)
    with get_session(engine) as session:
        campaign = _owned_campaign(session, operator_id, campaign_id)
        for key, value in values.items():
            setattr(campaign, key, value)
        _check_dates(campaign)
        session.flush()
        logger.info("Campaign %s updated: %s", campaign_id, ", ".join(sorted(values)))
        return campaign


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------
def change_status(
    engine: Engine,
    operator_id: str,
    campaign_id: str,
    status: str,
    now: datetime | None = None,
) -> Campaign:
    """Move the stored status, subject to the date-derived transition rules."""
    try:
        requested = CampaignStatus(status)
    except ValueError:
        raise ValidationFailed(f"Unknown status {status!r}") from None

    now = as_utc(now) if now else utcnow()
    with get_session(engine) as session:
        campaign = _owned_campaign(session, operator_id, campaign_id)
        validate_transition(resolve(campaign, now), requested)
        previous = campaign.status
        campaign.status = requested.value
        session.flush()
        logger.info("Campaign %s status %s → %s", campaign_id, previous, requested.value)
        return campaign


def publish(
    engine: Engine, operator_id: str, campaign_id: str, now: datetime | None = None
) -> Campaign:
    """Make the campaign visible to participants.

    Requires a name, at least one prize segment and both dates.  The stored
    status becomes ``ended`` if the end date has passed, otherwise
    ``active`` (shown as scheduled until the start date).
    """
    now = as_utc(now) if now else utcnow()
    with get_session(engine) as session:
        campaign = _owned_campaign(session, operator_id, campaign_id)
        if not (campaign.name or "").strip():
            raise ValidationFailed("Campaign name is required")
        if not campaign.prize_segments:
            raise ValidationFailed("At least one prize is required")
        if campaign.start_at is None or campaign.end_at is None:
            raise ValidationFailed("Start and end dates are required")

        campaign.is_published = True
        campaign.status = (
            CampaignStatus.ENDED.value
            if now > as_utc(campaign.end_at)
            else CampaignStatus.ACTIVE.value
        )
        session.flush()
        logger.info("Campaign %s published (status=%s)", campaign_id, campaign.status)
        return campaign


def unpublish(engine: Engine, operator_id: str, campaign_id: str) -> Campaign:
    with get_session(engine) as session:
        campaign = _owned_campaign(session, operator_id, campaign_id)
        campaign.is_published = False
        campaign.status = CampaignStatus.DRAFT.value
        session.flush()
        logger.info("Campaign %s unpublished", campaign_id)
        return campaign


# ---------------------------------------------------------------------------
# Participants
# ---------------------------------------------------------------------------
def list_participants(engine: Engine, operator_id: str, campaign_id: str) -> list[Participant]:
    with get_session(engine) as session:
        _owned_campaign(session, operator_id, campaign_id)
        return list(session.scalars(
            select(Participant)
            .where(Participant.campaign_id == campaign_id)
            .order_by(Participant.created_at.desc())
        ).all())


def mark_redeemed(
    engine: Engine,
    operator_id: str,
    campaign_id: str,
    participant_id: str,
    now: datetime | None = None,
) -> tuple[Participant, Notification | None]:
    """Mark a prize redeemed.  Terminal: a second call changes nothing.

    Only winners carry a reference number; lead-only participants raise
    :class:`ValidationFailed`.

    Returns the participant and, on the first redemption only, the owner
    notification to dispatch after commit.
    """
    now = as_utc(now) if now else utcnow()
    with get_session(engine) as session:
        campaign = _owned_campaign(session, operator_id, campaign_id)
        participant = session.get(Participant, participant_id)
        if participant is None or participant.campaign_id != campaign_id:
            raise NotFound("participant", participant_id)
        if participant.reference_number is None:
            raise ValidationFailed("Nothing to redeem")
        if participant.is_redeemed:
            return participant, None

        participant.is_redeemed = True
        participant.redeemed_at = now
        participant.updated_at = now
        session.flush()
        logger.info(
            "Participant %s redeemed on campaign %s (%s)",
            participant_id, campaign_id, participant.reference_number,
        )

        operator = campaign.operator
        notice = redemption_notice(
            owner_email=operator.email,
            owner_name=operator.business_name,
            campaign_name=campaign.name,
            participant_name=participant.name,
            prize=participant.prize_won,
            reference_number=participant.reference_number,
            redeemed_at=now,
        )
        return participant, notice


# ---------------------------------------------------------------------------
# Analytics
# ---------------------------------------------------------------------------
def campaign_analytics(
    engine: Engine,
    operator_id: str,
    campaign_id: str,
    range_: str = "7d",
    now: datetime | None = None,
) -> dict[str, Any]:
    """Daily spin/lead series, prize distribution and headline totals."""
    if range_ not in ANALYTICS_RANGES:
        raise ValidationFailed(f"range must be one of {', '.join(ANALYTICS_RANGES)}")
    now = as_utc(now) if now else utcnow()
    days = ANALYTICS_RANGES[range_]
    since = now - timedelta(days=days) if days else None

    with get_session(engine) as session:
        campaign = _owned_campaign(session, operator_id, campaign_id)

        play_query = select(PlayEvent.created_at, PlayEvent.prize_label).where(
            PlayEvent.campaign_id == campaign_id
        )
        lead_query = select(Participant.created_at).where(
            Participant.campaign_id == campaign_id
        )
        if since is not None:
            play_query = play_query.where(PlayEvent.created_at >= since)
            lead_query = lead_query.where(Participant.created_at >= since)

        plays = session.execute(play_query).all()
        lead_times = session.scalars(lead_query).all()
        total_leads = session.scalar(
            select(func.count()).select_from(Participant).where(
                Participant.campaign_id == campaign_id
            )
        ) or 0

        series: dict[str, dict[str, Any]] = {}
        for created_at, _ in plays:
            day = as_utc(created_at).date().isoformat()
            series.setdefault(day, {"date": day, "spins": 0, "leads": 0})["spins"] += 1
        for created_at in lead_times:
            day = as_utc(created_at).date().isoformat()
            series.setdefault(day, {"date": day, "spins": 0, "leads": 0})["leads"] += 1

        colors = {
            seg.label: seg.extra.get("color")
            for seg in normalize_segments(campaign.prize_segments or [])
        }
        prize_counts = Counter(label for _, label in plays)
        distribution = [
            {"prize": label, "count": count, "color": colors.get(label) or "#6366f1"}
            for label, count in prize_counts.most_common()
        ]

        total_spins = campaign.spins_count or 0
        if days:
            days_count = days
        else:
            created = as_utc(campaign.created_at) or now
            days_count = max(1, math.ceil((now - created).total_seconds() / 86400))

        return {
            "time_series": [series[key] for key in sorted(series)],
            "prize_distribution": distribution,
            "total_stats": {
                "total_spins": total_spins,
                "total_leads": total_leads,
                "conversion_rate": (total_leads / total_spins * 100) if total_spins else 0.0,
                "avg_spins_per_day": total_spins / days_count,
            },
        }
