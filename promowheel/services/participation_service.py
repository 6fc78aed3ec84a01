"""
promowheel.services.participation_service — Participation Gate
================================================================

Loads an :class:`~promowheel.engine.limits.AttemptHistory` for one identity
with one counter query plus (only when the campaign uses them) two windowed
play-event counts, then runs the campaign's limit policies over it.
:func:`enforce_windows` repeats the calendar-window checks at record time.

Read-only: nothing here writes.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import and_, func, or_, select
from sqlalchemy.orm import Session

from promowheel.constants import DenialReason, as_utc, mask_email
from promowheel.database.models import AttemptCounter, Dimension, PlayEvent
from promowheel.engine.limits import (
    AttemptHistory,
    Eligibility,
    build_policies,
    day_start,
    evaluate,
    week_start,
)
from promowheel.errors import NotEligible

if TYPE_CHECKING:
    from promowheel.database.models import Campaign
    from promowheel.engine.identity import Identity

logger = logging.getLogger(__name__)

_EVENT_COLUMNS = {
    Dimension.EMAIL: PlayEvent.email,
    Dimension.PHONE: PlayEvent.phone,
    Dimension.IP: PlayEvent.ip_address,
    Dimension.DEVICE: PlayEvent.device_fingerprint,
}


def _count_events_since(
    session: Session, campaign_id: str, identity: Identity, since: datetime
) -> int:
    """Play events since *since* that match any supplied identity value."""
    matches = [_EVENT_COLUMNS[dim] == value for dim, value in identity.values().items()]
    if not matches:
        return 0
    return session.scalar(
        select(func.count())
        .select_from(PlayEvent)
        .where(
            PlayEvent.campaign_id == campaign_id,
            PlayEvent.created_at >= since,
            or_(*matches),
        )
    ) or 0


def load_history(
    session: Session,
    campaign: Campaign,
    identity: Identity,
    now: datetime,
    *,
    week_first_day: int = 6,
) -> AttemptHistory:
    """Snapshot prior attempts by *identity* on *campaign*."""
    values = identity.values()
    attempts: dict[Dimension, int] = {dim: 0 for dim in values}
    last_attempt_at: datetime | None = None

    if values:
        rows = session.scalars(
            select(AttemptCounter).where(
                AttemptCounter.campaign_id == campaign.id,
                or_(*(
                    and_(AttemptCounter.dimension == dim.value, AttemptCounter.value == value)
                    for dim, value in values.items()
                )),
            )
        ).all()
        for row in rows:
            attempts[Dimension(row.dimension)] = row.attempt_count
            seen = as_utc(row.last_attempt_at)
            if last_attempt_at is None or seen > last_attempt_at:
                last_attempt_at = seen

    day_count = week_count = 0
    if campaign.limit_per_day:
        day_count = _count_events_since(session, campaign.id, identity, day_start(now))
    if campaign.limit_per_week:
        week_count = _count_events_since(
            session, campaign.id, identity, week_start(now, week_first_day)
        )

    return AttemptHistory(
        spins_count=campaign.spins_count or 0,
        attempts=attempts,
        last_attempt_at=last_attempt_at,
        day_count=day_count,
        week_count=week_count,
    )


def check_eligibility(
    session: Session,
    campaign: Campaign,
    identity: Identity,
    now: datetime,
    *,
    week_first_day: int = 6,
) -> Eligibility:
    """Evaluate every configured limit for *identity*; first failure wins."""
    policies = build_policies(campaign)
    if not policies:
        return Eligibility.allow()

    history = load_history(session, campaign, identity, now, week_first_day=week_first_day)
    result = evaluate(policies, history, now)
    if not result.allowed:
        logger.warning(
            "Attempt rejected on campaign %s: %s (email=%s)",
            campaign.id, result.reason, mask_email(identity.email),
        )
    return result


def enforce_windows(
    session: Session,
    campaign: Campaign,
    identity: Identity,
    now: datetime,
    *,
    week_first_day: int = 6,
) -> None:
    """Re-check the daily/weekly caps inside the recording transaction.

    Must run after the attempt counters for *identity* were upserted: those
    row locks serialise concurrent attempts sharing any identity value, so
    this count sees every play already committed for them.
    """
    windows = (
        (campaign.limit_per_day, DenialReason.DAILY_LIMIT, day_start(now)),
        (campaign.limit_per_week, DenialReason.WEEKLY_LIMIT, week_start(now, week_first_day)),
    )
    for cap, reason, since in windows:
        if cap and _count_events_since(session, campaign.id, identity, since) >= cap:
            logger.warning(
                "Attempt rejected at record time on campaign %s: %s (email=%s)",
                campaign.id, reason, mask_email(identity.email),
            )
            raise NotEligible(reason)
