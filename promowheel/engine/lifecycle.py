"""
promowheel.engine.lifecycle — Campaign Lifecycle Resolver
===========================================================

Pure mapping from a campaign's stored ``status``, ``is_published`` flag and
``start_at``/``end_at`` window to the *effective* status every gate uses.
No DB I/O.  The result depends on the wall clock, so it is recomputed on
every request and never stored or cached.

Rules (first match wins):

* dates missing      → stored status stands, every transition allowed
* ``now > end_at``   → ``ended``; only "end" is allowed
* ``now < start_at`` → scheduled; cannot pause or end what hasn't started
* otherwise          → stored status stands, every transition allowed

``is_published=False`` hides the campaign from participants (``draft``)
regardless of dates.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from promowheel.constants import DenialReason, as_utc
from promowheel.database.models import CampaignStatus
from promowheel.errors import InvalidTransition

if TYPE_CHECKING:
    from promowheel.database.models import Campaign

__all__ = [
    "EffectiveStatus",
    "LifecycleState",
    "participation_denial",
    "resolve",
    "validate_transition",
]

REASON_ENDED = "Campaign has ended because the end date has passed"
REASON_SCHEDULED = "Campaign is scheduled to start in the future"


class EffectiveStatus(enum.StrEnum):
    DRAFT = "draft"
    SCHEDULED = "scheduled"
    ACTIVE = "active"
    PAUSED = "paused"
    ENDED = "ended"


@dataclass(frozen=True, slots=True)
class LifecycleState:
    """Resolver output for one campaign at one instant."""

    effective_status: EffectiveStatus
    participant_status: EffectiveStatus
    is_published: bool
    can_activate: bool = True
    can_pause: bool = True
    can_end: bool = True
    reason: str | None = None

    def to_dict(self) -> dict:
        return {
            "effective_status": self.effective_status.value,
            "participant_status": self.participant_status.value,
            "is_published": self.is_published,
            "can_activate": self.can_activate,
            "can_pause": self.can_pause,
            "can_end": self.can_end,
            "reason": self.reason,
        }


def resolve(campaign: Campaign, now: datetime) -> LifecycleState:
    """Derive the effective lifecycle state of *campaign* at *now*."""
    stored = CampaignStatus(campaign.status)
    published = bool(campaign.is_published)
    start = as_utc(campaign.start_at)
    end = as_utc(campaign.end_at)
    now = as_utc(now)

    def _state(effective: EffectiveStatus, **flags) -> LifecycleState:
        return LifecycleState(
            effective_status=effective,
            participant_status=effective if published else EffectiveStatus.DRAFT,
            is_published=published,
            **flags,
        )

    if start is None or end is None:
        return _state(EffectiveStatus(stored.value))

    if now > end:
        return _state(
            EffectiveStatus.ENDED,
            can_activate=False,
            can_pause=False,
            can_end=True,
            reason=REASON_ENDED,
        )

    if now < start:
        effective = (
            EffectiveStatus.SCHEDULED
            if stored is CampaignStatus.ACTIVE
            else EffectiveStatus(stored.value)
        )
        return _state(
            effective,
            can_activate=True,
            can_pause=False,
            can_end=False,
            reason=REASON_SCHEDULED,
        )

    return _state(EffectiveStatus(stored.value))


_DENIALS: dict[EffectiveStatus, DenialReason] = {
    EffectiveStatus.DRAFT: DenialReason.NOT_ACTIVE,
    EffectiveStatus.SCHEDULED: DenialReason.NOT_STARTED,
    EffectiveStatus.PAUSED: DenialReason.PAUSED,
    EffectiveStatus.ENDED: DenialReason.ENDED,
}


def participation_denial(state: LifecycleState) -> DenialReason | None:
    """Return why participants can't play right now, or ``None`` if they can."""
    if not state.is_published:
        return DenialReason.NOT_PUBLISHED
    return _DENIALS.get(state.participant_status)


def validate_transition(state: LifecycleState, requested: CampaignStatus) -> None:
    """Raise :class:`InvalidTransition` if the operator may not move to *requested*."""
    if state.effective_status is EffectiveStatus.ENDED and requested is not CampaignStatus.ENDED:
        raise InvalidTransition(
            "Cannot change status - campaign has ended", reason=state.reason
        )
    if requested is CampaignStatus.ACTIVE and not state.can_activate:
        raise InvalidTransition("Cannot activate this campaign", reason=state.reason)
    if requested is CampaignStatus.PAUSED and not state.can_pause:
        raise InvalidTransition(
            "Cannot pause this campaign", reason="Campaign is scheduled for the future"
        )
    if requested is CampaignStatus.ENDED and not state.can_end:
        raise InvalidTransition(
            "Cannot end this campaign", reason="Campaign has not started yet"
        )
