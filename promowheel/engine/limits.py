"""
promowheel.engine.limits — Participation Limit Policies
=========================================================

Every cap a campaign can configure is expressed as a :class:`LimitPolicy`
and evaluated in a fixed order against an :class:`AttemptHistory` snapshot.
The first policy that fails decides the rejection reason.

Order:

1. lifetime total (campaign-wide ``spins_count``)
2. per-dimension lifetime caps: email, phone, ip, device
3. cooldown since the most recent attempt by any matching identity value
4. calendar-day window
5. calendar-week window

This module is pure; loading the snapshot lives in
:mod:`promowheel.services.participation_service`.
"""

from __future__ import annotations

import enum
import math
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from promowheel.constants import DENIAL_MESSAGES, DenialReason, as_utc, cooldown_message
from promowheel.database.models import Dimension
from promowheel.errors import NotEligible

if TYPE_CHECKING:
    from promowheel.database.models import Campaign

__all__ = [
    "AttemptHistory",
    "Eligibility",
    "LimitPolicy",
    "Window",
    "build_policies",
    "day_start",
    "dimension_caps",
    "dimension_reason",
    "evaluate",
    "week_start",
]


class Window(enum.StrEnum):
    LIFETIME = "lifetime"
    COOLDOWN = "cooldown"
    DAY = "day"
    WEEK = "week"


_DIMENSION_REASONS: dict[Dimension, DenialReason] = {
    Dimension.EMAIL: DenialReason.EMAIL_LIMIT,
    Dimension.PHONE: DenialReason.PHONE_LIMIT,
    Dimension.IP: DenialReason.IP_LIMIT,
    Dimension.DEVICE: DenialReason.DEVICE_LIMIT,
}

_DIMENSION_FIELDS: dict[Dimension, str] = {
    Dimension.EMAIL: "limit_per_email",
    Dimension.PHONE: "limit_per_phone",
    Dimension.IP: "limit_per_ip",
    Dimension.DEVICE: "limit_per_device",
}


def dimension_caps(campaign: Campaign) -> dict[Dimension, int]:
    """Configured per-identity caps, keyed by dimension.  Unset or zero caps are absent."""
    caps = {dim: getattr(campaign, attr) for dim, attr in _DIMENSION_FIELDS.items()}
    return {dim: cap for dim, cap in caps.items() if cap}


def dimension_reason(dim: Dimension) -> DenialReason:
    return _DIMENSION_REASONS[dim]


# ---------------------------------------------------------------------------
# Window boundaries (UTC calendar)
# ---------------------------------------------------------------------------
def day_start(now: datetime) -> datetime:
    """Midnight UTC of *now*'s calendar day."""
    now = as_utc(now)
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def week_start(now: datetime, first_weekday: int = 6) -> datetime:
    """Midnight UTC of the first day of *now*'s week.

    *first_weekday* follows :meth:`datetime.weekday` (0 = Monday, 6 = Sunday).
    """
    start = day_start(now)
    return start - timedelta(days=(start.weekday() - first_weekday) % 7)


# ---------------------------------------------------------------------------
# Results & snapshots
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class Eligibility:
    allowed: bool
    reason: DenialReason | None = None
    message: str | None = None

    @classmethod
    def allow(cls) -> Eligibility:
        return cls(allowed=True)

    @classmethod
    def deny(cls, reason: DenialReason, message: str | None = None) -> Eligibility:
        return cls(allowed=False, reason=reason, message=message or DENIAL_MESSAGES[reason])

    def raise_for_denial(self) -> None:
        """Raise :class:`NotEligible` if this result is a rejection."""
        if not self.allowed:
            raise NotEligible(self.reason, self.message)


@dataclass(frozen=True, slots=True)
class AttemptHistory:
    """Everything the policies need to know about prior attempts.

    ``attempts`` holds an entry (possibly 0) for every dimension the
    identity supplied; dimensions the participant didn't supply are absent
    and their caps are skipped.
    """

    spins_count: int = 0
    attempts: dict[Dimension, int] = field(default_factory=dict)
    last_attempt_at: datetime | None = None
    day_count: int = 0
    week_count: int = 0


# ---------------------------------------------------------------------------
# Policies
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class LimitPolicy:
    """One configured cap.

    ``dimension`` is ``None`` for caps that aren't tied to a single identity
    dimension (campaign total, cooldown and calendar windows).
    """

    reason: DenialReason
    window: Window
    cap: int
    dimension: Dimension | None = None

    def check(self, history: AttemptHistory, now: datetime) -> Eligibility:
        if self.window is Window.COOLDOWN:
            return self._check_cooldown(history, now)

        if self.window is Window.DAY:
            used = history.day_count
        elif self.window is Window.WEEK:
            used = history.week_count
        elif self.dimension is None:
            used = history.spins_count
        elif self.dimension in history.attempts:
            used = history.attempts[self.dimension]
        else:
            return Eligibility.allow()

        if used >= self.cap:
            return Eligibility.deny(self.reason)
        return Eligibility.allow()

    def _check_cooldown(self, history: AttemptHistory, now: datetime) -> Eligibility:
        last = as_utc(history.last_attempt_at)
        if last is None:
            return Eligibility.allow()
        remaining = timedelta(hours=self.cap) - (as_utc(now) - last)
        if remaining <= timedelta(0):
            return Eligibility.allow()
        hours = math.ceil(remaining.total_seconds() / 3600)
        return Eligibility.deny(self.reason, cooldown_message(hours))


def build_policies(campaign: Campaign) -> list[LimitPolicy]:
    """Translate the campaign's limit columns into ordered policies.

    A limit that is unset (or zero) is not a policy at all.
    """
    policies: list[LimitPolicy] = []

    if campaign.limit_total:
        policies.append(
            LimitPolicy(DenialReason.TOTAL_LIMIT, Window.LIFETIME, campaign.limit_total)
        )

    for dim, cap in dimension_caps(campaign).items():
        policies.append(
            LimitPolicy(_DIMENSION_REASONS[dim], Window.LIFETIME, cap, dimension=dim)
        )

    if campaign.cooldown_hours:
        policies.append(
            LimitPolicy(DenialReason.COOLDOWN, Window.COOLDOWN, campaign.cooldown_hours)
        )
    if campaign.limit_per_day:
        policies.append(
            LimitPolicy(DenialReason.DAILY_LIMIT, Window.DAY, campaign.limit_per_day)
        )
    if campaign.limit_per_week:
        policies.append(
            LimitPolicy(DenialReason.WEEKLY_LIMIT, Window.WEEK, campaign.limit_per_week)
        )
    return policies


def evaluate(
    policies: Iterable[LimitPolicy], history: AttemptHistory, now: datetime
) -> Eligibility:
    """Run *policies* in order; the first rejection wins."""
    for policy in policies:
        result = policy.check(history, now)
        if not result.allowed:
            return result
    return Eligibility.allow()
