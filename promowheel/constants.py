"""
promowheel.constants — Shared Constants & Helpers
===================================================

Single source of truth for participant-facing rejection reasons, their
messages, and the UTC normalisation helpers every layer relies on.
Import from here instead of duplicating strings in services and routes.
"""

from __future__ import annotations

import enum
from datetime import UTC, datetime


# ---------------------------------------------------------------------------
# Rejection reasons — machine-distinguishable, one per gate
# ---------------------------------------------------------------------------
class DenialReason(enum.StrEnum):
    """Why a participant attempt was refused."""
    # Lifecycle
    NOT_PUBLISHED = "not_published"
    NOT_ACTIVE = "not_active"
    NOT_STARTED = "not_started"
    PAUSED = "paused"
    ENDED = "ended"
    # Rate limits
    TOTAL_LIMIT = "total_limit"
    EMAIL_LIMIT = "email_limit"
    PHONE_LIMIT = "phone_limit"
    IP_LIMIT = "ip_limit"
    DEVICE_LIMIT = "device_limit"
    COOLDOWN = "cooldown"
    DAILY_LIMIT = "daily_limit"
    WEEKLY_LIMIT = "weekly_limit"
    # Claims
    EMAIL_REQUIRED = "email_required"
    NO_PRIZE = "no_prize"
    PRIZE_MISMATCH = "prize_mismatch"


DENIAL_MESSAGES: dict[DenialReason, str] = {
    DenialReason.NOT_PUBLISHED: "This campaign is not live yet. Please check back later.",
    DenialReason.NOT_ACTIVE: "This campaign is not active.",
    DenialReason.NOT_STARTED: "This campaign hasn't started yet. Please check back later.",
    DenialReason.PAUSED: "This campaign is currently paused.",
    DenialReason.ENDED: "This campaign has ended.",
    DenialReason.TOTAL_LIMIT: "This campaign has reached its total spin limit.",
    DenialReason.EMAIL_LIMIT: "You have reached the maximum spins allowed for this email address.",
    DenialReason.PHONE_LIMIT: "You have reached the maximum spins allowed for this phone number.",
    DenialReason.IP_LIMIT: "You have reached the maximum spins allowed from this location.",
    DenialReason.DEVICE_LIMIT: "You have reached the maximum spins allowed on this device.",
    DenialReason.COOLDOWN: "Please wait before spinning again.",
    DenialReason.DAILY_LIMIT: "You have reached the daily spin limit. Try again tomorrow!",
    DenialReason.WEEKLY_LIMIT: "You have reached the weekly spin limit. Try again next week!",
    DenialReason.EMAIL_REQUIRED: "An email address is required to claim a prize.",
    DenialReason.NO_PRIZE: "There is no prize to claim for this entry.",
    DenialReason.PRIZE_MISMATCH: "The prize does not match the recorded result.",
}


def cooldown_message(hours_remaining: int) -> str:
    """Participant message for an active cooldown, e.g. "Please wait 3 hours…"."""
    unit = "hour" if hours_remaining == 1 else "hours"
    return f"Please wait {hours_remaining} {unit} before spinning again."


CREDITS_EXHAUSTED_MESSAGES: dict[str, str] = {
    "campaign": (
        "Campaign credits exhausted. Please upgrade your plan or purchase "
        "campaign credits to continue."
    ),
    "lead": (
        "Lead credits exhausted. Please upgrade your plan or purchase lead "
        "credits to continue capturing leads."
    ),
}


# ---------------------------------------------------------------------------
# Time helpers
# ---------------------------------------------------------------------------
def utcnow() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on round-trip)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


# ---------------------------------------------------------------------------
# Log-safe helpers
# ---------------------------------------------------------------------------
def mask_email(email: str | None) -> str:
    """``alice@example.com`` → ``a***@example.com`` for log lines."""
    if not email:
        return "-"
    local, _, domain = email.partition("@")
    return f"{local[:1]}***@{domain}" if domain else f"{local[:1]}***"
