"""
promowheel.services.play_service — Participant Play & Claim Pipeline
======================================================================

Shared service module behind every participant-facing endpoint.

* :func:`check_spin`   — read-only: lifecycle gate + limit policies.
* :func:`spin`         — gate, draw server side, record the play.
* :func:`claim_prize`  — verify the prize, capture the participant once,
  issue the reference number.
* :func:`capture_lead` — capture the participant before any spin.

Each public function is one transaction (:func:`get_session`): a rejection
anywhere, including :class:`~promowheel.errors.CreditsExhausted` raised
after counters were bumped, rolls the whole attempt back.

Participant creation is idempotent by ``(campaign_id, email)``.  The
existence check happens before any ledger call, and the insert runs in a
SAVEPOINT guarded by the unique constraint: the loser of a race rolls back
its own debit and continues as a replay of the winner's row.
"""

from __future__ import annotations

import logging
import secrets
import string
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from sqlalchemy import DateTime, bindparam, or_, select, text, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from promowheel.config import PromoWheelConfig
from promowheel.constants import DenialReason, as_utc, mask_email, utcnow
from promowheel.database.engine import get_session
from promowheel.database.models import AttemptCounter, Campaign, Participant, PlayEvent
from promowheel.engine.draw import DrawResult, PrizeSegment, draw, normalize_segments
from promowheel.engine.lifecycle import participation_denial, resolve
from promowheel.engine.limits import Eligibility, dimension_caps, dimension_reason
from promowheel.errors import NotEligible, NotFound, ValidationFailed
from promowheel.services import ledger
from promowheel.services.notifications import Notification, prize_confirmation
from promowheel.services.participation_service import check_eligibility, enforce_windows

if TYPE_CHECKING:
    import random

    from sqlalchemy import Engine

    from promowheel.engine.identity import Identity

logger = logging.getLogger(__name__)

REFERENCE_ALPHABET = string.ascii_uppercase + string.digits
REFERENCE_SUFFIX_LENGTH = 8

_DEFAULT_CONFIG = PromoWheelConfig()
_DEFAULT_ENTITLEMENTS = ledger.StoredEntitlements()


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class SpinResult:
    play_id: str
    segment_index: int
    segment: PrizeSegment

    @property
    def is_win(self) -> bool:
        return self.segment.is_win


@dataclass(frozen=True, slots=True)
class ClaimResult:
    participant_id: str
    reference_number: str
    redemption_expires_at: datetime | None
    prize: str
    created: bool
    notification: Notification | None = None


@dataclass(frozen=True, slots=True)
class LeadResult:
    participant_id: str
    existing: bool


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------
def _load_campaign(session: Session, campaign_id: str) -> Campaign:
    campaign = session.get(Campaign, campaign_id)
    if campaign is None:
        raise NotFound("campaign", campaign_id)
    return campaign


def _ensure_open(campaign: Campaign, now: datetime) -> None:
    """Raise :class:`NotEligible` unless participants may play right now."""
    denial = participation_denial(resolve(campaign, now))
    if denial is not None:
        raise NotEligible(denial)


def _find_participant(session: Session, campaign_id: str, email: str) -> Participant | None:
    return session.scalar(
        select(Participant).where(
            Participant.campaign_id == campaign_id,
            Participant.email == email,
        )
    )


_UPSERT_COUNTER_SQL = """
    INSERT INTO attempt_counters (campaign_id, dimension, value, attempt_count, last_attempt_at)
    VALUES (:campaign_id, :dimension, :value, 1, :now)
    ON CONFLICT (campaign_id, dimension, value)
    DO UPDATE SET attempt_count = attempt_counters.attempt_count + 1,
                  last_attempt_at = excluded.last_attempt_at
"""

_CAP_GUARD = "attempt_counters.attempt_count < :cap"
_COOLDOWN_GUARD = "attempt_counters.last_attempt_at <= :cutoff"


def _upsert_counter_stmt(capped: bool, cooled: bool):
    """Counter upsert whose ``DO UPDATE`` only fires while the guards hold."""
    guards = [g for g, on in ((_CAP_GUARD, capped), (_COOLDOWN_GUARD, cooled)) if on]
    sql = _UPSERT_COUNTER_SQL
    if guards:
        sql += "    WHERE " + " AND ".join(guards) + "\n"
    params = [bindparam("now", type_=DateTime(timezone=True))]
    if cooled:
        params.append(bindparam("cutoff", type_=DateTime(timezone=True)))
    return text(sql).bindparams(*params)


def _bump_attempt_counters(
    session: Session, campaign: Campaign, identity: Identity, now: datetime
) -> None:
    """One atomic upsert per supplied identity value.

    The per-identity cap and the cooldown are enforced in the statement
    itself, so two requests that both passed the read-only gate cannot both
    increment.  The upsert also row-locks the counter until commit.
    """
    caps = dimension_caps(campaign)
    cutoff = now - timedelta(hours=campaign.cooldown_hours) if campaign.cooldown_hours else None
    for dim, value in identity.values().items():
        cap = caps.get(dim)
        params = {
            "campaign_id": campaign.id,
            "dimension": dim.value,
            "value": value,
            "now": now,
        }
        if cap:
            params["cap"] = cap
        if cutoff is not None:
            params["cutoff"] = cutoff
        result = session.execute(_upsert_counter_stmt(bool(cap), cutoff is not None), params)
        if result.rowcount == 1:
            continue

        count = session.scalar(
            select(AttemptCounter.attempt_count).where(
                AttemptCounter.campaign_id == campaign.id,
                AttemptCounter.dimension == dim.value,
                AttemptCounter.value == value,
            )
        )
        reason = (
            dimension_reason(dim)
            if cap and count is not None and count >= cap
            else DenialReason.COOLDOWN
        )
        logger.warning(
            "Attempt rejected at record time on campaign %s: %s (%s)",
            campaign.id, reason, dim.value,
        )
        raise NotEligible(reason)


def _bump_spins(session: Session, campaign: Campaign, now: datetime) -> None:
    """``spins_count += 1`` unless that would pass ``limit_total``."""
    result = session.execute(
        update(Campaign)
        .where(
            Campaign.id == campaign.id,
            or_(
                Campaign.limit_total.is_(None),
                Campaign.limit_total == 0,
                Campaign.spins_count < Campaign.limit_total,
            ),
        )
        .values(spins_count=Campaign.spins_count + 1, updated_at=now)
    )
    if result.rowcount != 1:
        raise NotEligible(DenialReason.TOTAL_LIMIT)


def _bump_leads(session: Session, campaign: Campaign, now: datetime) -> None:
    session.execute(
        update(Campaign)
        .where(Campaign.id == campaign.id)
        .values(leads_count=Campaign.leads_count + 1, updated_at=now)
    )


def generate_reference_number(campaign_id: str, prefix_length: int = 8) -> str:
    """``<campaign id prefix, upper-cased>-<8 random A-Z0-9>``."""
    suffix = "".join(secrets.choice(REFERENCE_ALPHABET) for _ in range(REFERENCE_SUFFIX_LENGTH))
    return f"{campaign_id[:prefix_length].upper()}-{suffix}"


def redemption_expiry(campaign: Campaign, now: datetime, default_days: int = 7) -> datetime:
    """``now + redemption_expiry_days``, but never past the campaign's end."""
    days = campaign.redemption_expiry_days or default_days
    expires = as_utc(now) + timedelta(days=days)
    end = as_utc(campaign.end_at)
    if end is not None and end < expires:
        return end
    return expires


def _upsert_participant(
    session: Session,
    campaign: Campaign,
    email: str,
    *,
    name: str | None,
    phone: str | None,
    prize: str | None,
    now: datetime,
    entitlements: ledger.EntitlementLookup,
) -> tuple[Participant, bool]:
    """Return ``(participant, created)`` for ``(campaign, email)``.

    A new record costs one lead credit when the operator's plan is metered.
    An existing record only gets ``prize_won`` filled where it is still NULL.
    """
    existing = _find_participant(session, campaign.id, email)
    if existing is not None:
        if prize and existing.prize_won is None:
            existing.prize_won = prize
            existing.updated_at = now
        return existing, False

    participant = Participant(
        id=str(uuid.uuid4()),
        campaign_id=campaign.id,
        email=email,
        name=name,
        phone=phone,
        prize_won=prize,
        is_redeemed=False,
        created_at=now,
        updated_at=now,
    )
    try:
        with session.begin_nested():   # SAVEPOINT: the debit and the insert stand or fall together
            if entitlements.lead_charge_applies(session, campaign.operator_id, now):
                ledger.reserve(session, campaign.operator_id, ledger.CreditKind.LEAD)
            session.add(participant)
            session.flush()
    except IntegrityError:
        # Lost the race on uq_participants_campaign_email; replay the winner's row.
        winner = _find_participant(session, campaign.id, email)
        if winner is None:
            raise
        logger.info(
            "Concurrent capture on campaign %s for %s resolved as replay",
            campaign.id, mask_email(email),
        )
        if prize and winner.prize_won is None:
            winner.prize_won = prize
            winner.updated_at = now
        return winner, False

    _bump_leads(session, campaign, now)
    logger.info("Participant captured on campaign %s: %s", campaign.id, mask_email(email))
    return participant, True


def _bind_winning_play(
    session: Session, campaign_id: str, play_id: str, email: str
) -> str | None:
    """Claim play *play_id* for *email*; return its prize label if it's a bindable win.

    The conditional update means a play can be bound to one email only.
    """
    play = session.get(PlayEvent, play_id)
    if play is None or play.campaign_id != campaign_id or not play.is_win:
        return None
    if play.email and play.email != email:
        return None
    result = session.execute(
        update(PlayEvent)
        .where(
            PlayEvent.id == play_id,
            or_(PlayEvent.claimed_email.is_(None), PlayEvent.claimed_email == email),
        )
        .values(claimed_email=email)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return None
    return play.prize_label


# ---------------------------------------------------------------------------
# Recording
# ---------------------------------------------------------------------------
def record_play(
    session: Session,
    campaign: Campaign,
    identity: Identity,
    outcome: DrawResult,
    now: datetime,
    *,
    entitlements: ledger.EntitlementLookup | None = None,
    week_first_day: int = 6,
) -> PlayEvent:
    """Persist one drawn outcome inside the caller's transaction.

    1. Guarded attempt-counter upsert per supplied identity value (raises
       ``NotEligible`` on a per-identity cap or cooldown), then the daily and
       weekly windows are re-counted under those row locks.
    2. Guarded ``spins_count`` increment (raises ``NotEligible(total_limit)``).
    3. Append the :class:`PlayEvent`.
    4. Winning play with an email → upsert the participant.
    """
    _bump_attempt_counters(session, campaign, identity, now)
    enforce_windows(session, campaign, identity, now, week_first_day=week_first_day)
    _bump_spins(session, campaign, now)

    segment = outcome.segment
    play = PlayEvent(
        id=secrets.token_urlsafe(32),
        campaign_id=campaign.id,
        email=identity.email,
        phone=identity.phone,
        ip_address=identity.ip,
        device_fingerprint=identity.device_fingerprint,
        segment_index=outcome.index,
        prize_label=segment.label,
        is_win=segment.is_win,
        created_at=now,
    )
    if identity.email and segment.is_win:
        play.claimed_email = identity.email
    session.add(play)
    session.flush()

    if identity.email and segment.is_win:
        _upsert_participant(
            session,
            campaign,
            identity.email,
            name=None,
            phone=identity.phone,
            prize=segment.label,
            now=now,
            entitlements=entitlements or _DEFAULT_ENTITLEMENTS,
        )

    logger.info(
        "Play recorded on campaign %s: segment %d (%s, win=%s)",
        campaign.id, outcome.index, segment.label, segment.is_win,
    )
    return play


# ---------------------------------------------------------------------------
# Public operations
# ---------------------------------------------------------------------------
def check_spin(
    engine: Engine,
    campaign_id: str,
    identity: Identity,
    now: datetime | None = None,
    *,
    config: PromoWheelConfig | None = None,
) -> Eligibility:
    """Would *identity* be allowed to spin right now?  Never writes."""
    now = as_utc(now) if now else utcnow()
    config = config or _DEFAULT_CONFIG
    with get_session(engine) as session:
        campaign = _load_campaign(session, campaign_id)
        denial = participation_denial(resolve(campaign, now))
        if denial is not None:
            return Eligibility.deny(denial)
        return check_eligibility(
            session, campaign, identity, now, week_first_day=config.week_start_index
        )


def spin(
    engine: Engine,
    campaign_id: str,
    identity: Identity,
    now: datetime | None = None,
    *,
    rng: random.Random | None = None,
    config: PromoWheelConfig | None = None,
    entitlements: ledger.EntitlementLookup | None = None,
) -> SpinResult:
    """Gate, draw and record one spin atomically."""
    now = as_utc(now) if now else utcnow()
    config = config or _DEFAULT_CONFIG
    with get_session(engine) as session:
        campaign = _load_campaign(session, campaign_id)
        _ensure_open(campaign, now)
        check_eligibility(
            session, campaign, identity, now, week_first_day=config.week_start_index
        ).raise_for_denial()

        segments = normalize_segments(campaign.prize_segments or [])
        if not segments:
            raise ValidationFailed("Campaign has no prize segments")
        outcome = draw(segments, rng)

        play = record_play(
            session,
            campaign,
            identity,
            outcome,
            now,
            entitlements=entitlements,
            week_first_day=config.week_start_index,
        )
        return SpinResult(play_id=play.id, segment_index=outcome.index, segment=outcome.segment)


def claim_prize(
    engine: Engine,
    campaign_id: str,
    identity: Identity,
    *,
    name: str | None = None,
    phone: str | None = None,
    prize_label: str | None = None,
    play_id: str | None = None,
    now: datetime | None = None,
    config: PromoWheelConfig | None = None,
    entitlements: ledger.EntitlementLookup | None = None,
) -> ClaimResult:
    """Record the participant's prize claim exactly once.

    The prize is never taken from the caller: it is the participant's
    recorded ``prize_won`` or the winning play referenced by *play_id*.
    A caller-supplied *prize_label* only serves as a cross-check.
    """
    now = as_utc(now) if now else utcnow()
    config = config or _DEFAULT_CONFIG
    email = identity.email
    phone = phone or identity.phone

    with get_session(engine) as session:
        campaign = _load_campaign(session, campaign_id)
        _ensure_open(campaign, now)
        if not email:
            raise NotEligible(DenialReason.EMAIL_REQUIRED)

        existing = _find_participant(session, campaign.id, email)
        verified = existing.prize_won if existing is not None else None
        if verified is None and play_id:
            verified = _bind_winning_play(session, campaign.id, play_id, email)
        if verified is None:
            logger.warning(
                "Claim without verifiable prize on campaign %s (%s)",
                campaign.id, mask_email(email),
            )
            raise NotEligible(DenialReason.NO_PRIZE)
        if prize_label and prize_label.strip() != verified:
            logger.warning(
                "Claim prize mismatch on campaign %s (%s): %r != %r",
                campaign.id, mask_email(email), prize_label, verified,
            )
            raise NotEligible(DenialReason.PRIZE_MISMATCH)

        participant, created = _upsert_participant(
            session,
            campaign,
            email,
            name=name,
            phone=phone,
            prize=verified,
            now=now,
            entitlements=entitlements or _DEFAULT_ENTITLEMENTS,
        )
        if not created:
            if name:
                participant.name = name
            if phone:
                participant.phone = phone

        issued = participant.reference_number is None
        if issued:
            participant.reference_number = generate_reference_number(
                campaign.id, config.reference_prefix_length
            )
            participant.redemption_expires_at = redemption_expiry(
                campaign, now, config.default_redemption_expiry_days
            )
        participant.updated_at = now
        session.flush()

        expires_at = as_utc(participant.redemption_expires_at)
        notification = None
        if issued:
            notification = prize_confirmation(
                email=email,
                name=participant.name,
                prize=participant.prize_won or verified,
                business_name=campaign.operator.business_name if campaign.operator else None,
                reference_number=participant.reference_number,
                expires_at=expires_at,
                instructions=campaign.redemption_instructions,
            )
            logger.info(
                "Prize claimed on campaign %s by %s → %s",
                campaign.id, mask_email(email), participant.reference_number,
            )

        return ClaimResult(
            participant_id=participant.id,
            reference_number=participant.reference_number,
            redemption_expires_at=expires_at,
            prize=participant.prize_won or verified,
            created=created,
            notification=notification,
        )


def capture_lead(
    engine: Engine,
    campaign_id: str,
    identity: Identity,
    *,
    name: str | None = None,
    phone: str | None = None,
    now: datetime | None = None,
    entitlements: ledger.EntitlementLookup | None = None,
) -> LeadResult:
    """Capture the participant's details before they spin.

    An existing record for the same email is returned untouched.
    """
    now = as_utc(now) if now else utcnow()
    with get_session(engine) as session:
        campaign = _load_campaign(session, campaign_id)
        _ensure_open(campaign, now)
        if not identity.email:
            raise NotEligible(DenialReason.EMAIL_REQUIRED)

        participant, created = _upsert_participant(
            session,
            campaign,
            identity.email,
            name=name,
            phone=phone or identity.phone,
            prize=None,
            now=now,
            entitlements=entitlements or _DEFAULT_ENTITLEMENTS,
        )
        return LeadResult(participant_id=participant.id, existing=not created)


def public_view(engine: Engine, campaign_id: str, now: datetime | None = None) -> dict[str, Any]:
    """Participant-safe campaign projection (labels only, derived status)."""
    now = as_utc(now) if now else utcnow()
    with get_session(engine) as session:
        campaign = _load_campaign(session, campaign_id)
        state = resolve(campaign, now)
        return {
            "id": campaign.id,
            "name": campaign.name,
            "campaign_type": campaign.campaign_type,
            "status": state.participant_status.value,
            "is_published": state.is_published,
            "start_at": as_utc(campaign.start_at),
            "end_at": as_utc(campaign.end_at),
            "segments": [
                {"label": seg.label, **{k: v for k, v in seg.extra.items() if k in ("color", "icon")}}
                for seg in normalize_segments(campaign.prize_segments or [])
            ],
            "redemption_instructions": campaign.redemption_instructions,
        }
