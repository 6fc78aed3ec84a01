"""
promowheel.services.notifications — Fire-and-forget Notification Hooks
========================================================================

Two messages leave the engine:

* ``reward_confirmation_participant`` — sent to a participant after a new
  prize claim is committed (reference number, expiry, instructions).
* ``reward_redemption_owner`` — sent to the operator when a prize is marked
  redeemed.

Delivery itself is an external collaborator behind the :class:`Notifier`
protocol.  :func:`dispatch` never raises: a failing notifier is logged and
the engine result stands.  Routes schedule dispatch as a FastAPI background
task so it always runs after the transaction has committed.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Protocol

from promowheel.constants import mask_email

logger = logging.getLogger(__name__)

PARTICIPANT_CONFIRMATION = "reward_confirmation_participant"
OWNER_REDEMPTION = "reward_redemption_owner"


@dataclass(frozen=True, slots=True)
class Notification:
    template: str
    recipient: str
    context: dict[str, Any]


class Notifier(Protocol):
    def send(self, notification: Notification) -> None:
        ...


class LogNotifier:
    """Default notifier: records the message in the application log only."""

    def send(self, notification: Notification) -> None:
        logger.info(
            "Notification %s → %s", notification.template, mask_email(notification.recipient)
        )


def dispatch(notifier: Notifier, notification: Notification | None) -> bool:
    """Send *notification*, swallowing and logging any delivery failure.

    Returns ``True`` when the notifier accepted the message.
    """
    if notification is None:
        return False
    try:
        notifier.send(notification)
    except Exception:
        logger.exception(
            "Failed to send %s to %s", notification.template, mask_email(notification.recipient)
        )
        return False
    return True


# ---------------------------------------------------------------------------
# Message builders
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class PrizeConfirmation:
    participant_name: str
    prize_name: str
    business_name: str
    reference_number: str
    expiry_date: str
    redemption_instructions: str


def prize_confirmation(
    *,
    email: str,
    name: str | None,
    prize: str,
    business_name: str | None,
    reference_number: str,
    expires_at: datetime | None,
    instructions: str | None,
) -> Notification:
    body = PrizeConfirmation(
        participant_name=name or "Winner",
        prize_name=prize,
        business_name=business_name or "PromoWheel",
        reference_number=reference_number,
        expiry_date=expires_at.strftime("%B %d, %Y") if expires_at else "",
        redemption_instructions=(
            instructions or "Please contact the business to claim your prize."
        ),
    )
    return Notification(PARTICIPANT_CONFIRMATION, email, asdict(body))


def redemption_notice(
    *,
    owner_email: str | None,
    owner_name: str | None,
    campaign_name: str,
    participant_name: str | None,
    prize: str | None,
    reference_number: str | None,
    redeemed_at: datetime,
) -> Notification | None:
    """Owner-side redemption message, or ``None`` if the owner has no email."""
    if not owner_email:
        return None
    return Notification(
        OWNER_REDEMPTION,
        owner_email,
        {
            "owner_name": owner_name or "Business Owner",
            "campaign_name": campaign_name,
            "participant_name": participant_name or "Customer",
            "prize_name": prize or "Prize",
            "reference_number": reference_number or "N/A",
            "redemption_date": redeemed_at.strftime("%B %d, %Y"),
        },
    )
