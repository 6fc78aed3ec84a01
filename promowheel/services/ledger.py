"""
promowheel.services.ledger — Operator Credit Ledger
=====================================================

Two prepaid balances live on the operator row: ``campaign_credits`` (spent
when a campaign is created) and ``lead_credits`` (spent when a *new*
participant record is captured on a metered plan).

Every debit is a single compare-and-decrement statement::

    UPDATE operators SET lead_credits = lead_credits - 1
    WHERE id = :id AND lead_credits > 0

so two concurrent captures can never both take the last credit and a
balance never goes below zero.  Debits run inside the caller's session;
if the surrounding operation fails the debit rolls back with it.

Grants are admin actions and are audited in ``admin_log`` with before/after
snapshots.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, Protocol

from sqlalchemy import update
from sqlalchemy.orm import Session

from promowheel.constants import as_utc
from promowheel.database.engine import get_session
from promowheel.database.models import AdminLog, Operator, PlanType
from promowheel.errors import CreditsExhausted, NotFound, ValidationFailed

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)

__all__ = [
    "CreditBalance",
    "CreditKind",
    "EntitlementLookup",
    "StoredEntitlements",
    "get_balance",
    "grant_credits",
    "lead_charge_applies",
    "reserve",
    "try_reserve",
]


class CreditKind(enum.StrEnum):
    CAMPAIGN = "campaign"
    LEAD = "lead"


_COLUMNS = {
    CreditKind.CAMPAIGN: Operator.campaign_credits,
    CreditKind.LEAD: Operator.lead_credits,
}


@dataclass(frozen=True, slots=True)
class CreditBalance:
    operator_id: str
    campaign_credits: int
    lead_credits: int
    plan_type: str
    subscription_status: str | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "operator_id": self.operator_id,
            "campaign_credits": self.campaign_credits,
            "lead_credits": self.lead_credits,
            "plan_type": self.plan_type,
            "subscription_status": self.subscription_status,
        }


# ---------------------------------------------------------------------------
# Reservation (debits)
# ---------------------------------------------------------------------------
def try_reserve(session: Session, operator_id: str, kind: CreditKind | str) -> bool:
    """Decrement one *kind* credit if any remain.  Returns whether it was granted."""
    column = _COLUMNS[CreditKind(kind)]
    result = session.execute(
        update(Operator)
        .where(Operator.id == operator_id, column > 0)
        .values({column: column - 1})
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def reserve(session: Session, operator_id: str, kind: CreditKind | str) -> None:
    """Like :func:`try_reserve` but raises :class:`CreditsExhausted` on refusal."""
    kind = CreditKind(kind)
    if not try_reserve(session, operator_id, kind):
        logger.warning("Operator %s has no %s credits left", operator_id, kind.value)
        raise CreditsExhausted(kind.value)


# ---------------------------------------------------------------------------
# Entitlements
# ---------------------------------------------------------------------------
def lead_charge_applies(operator: Operator, now: datetime) -> bool:
    """True when capturing a lead costs this operator a lead credit.

    Free plans are always metered.  Paid plans are metered once the
    subscription is no longer ``active`` or ``plan_expires_at`` has passed.
    """
    if operator.plan_type == PlanType.FREE.value:
        return True
    if operator.subscription_status != "active":
        return True
    expires = as_utc(operator.plan_expires_at)
    return expires is not None and expires < as_utc(now)


class EntitlementLookup(Protocol):
    """Answers "does capturing a lead cost this operator a credit?"."""

    def lead_charge_applies(self, session: Session, operator_id: str, now: datetime) -> bool:
        ...


class StoredEntitlements:
    """Reads plan state straight from the ``operators`` row."""

    def lead_charge_applies(self, session: Session, operator_id: str, now: datetime) -> bool:
        operator = session.get(Operator, operator_id)
        if operator is None:
            raise NotFound("operator", operator_id)
        return lead_charge_applies(operator, now)


# ---------------------------------------------------------------------------
# Grants & balance
# ---------------------------------------------------------------------------
def _balance_snapshot(operator: Operator) -> dict[str, int]:
    return {
        "campaign_credits": operator.campaign_credits,
        "lead_credits": operator.lead_credits,
    }


def grant_credits(
    engine: Engine,
    operator_id: str,
    *,
    campaign_credits: int = 0,
    lead_credits: int = 0,
    actor_id: str,
    reason: str | None = None,
) -> CreditBalance:
    """Add credits to an operator and audit the change.

    Raises
    ------
    ValidationFailed
        If either amount is negative or both are zero.
    NotFound
        If the operator doesn't exist.
    """
    if campaign_credits < 0 or lead_credits < 0:
        raise ValidationFailed("Credit grants must be non-negative")
    if campaign_credits == 0 and lead_credits == 0:
        raise ValidationFailed("Grant at least one campaign or lead credit")

    with get_session(engine) as session:
        operator = session.get(Operator, operator_id)
        if operator is None:
            raise NotFound("operator", operator_id)

        before = _balance_snapshot(operator)
        session.execute(
            update(Operator)
            .where(Operator.id == operator_id)
            .values(
                campaign_credits=Operator.campaign_credits + campaign_credits,
                lead_credits=Operator.lead_credits + lead_credits,
            )
            .execution_options(synchronize_session=False)
        )
        session.refresh(operator)
        after = _balance_snapshot(operator)

        session.add(AdminLog(
            actor_id=actor_id,
            action_type="GRANT_CREDITS",
            target_table="operators",
            target_id=operator_id,
            before_snapshot=before,
            after_snapshot=after,
            reason=reason,
        ))
        logger.info(
            "Granted operator %s +%d campaign / +%d lead credits (actor=%s)",
            operator_id, campaign_credits, lead_credits, actor_id,
        )
        return _to_balance(operator)


def get_balance(engine: Engine, operator_id: str) -> CreditBalance:
    with get_session(engine) as session:
        operator = session.get(Operator, operator_id)
        if operator is None:
            raise NotFound("operator", operator_id)
        return _to_balance(operator)


def _to_balance(operator: Operator) -> CreditBalance:
    return CreditBalance(
        operator_id=operator.id,
        campaign_credits=operator.campaign_credits,
        lead_credits=operator.lead_credits,
        plan_type=operator.plan_type,
        subscription_status=operator.subscription_status,
    )
