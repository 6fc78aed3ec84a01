"""
promowheel.api.routes.admin — Platform admin endpoints
========================================================

Credit grants for operators.  Every grant is written to ``admin_log``.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy import Engine

from promowheel.api.deps import get_current_admin, get_engine
from promowheel.services import ledger

router = APIRouter(prefix="/admin", tags=["admin"])


class CreditGrant(BaseModel):
    campaign_credits: int = Field(0, ge=0)
    lead_credits: int = Field(0, ge=0)
    reason: str | None = None


@router.post("/operators/{operator_id}/credits")
def grant_credits(
    operator_id: str,
    body: CreditGrant,
    admin: dict = Depends(get_current_admin),
    engine: Engine = Depends(get_engine),
):
    balance = ledger.grant_credits(
        engine,
        operator_id,
        campaign_credits=body.campaign_credits,
        lead_credits=body.lead_credits,
        actor_id=str(admin.get("sub", "unknown")),
        reason=body.reason,
    )
    return {"success": True, "balance": balance.to_dict()}
