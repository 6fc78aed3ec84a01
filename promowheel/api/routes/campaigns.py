"""
promowheel.api.routes.campaigns — Operator campaign management
================================================================

All endpoints require a bearer JWT whose ``sub`` is the operator id.
Operators only ever see their own campaigns.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy import Engine

from promowheel.api.deps import get_config, get_current_operator, get_engine, get_notifier
from promowheel.config import PromoWheelConfig
from promowheel.services import campaign_service, ledger
from promowheel.services.campaign_service import campaign_to_dict, participant_to_dict
from promowheel.services.notifications import Notifier, dispatch

router = APIRouter(tags=["campaigns"])


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------
class CampaignFields(BaseModel):
    prize_segments: list[dict[str, Any]] | None = None
    start_at: datetime | None = None
    end_at: datetime | None = None
    limit_per_email: int | None = None
    limit_per_phone: int | None = None
    limit_per_ip: int | None = None
    limit_per_device: int | None = None
    limit_per_day: int | None = None
    limit_per_week: int | None = None
    limit_total: int | None = None
    cooldown_hours: int | None = None
    redemption_expiry_days: int | None = None
    redemption_instructions: str | None = None


class CampaignCreate(CampaignFields):
    name: str
    campaign_type: str = "spinwheel"
    prize_segments: list[dict[str, Any]] = Field(default_factory=list)


class CampaignUpdate(CampaignFields):
    name: str | None = None
    campaign_type: str | None = None


class StatusChange(BaseModel):
    status: str


# ---------------------------------------------------------------------------
# Credits
# ---------------------------------------------------------------------------
@router.get("/credits")
def get_credits(
    operator_id: str = Depends(get_current_operator),
    engine: Engine = Depends(get_engine),
):
    return ledger.get_balance(engine, operator_id).to_dict()


# ---------------------------------------------------------------------------
# Campaign CRUD
# ---------------------------------------------------------------------------
@router.get("/campaigns")
def list_campaigns(
    operator_id: str = Depends(get_current_operator),
    engine: Engine = Depends(get_engine),
):
    campaigns = campaign_service.list_campaigns(engine, operator_id)
    return {"campaigns": [campaign_to_dict(c) for c in campaigns]}


@router.post("/campaigns", status_code=201)
def create_campaign(
    body: CampaignCreate,
    operator_id: str = Depends(get_current_operator),
    engine: Engine = Depends(get_engine),
    cfg: PromoWheelConfig = Depends(get_config),
):
    extra = body.model_dump(
        exclude_none=True, exclude={"name", "campaign_type", "prize_segments"}
    )
    campaign = campaign_service.create_campaign(
        engine,
        operator_id,
        name=body.name,
        campaign_type=body.campaign_type,
        prize_segments=body.prize_segments,
        config=cfg,
        **extra,
    )
    return campaign_to_dict(campaign)


@router.get("/campaigns/{campaign_id}")
def get_campaign(
    campaign_id: str,
    operator_id: str = Depends(get_current_operator),
    engine: Engine = Depends(get_engine),
):
    return campaign_to_dict(campaign_service.get_campaign(engine, operator_id, campaign_id))


@router.patch("/campaigns/{campaign_id}")
def update_campaign(
    campaign_id: str,
    body: CampaignUpdate,
    operator_id: str = Depends(get_current_operator),
    engine: Engine = Depends(get_engine),
):
    campaign = campaign_service.update_campaign(
        engine, operator_id, campaign_id, **body.model_dump(exclude_unset=True)
    )
    return campaign_to_dict(campaign)


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------
@router.post("/campaigns/{campaign_id}/status")
def change_status(
    campaign_id: str,
    body: StatusChange,
    operator_id: str = Depends(get_current_operator),
    engine: Engine = Depends(get_engine),
):
    campaign = campaign_service.change_status(engine, operator_id, campaign_id, body.status)
    return {"success": True, "campaign": campaign_to_dict(campaign)}


@router.post("/campaigns/{campaign_id}/publish")
def publish_campaign(
    campaign_id: str,
    operator_id: str = Depends(get_current_operator),
    engine: Engine = Depends(get_engine),
):
    campaign = campaign_service.publish(engine, operator_id, campaign_id)
    return {"success": True, "campaign": campaign_to_dict(campaign)}


@router.post("/campaigns/{campaign_id}/unpublish")
def unpublish_campaign(
    campaign_id: str,
    operator_id: str = Depends(get_current_operator),
    engine: Engine = Depends(get_engine),
):
    campaign = campaign_service.unpublish(engine, operator_id, campaign_id)
    return {"success": True, "campaign": campaign_to_dict(campaign)}


# ---------------------------------------------------------------------------
# Participants & analytics
# ---------------------------------------------------------------------------
@router.get("/campaigns/{campaign_id}/participants")
def list_participants(
    campaign_id: str,
    operator_id: str = Depends(get_current_operator),
    engine: Engine = Depends(get_engine),
):
    participants = campaign_service.list_participants(engine, operator_id, campaign_id)
    return {"participants": [participant_to_dict(p) for p in participants]}


@router.patch("/campaigns/{campaign_id}/participants/{participant_id}/redeem")
def redeem_participant(
    campaign_id: str,
    participant_id: str,
    background: BackgroundTasks,
    operator_id: str = Depends(get_current_operator),
    engine: Engine = Depends(get_engine),
    notifier: Notifier = Depends(get_notifier),
):
    participant, notice = campaign_service.mark_redeemed(
        engine, operator_id, campaign_id, participant_id
    )
    if notice is not None:
        background.add_task(dispatch, notifier, notice)
    return participant_to_dict(participant)


@router.get("/campaigns/{campaign_id}/analytics")
def campaign_analytics(
    campaign_id: str,
    range_: str = Query("7d", alias="range"),
    operator_id: str = Depends(get_current_operator),
    engine: Engine = Depends(get_engine),
):
    return campaign_service.campaign_analytics(engine, operator_id, campaign_id, range_)
