"""
promowheel.api.routes.public — Participant-facing endpoints (no auth)
=======================================================================

Every request re-supplies the participant's identity; the client IP is the
socket peer, or the forwarded header when that peer is a configured trusted
proxy (see :func:`promowheel.api.deps.client_ip`).  String fields are capped
at the width of the columns they are stored in.
"""

from __future__ import annotations

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from pydantic import BaseModel, Field
from sqlalchemy import Engine

from promowheel.api.deps import build_identity, get_config, get_engine, get_notifier
from promowheel.config import PromoWheelConfig
from promowheel.services import play_service
from promowheel.services.notifications import Notifier, dispatch

router = APIRouter(prefix="/public/campaigns", tags=["public"])


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------
EMAIL_MAX = 320
PHONE_MAX = 50
NAME_MAX = 200
DEVICE_MAX = 200
PRIZE_MAX = 200
PLAY_ID_MAX = 64


class SpinRequest(BaseModel):
    email: str | None = Field(None, max_length=EMAIL_MAX)
    phone: str | None = Field(None, max_length=PHONE_MAX)
    device_fingerprint: str | None = Field(None, max_length=DEVICE_MAX)


class ClaimRequest(BaseModel):
    email: str = Field(max_length=EMAIL_MAX)
    name: str | None = Field(None, max_length=NAME_MAX)
    phone: str | None = Field(None, max_length=PHONE_MAX)
    prize: str | None = Field(None, max_length=PRIZE_MAX)
    play_id: str | None = Field(None, max_length=PLAY_ID_MAX)
    device_fingerprint: str | None = Field(None, max_length=DEVICE_MAX)


class LeadRequest(BaseModel):
    email: str = Field(max_length=EMAIL_MAX)
    name: str | None = Field(None, max_length=NAME_MAX)
    phone: str | None = Field(None, max_length=PHONE_MAX)


# ---------------------------------------------------------------------------
# GET /public/campaigns/{id}
# ---------------------------------------------------------------------------
@router.get("/{campaign_id}")
def get_public_campaign(campaign_id: str, engine: Engine = Depends(get_engine)):
    view = play_service.public_view(engine, campaign_id)
    for key in ("start_at", "end_at"):
        view[key] = view[key].isoformat() if view[key] else None
    return view


# ---------------------------------------------------------------------------
# POST /public/campaigns/{id}/check-spin
# ---------------------------------------------------------------------------
@router.post("/{campaign_id}/check-spin")
def check_spin(
    campaign_id: str,
    body: SpinRequest,
    request: Request,
    engine: Engine = Depends(get_engine),
    cfg: PromoWheelConfig = Depends(get_config),
):
    identity = build_identity(
        request, email=body.email, phone=body.phone, device_fingerprint=body.device_fingerprint,
        trusted_proxies=cfg.trusted_proxies,
    )
    result = play_service.check_spin(engine, campaign_id, identity, config=cfg)
    if result.allowed:
        return {"can_spin": True}
    return {"can_spin": False, "reason": result.reason.value, "message": result.message}


# ---------------------------------------------------------------------------
# POST /public/campaigns/{id}/spin
# ---------------------------------------------------------------------------
@router.post("/{campaign_id}/spin")
def spin(
    campaign_id: str,
    body: SpinRequest,
    request: Request,
    engine: Engine = Depends(get_engine),
    cfg: PromoWheelConfig = Depends(get_config),
):
    identity = build_identity(
        request, email=body.email, phone=body.phone, device_fingerprint=body.device_fingerprint,
        trusted_proxies=cfg.trusted_proxies,
    )
    result = play_service.spin(engine, campaign_id, identity, config=cfg)
    return {
        "success": True,
        "play_id": result.play_id,
        "segment_index": result.segment_index,
        "prize": result.segment.label,
        "is_win": result.is_win,
    }


# ---------------------------------------------------------------------------
# POST /public/campaigns/{id}/claim-prize
# ---------------------------------------------------------------------------
@router.post("/{campaign_id}/claim-prize")
def claim_prize(
    campaign_id: str,
    body: ClaimRequest,
    request: Request,
    background: BackgroundTasks,
    engine: Engine = Depends(get_engine),
    cfg: PromoWheelConfig = Depends(get_config),
    notifier: Notifier = Depends(get_notifier),
):
    identity = build_identity(
        request, email=body.email, phone=body.phone, device_fingerprint=body.device_fingerprint,
        trusted_proxies=cfg.trusted_proxies,
    )
    result = play_service.claim_prize(
        engine,
        campaign_id,
        identity,
        name=body.name,
        phone=body.phone,
        prize_label=body.prize,
        play_id=body.play_id,
        config=cfg,
    )
    if result.notification is not None:
        background.add_task(dispatch, notifier, result.notification)
    return {
        "success": True,
        "reference_number": result.reference_number,
        "redemption_expires_at": (
            result.redemption_expires_at.isoformat() if result.redemption_expires_at else None
        ),
        "prize": result.prize,
    }


# ---------------------------------------------------------------------------
# POST /public/campaigns/{id}/leads
# ---------------------------------------------------------------------------
@router.post("/{campaign_id}/leads")
def capture_lead(
    campaign_id: str,
    body: LeadRequest,
    request: Request,
    engine: Engine = Depends(get_engine),
    cfg: PromoWheelConfig = Depends(get_config),
):
    identity = build_identity(
        request, email=body.email, phone=body.phone, trusted_proxies=cfg.trusted_proxies
    )
    result = play_service.capture_lead(
        engine, campaign_id, identity, name=body.name, phone=body.phone
    )
    return {"success": True, "id": result.participant_id, "existing": result.existing}
