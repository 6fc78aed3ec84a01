"""
tests/test_campaign_service.py — Operator Campaign Management Tests
=====================================================================
Creation against the campaign-credit ledger, edits, lifecycle transitions,
publishing, participant listing, redemption and analytics.

Uses an in-memory SQLite database via the shared conftest fixtures.
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from conftest import DEFAULT_SEGMENTS, NOW, load, seed_campaign, seed_operator
from promowheel.database.models import Campaign, Operator, Participant
from promowheel.engine.identity import Identity
from promowheel.errors import CreditsExhausted, InvalidTransition, NotFound, ValidationFailed
from promowheel.services import campaign_service, play_service
from promowheel.services.notifications import OWNER_REDEMPTION


class _Rng:
    def __init__(self, index: int) -> None:
        self.index = index

    def randrange(self, n: int) -> int:
        return self.index


@pytest.fixture
def engine(db_engine):
    seed_operator(db_engine, campaign_credits=2, lead_credits=10)
    seed_operator(db_engine, "op-2", email=None)
    return db_engine


def _win(engine, campaign_id: str, email: str, index: int = 0) -> str:
    """Spin a win for *email* and claim it; return the participant id."""
    identity = Identity.build(email=email, ip="198.51.100.1")
    play_service.spin(engine, campaign_id, identity, NOW, rng=_Rng(index))
    return play_service.claim_prize(engine, campaign_id, identity, now=NOW).participant_id


# ===========================================================================
# create / update
# ===========================================================================
class TestCreateCampaign:
    def test_create_spends_one_credit_and_starts_as_draft(self, engine):
        campaign = campaign_service.create_campaign(
            engine, "op-1", name="  Summer Spin ", prize_segments=DEFAULT_SEGMENTS
        )
        assert campaign.name == "Summer Spin"
        assert campaign.status == "draft"
        assert campaign.is_published is False
        assert campaign.redemption_expiry_days == 7
        assert len(campaign.prize_segments) == 3
        assert load(engine, Operator, "op-1").campaign_credits == 1

    def test_create_without_credits_creates_nothing(self, engine):
        campaign_service.create_campaign(engine, "op-1", name="One")
        campaign_service.create_campaign(engine, "op-1", name="Two")
        with pytest.raises(CreditsExhausted) as excinfo:
            campaign_service.create_campaign(engine, "op-1", name="Three")
        assert excinfo.value.kind == "campaign"
        assert len(campaign_service.list_campaigns(engine, "op-1")) == 2
        assert load(engine, Operator, "op-1").campaign_credits == 0

    def test_invalid_input_spends_nothing(self, engine):
        with pytest.raises(ValidationFailed):
            campaign_service.create_campaign(engine, "op-1", name="X", campaign_type="slots")
        with pytest.raises(ValidationFailed):
            campaign_service.create_campaign(
                engine,
                "op-1",
                name="X",
                start_at=NOW,
                end_at=NOW - timedelta(days=1),
            )
        assert load(engine, Operator, "op-1").campaign_credits == 2

    def test_unknown_operator(self, engine):
        with pytest.raises(NotFound):
            campaign_service.create_campaign(engine, "ghost", name="X")

    def test_limits_and_instant_type(self, engine):
        campaign = campaign_service.create_campaign(
            engine,
            "op-1",
            name="Scratch",
            campaign_type="scratch",
            limit_per_email=1,
            cooldown_hours=12,
        )
        assert campaign.campaign_type == "scratch"
        assert campaign.limit_per_email == 1
        assert campaign.cooldown_hours == 12


class TestUpdateCampaign:
    def test_label_at_column_width_is_accepted(self, engine):
        campaign_id = seed_campaign(engine)
        campaign_service.update_campaign(
            engine, "op-1", campaign_id, prize_segments=[{"label": "L" * 200}]
        )
        assert load(engine, Campaign, campaign_id).prize_segments[0]["label"] == "L" * 200

    def test_update_fields(self, engine):
        campaign_id = seed_campaign(engine)
        campaign_service.update_campaign(
            engine, "op-1", campaign_id, limit_per_day=3, redemption_instructions="Show at till"
        )
        stored = load(engine, Campaign, campaign_id)
        assert stored.limit_per_day == 3
        assert stored.redemption_instructions == "Show at till"

    @pytest.mark.parametrize(
        "changes",
        [
            {"spins_count": 0},
            {"name": "   "},
            {"limit_total": -1},
            {"redemption_expiry_days": 0},
            {"prize_segments": [{"label": ""}]},
            {"prize_segments": "10% Off"},
            {"prize_segments": [{"label": "L" * 201}]},
            {"name": "N" * 201},
        ],
    )
    def test_rejects_bad_changes(self, engine, changes):
        campaign_id = seed_campaign(engine)
        with pytest.raises(ValidationFailed):
            campaign_service.update_campaign(engine, "op-1", campaign_id, **changes)

    def test_end_before_start_rejected(self, engine):
        campaign_id = seed_campaign(engine)
        with pytest.raises(ValidationFailed):
            campaign_service.update_campaign(
                engine, "op-1", campaign_id, end_at=NOW - timedelta(days=2)
            )

    def test_other_operators_campaign_is_not_found(self, engine):
        campaign_id = seed_campaign(engine)
        with pytest.raises(NotFound):
            campaign_service.update_campaign(engine, "op-2", campaign_id, name="Mine now")
        with pytest.raises(NotFound):
            campaign_service.get_campaign(engine, "op-2", campaign_id)

    def test_projection_includes_lifecycle(self, engine):
        campaign_id = seed_campaign(engine, end_at=NOW - timedelta(hours=1))
        campaign = campaign_service.get_campaign(engine, "op-1", campaign_id)
        data = campaign_service.campaign_to_dict(campaign, NOW)
        assert data["status"] == "active"
        assert data["lifecycle"]["effective_status"] == "ended"
        assert data["lifecycle"]["can_activate"] is False
        assert data["limit_per_email"] is None


# ===========================================================================
# lifecycle
# ===========================================================================
class TestChangeStatus:
    def test_pause_and_resume(self, engine):
        campaign_id = seed_campaign(engine)
        campaign_service.change_status(engine, "op-1", campaign_id, "paused", NOW)
        assert load(engine, Campaign, campaign_id).status == "paused"
        campaign_service.change_status(engine, "op-1", campaign_id, "active", NOW)
        assert load(engine, Campaign, campaign_id).status == "active"

    def test_ended_campaign_cannot_be_reactivated(self, engine):
        campaign_id = seed_campaign(engine, end_at=NOW - timedelta(hours=1))
        with pytest.raises(InvalidTransition) as excinfo:
            campaign_service.change_status(engine, "op-1", campaign_id, "active", NOW)
        assert excinfo.value.message == "Cannot change status - campaign has ended"
        assert excinfo.value.reason is not None

    def test_ended_campaign_can_be_marked_ended(self, engine):
        campaign_id = seed_campaign(engine, end_at=NOW - timedelta(hours=1))
        campaign_service.change_status(engine, "op-1", campaign_id, "ended", NOW)
        assert load(engine, Campaign, campaign_id).status == "ended"

    def test_scheduled_campaign_cannot_pause_or_end(self, engine):
        campaign_id = seed_campaign(
            engine, start_at=NOW + timedelta(days=1), end_at=NOW + timedelta(days=3)
        )
        with pytest.raises(InvalidTransition) as paused:
            campaign_service.change_status(engine, "op-1", campaign_id, "paused", NOW)
        assert paused.value.reason == "Campaign is scheduled for the future"
        with pytest.raises(InvalidTransition) as ended:
            campaign_service.change_status(engine, "op-1", campaign_id, "ended", NOW)
        assert ended.value.reason == "Campaign has not started yet"

    def test_unknown_status(self, engine):
        campaign_id = seed_campaign(engine)
        with pytest.raises(ValidationFailed):
            campaign_service.change_status(engine, "op-1", campaign_id, "archived", NOW)


class TestPublish:
    def test_publish_activates(self, engine):
        campaign_id = seed_campaign(engine, status="draft", is_published=False)
        campaign = campaign_service.publish(engine, "op-1", campaign_id, NOW)
        assert campaign.is_published is True
        assert campaign.status == "active"

    def test_publish_past_end_marks_ended(self, engine):
        campaign_id = seed_campaign(
            engine, status="draft", is_published=False, end_at=NOW - timedelta(hours=1)
        )
        assert campaign_service.publish(engine, "op-1", campaign_id, NOW).status == "ended"

    def test_publish_future_start_shows_scheduled(self, engine):
        campaign_id = seed_campaign(
            engine,
            status="draft",
            is_published=False,
            start_at=NOW + timedelta(days=2),
            end_at=NOW + timedelta(days=9),
        )
        campaign = campaign_service.publish(engine, "op-1", campaign_id, NOW)
        data = campaign_service.campaign_to_dict(campaign, NOW)
        assert data["lifecycle"]["participant_status"] == "scheduled"

    @pytest.mark.parametrize(
        ("overrides", "message"),
        [
            ({"segments": []}, "At least one prize is required"),
            ({"start_at": None}, "Start and end dates are required"),
            ({"end_at": None}, "Start and end dates are required"),
        ],
    )
    def test_publish_requirements(self, engine, overrides, message):
        campaign_id = seed_campaign(engine, status="draft", is_published=False, **overrides)
        with pytest.raises(ValidationFailed) as excinfo:
            campaign_service.publish(engine, "op-1", campaign_id, NOW)
        assert excinfo.value.message == message
        assert load(engine, Campaign, campaign_id).is_published is False

    def test_unpublish_returns_to_draft(self, engine):
        campaign_id = seed_campaign(engine)
        campaign_service.unpublish(engine, "op-1", campaign_id)
        stored = load(engine, Campaign, campaign_id)
        assert stored.is_published is False
        assert stored.status == "draft"


# ===========================================================================
# participants
# ===========================================================================
class TestParticipants:
    def test_list_participants(self, engine):
        campaign_id = seed_campaign(engine)
        _win(engine, campaign_id, "a@x.test")
        _win(engine, campaign_id, "b@x.test", index=1)

        participants = campaign_service.list_participants(engine, "op-1", campaign_id)
        rows = [campaign_service.participant_to_dict(p) for p in participants]
        assert {r["email"] for r in rows} == {"a@x.test", "b@x.test"}
        assert all(r["reference_number"] for r in rows)

    def test_list_participants_requires_ownership(self, engine):
        campaign_id = seed_campaign(engine)
        with pytest.raises(NotFound):
            campaign_service.list_participants(engine, "op-2", campaign_id)

    def test_mark_redeemed_is_terminal(self, engine):
        campaign_id = seed_campaign(engine)
        participant_id = _win(engine, campaign_id, "a@x.test")

        participant, notice = campaign_service.mark_redeemed(
            engine, "op-1", campaign_id, participant_id, NOW
        )
        assert participant.is_redeemed
        assert notice is not None
        assert notice.template == OWNER_REDEMPTION
        assert notice.recipient == "owner@shop.test"
        assert notice.context["prize_name"] == "10% Off"

        again, second_notice = campaign_service.mark_redeemed(
            engine, "op-1", campaign_id, participant_id, NOW + timedelta(days=1)
        )
        assert again.is_redeemed
        assert second_notice is None
        stored = load(engine, Participant, participant_id)
        assert stored.redeemed_at.replace(tzinfo=None) == NOW.replace(tzinfo=None)

    def test_mark_redeemed_without_owner_email_sends_nothing(self, engine):
        campaign_id = seed_campaign(engine, "op-2")
        participant_id = _win(engine, campaign_id, "a@x.test")
        _, notice = campaign_service.mark_redeemed(engine, "op-2", campaign_id, participant_id, NOW)
        assert notice is None

    def test_mark_redeemed_wrong_campaign(self, engine):
        first = seed_campaign(engine)
        second = seed_campaign(engine)
        participant_id = _win(engine, first, "a@x.test")
        with pytest.raises(NotFound) as excinfo:
            campaign_service.mark_redeemed(engine, "op-1", second, participant_id, NOW)
        assert excinfo.value.entity == "participant"

    def test_lead_without_prize_cannot_be_redeemed(self, engine):
        campaign_id = seed_campaign(engine)
        lead = play_service.capture_lead(
            engine, campaign_id, Identity.build(email="lead@x.test"), now=NOW
        )
        with pytest.raises(ValidationFailed, match="Nothing to redeem"):
            campaign_service.mark_redeemed(engine, "op-1", campaign_id, lead.participant_id, NOW)
        stored = load(engine, Participant, lead.participant_id)
        assert stored.is_redeemed is False
        assert stored.redeemed_at is None


# ===========================================================================
# analytics
# ===========================================================================
class TestAnalytics:
    def test_series_distribution_and_totals(self, engine):
        campaign_id = seed_campaign(engine)
        _win(engine, campaign_id, "a@x.test")
        identity = Identity.build(email="b@x.test")
        play_service.spin(engine, campaign_id, identity, NOW, rng=_Rng(2))
        play_service.spin(engine, campaign_id, identity, NOW - timedelta(days=1), rng=_Rng(2))

        stats = campaign_service.campaign_analytics(engine, "op-1", campaign_id, "7d", NOW)

        assert stats["time_series"] == [
            {"date": "2026-03-03", "spins": 1, "leads": 0},
            {"date": "2026-03-04", "spins": 2, "leads": 1},
        ]
        assert stats["prize_distribution"][0] == {
            "prize": "Try Again", "count": 2, "color": "#94a3b8",
        }
        totals = stats["total_stats"]
        assert totals["total_spins"] == 3
        assert totals["total_leads"] == 1
        assert totals["conversion_rate"] == pytest.approx(100 / 3)
        assert totals["avg_spins_per_day"] == pytest.approx(3 / 7)

    def test_empty_campaign(self, engine):
        campaign_id = seed_campaign(engine)
        stats = campaign_service.campaign_analytics(engine, "op-1", campaign_id, "30d", NOW)
        assert stats["time_series"] == []
        assert stats["total_stats"]["conversion_rate"] == 0.0

    def test_invalid_range(self, engine):
        campaign_id = seed_campaign(engine)
        with pytest.raises(ValidationFailed):
            campaign_service.campaign_analytics(engine, "op-1", campaign_id, "90d", NOW)
