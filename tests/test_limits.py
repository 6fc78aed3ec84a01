"""
tests/test_limits.py — Limit Policy Tests
===========================================
Pure tests for the composable limit policies: construction from campaign
columns, evaluation order, cooldown arithmetic and calendar windows.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from promowheel.constants import DenialReason
from promowheel.database.models import Campaign, Dimension
from promowheel.engine.limits import (
    AttemptHistory,
    Eligibility,
    LimitPolicy,
    Window,
    build_policies,
    day_start,
    evaluate,
    week_start,
)
from promowheel.errors import NotEligible

NOW = datetime(2026, 3, 4, 12, 0, tzinfo=UTC)  # a Wednesday


def _make_campaign(**limits) -> Campaign:
    fields = {
        "limit_per_email": None,
        "limit_per_phone": None,
        "limit_per_ip": None,
        "limit_per_device": None,
        "limit_per_day": None,
        "limit_per_week": None,
        "limit_total": None,
        "cooldown_hours": None,
    }
    fields.update(limits)
    return Campaign(id="camp-1", operator_id="op-1", name="Test", spins_count=0, **fields)


def _check(campaign: Campaign, history: AttemptHistory, now: datetime = NOW) -> Eligibility:
    return evaluate(build_policies(campaign), history, now)


class TestBuildPolicies:
    def test_no_limits_no_policies(self):
        assert build_policies(_make_campaign()) == []

    def test_zero_is_treated_as_unset(self):
        assert build_policies(_make_campaign(limit_per_email=0, limit_total=0)) == []

    def test_order_is_fixed(self):
        campaign = _make_campaign(
            limit_per_week=9,
            limit_per_day=8,
            cooldown_hours=7,
            limit_per_device=6,
            limit_per_ip=5,
            limit_per_phone=4,
            limit_per_email=3,
            limit_total=2,
        )
        reasons = [p.reason for p in build_policies(campaign)]
        assert reasons == [
            DenialReason.TOTAL_LIMIT,
            DenialReason.EMAIL_LIMIT,
            DenialReason.PHONE_LIMIT,
            DenialReason.IP_LIMIT,
            DenialReason.DEVICE_LIMIT,
            DenialReason.COOLDOWN,
            DenialReason.DAILY_LIMIT,
            DenialReason.WEEKLY_LIMIT,
        ]

    def test_dimension_policies_carry_their_dimension(self):
        (policy,) = build_policies(_make_campaign(limit_per_ip=2))
        assert policy.dimension is Dimension.IP
        assert policy.window is Window.LIFETIME
        assert policy.cap == 2


class TestEvaluate:
    def test_allows_when_nothing_configured(self):
        assert _check(_make_campaign(), AttemptHistory()).allowed

    def test_total_limit(self):
        result = _check(_make_campaign(limit_total=10), AttemptHistory(spins_count=10))
        assert not result.allowed
        assert result.reason is DenialReason.TOTAL_LIMIT

    def test_total_limit_below_cap(self):
        assert _check(_make_campaign(limit_total=10), AttemptHistory(spins_count=9)).allowed

    def test_email_limit(self):
        history = AttemptHistory(attempts={Dimension.EMAIL: 1, Dimension.IP: 0})
        result = _check(_make_campaign(limit_per_email=1), history)
        assert result.reason is DenialReason.EMAIL_LIMIT
        assert "email" in result.message

    def test_dimension_not_supplied_is_skipped(self):
        """A phone cap doesn't apply when no phone was given."""
        history = AttemptHistory(attempts={Dimension.EMAIL: 5})
        assert _check(_make_campaign(limit_per_phone=1), history).allowed

    def test_first_failure_wins(self):
        campaign = _make_campaign(limit_total=1, limit_per_email=1)
        history = AttemptHistory(spins_count=1, attempts={Dimension.EMAIL: 1})
        assert _check(campaign, history).reason is DenialReason.TOTAL_LIMIT

    def test_device_limit_after_ip_passes(self):
        campaign = _make_campaign(limit_per_ip=3, limit_per_device=1)
        history = AttemptHistory(attempts={Dimension.IP: 1, Dimension.DEVICE: 1})
        assert _check(campaign, history).reason is DenialReason.DEVICE_LIMIT

    def test_cooldown_active_reports_hours_rounded_up(self):
        history = AttemptHistory(
            attempts={Dimension.EMAIL: 1}, last_attempt_at=NOW - timedelta(minutes=90)
        )
        result = _check(_make_campaign(cooldown_hours=4), history)
        assert result.reason is DenialReason.COOLDOWN
        assert result.message == "Please wait 3 hours before spinning again."

    def test_cooldown_singular_hour(self):
        history = AttemptHistory(last_attempt_at=NOW - timedelta(minutes=30))
        result = _check(_make_campaign(cooldown_hours=1), history)
        assert result.message == "Please wait 1 hour before spinning again."

    def test_cooldown_elapsed(self):
        history = AttemptHistory(last_attempt_at=NOW - timedelta(hours=4))
        assert _check(_make_campaign(cooldown_hours=4), history).allowed

    def test_cooldown_without_history(self):
        assert _check(_make_campaign(cooldown_hours=4), AttemptHistory()).allowed

    def test_daily_limit(self):
        result = _check(_make_campaign(limit_per_day=2), AttemptHistory(day_count=2))
        assert result.reason is DenialReason.DAILY_LIMIT

    def test_weekly_limit(self):
        campaign = _make_campaign(limit_per_day=5, limit_per_week=3)
        result = _check(campaign, AttemptHistory(day_count=1, week_count=3))
        assert result.reason is DenialReason.WEEKLY_LIMIT

    def test_raise_for_denial(self):
        result = Eligibility.deny(DenialReason.IP_LIMIT)
        with pytest.raises(NotEligible) as excinfo:
            result.raise_for_denial()
        assert excinfo.value.reason is DenialReason.IP_LIMIT
        assert excinfo.value.code == "ip_limit"

    def test_policy_check_directly(self):
        policy = LimitPolicy(DenialReason.EMAIL_LIMIT, Window.LIFETIME, 2, Dimension.EMAIL)
        assert policy.check(AttemptHistory(attempts={Dimension.EMAIL: 1}), NOW).allowed
        assert not policy.check(AttemptHistory(attempts={Dimension.EMAIL: 2}), NOW).allowed


class TestWindows:
    def test_day_start_is_utc_midnight(self):
        assert day_start(NOW) == datetime(2026, 3, 4, tzinfo=UTC)

    def test_week_starts_sunday_by_default(self):
        assert week_start(NOW) == datetime(2026, 3, 1, tzinfo=UTC)

    def test_week_start_monday(self):
        assert week_start(NOW, first_weekday=0) == datetime(2026, 3, 2, tzinfo=UTC)

    def test_week_start_on_the_first_day_itself(self):
        sunday = datetime(2026, 3, 1, 23, 59, tzinfo=UTC)
        assert week_start(sunday) == datetime(2026, 3, 1, tzinfo=UTC)
