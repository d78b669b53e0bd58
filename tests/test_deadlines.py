# tests/test_deadlines.py
"""Business-timezone arithmetic and the Confirmation Calculator. Pure, no DB."""
from __future__ import annotations

from datetime import date, datetime, time, timezone

import pytest

from dispatch.core.policy import DEFAULT_POLICY, DispatchPolicy
from dispatch.core.timeutil import (
    end_of_local_day,
    local_instant,
    local_today,
    months_between,
    parse_hhmm,
    preference_lock_deadline,
    week_start,
)
from dispatch.fsm.deadlines import compute_deadlines, hours_until

UTC = timezone.utc


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("07:30", time(7, 30)),
        (" 06:05 ", time(6, 5)),
        ("06:05:59", time(6, 5)),
        ("", None),
        (None, None),
        ("bad", None),
        ("25:00", None),
    ],
)
def test_parse_hhmm(raw, expected):
    assert parse_hhmm(raw) == expected


def test_local_instant_winter_offset():
    # EST = UTC-5
    assert local_instant(date(2026, 1, 12), time(7, 0), DEFAULT_POLICY) == datetime(2026, 1, 12, 12, 0, tzinfo=UTC)


def test_local_today_uses_business_timezone_not_utc():
    # 03:00 UTC on the 13th is still the evening of the 12th in Toronto
    assert local_today(datetime(2026, 1, 13, 3, 0, tzinfo=UTC), DEFAULT_POLICY) == date(2026, 1, 12)


def test_end_of_local_day_is_next_local_midnight():
    assert end_of_local_day(date(2026, 1, 12), DEFAULT_POLICY) == datetime(2026, 1, 13, 5, 0, tzinfo=UTC)


def test_week_start_is_monday():
    assert week_start(date(2026, 1, 15)) == date(2026, 1, 12)
    assert week_start(date(2026, 1, 12)) == date(2026, 1, 12)
    assert week_start(date(2026, 1, 18)) == date(2026, 1, 12)


def test_preference_lock_deadline_is_last_instant_of_sunday():
    deadline = preference_lock_deadline(date(2026, 1, 19), DEFAULT_POLICY)
    assert deadline < datetime(2026, 1, 19, 5, 0, tzinfo=UTC)
    assert (datetime(2026, 1, 19, 5, 0, tzinfo=UTC) - deadline).total_seconds() < 0.001


def test_months_between_never_negative():
    a = datetime(2026, 1, 1, tzinfo=UTC)
    assert months_between(a, a) == 0.0
    assert months_between(a, datetime(2025, 1, 1, tzinfo=UTC)) == 0.0
    assert months_between(datetime(2025, 1, 1, tzinfo=UTC), a) == pytest.approx(365 / 30.44)


def test_default_deadlines_without_route_start_time():
    d = compute_deadlines(date(2026, 1, 15), None, DEFAULT_POLICY)

    assert d.shift_start == datetime(2026, 1, 15, 12, 0, tzinfo=UTC)  # 07:00 local
    assert d.confirmation_opens_at == datetime(2026, 1, 8, 12, 0, tzinfo=UTC)  # 7 days before
    assert d.confirmation_deadline == datetime(2026, 1, 13, 12, 0, tzinfo=UTC)  # 48h before
    assert d.arrival_deadline == datetime(2026, 1, 15, 14, 0, tzinfo=UTC)  # 09:00 local


def test_route_start_time_drives_start_and_arrival_cutoff():
    d = compute_deadlines(date(2026, 1, 15), "06:30", DEFAULT_POLICY)

    assert d.shift_start == datetime(2026, 1, 15, 11, 30, tzinfo=UTC)
    assert d.arrival_deadline == d.shift_start
    assert d.confirmation_deadline == datetime(2026, 1, 13, 11, 30, tzinfo=UTC)


def test_deadline_is_wall_clock_across_spring_forward():
    # DST starts 2026-03-08 02:00 local; the shift on the 9th is in EDT (UTC-4)
    d = compute_deadlines(date(2026, 3, 9), None, DEFAULT_POLICY)

    assert d.shift_start == datetime(2026, 3, 9, 11, 0, tzinfo=UTC)
    # still 07:00 local two days before, which was EST
    assert d.confirmation_deadline == datetime(2026, 3, 7, 12, 0, tzinfo=UTC)
    assert hours_until(d.shift_start, d.confirmation_deadline) == pytest.approx(47.0)


def test_policy_is_injected_not_global():
    policy = DispatchPolicy(timezone="UTC", confirmation={"deadline_hours_before_shift": 24})
    d = compute_deadlines(date(2026, 1, 15), None, policy)

    assert d.shift_start == datetime(2026, 1, 15, 7, 0, tzinfo=UTC)
    assert d.confirmation_deadline == datetime(2026, 1, 14, 7, 0, tzinfo=UTC)


def test_score_weights_must_sum_to_one():
    with pytest.raises(ValueError):
        DispatchPolicy(bidding={"weights": {"health": 0.9}})
