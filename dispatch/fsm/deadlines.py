# dispatch/fsm/deadlines.py
"""Confirmation Calculator: shift start, confirmation window, arrival deadline.

Pure functions over (date, route start time, policy). Wall-clock offsets are
applied on the business-timezone calendar, see ``timeutil.shift_local_wall``.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta

from dispatch.core.policy import DispatchPolicy
from dispatch.core.timeutil import ensure_aware, local_instant, parse_hhmm, shift_local_wall


@dataclass(frozen=True)
class ShiftDeadlines:
    shift_start: datetime
    confirmation_opens_at: datetime
    confirmation_deadline: datetime
    arrival_deadline: datetime


def shift_start_time(route_start_time: str | None, policy: DispatchPolicy) -> time:
    return parse_hhmm(route_start_time) or time(policy.shifts.start_hour_local, 0)


def arrival_cutoff_time(route_start_time: str | None, policy: DispatchPolicy) -> time:
    """Route start time when the route has one, otherwise the hard cutoff hour."""
    return parse_hhmm(route_start_time) or time(policy.shifts.arrival_deadline_hour_local, 0)


def shift_start_at(shift_date: date, route_start_time: str | None, policy: DispatchPolicy) -> datetime:
    return local_instant(shift_date, shift_start_time(route_start_time, policy), policy)


def compute_deadlines(
    shift_date: date,
    route_start_time: str | None,
    policy: DispatchPolicy,
) -> ShiftDeadlines:
    start_t = shift_start_time(route_start_time, policy)
    conf = policy.confirmation

    return ShiftDeadlines(
        shift_start=local_instant(shift_date, start_t, policy),
        confirmation_opens_at=shift_local_wall(
            shift_date, start_t, -timedelta(days=conf.window_days_before_shift), policy
        ),
        confirmation_deadline=shift_local_wall(
            shift_date, start_t, -timedelta(hours=conf.deadline_hours_before_shift), policy
        ),
        arrival_deadline=local_instant(shift_date, arrival_cutoff_time(route_start_time, policy), policy),
    )


def hours_until(instant: datetime, now: datetime) -> float:
    return (ensure_aware(instant) - ensure_aware(now)).total_seconds() / 3600
