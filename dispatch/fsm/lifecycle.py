# dispatch/fsm/lifecycle.py
"""Lifecycle Deriver.

``derive_lifecycle`` answers "what may happen to this assignment right now".
API handlers, batch jobs and read models all call it; nobody re-implements
a deadline comparison elsewhere.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime

from dispatch.core.policy import DispatchPolicy
from dispatch.core.timeutil import ensure_aware, local_today
from dispatch.fsm.deadlines import compute_deadlines
from dispatch.models.assignment import AssignmentStatus


@dataclass(frozen=True)
class AssignmentSnapshot:
    date: date
    status: str
    confirmed_at: datetime | None = None
    route_start_time: str | None = None


@dataclass(frozen=True)
class ShiftSnapshot:
    arrived_at: datetime | None = None
    parcels_start: int | None = None
    completed_at: datetime | None = None


@dataclass(frozen=True)
class LifecycleFlags:
    is_confirmable: bool
    is_cancelable: bool
    is_late_cancel: bool
    is_arrivable: bool
    is_startable: bool
    is_completable: bool

    shift_start: datetime
    confirmation_opens_at: datetime
    confirmation_deadline: datetime
    arrival_deadline: datetime


def derive_lifecycle(
    assignment: AssignmentSnapshot,
    shift: ShiftSnapshot | None,
    *,
    now: datetime,
    policy: DispatchPolicy,
) -> LifecycleFlags:
    now = ensure_aware(now)
    shift = shift or ShiftSnapshot()
    d = compute_deadlines(assignment.date, assignment.route_start_time, policy)
    today = local_today(now, policy)

    status = assignment.status
    confirmed = assignment.confirmed_at is not None
    arrived = shift.arrived_at is not None

    # deadline instant itself still counts as on time
    is_confirmable = (
        not confirmed
        and status == AssignmentStatus.scheduled.value
        and d.confirmation_opens_at <= now <= d.confirmation_deadline
    )

    is_cancelable = (
        assignment.date > today
        and status in (AssignmentStatus.scheduled.value, AssignmentStatus.active.value)
    )

    is_late_cancel = is_cancelable and confirmed and now > d.confirmation_deadline

    is_arrivable = (
        assignment.date == today
        and status == AssignmentStatus.scheduled.value
        and confirmed
        and not arrived
        and now < d.arrival_deadline
    )

    is_startable = (
        status == AssignmentStatus.active.value
        and arrived
        and shift.parcels_start is None
    )

    is_completable = (
        status == AssignmentStatus.active.value
        and shift.parcels_start is not None
        and shift.completed_at is None
    )

    return LifecycleFlags(
        is_confirmable=is_confirmable,
        is_cancelable=is_cancelable,
        is_late_cancel=is_late_cancel,
        is_arrivable=is_arrivable,
        is_startable=is_startable,
        is_completable=is_completable,
        shift_start=d.shift_start,
        confirmation_opens_at=d.confirmation_opens_at,
        confirmation_deadline=d.confirmation_deadline,
        arrival_deadline=d.arrival_deadline,
    )


def snapshot_of(assignment, route=None, shift=None) -> tuple[AssignmentSnapshot, ShiftSnapshot | None]:
    """Build snapshots from ORM rows (Assignment, Route, Shift)."""
    a = AssignmentSnapshot(
        date=assignment.date,
        status=assignment.status,
        confirmed_at=assignment.confirmed_at,
        route_start_time=route.start_time if route is not None else None,
    )
    s = None
    if shift is not None:
        s = ShiftSnapshot(
            arrived_at=shift.arrived_at,
            parcels_start=shift.parcels_start,
            completed_at=shift.completed_at,
        )
    return a, s
