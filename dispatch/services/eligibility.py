# dispatch/services/eligibility.py
from __future__ import annotations

from datetime import date, timedelta
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from dispatch.core.timeutil import week_start
from dispatch.models.assignment import Assignment, AssignmentStatus
from dispatch.models.user import User, UserRole

NOT_A_DRIVER = "not_a_driver"
DRIVER_FLAGGED = "driver_flagged"
OVER_WEEKLY_CAP = "driver_over_weekly_cap"
ALREADY_BOOKED = "driver_already_booked"


def weekly_assignment_count(
    db: Session,
    *,
    org_id: UUID,
    user_id: UUID,
    any_day: date,
    exclude_assignment_id: UUID | None = None,
) -> int:
    """Non-cancelled assignments the driver holds in the Mon-Sun week of ``any_day``."""
    monday = week_start(any_day)
    stmt = select(func.count(Assignment.id)).where(
        Assignment.org_id == org_id,
        Assignment.user_id == user_id,
        Assignment.status != AssignmentStatus.cancelled.value,
        Assignment.date >= monday,
        Assignment.date < monday + timedelta(days=7),
    )
    if exclude_assignment_id is not None:
        stmt = stmt.where(Assignment.id != exclude_assignment_id)
    return db.execute(stmt).scalar_one()


def is_booked_on(
    db: Session,
    *,
    org_id: UUID,
    user_id: UUID,
    on: date,
    exclude_assignment_id: UUID | None = None,
) -> bool:
    stmt = select(Assignment.id).where(
        Assignment.org_id == org_id,
        Assignment.user_id == user_id,
        Assignment.date == on,
        Assignment.status != AssignmentStatus.cancelled.value,
    )
    if exclude_assignment_id is not None:
        stmt = stmt.where(Assignment.id != exclude_assignment_id)
    return db.execute(stmt.limit(1)).first() is not None


def ineligibility_reason(
    db: Session,
    user: User,
    *,
    on: date,
    exclude_assignment_id: UUID | None = None,
) -> str | None:
    """None when ``user`` may take an assignment on ``on``; otherwise a reason code."""
    if user.role != UserRole.driver.value:
        return NOT_A_DRIVER
    if user.is_flagged:
        return DRIVER_FLAGGED
    if is_booked_on(db, org_id=user.org_id, user_id=user.id, on=on, exclude_assignment_id=exclude_assignment_id):
        return ALREADY_BOOKED
    held = weekly_assignment_count(
        db,
        org_id=user.org_id,
        user_id=user.id,
        any_day=on,
        exclude_assignment_id=exclude_assignment_id,
    )
    if held >= user.weekly_cap:
        return OVER_WEEKLY_CAP
    return None


def eligible_drivers(
    db: Session,
    *,
    org_id: UUID,
    on: date,
    exclude_user_ids: set[UUID] | None = None,
) -> list[User]:
    """Unflagged drivers of the organization who could take a slot on ``on``."""
    exclude_user_ids = exclude_user_ids or set()
    drivers = db.execute(
        select(User)
        .where(
            User.org_id == org_id,
            User.role == UserRole.driver.value,
            User.is_flagged.is_(False),
        )
        .order_by(User.id)
    ).scalars().all()

    return [
        d for d in drivers
        if d.id not in exclude_user_ids and ineligibility_reason(db, d, on=on) is None
    ]
