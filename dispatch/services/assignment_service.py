# dispatch/services/assignment_service.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from dispatch.core.config import settings
from dispatch.core.errors import Conflict, NotFound, ValidationFailed
from dispatch.core.policy import DispatchPolicy
from dispatch.core.store import guarded_update
from dispatch.core.timeutil import utc_now
from dispatch.fsm.assignment_fsm import Action, allowed_from
from dispatch.fsm.lifecycle import LifecycleFlags, derive_lifecycle, snapshot_of
from dispatch.models.assignment import Assignment
from dispatch.models.route import Route
from dispatch.models.shift import Shift
from dispatch.services import realtime
from dispatch.services.driver_stats import DriverStats, HealthEvent
from dispatch.services.side_effects import SideEffects

logger = logging.getLogger(__name__)

ASSIGNMENT_CHANGED = "assignment_changed"


@dataclass(frozen=True)
class AssignmentView:
    assignment: Assignment
    route: Route
    shift: Shift | None
    lifecycle: LifecycleFlags


def load_assignment(db: Session, org_id: UUID, assignment_id: UUID) -> tuple[Assignment, Route, Shift | None]:
    row = db.execute(
        select(Assignment, Route)
        .join(Route, Route.id == Assignment.route_id)
        .where(Assignment.org_id == org_id, Assignment.id == assignment_id)
    ).one_or_none()
    if row is None:
        raise NotFound("Assignment not found")
    assignment, route = row
    shift = db.execute(
        select(Shift).where(Shift.org_id == org_id, Shift.assignment_id == assignment_id)
    ).scalar_one_or_none()
    return assignment, route, shift


def load_owned_assignment(
    db: Session, org_id: UUID, user_id: UUID, assignment_id: UUID
) -> tuple[Assignment, Route, Shift | None]:
    """Someone else's assignment looks exactly like a missing one."""
    assignment, route, shift = load_assignment(db, org_id, assignment_id)
    if assignment.user_id != user_id:
        raise NotFound("Assignment not found")
    return assignment, route, shift


class AssignmentService:
    def __init__(
        self,
        db: Session,
        *,
        policy: DispatchPolicy | None = None,
        effects: SideEffects | None = None,
    ):
        self.db = db
        self.policy = policy or settings.policy
        self.effects = effects or SideEffects(db)
        self.stats = DriverStats(db, self.policy)

    def view(self, *, org_id: UUID, assignment_id: UUID, now: datetime | None = None) -> AssignmentView:
        now = now or utc_now()
        assignment, route, shift = load_assignment(self.db, org_id, assignment_id)
        a, s = snapshot_of(assignment, route, shift)
        return AssignmentView(
            assignment=assignment,
            route=route,
            shift=shift,
            lifecycle=derive_lifecycle(a, s, now=now, policy=self.policy),
        )

    def confirm(
        self,
        *,
        org_id: UUID,
        user_id: UUID,
        assignment_id: UUID,
        now: datetime | None = None,
    ) -> Assignment:
        now = now or utc_now()
        assignment, route, shift = load_owned_assignment(self.db, org_id, user_id, assignment_id)

        if assignment.confirmed_at is not None:
            return assignment

        a, s = snapshot_of(assignment, route, shift)
        flags = derive_lifecycle(a, s, now=now, policy=self.policy)
        if not flags.is_confirmable:
            if now < flags.confirmation_opens_at:
                raise ValidationFailed("Confirmation window has not opened yet", code="confirmation_not_open")
            raise ValidationFailed("Assignment cannot be confirmed now", code="confirmation_window_closed")

        try:
            n = guarded_update(
                self.db,
                update(Assignment)
                .where(
                    Assignment.org_id == org_id,
                    Assignment.id == assignment_id,
                    Assignment.user_id == user_id,
                    Assignment.status.in_(allowed_from(Action.CONFIRM)),
                    Assignment.confirmed_at.is_(None),
                )
                .values(confirmed_at=now, updated_at=now),
            )
            if n != 1:
                raise Conflict("Assignment changed while confirming", code=ASSIGNMENT_CHANGED)

            self.stats.bump(org_id, user_id, now=now, confirmed_shifts=1)
            self.stats.apply_health(org_id, user_id, HealthEvent.confirmed_on_time, now=now)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info("Assignment %s confirmed by %s", assignment_id, user_id)

        self.effects.run(
            "audit_confirm",
            self.effects.audit.record,
            org_id=org_id,
            entity_type="assignment",
            entity_id=assignment_id,
            action="confirm",
            actor_id=user_id,
            after={"confirmed_at": now.isoformat()},
        )
        self.effects.run(
            "broadcast_assignment_updated",
            self.effects.broadcaster.publish,
            org_id,
            realtime.ASSIGNMENT_UPDATED,
            {"assignment_id": str(assignment_id), "confirmed": True},
        )
        return assignment
