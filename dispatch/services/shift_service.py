# dispatch/services/shift_service.py
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from dispatch.core.config import settings
from dispatch.core.errors import Conflict, NotFound, ValidationFailed
from dispatch.core.policy import DispatchPolicy
from dispatch.core.rbac import is_manager
from dispatch.core.store import UniqueViolation, guarded_update, unique_guard
from dispatch.core.timeutil import utc_now
from dispatch.fsm.assignment_fsm import Action, allowed_from
from dispatch.fsm.lifecycle import derive_lifecycle, snapshot_of
from dispatch.models.assignment import Assignment, AssignmentStatus
from dispatch.models.shift import Shift
from dispatch.services import realtime
from dispatch.services.assignment_service import ASSIGNMENT_CHANGED, load_assignment, load_owned_assignment
from dispatch.services.driver_stats import DriverStats, HealthEvent
from dispatch.services.flagging import FlaggingService
from dispatch.services.side_effects import SideEffects

logger = logging.getLogger(__name__)


class ShiftService:
    """Arrival, parcel inventory, completion and post-completion edits."""

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
        self.flagging = FlaggingService(db, policy=self.policy, effects=self.effects)

    def arrive(self, *, org_id: UUID, user_id: UUID, assignment_id: UUID, now: datetime | None = None) -> Shift:
        now = now or utc_now()
        assignment, route, shift = load_owned_assignment(self.db, org_id, user_id, assignment_id)

        a, s = snapshot_of(assignment, route, shift)
        flags = derive_lifecycle(a, s, now=now, policy=self.policy)
        if not flags.is_arrivable:
            raise ValidationFailed("Arrival is not allowed for this assignment now", code="not_arrivable")

        in_progress = self.db.execute(
            select(Assignment.id).where(
                Assignment.org_id == org_id,
                Assignment.user_id == user_id,
                Assignment.status == AssignmentStatus.active.value,
            ).limit(1)
        ).first()
        if in_progress is not None:
            raise Conflict("Driver already has a shift in progress", code="shift_in_progress")

        on_time = now <= flags.shift_start
        try:
            with unique_guard(self.db):
                n = guarded_update(
                    self.db,
                    update(Assignment)
                    .where(
                        Assignment.org_id == org_id,
                        Assignment.id == assignment_id,
                        Assignment.user_id == user_id,
                        Assignment.status.in_(allowed_from(Action.ARRIVE)),
                    )
                    .values(status=AssignmentStatus.active.value, updated_at=now),
                )
                if n != 1:
                    raise Conflict("Assignment changed while arriving", code=ASSIGNMENT_CHANGED)
                shift = Shift(org_id=org_id, assignment_id=assignment_id, arrived_at=now)
                self.db.add(shift)

            if on_time:
                self.stats.bump(org_id, user_id, now=now, total_shifts=1, arrived_on_time_count=1)
                self.stats.apply_health(org_id, user_id, HealthEvent.arrived_on_time, now=now)
            else:
                self.stats.bump(org_id, user_id, now=now, total_shifts=1)
            self.db.commit()
        except UniqueViolation as e:
            self.db.rollback()
            raise Conflict("Shift already recorded for this assignment", code="shift_exists") from e
        except Exception:
            self.db.rollback()
            raise

        logger.info("Driver %s arrived for assignment %s (on_time=%s)", user_id, assignment_id, on_time)
        self._broadcast(org_id, assignment_id, AssignmentStatus.active.value)
        return shift

    def start(
        self,
        *,
        org_id: UUID,
        user_id: UUID,
        assignment_id: UUID,
        parcels_start: int,
        now: datetime | None = None,
    ) -> Shift:
        now = now or utc_now()
        if parcels_start < 0:
            raise ValidationFailed("parcels_start must be >= 0")

        assignment, route, shift = load_owned_assignment(self.db, org_id, user_id, assignment_id)
        a, s = snapshot_of(assignment, route, shift)
        if not derive_lifecycle(a, s, now=now, policy=self.policy).is_startable:
            raise ValidationFailed("Shift cannot be started now", code="not_startable")

        try:
            n = guarded_update(
                self.db,
                update(Shift)
                .where(
                    Shift.org_id == org_id,
                    Shift.assignment_id == assignment_id,
                    Shift.parcels_start.is_(None),
                )
                .values(parcels_start=parcels_start, started_at=now),
            )
            if n != 1:
                raise Conflict("Shift already started", code="shift_already_started")
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(shift)
        return shift

    def complete(
        self,
        *,
        org_id: UUID,
        user_id: UUID,
        assignment_id: UUID,
        parcels_returned: int,
        parcels_delivered: int | None = None,
        now: datetime | None = None,
    ) -> Shift:
        now = now or utc_now()
        assignment, route, shift = load_owned_assignment(self.db, org_id, user_id, assignment_id)

        a, s = snapshot_of(assignment, route, shift)
        if not derive_lifecycle(a, s, now=now, policy=self.policy).is_completable:
            raise ValidationFailed("Shift cannot be completed now", code="not_completable")

        delivered = _check_parcels(shift.parcels_start, parcels_returned, parcels_delivered)

        try:
            n = guarded_update(
                self.db,
                update(Assignment)
                .where(
                    Assignment.org_id == org_id,
                    Assignment.id == assignment_id,
                    Assignment.user_id == user_id,
                    Assignment.status.in_(allowed_from(Action.COMPLETE)),
                )
                .values(status=AssignmentStatus.completed.value, updated_at=now),
            )
            if n != 1:
                raise Conflict("Assignment changed while completing", code=ASSIGNMENT_CHANGED)

            shift.parcels_returned = parcels_returned
            shift.parcels_delivered = delivered
            shift.completed_at = now
            shift.editable_until = now + timedelta(hours=self.policy.shifts.completion_edit_window_hours)

            self.stats.record_route_completion(org_id, user_id, assignment.route_id, now=now)
            self.stats.bump(org_id, user_id, now=now, completed_shifts=1)
            self.stats.apply_health(org_id, user_id, HealthEvent.completed_shift, now=now)
            flag = self.flagging.evaluate(org_id, user_id, now=now)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info("Assignment %s completed (delivered=%s returned=%s)", assignment_id, delivered, parcels_returned)
        self.flagging.announce(flag)
        self._broadcast(org_id, assignment_id, AssignmentStatus.completed.value)
        return shift

    def edit(
        self,
        *,
        org_id: UUID,
        actor_id: UUID,
        role: str,
        assignment_id: UUID,
        parcels_start: int | None = None,
        parcels_returned: int | None = None,
        parcels_delivered: int | None = None,
        now: datetime | None = None,
    ) -> Shift:
        """Correct a completed shift. Drivers until ``editable_until``, managers any time."""
        now = now or utc_now()
        manager = is_manager(role)

        if manager:
            assignment, _route, shift = load_assignment(self.db, org_id, assignment_id)
        else:
            assignment, _route, shift = load_owned_assignment(self.db, org_id, actor_id, assignment_id)

        if shift is None or shift.completed_at is None:
            raise ValidationFailed("Only completed shifts can be edited", code="shift_not_completed")
        if not manager and (shift.editable_until is None or now > shift.editable_until):
            raise ValidationFailed("Edit window has closed", code="edit_window_closed")

        before = {
            "parcels_start": shift.parcels_start,
            "parcels_returned": shift.parcels_returned,
            "parcels_delivered": shift.parcels_delivered,
        }
        new_start = shift.parcels_start if parcels_start is None else parcels_start
        new_returned = shift.parcels_returned if parcels_returned is None else parcels_returned
        if new_start is None or new_start < 0:
            raise ValidationFailed("parcels_start must be >= 0")

        if parcels_delivered is None and parcels_start is None and parcels_returned is None:
            raise ValidationFailed("Nothing to edit")
        # delivered is recomputed from start/returned unless given
        delivered = _check_parcels(new_start, new_returned, parcels_delivered)

        shift.parcels_start = new_start
        shift.parcels_returned = new_returned
        shift.parcels_delivered = delivered
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.effects.run(
            "audit_shift_edit",
            self.effects.audit.record,
            org_id=org_id,
            entity_type="shift",
            entity_id=shift.id,
            action="manager_edit" if manager else "driver_edit",
            actor_id=actor_id,
            before=before,
            after={
                "parcels_start": new_start,
                "parcels_returned": new_returned,
                "parcels_delivered": delivered,
            },
        )
        return shift

    def _broadcast(self, org_id: UUID, assignment_id: UUID, status: str) -> None:
        self.effects.run(
            "broadcast_assignment_updated",
            self.effects.broadcaster.publish,
            org_id,
            realtime.ASSIGNMENT_UPDATED,
            {"assignment_id": str(assignment_id), "status": status},
        )


def _check_parcels(parcels_start: int | None, returned: int | None, delivered: int | None) -> int:
    if parcels_start is None:
        raise ValidationFailed("Shift has no starting parcel count", code="not_started")
    if returned is None or returned < 0:
        raise ValidationFailed("parcels_returned must be >= 0")
    if returned > parcels_start:
        raise ValidationFailed("parcels_returned cannot exceed parcels_start")
    if delivered is None:
        return parcels_start - returned
    if delivered < 0 or delivered + returned > parcels_start:
        raise ValidationFailed("parcels_delivered + parcels_returned cannot exceed parcels_start")
    return delivered
