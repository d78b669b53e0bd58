# dispatch/services/escalation_service.py
"""Escalation Controller.

* auto-drop: unconfirmed past the confirmation deadline -> window (trigger auto_drop)
* no-show: not arrived by the arrival deadline -> emergency window (trigger no_show)
* cancellation: driver-initiated, late if confirmed and past the deadline
* manager override: reassign / open_bidding / open_urgent_bidding

Each operation changes the assignment and opens its window in one
transaction; notifications, audit and broadcast run after the commit.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import and_, select, update
from sqlalchemy.orm import Session

from dispatch.core.config import settings
from dispatch.core.errors import Conflict, NotFound, ValidationFailed
from dispatch.core.policy import DispatchPolicy
from dispatch.core.rbac import Forbidden, is_manager
from dispatch.core.store import UniqueViolation, guarded_update, unique_guard
from dispatch.core.timeutil import local_today, utc_now
from dispatch.fsm.assignment_fsm import Action, TransitionNotAllowed, allowed_from, apply_transition
from dispatch.fsm.lifecycle import derive_lifecycle, snapshot_of
from dispatch.models.assignment import AssignedBy, Assignment, AssignmentStatus, CancelType
from dispatch.models.bid_window import BidWindow, BidWindowMode, BidWindowStatus, BidWindowTrigger
from dispatch.models.notification import NotificationType
from dispatch.models.route import Route
from dispatch.models.shift import Shift
from dispatch.models.user import User
from dispatch.services import eligibility, realtime
from dispatch.services.assignment_service import load_assignment, load_owned_assignment
from dispatch.services.bid_window_service import (
    REASON_SHIFT_PASSED,
    REASON_WINDOW_EXISTS,
    BidWindowManager,
    BidWindowResult,
)
from dispatch.services.driver_stats import DriverStats, HealthEvent
from dispatch.services.flagging import FlaggingService
from dispatch.services.manager_access import ensure_warehouse_access
from dispatch.services.side_effects import SideEffects

logger = logging.getLogger(__name__)

# replacement window status reported by cancel
WINDOW_CREATED = "created"
WINDOW_ALREADY_OPEN = "already_open"
WINDOW_NOT_CREATED = "not_created"
# the replacement window already found a driver
WINDOW_FILLED = "filled"

OPEN_WINDOW_EXISTS = "open_window_exists"
ALREADY_RESOLVED = "already_resolved"


@dataclass
class ReplacementWindow:
    status: str
    bid_window_id: UUID | None = None
    mode: str | None = None
    reason: str | None = None


@dataclass
class CancelResult:
    assignment: Assignment
    replacement_window: ReplacementWindow
    already_cancelled: bool = False
    is_late: bool = False


@dataclass
class OverrideResult:
    action: str
    assignment: Assignment
    bid_window: BidWindow | None = None
    # False when an existing emergency window was returned unchanged
    created: bool = False


class _Superseded(Exception):
    """Another escalation changed the window between our read and our write."""

    def __init__(self, code: str):
        super().__init__(code)
        self.code = code


class EscalationService:
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
        self.windows = BidWindowManager(db, policy=self.policy, effects=self.effects)
        self.stats = DriverStats(db, self.policy)
        self.flagging = FlaggingService(db, policy=self.policy, effects=self.effects)

    # ------------------------------------------------------------------
    # auto-drop
    # ------------------------------------------------------------------

    def run_auto_drop(self, *, now: datetime | None = None, org_id: UUID | None = None) -> dict[str, int]:
        now = now or utc_now()
        today = local_today(now, self.policy)
        # deadline is at most ceil(hours / 24) days ahead of the shift date
        horizon = today + timedelta(days=self.policy.confirmation.deadline_hours_before_shift // 24 + 1)

        stmt = (
            select(Assignment, Route)
            .join(Route, Route.id == Assignment.route_id)
            .where(
                Assignment.status == AssignmentStatus.scheduled.value,
                Assignment.user_id.is_not(None),
                Assignment.confirmed_at.is_(None),
                Assignment.date >= today,
                Assignment.date <= horizon,
            )
            .order_by(Assignment.date, Assignment.id)
        )
        if org_id is not None:
            stmt = stmt.where(Assignment.org_id == org_id)

        stats = {"checked": 0, "dropped": 0, "skipped": 0, "failed": 0}
        for assignment, route in self.db.execute(stmt).all():
            stats["checked"] += 1
            a, _ = snapshot_of(assignment, route)
            flags = derive_lifecycle(a, None, now=now, policy=self.policy)
            if now <= flags.confirmation_deadline:
                continue

            try:
                outcome = self._auto_drop_one(assignment, now=now)
            except Exception:
                self.db.rollback()
                logger.error("Auto-drop failed for assignment %s", assignment.id, exc_info=True)
                stats["failed"] += 1
                continue

            if outcome is None:
                stats["skipped"] += 1
            else:
                stats["dropped"] += 1
        logger.info("Auto-drop run: %s", stats)
        return stats

    def _auto_drop_one(self, assignment: Assignment, *, now: datetime) -> BidWindowResult | None:
        org_id, assignment_id, driver_id = assignment.org_id, assignment.id, assignment.user_id

        result = self.windows.open(
            org_id=org_id,
            assignment_id=assignment_id,
            trigger=BidWindowTrigger.auto_drop.value,
            now=now,
        )
        if not result.success:
            # metrics are only charged once the route is being re-filled
            self.db.rollback()
            logger.warning("Auto-drop of %s skipped: %s", assignment_id, result.reason)
            return None

        self.db.execute(
            update(Assignment)
            .where(Assignment.org_id == org_id, Assignment.id == assignment_id)
            .values(cancel_type=CancelType.auto_drop.value, cancelled_at=now, updated_at=now)
        )
        self.stats.bump(org_id, driver_id, now=now, auto_dropped_shifts=1)
        self.stats.apply_health(org_id, driver_id, HealthEvent.auto_drop, now=now)
        self.db.commit()

        logger.info("Assignment %s auto-dropped from driver %s", assignment_id, driver_id)

        self.windows.announce(result)
        self.effects.run(
            "audit_auto_drop",
            self.effects.audit.record,
            org_id=org_id,
            entity_type="assignment",
            entity_id=assignment_id,
            action="auto_drop",
            before={"status": AssignmentStatus.scheduled.value, "user_id": driver_id},
            after={"status": AssignmentStatus.unfilled.value, "cancel_type": CancelType.auto_drop.value},
            bid_window_id=result.bid_window_id,
        )
        self.effects.run(
            "notify_auto_dropped",
            self.effects.notifier.send,
            org_id=org_id,
            user_id=driver_id,
            type=NotificationType.shift_auto_dropped,
            title="Shift Dropped",
            body="You did not confirm your shift in time, so it was released for bidding.",
            data={"assignment_id": assignment_id},
        )
        return result

    # ------------------------------------------------------------------
    # no-show
    # ------------------------------------------------------------------

    def run_no_show_detection(self, *, now: datetime | None = None, org_id: UUID | None = None) -> dict[str, int]:
        now = now or utc_now()
        today = local_today(now, self.policy)

        open_window = (
            select(BidWindow.id)
            .where(
                BidWindow.assignment_id == Assignment.id,
                BidWindow.status == BidWindowStatus.open.value,
            )
            .exists()
        )
        arrived = (
            select(Shift.id)
            .where(and_(Shift.assignment_id == Assignment.id, Shift.arrived_at.is_not(None)))
            .exists()
        )
        stmt = (
            select(Assignment, Route)
            .join(Route, Route.id == Assignment.route_id)
            .where(
                Assignment.date == today,
                Assignment.status.in_([AssignmentStatus.scheduled.value, AssignmentStatus.active.value]),
                Assignment.user_id.is_not(None),
                ~arrived,
                ~open_window,
            )
            .order_by(Assignment.id)
        )
        if org_id is not None:
            stmt = stmt.where(Assignment.org_id == org_id)

        stats = {"checked": 0, "no_shows": 0, "skipped": 0, "failed": 0}
        for assignment, route in self.db.execute(stmt).all():
            stats["checked"] += 1
            a, _ = snapshot_of(assignment, route)
            flags = derive_lifecycle(a, None, now=now, policy=self.policy)
            if now < flags.arrival_deadline:
                stats["skipped"] += 1
                continue

            try:
                outcome = self._no_show_one(assignment, route, now=now)
            except Exception:
                self.db.rollback()
                logger.error("No-show handling failed for assignment %s", assignment.id, exc_info=True)
                stats["failed"] += 1
                continue
            stats["no_shows" if outcome is not None else "skipped"] += 1

        logger.info("No-show run: %s", stats)
        return stats

    def _no_show_one(self, assignment: Assignment, route: Route, *, now: datetime) -> BidWindowResult | None:
        org_id, assignment_id, driver_id = assignment.org_id, assignment.id, assignment.user_id
        before_status = assignment.status

        result = self.windows.open(
            org_id=org_id,
            assignment_id=assignment_id,
            trigger=BidWindowTrigger.no_show.value,
            exclude_vacated_driver=True,
            now=now,
        )
        if not result.success:
            self.db.rollback()
            logger.warning("No-show window for %s not opened: %s", assignment_id, result.reason)
            return None

        self.stats.bump(org_id, driver_id, now=now, no_shows=1, total_shifts=1)
        self.stats.apply_health(org_id, driver_id, HealthEvent.no_show, now=now)
        flag = self.flagging.evaluate(org_id, driver_id, now=now)
        self.db.commit()

        logger.info("No-show: driver %s, assignment %s, emergency window %s", driver_id, assignment_id, result.bid_window_id)

        self.windows.announce(result)
        self.effects.run(
            "alert_no_show",
            self.effects.notifier.alert_route_manager,
            org_id=org_id,
            route_id=route.id,
            type=NotificationType.driver_no_show,
            title="Driver No-Show",
            body=f"The driver for {route.name} did not arrive. Emergency bidding is open.",
            data={"assignment_id": assignment_id, "user_id": driver_id, "bid_window_id": result.bid_window_id},
        )
        self.effects.run(
            "audit_no_show",
            self.effects.audit.record,
            org_id=org_id,
            entity_type="assignment",
            entity_id=assignment_id,
            action="no_show",
            before={"status": before_status, "user_id": driver_id},
            after={"status": AssignmentStatus.unfilled.value, "user_id": None},
            bid_window_id=result.bid_window_id,
        )
        self.effects.run(
            "broadcast_no_show",
            self.effects.broadcaster.publish,
            org_id,
            realtime.ASSIGNMENT_UPDATED,
            {"assignment_id": str(assignment_id), "status": AssignmentStatus.unfilled.value, "no_show": True},
        )
        self.flagging.announce(flag)
        return result

    # ------------------------------------------------------------------
    # driver cancellation
    # ------------------------------------------------------------------

    def cancel_assignment(
        self,
        *,
        org_id: UUID,
        user_id: UUID,
        assignment_id: UUID,
        reason: str,
        notes: str | None = None,
        now: datetime | None = None,
    ) -> CancelResult:
        """Idempotent: a replay returns the current state and opens nothing new."""
        now = now or utc_now()
        try:
            assignment, route, shift = load_owned_assignment(self.db, org_id, user_id, assignment_id)
        except NotFound:
            # the replacement window may already have handed the route to someone else
            replayed = self._replayed_cancel(org_id, user_id, assignment_id)
            if replayed is None:
                raise
            return replayed

        if assignment.status == AssignmentStatus.cancelled.value:
            current = self.windows.open_window_for(org_id, assignment_id)
            return CancelResult(
                assignment=assignment,
                already_cancelled=True,
                is_late=assignment.cancel_type == CancelType.late.value,
                replacement_window=(
                    ReplacementWindow(WINDOW_ALREADY_OPEN, current.id, current.mode)
                    if current is not None
                    else ReplacementWindow(WINDOW_NOT_CREATED, reason="no_open_window")
                ),
            )

        a, s = snapshot_of(assignment, route, shift)
        flags = derive_lifecycle(a, s, now=now, policy=self.policy)
        if not flags.is_cancelable:
            raise ValidationFailed("Assignment cannot be cancelled now", code="not_cancelable")

        late = flags.is_late_cancel
        cancel_type = CancelType.late if late else CancelType.driver
        before = {"status": assignment.status, "confirmed_at": assignment.confirmed_at}

        try:
            n = guarded_update(
                self.db,
                update(Assignment)
                .where(
                    Assignment.org_id == org_id,
                    Assignment.id == assignment_id,
                    Assignment.user_id == user_id,
                    Assignment.status.in_(allowed_from(Action.CANCEL)),
                )
                .values(
                    status=AssignmentStatus.cancelled.value,
                    cancel_type=cancel_type.value,
                    cancel_reason=reason,
                    cancel_notes=notes,
                    cancelled_at=now,
                    updated_at=now,
                ),
            )
            if n != 1:
                raise Conflict("Assignment changed while cancelling", code="assignment_changed")

            if late:
                self.stats.bump(org_id, user_id, now=now, late_cancellations=1)
                self.stats.apply_health(org_id, user_id, HealthEvent.late_cancel, now=now)

            result = self.windows.open(
                org_id=org_id,
                assignment_id=assignment_id,
                trigger=BidWindowTrigger.cancellation.value,
                exclude_vacated_driver=late,
                now=now,
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        if result.success:
            replacement = ReplacementWindow(WINDOW_CREATED, result.bid_window_id, result.mode)
        elif result.reason == REASON_WINDOW_EXISTS:
            replacement = ReplacementWindow(WINDOW_ALREADY_OPEN, result.bid_window_id, result.mode)
        else:
            replacement = ReplacementWindow(WINDOW_NOT_CREATED, reason=result.reason)

        logger.info(
            "Assignment %s cancelled by %s (type=%s, window=%s)",
            assignment_id, user_id, cancel_type.value, replacement.status,
        )

        self.windows.announce(result)
        self.effects.run(
            "audit_cancel",
            self.effects.audit.record,
            org_id=org_id,
            entity_type="assignment",
            entity_id=assignment_id,
            action="cancel",
            actor_id=user_id,
            before=before,
            after={"status": AssignmentStatus.cancelled.value, "cancel_type": cancel_type.value},
            reason=reason,
        )
        self.effects.run(
            "alert_route_cancelled",
            self.effects.notifier.alert_route_manager,
            org_id=org_id,
            route_id=route.id,
            type=NotificationType.route_cancelled,
            title="Driver Cancelled",
            body=f"A driver cancelled {route.name} on {assignment.date.isoformat()}.",
            data={"assignment_id": assignment_id, "user_id": user_id, "late": late},
        )
        self.effects.run(
            "broadcast_cancel",
            self.effects.broadcaster.publish,
            org_id,
            realtime.ASSIGNMENT_UPDATED,
            {"assignment_id": str(assignment_id), "status": AssignmentStatus.cancelled.value},
        )

        return CancelResult(assignment=assignment, replacement_window=replacement, is_late=late)

    def _replayed_cancel(self, org_id: UUID, user_id: UUID, assignment_id: UUID) -> CancelResult | None:
        window = self.db.execute(
            select(BidWindow)
            .where(
                BidWindow.org_id == org_id,
                BidWindow.assignment_id == assignment_id,
                BidWindow.trigger == BidWindowTrigger.cancellation.value,
                BidWindow.vacated_user_id == user_id,
            )
            .order_by(BidWindow.opens_at.desc(), BidWindow.id)
            .limit(1)
        ).scalar_one_or_none()
        if window is None:
            return None

        assignment, _route, _shift = load_assignment(self.db, org_id, assignment_id)
        if window.status == BidWindowStatus.resolved.value:
            replacement = ReplacementWindow(WINDOW_FILLED, window.id, window.mode)
        elif window.status == BidWindowStatus.open.value:
            replacement = ReplacementWindow(WINDOW_ALREADY_OPEN, window.id, window.mode)
        else:
            replacement = ReplacementWindow(WINDOW_NOT_CREATED, reason="no_open_window")

        logger.info("Cancel of %s by %s replayed after refill (window %s)", assignment_id, user_id, window.id)
        return CancelResult(
            assignment=assignment,
            already_cancelled=True,
            is_late=window.vacated_cancel_type == CancelType.late.value,
            replacement_window=replacement,
        )

    # ------------------------------------------------------------------
    # manager override
    # ------------------------------------------------------------------

    def override(
        self,
        *,
        org_id: UUID,
        actor_id: UUID,
        role: str,
        assignment_id: UUID,
        action: str,
        target_user_id: UUID | None = None,
        pay_bonus_percent: int | None = None,
        now: datetime | None = None,
    ) -> OverrideResult:
        now = now or utc_now()
        if not is_manager(role):
            raise Forbidden(f"Role '{role}' is not allowed for 'assignment.override'")

        assignment, _route, _shift = load_assignment(self.db, org_id, assignment_id)
        ensure_warehouse_access(
            self.db, org_id=org_id, user_id=actor_id, role=role, warehouse_id=assignment.warehouse_id
        )

        if action == "reassign":
            if target_user_id is None:
                raise ValidationFailed("reassign requires user_id")
            return self._reassign(org_id, actor_id, assignment_id, target_user_id, now=now)
        if action == "open_bidding":
            return self._open_bidding(org_id, actor_id, assignment_id, now=now)
        if action == "open_urgent_bidding":
            return self._open_urgent_bidding(org_id, actor_id, assignment_id, pay_bonus_percent, now=now)
        raise ValidationFailed(f"Unknown override action: '{action}'")

    def _reassign(
        self,
        org_id: UUID,
        actor_id: UUID,
        assignment_id: UUID,
        target_user_id: UUID,
        *,
        now: datetime,
    ) -> OverrideResult:
        assignment, route, _shift = load_assignment(self.db, org_id, assignment_id)
        apply_transition(assignment.status, Action.REASSIGN)

        if assignment.date < local_today(now, self.policy):
            raise ValidationFailed("Assignment date has passed", code="assignment_in_past")

        driver = self.db.execute(
            select(User).where(User.org_id == org_id, User.id == target_user_id)
        ).scalar_one_or_none()
        if driver is None:
            raise NotFound("Driver not found", code="driver_not_found")

        previous_user = assignment.user_id if assignment.status == AssignmentStatus.scheduled.value else None
        if previous_user == target_user_id:
            return OverrideResult(action="reassign", assignment=assignment)

        reason = eligibility.ineligibility_reason(self.db, driver, on=assignment.date, exclude_assignment_id=assignment.id)
        if reason == eligibility.ALREADY_BOOKED:
            raise Conflict("Driver already has an assignment on this date", code=reason)
        if reason is not None:
            raise ValidationFailed(f"Driver cannot take this assignment: {reason}", code=reason)

        before = {"status": assignment.status, "user_id": assignment.user_id}
        closed_window: BidWindow | None = None
        try:
            current = self.windows.open_window_for(org_id, assignment_id)
            if current is not None:
                if not self.windows.close(current, now=now):
                    raise Conflict("Bid window was resolved concurrently", code=ALREADY_RESOLVED)
                closed_window = current

            with unique_guard(self.db):
                n = guarded_update(
                    self.db,
                    update(Assignment)
                    .where(
                        Assignment.org_id == org_id,
                        Assignment.id == assignment_id,
                        Assignment.status.in_(allowed_from(Action.REASSIGN)),
                    )
                    .values(
                        status=AssignmentStatus.scheduled.value,
                        user_id=target_user_id,
                        assigned_by=AssignedBy.manager.value,
                        assigned_at=now,
                        confirmed_at=now,
                        cancel_type=None,
                        cancel_reason=None,
                        cancel_notes=None,
                        cancelled_at=None,
                        updated_at=now,
                    ),
                )
                if n != 1:
                    raise TransitionNotAllowed("Assignment changed while reassigning")
            self.db.commit()
        except UniqueViolation as e:
            self.db.rollback()
            raise Conflict("Driver already has an assignment on this date", code=eligibility.ALREADY_BOOKED) from e
        except Exception:
            self.db.rollback()
            raise

        logger.info("Assignment %s reassigned to %s by manager %s", assignment_id, target_user_id, actor_id)

        when = assignment.date.isoformat()
        self.effects.run(
            "notify_reassigned_driver",
            self.effects.notifier.send,
            org_id=org_id,
            user_id=target_user_id,
            type=NotificationType.assignment_confirmed,
            title="Shift Assigned",
            body=f"Your manager assigned you {route.name} on {when}.",
            data={"assignment_id": assignment_id},
        )
        if previous_user is not None:
            self.effects.run(
                "notify_previous_driver",
                self.effects.notifier.send,
                org_id=org_id,
                user_id=previous_user,
                type=NotificationType.shift_cancelled,
                title="Shift Reassigned",
                body=f"{route.name} on {when} was reassigned by your manager.",
                data={"assignment_id": assignment_id},
            )
        self._audit_override(org_id, actor_id, assignment_id, "reassign", before, {
            "status": AssignmentStatus.scheduled.value,
            "user_id": target_user_id,
            "closed_bid_window_id": closed_window.id if closed_window else None,
        })
        self._broadcast(org_id, assignment_id, AssignmentStatus.scheduled.value)
        return OverrideResult(action="reassign", assignment=assignment, bid_window=closed_window)

    def _open_bidding(self, org_id: UUID, actor_id: UUID, assignment_id: UUID, *, now: datetime) -> OverrideResult:
        assignment, _route, _shift = load_assignment(self.db, org_id, assignment_id)
        if assignment.status not in (AssignmentStatus.unfilled.value, AssignmentStatus.cancelled.value):
            raise TransitionNotAllowed(
                f"open_bidding requires an unfilled assignment, status is '{assignment.status}'"
            )

        before = {"status": assignment.status}
        try:
            result = self.windows.open(
                org_id=org_id,
                assignment_id=assignment_id,
                trigger=BidWindowTrigger.manager.value,
                now=now,
            )
            if not result.success:
                self._raise_open_failure(result)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.windows.announce(result)
        window = self.db.get(BidWindow, result.bid_window_id)
        self._audit_override(org_id, actor_id, assignment_id, "open_bidding", before, {
            "bid_window_id": result.bid_window_id,
            "mode": result.mode,
        })
        return OverrideResult(action="open_bidding", assignment=assignment, bid_window=window, created=True)

    def _open_urgent_bidding(
        self,
        org_id: UUID,
        actor_id: UUID,
        assignment_id: UUID,
        pay_bonus_percent: int | None,
        *,
        now: datetime,
    ) -> OverrideResult:
        assignment, route, _shift = load_assignment(self.db, org_id, assignment_id)

        current = self.windows.open_window_for(org_id, assignment_id)
        if current is not None and current.mode == BidWindowMode.emergency.value:
            # already urgent: same window back, nothing changes
            return OverrideResult(action="open_urgent_bidding", assignment=assignment, bid_window=current)

        if assignment.status not in (
            AssignmentStatus.scheduled.value,
            AssignmentStatus.unfilled.value,
            AssignmentStatus.cancelled.value,
        ):
            raise TransitionNotAllowed(
                f"open_urgent_bidding not allowed from status '{assignment.status}'"
            )

        before = {"status": assignment.status, "user_id": assignment.user_id}
        superseded = current.id if current is not None else None
        try:
            if current is not None and not self.windows.close(current, now=now):
                raise _Superseded(ALREADY_RESOLVED)

            result = self.windows.open(
                org_id=org_id,
                assignment_id=assignment_id,
                trigger=BidWindowTrigger.manager.value,
                mode=BidWindowMode.emergency,
                pay_bonus_percent=pay_bonus_percent,
                now=now,
            )
            if not result.success:
                if result.reason == REASON_WINDOW_EXISTS:
                    raise _Superseded(OPEN_WINDOW_EXISTS)
                self._raise_open_failure(result)
            self.db.commit()
        except _Superseded as e:
            self.db.rollback()
            # a concurrent escalation may have done exactly what we wanted
            racer = self.windows.open_window_for(org_id, assignment_id)
            if racer is not None and racer.mode == BidWindowMode.emergency.value:
                logger.info("Assignment %s already escalated to window %s", assignment_id, racer.id)
                return OverrideResult(action="open_urgent_bidding", assignment=assignment, bid_window=racer)
            if e.code == OPEN_WINDOW_EXISTS:
                raise Conflict("An open bid window already exists", code=OPEN_WINDOW_EXISTS) from e
            raise Conflict("Bid window was resolved concurrently", code=ALREADY_RESOLVED) from e
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            "Assignment %s escalated to emergency window %s (superseded %s)",
            assignment_id, result.bid_window_id, superseded,
        )

        if result.vacated_user_id is not None:
            self.effects.run(
                "notify_vacated_driver",
                self.effects.notifier.send,
                org_id=org_id,
                user_id=result.vacated_user_id,
                type=NotificationType.shift_cancelled,
                title="Shift Reassigned",
                body=f"{route.name} on {assignment.date.isoformat()} was opened for urgent bidding by your manager.",
                data={"assignment_id": assignment_id, "bid_window_id": result.bid_window_id},
            )
        if superseded is not None:
            self.effects.run(
                "broadcast_window_closed",
                self.effects.broadcaster.publish,
                org_id,
                realtime.BID_WINDOW_CLOSED,
                {"bid_window_id": str(superseded), "reason": "escalated"},
            )
        self.windows.announce(result)
        window = self.db.get(BidWindow, result.bid_window_id)
        self._audit_override(org_id, actor_id, assignment_id, "open_urgent_bidding", before, {
            "bid_window_id": result.bid_window_id,
            "superseded_bid_window_id": superseded,
            "pay_bonus_percent": result.pay_bonus_percent,
        })
        return OverrideResult(action="open_urgent_bidding", assignment=assignment, bid_window=window, created=True)

    @staticmethod
    def _raise_open_failure(result: BidWindowResult) -> None:
        if result.reason == REASON_WINDOW_EXISTS:
            raise Conflict("An open bid window already exists", code=OPEN_WINDOW_EXISTS)
        if result.reason == REASON_SHIFT_PASSED:
            raise ValidationFailed("Shift has already started", code=REASON_SHIFT_PASSED)
        raise TransitionNotAllowed(f"Bid window not opened: {result.reason}")

    def _audit_override(self, org_id, actor_id, assignment_id, action, before, after) -> None:
        self.effects.run(
            f"audit_{action}",
            self.effects.audit.record,
            org_id=org_id,
            entity_type="assignment",
            entity_id=assignment_id,
            action=f"override_{action}",
            actor_id=actor_id,
            before=before,
            after=after,
        )

    def _broadcast(self, org_id: UUID, assignment_id: UUID, status: str) -> None:
        self.effects.run(
            "broadcast_assignment_updated",
            self.effects.broadcaster.publish,
            org_id,
            realtime.ASSIGNMENT_UPDATED,
            {"assignment_id": str(assignment_id), "status": status},
        )
