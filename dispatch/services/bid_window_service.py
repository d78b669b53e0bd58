# dispatch/services/bid_window_service.py
"""Bid Window Manager: opening, mode selection, closing.

``open`` does the transactional part and leaves the commit to the caller so
escalation paths can change the assignment and open its window atomically.
``announce`` is the post-commit part (notify eligible drivers, broadcast).
``create_bid_window`` does both for callers with nothing else to write.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from dispatch.core.config import settings
from dispatch.core.policy import DispatchPolicy
from dispatch.core.store import UniqueViolation, guarded_update, unique_guard
from dispatch.core.timeutil import end_of_local_day, utc_now
from dispatch.fsm.assignment_fsm import Action, allowed_from
from dispatch.fsm.deadlines import hours_until, shift_start_at
from dispatch.models.assignment import Assignment, AssignmentStatus
from dispatch.models.bid import Bid, BidStatus
from dispatch.models.bid_window import BidWindow, BidWindowMode, BidWindowStatus, BidWindowTrigger
from dispatch.models.notification import NotificationType
from dispatch.models.organization import Organization
from dispatch.models.route import Route
from dispatch.services import realtime
from dispatch.services.eligibility import eligible_drivers
from dispatch.services.side_effects import SideEffects

logger = logging.getLogger(__name__)

REASON_NOT_FOUND = "assignment_not_found"
REASON_WINDOW_EXISTS = "open_window_exists"
REASON_SHIFT_PASSED = "shift_already_passed"
REASON_NOT_BIDDABLE = "assignment_not_biddable"
# driver confirmed between the auto-drop scan and the vacate
REASON_CONFIRMED = "assignment_confirmed"

BIDDABLE_STATUSES = {
    AssignmentStatus.scheduled.value,
    AssignmentStatus.unfilled.value,
    AssignmentStatus.cancelled.value,
}

EMERGENCY_TRIGGERS = {BidWindowTrigger.no_show.value}


@dataclass
class BidWindowResult:
    success: bool
    bid_window_id: UUID | None = None
    mode: str | None = None
    closes_at: datetime | None = None
    pay_bonus_percent: int = 0
    notified_count: int = 0
    reason: str | None = None

    # filled by ``open`` for ``announce``
    org_id: UUID | None = None
    assignment_id: UUID | None = None
    vacated_user_id: UUID | None = None
    exclude_user_ids: set[UUID] = field(default_factory=set)


class _Abort(Exception):
    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


def select_mode(hours_to_shift: float, trigger: str, policy: DispatchPolicy) -> BidWindowMode:
    if trigger in EMERGENCY_TRIGGERS:
        return BidWindowMode.emergency
    if hours_to_shift > policy.bidding.instant_mode_cutoff_hours:
        return BidWindowMode.competitive
    return BidWindowMode.instant


def window_closes_at(
    mode: BidWindowMode,
    *,
    now: datetime,
    shift_start: datetime,
    shift_date: date,
    policy: DispatchPolicy,
) -> datetime | None:
    """None when no valid close instant remains (shift already passed)."""
    if mode is BidWindowMode.competitive:
        closes = shift_start - timedelta(hours=policy.bidding.instant_mode_cutoff_hours)
        if closes > now:
            return closes
        # already inside the cutoff: close at shift start
        return shift_start if shift_start > now else None

    if shift_start > now:
        return shift_start

    if mode is BidWindowMode.emergency:
        # shift already started: keep the emergency open for the rest of the local day
        eod = end_of_local_day(shift_date, policy)
        return eod if eod > now else None
    return None


class BidWindowManager:
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

    # ------------------------------------------------------------------
    # queries
    # ------------------------------------------------------------------

    def open_window_for(self, org_id: UUID, assignment_id: UUID) -> BidWindow | None:
        return self.db.execute(
            select(BidWindow).where(
                BidWindow.org_id == org_id,
                BidWindow.assignment_id == assignment_id,
                BidWindow.status == BidWindowStatus.open.value,
            )
        ).scalar_one_or_none()

    def expired_open_windows(self, *, now: datetime, org_id: UUID | None = None) -> list[BidWindow]:
        stmt = select(BidWindow).where(
            BidWindow.status == BidWindowStatus.open.value,
            BidWindow.closes_at <= now,
        )
        if org_id is not None:
            stmt = stmt.where(BidWindow.org_id == org_id)
        return list(self.db.execute(stmt.order_by(BidWindow.closes_at, BidWindow.id)).scalars())

    def emergency_bonus(self, org_id: UUID) -> int:
        override = self.db.execute(
            select(Organization.emergency_bonus_percent).where(Organization.id == org_id)
        ).scalar_one_or_none()
        return override if override else self.policy.bidding.emergency_bonus_percent

    # ------------------------------------------------------------------
    # open
    # ------------------------------------------------------------------

    def open(
        self,
        *,
        org_id: UUID,
        assignment_id: UUID,
        trigger: str,
        mode: BidWindowMode | None = None,
        pay_bonus_percent: int | None = None,
        exclude_vacated_driver: bool = False,
        now: datetime | None = None,
    ) -> BidWindowResult:
        """Open a window inside the caller's transaction. Does not commit.

        A ``scheduled`` assignment is vacated (-> unfilled, driver cleared).
        ``cancelled`` and ``unfilled`` keep their status.
        An auto-drop only vacates a still-unconfirmed assignment.
        """
        now = now or utc_now()

        assignment = self.db.execute(
            select(Assignment).where(Assignment.org_id == org_id, Assignment.id == assignment_id)
        ).scalar_one_or_none()
        if assignment is None:
            return BidWindowResult(success=False, reason=REASON_NOT_FOUND)

        if assignment.status not in BIDDABLE_STATUSES:
            return BidWindowResult(success=False, reason=REASON_NOT_BIDDABLE)

        existing = self.open_window_for(org_id, assignment_id)
        if existing is not None:
            return BidWindowResult(
                success=False,
                reason=REASON_WINDOW_EXISTS,
                bid_window_id=existing.id,
                mode=existing.mode,
            )

        route_start = self.db.execute(
            select(Route.start_time).where(Route.org_id == org_id, Route.id == assignment.route_id)
        ).scalar_one_or_none()
        shift_start = shift_start_at(assignment.date, route_start, self.policy)

        chosen = mode or select_mode(hours_until(shift_start, now), trigger, self.policy)
        closes_at = window_closes_at(
            chosen,
            now=now,
            shift_start=shift_start,
            shift_date=assignment.date,
            policy=self.policy,
        )
        if closes_at is None:
            logger.info("Assignment %s: shift already passed, no window", assignment_id)
            return BidWindowResult(success=False, reason=REASON_SHIFT_PASSED)

        if chosen is BidWindowMode.emergency:
            bonus = pay_bonus_percent if pay_bonus_percent else self.emergency_bonus(org_id)
        else:
            bonus = pay_bonus_percent or 0

        auto_drop = trigger == BidWindowTrigger.auto_drop.value
        vacated = assignment.user_id if assignment.status == AssignmentStatus.scheduled.value else None
        holder = vacated or assignment.user_id

        window = BidWindow(
            org_id=org_id,
            assignment_id=assignment_id,
            mode=chosen.value,
            trigger=trigger,
            pay_bonus_percent=bonus,
            opens_at=now,
            closes_at=closes_at,
            status=BidWindowStatus.open.value,
            vacated_user_id=holder,
            vacated_cancel_type=assignment.cancel_type if trigger == BidWindowTrigger.cancellation.value else None,
        )

        try:
            with unique_guard(self.db):
                if vacated is not None:
                    guard = [
                        Assignment.org_id == org_id,
                        Assignment.id == assignment_id,
                        Assignment.status.in_(allowed_from(Action.VACATE)),
                        Assignment.user_id == vacated,
                    ]
                    if auto_drop:
                        guard.append(Assignment.confirmed_at.is_(None))
                    n = guarded_update(
                        self.db,
                        update(Assignment)
                        .where(*guard)
                        .values(
                            status=AssignmentStatus.unfilled.value,
                            user_id=None,
                            updated_at=now,
                        ),
                    )
                    if n != 1:
                        raise _Abort(REASON_CONFIRMED if auto_drop else REASON_NOT_BIDDABLE)
                self.db.add(window)
        except _Abort as e:
            return BidWindowResult(success=False, reason=e.reason)
        except UniqueViolation:
            # a racer opened one between our check and insert
            racer = self.open_window_for(org_id, assignment_id)
            return BidWindowResult(
                success=False,
                reason=REASON_WINDOW_EXISTS,
                bid_window_id=racer.id if racer else None,
            )

        logger.info(
            "Bid window %s opened: assignment=%s mode=%s trigger=%s closes_at=%s",
            window.id, assignment_id, chosen.value, trigger, closes_at.isoformat(),
        )

        exclude = set()
        if exclude_vacated_driver and holder is not None:
            exclude.add(holder)

        return BidWindowResult(
            success=True,
            bid_window_id=window.id,
            mode=chosen.value,
            closes_at=closes_at,
            pay_bonus_percent=bonus,
            org_id=org_id,
            assignment_id=assignment_id,
            vacated_user_id=vacated,
            exclude_user_ids=exclude,
        )

    def announce(self, result: BidWindowResult) -> BidWindowResult:
        """Post-commit: notify eligible drivers and managers' dashboards."""
        if not result.success:
            return result

        notified = self.effects.run("notify_eligible_drivers", self._notify_eligible, result)
        result.notified_count = notified or 0

        self.effects.run(
            "broadcast_window_opened",
            self.effects.broadcaster.publish,
            result.org_id,
            realtime.BID_WINDOW_OPENED,
            {
                "bid_window_id": str(result.bid_window_id),
                "assignment_id": str(result.assignment_id),
                "mode": result.mode,
            },
        )
        return result

    def create_bid_window(
        self,
        *,
        org_id: UUID,
        assignment_id: UUID,
        trigger: str,
        mode: BidWindowMode | None = None,
        pay_bonus_percent: int | None = None,
        exclude_vacated_driver: bool = False,
        now: datetime | None = None,
    ) -> BidWindowResult:
        result = self.open(
            org_id=org_id,
            assignment_id=assignment_id,
            trigger=trigger,
            mode=mode,
            pay_bonus_percent=pay_bonus_percent,
            exclude_vacated_driver=exclude_vacated_driver,
            now=now,
        )
        if not result.success:
            self.db.rollback()
            return result
        self.db.commit()
        return self.announce(result)

    def _notify_eligible(self, result: BidWindowResult) -> int:
        row = self.db.execute(
            select(Assignment.date, Route.name)
            .join(Route, Route.id == Assignment.route_id)
            .where(Assignment.org_id == result.org_id, Assignment.id == result.assignment_id)
        ).one()
        shift_date, route_name = row

        drivers = eligible_drivers(
            self.db,
            org_id=result.org_id,
            on=shift_date,
            exclude_user_ids=result.exclude_user_ids,
        )

        if result.mode == BidWindowMode.emergency.value:
            ntype = NotificationType.emergency_route_available
            title = "Urgent Route Available"
            body = f"{route_name} on {shift_date.isoformat()} needs a driver now (+{result.pay_bonus_percent}% pay)."
        else:
            ntype = NotificationType.bid_open
            title = "New Shift Available"
            body = f"{route_name} on {shift_date.isoformat()} is open for bidding."

        return self.effects.notifier.send_bulk(
            org_id=result.org_id,
            user_ids=[d.id for d in drivers],
            type=ntype,
            title=title,
            body=body,
            data={
                "assignment_id": result.assignment_id,
                "bid_window_id": result.bid_window_id,
                "mode": result.mode,
                "closes_at": result.closes_at.isoformat() if result.closes_at else None,
            },
        )

    # ------------------------------------------------------------------
    # close
    # ------------------------------------------------------------------

    def close(self, window: BidWindow, *, now: datetime) -> bool:
        """open -> closed without a winner; pending bids become lost. Does not commit.

        False when the window was no longer open (a racer resolved or closed it).
        """
        n = guarded_update(
            self.db,
            update(BidWindow)
            .where(
                BidWindow.org_id == window.org_id,
                BidWindow.id == window.id,
                BidWindow.status == BidWindowStatus.open.value,
            )
            .values(status=BidWindowStatus.closed.value, resolved_at=now),
        )
        if n != 1:
            return False

        self.db.execute(
            update(Bid)
            .where(
                Bid.org_id == window.org_id,
                Bid.bid_window_id == window.id,
                Bid.status == BidStatus.pending.value,
            )
            .values(status=BidStatus.lost.value, resolved_at=now)
        )
        logger.info("Bid window %s closed without winner", window.id)
        return True
