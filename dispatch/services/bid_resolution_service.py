# dispatch/services/bid_resolution_service.py
"""Resolution Engine.

Competitive windows resolve by score at expiry (periodic sweep or lazily on
read); instant/emergency windows resolve on the first valid bid, inside the
submitting transaction.

Concurrency guards:
  1) the window row is locked and finally moved with a guarded
     ``UPDATE ... WHERE status = 'open'``; zero rows -> ``already_resolved``
  2) the assignment moves with a guarded update from unfilled/cancelled
  3) uq_assignments_active_user_date backs the "winner is free that day" check
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from dispatch.core.config import settings
from dispatch.core.errors import Conflict, NotFound
from dispatch.core.policy import DispatchPolicy
from dispatch.core.store import UniqueViolation, guarded_update, unique_guard, violates
from dispatch.core.timeutil import utc_now
from dispatch.fsm.assignment_fsm import Action, allowed_from
from dispatch.models.assignment import AssignedBy, Assignment, AssignmentStatus
from dispatch.models.bid import Bid, BidStatus
from dispatch.models.bid_window import BidWindow, BidWindowMode, BidWindowStatus, BidWindowTrigger
from dispatch.models.notification import NotificationType
from dispatch.models.route import Route
from dispatch.services import realtime
from dispatch.services.bid_window_service import BidWindowManager, BidWindowResult
from dispatch.services.driver_stats import DriverStats, HealthEvent
from dispatch.services.scoring import ScoringService
from dispatch.services.side_effects import SideEffects

logger = logging.getLogger(__name__)

ALREADY_RESOLVED = "already_resolved"
ASSIGNMENT_ALREADY_FILLED = "assignment_already_filled"
DRIVER_ALREADY_BOOKED = "driver_already_booked"

NO_BIDS = "no_bids"
NO_ELIGIBLE_BIDS = "no_eligible_bids"


@dataclass
class ResolutionResult:
    resolved: bool
    bid_window_id: UUID
    bid_count: int = 0
    winner_user_id: UUID | None = None
    winning_bid_id: UUID | None = None
    reason: str | None = None
    fallback: BidWindowResult | None = None

    # post-commit context
    org_id: UUID | None = None
    assignment_id: UUID | None = None
    route_id: UUID | None = None
    mode: str | None = None
    loser_user_ids: list[UUID] = field(default_factory=list)
    before: dict | None = None


class _Booked(Exception):
    pass


def rank_bids(bids: list[Bid], mode: str) -> list[Bid]:
    """Competitive: score desc, then earliest bid. Otherwise first come first served."""
    if mode == BidWindowMode.competitive.value:
        return sorted(bids, key=lambda b: (-(b.score or 0.0), b.bid_at, str(b.id)))
    return sorted(bids, key=lambda b: (b.bid_at, str(b.id)))


class BidResolutionService:
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
        self.scoring = ScoringService(db, self.policy)

    # ------------------------------------------------------------------
    # public entry points (own the transaction)
    # ------------------------------------------------------------------

    def resolve(self, *, org_id: UUID, bid_window_id: UUID, now: datetime | None = None) -> ResolutionResult:
        now = now or utc_now()
        try:
            window = self.lock_open_window(org_id, bid_window_id)
            result = self.resolve_locked(window, now=now)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return self.finish(result)

    def sweep_expired(self, *, now: datetime | None = None, org_id: UUID | None = None) -> dict[str, int]:
        """Resolve every open window whose ``closes_at`` has passed. Safe to re-run."""
        now = now or utc_now()
        stats = {"checked": 0, "resolved": 0, "closed": 0, "skipped": 0, "failed": 0}

        for window in self.windows.expired_open_windows(now=now, org_id=org_id):
            stats["checked"] += 1
            try:
                result = self.resolve(org_id=window.org_id, bid_window_id=window.id, now=now)
            except Conflict as e:
                logger.info("Bid window %s skipped: %s", window.id, e.code)
                stats["skipped"] += 1
                continue
            except Exception:
                logger.error("Bid window %s failed to resolve", window.id, exc_info=True)
                stats["failed"] += 1
                continue
            stats["resolved" if result.resolved else "closed"] += 1

        return stats

    # ------------------------------------------------------------------
    # transactional core (caller commits)
    # ------------------------------------------------------------------

    def lock_open_window(self, org_id: UUID, bid_window_id: UUID) -> BidWindow:
        window = self.db.execute(
            select(BidWindow)
            .where(BidWindow.org_id == org_id, BidWindow.id == bid_window_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if window is None:
            raise NotFound("Bid window not found")
        if window.status != BidWindowStatus.open.value:
            raise Conflict("Bid window is no longer open", code=ALREADY_RESOLVED)
        return window

    def resolve_locked(self, window: BidWindow, *, now: datetime) -> ResolutionResult:
        assignment = self.db.execute(
            select(Assignment).where(Assignment.org_id == window.org_id, Assignment.id == window.assignment_id)
        ).scalar_one()

        result = ResolutionResult(
            resolved=False,
            bid_window_id=window.id,
            org_id=window.org_id,
            assignment_id=assignment.id,
            route_id=assignment.route_id,
            mode=window.mode,
            before={"status": assignment.status, "user_id": assignment.user_id},
        )

        pending = list(
            self.db.execute(
                select(Bid).where(
                    Bid.org_id == window.org_id,
                    Bid.bid_window_id == window.id,
                    Bid.status == BidStatus.pending.value,
                )
            ).scalars()
        )
        result.bid_count = len(pending)

        if not pending:
            return self._close_without_winner(window, result, now=now, reason=NO_BIDS)

        if window.mode == BidWindowMode.competitive.value:
            for b in pending:
                b.score = self.scoring.score(
                    org_id=window.org_id,
                    user_id=b.user_id,
                    route_id=assignment.route_id,
                    now=now,
                )

        winner: Bid | None = None
        for candidate in rank_bids(pending, window.mode):
            try:
                self._assign_winner(assignment, candidate.user_id, now=now)
            except _Booked:
                if window.mode != BidWindowMode.competitive.value:
                    raise Conflict(
                        "Driver already has an assignment on this date",
                        code=DRIVER_ALREADY_BOOKED,
                    )
                logger.info("Bid %s skipped: driver %s booked elsewhere", candidate.id, candidate.user_id)
                candidate.status = BidStatus.lost.value
                candidate.resolved_at = now
                continue
            winner = candidate
            break

        if winner is None:
            return self._close_without_winner(window, result, now=now, reason=NO_ELIGIBLE_BIDS)

        for b in pending:
            if b.status != BidStatus.pending.value:
                continue
            b.status = BidStatus.won.value if b is winner else BidStatus.lost.value
            b.resolved_at = now
        self.db.flush()

        n = guarded_update(
            self.db,
            update(BidWindow)
            .where(
                BidWindow.org_id == window.org_id,
                BidWindow.id == window.id,
                BidWindow.status == BidWindowStatus.open.value,
            )
            .values(
                status=BidWindowStatus.resolved.value,
                winner_id=winner.user_id,
                resolved_at=now,
            ),
        )
        if n != 1:
            raise Conflict("Bid window was resolved concurrently", code=ALREADY_RESOLVED)

        urgent = window.mode == BidWindowMode.emergency.value
        if urgent:
            self.stats.bump(window.org_id, winner.user_id, now=now, bid_pickups=1, urgent_pickups=1)
        else:
            self.stats.bump(window.org_id, winner.user_id, now=now, bid_pickups=1)
        self.stats.apply_health(
            window.org_id,
            winner.user_id,
            HealthEvent.urgent_pickup if urgent else HealthEvent.bid_pickup,
            now=now,
        )

        result.resolved = True
        result.winner_user_id = winner.user_id
        result.winning_bid_id = winner.id
        result.loser_user_ids = [b.user_id for b in pending if b is not winner]
        logger.info(
            "Bid window %s resolved: winner=%s mode=%s bids=%d",
            window.id, winner.user_id, window.mode, len(pending),
        )
        return result

    def _assign_winner(self, assignment: Assignment, user_id: UUID, *, now: datetime) -> None:
        try:
            with unique_guard(self.db):
                n = guarded_update(
                    self.db,
                    update(Assignment)
                    .where(
                        Assignment.org_id == assignment.org_id,
                        Assignment.id == assignment.id,
                        Assignment.status.in_(allowed_from(Action.FILL_BY_BID)),
                    )
                    .values(
                        status=AssignmentStatus.scheduled.value,
                        user_id=user_id,
                        assigned_by=AssignedBy.bid.value,
                        assigned_at=now,
                        # accepting a bid is the driver's confirmation
                        confirmed_at=now,
                        cancel_type=None,
                        cancel_reason=None,
                        cancel_notes=None,
                        cancelled_at=None,
                        updated_at=now,
                    ),
                )
                if n != 1:
                    raise Conflict("Assignment is no longer open for bidding", code=ASSIGNMENT_ALREADY_FILLED)
        except UniqueViolation as e:
            if violates(e, "uq_assignments_active_user_date", "assignments.user_id"):
                raise _Booked() from e
            raise

    def _close_without_winner(
        self,
        window: BidWindow,
        result: ResolutionResult,
        *,
        now: datetime,
        reason: str,
    ) -> ResolutionResult:
        if not self.windows.close(window, now=now):
            raise Conflict("Bid window was resolved concurrently", code=ALREADY_RESOLVED)
        result.reason = reason

        if window.mode == BidWindowMode.competitive.value:
            fallback = self.windows.open(
                org_id=window.org_id,
                assignment_id=window.assignment_id,
                trigger=BidWindowTrigger.no_bids_fallback.value,
                mode=BidWindowMode.instant,
                now=now,
            )
            if fallback.success:
                result.fallback = fallback
                logger.info("Bid window %s: no winner, instant fallback %s", window.id, fallback.bid_window_id)
            else:
                logger.warning("Bid window %s: instant fallback not opened (%s)", window.id, fallback.reason)
        return result

    # ------------------------------------------------------------------
    # post-commit
    # ------------------------------------------------------------------

    def finish(self, result: ResolutionResult) -> ResolutionResult:
        if result.resolved:
            self._after_win(result)
        else:
            self._after_no_winner(result)
        return result

    def _after_win(self, r: ResolutionResult) -> None:
        route_name, shift_date = self.db.execute(
            select(Route.name, Assignment.date)
            .join(Assignment, Assignment.route_id == Route.id)
            .where(Assignment.org_id == r.org_id, Assignment.id == r.assignment_id)
        ).one()
        when = shift_date.isoformat()
        data = {"assignment_id": r.assignment_id, "bid_window_id": r.bid_window_id}

        self.effects.run(
            "notify_winner",
            self.effects.notifier.send,
            org_id=r.org_id,
            user_id=r.winner_user_id,
            type=NotificationType.bid_won,
            title="Shift Assigned",
            body=f"You won {route_name} on {when}.",
            data=data,
        )
        self.effects.run(
            "notify_losers",
            self.effects.notifier.send_bulk,
            org_id=r.org_id,
            user_ids=r.loser_user_ids,
            type=NotificationType.bid_lost,
            title="Bid Not Selected",
            body=f"{route_name} on {when} was assigned to another driver.",
            data=data,
        )
        self.effects.run(
            "audit_bid_resolved",
            self.effects.audit.record,
            org_id=r.org_id,
            entity_type="assignment",
            entity_id=r.assignment_id,
            action="bid_resolved",
            before=r.before,
            after={"status": AssignmentStatus.scheduled.value, "user_id": r.winner_user_id},
            bid_window_id=r.bid_window_id,
            mode=r.mode,
        )
        self.effects.run(
            "broadcast_assignment_updated",
            self.effects.broadcaster.publish,
            r.org_id,
            realtime.ASSIGNMENT_UPDATED,
            {
                "assignment_id": str(r.assignment_id),
                "status": AssignmentStatus.scheduled.value,
                "user_id": str(r.winner_user_id),
                "bid_window_id": str(r.bid_window_id),
            },
        )

    def _after_no_winner(self, r: ResolutionResult) -> None:
        self.effects.run(
            "broadcast_window_closed",
            self.effects.broadcaster.publish,
            r.org_id,
            realtime.BID_WINDOW_CLOSED,
            {"bid_window_id": str(r.bid_window_id), "reason": r.reason},
        )
        if r.fallback is not None:
            self.windows.announce(r.fallback)
            return

        route_name, shift_date = self.db.execute(
            select(Route.name, Assignment.date)
            .join(Assignment, Assignment.route_id == Route.id)
            .where(Assignment.org_id == r.org_id, Assignment.id == r.assignment_id)
        ).one()
        self.effects.run(
            "alert_route_unfilled",
            self.effects.notifier.alert_route_manager,
            org_id=r.org_id,
            route_id=r.route_id,
            type=NotificationType.route_unfilled,
            title="Route Unfilled",
            body=f"No driver picked up {route_name} on {shift_date.isoformat()}.",
            data={"assignment_id": r.assignment_id, "bid_window_id": r.bid_window_id},
        )
