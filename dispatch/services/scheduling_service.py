# dispatch/services/scheduling_service.py
"""Weekly schedule generation and the preference lock.

Generation walks every (day, route) slot of the week that has no assignment
yet; re-running it over the same week changes nothing.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from uuid import UUID

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session

from dispatch.core.config import settings
from dispatch.core.policy import DispatchPolicy
from dispatch.core.store import UniqueViolation, unique_guard
from dispatch.core.timeutil import local_today, start_of_local_day, utc_now, week_dates, week_start
from dispatch.models.assignment import AssignedBy, Assignment, AssignmentStatus
from dispatch.models.bid_window import BidWindowTrigger
from dispatch.models.driver_metrics import DriverHealthState, DriverMetrics
from dispatch.models.driver_preference import DriverPreference, RouteCompletion
from dispatch.models.notification import NotificationType
from dispatch.models.organization import Organization
from dispatch.models.route import Route
from dispatch.models.user import User, UserRole
from dispatch.services.bid_window_service import BidWindowManager, BidWindowResult
from dispatch.services.eligibility import ineligibility_reason
from dispatch.services.side_effects import SideEffects

logger = logging.getLogger(__name__)


@dataclass
class GenerationResult:
    week_start: date
    scheduled: int = 0
    unfilled: int = 0
    skipped: int = 0
    created_ids: list[UUID] = field(default_factory=list)
    windows: list[BidWindowResult] = field(default_factory=list)


@dataclass(frozen=True)
class _Candidate:
    user: User
    preferred_days: frozenset[int]
    top_routes: tuple[str, ...]


class SchedulingService:
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

    # ------------------------------------------------------------------
    # weekly generation
    # ------------------------------------------------------------------

    def generate_week(self, *, org_id: UUID, monday: date, now: datetime | None = None) -> GenerationResult:
        now = now or utc_now()
        monday = week_start(monday)
        result = GenerationResult(week_start=monday)

        routes = list(
            self.db.execute(select(Route).where(Route.org_id == org_id).order_by(Route.name, Route.id)).scalars()
        )
        candidates = self._candidates(org_id)

        try:
            for day in week_dates(monday, self.policy.scheduling.days_per_week):
                for route in routes:
                    taken = self.db.execute(
                        select(Assignment.id).where(
                            Assignment.org_id == org_id,
                            Assignment.route_id == route.id,
                            Assignment.date == day,
                        ).limit(1)
                    ).first()
                    if taken is not None:
                        result.skipped += 1
                        continue
                    self._fill_slot(org_id, route, day, candidates, result, now=now)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            "Schedule %s for org %s: scheduled=%d unfilled=%d skipped=%d",
            monday.isoformat(), org_id, result.scheduled, result.unfilled, result.skipped,
        )

        for w in result.windows:
            self.windows.announce(w)
        for assignment_id in result.created_ids:
            self.effects.run(
                "audit_schedule_generation",
                self.effects.audit.record,
                org_id=org_id,
                entity_type="assignment",
                entity_id=assignment_id,
                action="schedule_generated",
                week_start=monday.isoformat(),
            )
        return result

    def _candidates(self, org_id: UUID) -> list[_Candidate]:
        # after a no-show only a manager puts the driver back into the pool
        hard_stop = (
            select(DriverHealthState.id)
            .where(
                DriverHealthState.org_id == User.org_id,
                DriverHealthState.user_id == User.id,
                DriverHealthState.requires_manager_intervention.is_(True),
            )
            .exists()
        )
        rows = self.db.execute(
            select(User, DriverPreference)
            .join(DriverPreference, DriverPreference.user_id == User.id)
            .where(
                User.org_id == org_id,
                User.role == UserRole.driver.value,
                User.is_flagged.is_(False),
                ~hard_stop,
            )
            .order_by(User.id)
        ).all()
        top_n = self.policy.bidding.preference_top_n
        return [
            _Candidate(
                user=u,
                preferred_days=frozenset(int(d) for d in (p.preferred_days or [])),
                top_routes=tuple(str(r) for r in (p.preferred_routes or []))[:top_n],
            )
            for u, p in rows
        ]

    def _rank_key(self, org_id: UUID, user_id: UUID, route_id: UUID) -> tuple:
        familiarity = self.db.execute(
            select(RouteCompletion.completion_count).where(
                RouteCompletion.org_id == org_id,
                RouteCompletion.user_id == user_id,
                RouteCompletion.route_id == route_id,
            )
        ).scalar_one_or_none() or 0
        rates = self.db.execute(
            select(DriverMetrics.completion_rate, DriverMetrics.attendance_rate).where(
                DriverMetrics.org_id == org_id,
                DriverMetrics.user_id == user_id,
            )
        ).one_or_none()
        completion, attendance = rates if rates is not None else (0.0, 0.0)
        return (-familiarity, -(completion or 0.0), -(attendance or 0.0), str(user_id))

    def _fill_slot(
        self,
        org_id: UUID,
        route: Route,
        day: date,
        candidates: list[_Candidate],
        result: GenerationResult,
        *,
        now: datetime,
    ) -> None:
        route_key = str(route.id)
        pool = [
            c.user for c in candidates
            if day.weekday() in c.preferred_days
            and route_key in c.top_routes
            and ineligibility_reason(self.db, c.user, on=day) is None
        ]
        pool.sort(key=lambda u: self._rank_key(org_id, u.id, route.id))

        for user in pool:
            assignment = Assignment(
                org_id=org_id,
                route_id=route.id,
                warehouse_id=route.warehouse_id,
                date=day,
                user_id=user.id,
                status=AssignmentStatus.scheduled.value,
                assigned_by=AssignedBy.algorithm.value,
                assigned_at=now,
                updated_at=now,
            )
            try:
                with unique_guard(self.db):
                    self.db.add(assignment)
            except UniqueViolation:
                logger.info("Driver %s booked concurrently for %s, trying next", user.id, day)
                continue
            result.scheduled += 1
            result.created_ids.append(assignment.id)
            return

        assignment = Assignment(
            org_id=org_id,
            route_id=route.id,
            warehouse_id=route.warehouse_id,
            date=day,
            user_id=None,
            status=AssignmentStatus.unfilled.value,
            updated_at=now,
        )
        self.db.add(assignment)
        self.db.flush()
        result.unfilled += 1
        result.created_ids.append(assignment.id)

        window = self.windows.open(
            org_id=org_id,
            assignment_id=assignment.id,
            trigger=BidWindowTrigger.schedule_generation.value,
            now=now,
        )
        if window.success:
            result.windows.append(window)

    # ------------------------------------------------------------------
    # preference lock
    # ------------------------------------------------------------------

    def lock_preferences(self, *, org_id: UUID, now: datetime | None = None) -> int:
        """Stamp ``locked_at`` on preferences not yet locked in the current cycle."""
        now = now or utc_now()
        cycle_start = start_of_local_day(week_start(local_today(now, self.policy)), self.policy)

        try:
            result = self.db.execute(
                update(DriverPreference)
                .where(
                    DriverPreference.org_id == org_id,
                    or_(DriverPreference.locked_at.is_(None), DriverPreference.locked_at < cycle_start),
                )
                .values(locked_at=now)
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return result.rowcount or 0

    def run_preference_lock(self, *, org_id: UUID, now: datetime | None = None) -> dict[str, int]:
        now = now or utc_now()
        locked = self.lock_preferences(org_id=org_id, now=now)
        next_monday = week_start(local_today(now, self.policy)) + timedelta(days=7)
        gen = self.generate_week(org_id=org_id, monday=next_monday, now=now)

        if gen.scheduled:
            drivers = self.db.execute(
                select(Assignment.user_id)
                .where(
                    Assignment.org_id == org_id,
                    Assignment.id.in_(gen.created_ids),
                    Assignment.user_id.is_not(None),
                )
                .distinct()
            ).scalars().all()
            self.effects.run(
                "notify_schedule_locked",
                self.effects.notifier.send_bulk,
                org_id=org_id,
                user_ids=drivers,
                type=NotificationType.schedule_locked,
                title="Schedule Published",
                body=f"Your schedule for the week of {next_monday.isoformat()} is ready.",
                data={"week_start": next_monday.isoformat()},
            )
        return {"locked": locked, "scheduled": gen.scheduled, "unfilled": gen.unfilled, "skipped": gen.skipped}


def organization_ids(db: Session) -> list[UUID]:
    return list(db.execute(select(Organization.id).order_by(Organization.id)).scalars())
