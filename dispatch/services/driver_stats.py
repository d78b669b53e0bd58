# dispatch/services/driver_stats.py
"""Driver metrics counters, route familiarity and the health score."""
from __future__ import annotations

import enum
import logging
from datetime import datetime
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from dispatch.core.config import settings
from dispatch.core.policy import DispatchPolicy
from dispatch.models.assignment import Assignment
from dispatch.models.driver_metrics import DriverHealthState, DriverMetrics
from dispatch.models.driver_preference import RouteCompletion
from dispatch.models.shift import Shift

logger = logging.getLogger(__name__)

COUNTERS = {
    "total_shifts",
    "completed_shifts",
    "confirmed_shifts",
    "arrived_on_time_count",
    "auto_dropped_shifts",
    "late_cancellations",
    "no_shows",
    "bid_pickups",
    "urgent_pickups",
}


class HealthEvent(str, enum.Enum):
    confirmed_on_time = "confirmed_on_time"
    arrived_on_time = "arrived_on_time"
    completed_shift = "completed_shift"
    bid_pickup = "bid_pickup"
    urgent_pickup = "urgent_pickup"
    auto_drop = "auto_drop"
    late_cancel = "late_cancel"
    # hard stop: score -> 0, manager must intervene
    no_show = "no_show"


class DriverStats:
    def __init__(self, db: Session, policy: DispatchPolicy | None = None):
        self.db = db
        self.policy = policy or settings.policy

    # ------------------------------------------------------------------
    # counters
    # ------------------------------------------------------------------

    def metrics_for(self, org_id: UUID, user_id: UUID) -> DriverMetrics:
        m = self.db.execute(
            select(DriverMetrics).where(DriverMetrics.org_id == org_id, DriverMetrics.user_id == user_id)
        ).scalar_one_or_none()
        if m is None:
            m = DriverMetrics(org_id=org_id, user_id=user_id)
            for name in COUNTERS:
                setattr(m, name, 0)
            m.attendance_rate = 0.0
            m.completion_rate = 0.0
            self.db.add(m)
            self.db.flush()
        return m

    def bump(self, org_id: UUID, user_id: UUID, *, now: datetime, **increments: int) -> DriverMetrics:
        unknown = set(increments) - COUNTERS
        if unknown:
            raise ValueError(f"Unknown metric counters: {sorted(unknown)}")

        m = self.metrics_for(org_id, user_id)
        for name, delta in increments.items():
            setattr(m, name, (getattr(m, name) or 0) + delta)
        if "completed_shifts" in increments or "total_shifts" in increments:
            self._recompute_rates(m, org_id, user_id)
        m.updated_at = now
        return m

    def _recompute_rates(self, m: DriverMetrics, org_id: UUID, user_id: UUID) -> None:
        m.attendance_rate = (m.completed_shifts / m.total_shifts) if m.total_shifts else 0.0

        self.db.flush()
        avg = self.db.execute(
            select(func.avg(Shift.parcels_delivered * 1.0 / Shift.parcels_start))
            .join(Assignment, Assignment.id == Shift.assignment_id)
            .where(
                Assignment.org_id == org_id,
                Assignment.user_id == user_id,
                Shift.completed_at.is_not(None),
                Shift.parcels_start.is_not(None),
                Shift.parcels_start != 0,
                Shift.parcels_delivered.is_not(None),
            )
        ).scalar_one_or_none()
        m.completion_rate = min(float(avg or 0.0), 1.0)

    # ------------------------------------------------------------------
    # route familiarity
    # ------------------------------------------------------------------

    def record_route_completion(self, org_id: UUID, user_id: UUID, route_id: UUID, *, now: datetime) -> None:
        rc = self.db.execute(
            select(RouteCompletion).where(
                RouteCompletion.org_id == org_id,
                RouteCompletion.user_id == user_id,
                RouteCompletion.route_id == route_id,
            )
        ).scalar_one_or_none()
        if rc is None:
            rc = RouteCompletion(org_id=org_id, user_id=user_id, route_id=route_id, completion_count=0)
            self.db.add(rc)
            self.db.flush()
        rc.completion_count = (rc.completion_count or 0) + 1
        rc.last_completed_at = now

    def familiarity(self, org_id: UUID, user_id: UUID, route_id: UUID) -> int:
        count = self.db.execute(
            select(RouteCompletion.completion_count).where(
                RouteCompletion.org_id == org_id,
                RouteCompletion.user_id == user_id,
                RouteCompletion.route_id == route_id,
            )
        ).scalar_one_or_none()
        return count or 0

    # ------------------------------------------------------------------
    # health
    # ------------------------------------------------------------------

    def health_state(self, org_id: UUID, user_id: UUID) -> DriverHealthState:
        hs = self.db.execute(
            select(DriverHealthState).where(
                DriverHealthState.org_id == org_id,
                DriverHealthState.user_id == user_id,
            )
        ).scalar_one_or_none()
        if hs is None:
            hs = DriverHealthState(
                org_id=org_id,
                user_id=user_id,
                current_score=0,
                requires_manager_intervention=False,
            )
            self.db.add(hs)
            self.db.flush()
        return hs

    def health_score(self, org_id: UUID, user_id: UUID) -> int:
        score = self.db.execute(
            select(DriverHealthState.current_score).where(
                DriverHealthState.org_id == org_id,
                DriverHealthState.user_id == user_id,
            )
        ).scalar_one_or_none()
        return score or 0

    def apply_health(self, org_id: UUID, user_id: UUID, event: HealthEvent, *, now: datetime) -> int:
        """Apply one event's points; the score never drops below zero."""
        hs = self.health_state(org_id, user_id)

        if event is HealthEvent.no_show:
            hs.current_score = 0
            hs.requires_manager_intervention = True
            hs.last_score_reset_at = now
        else:
            points = getattr(self.policy.health, event.value)
            hs.current_score = max((hs.current_score or 0) + points, 0)

        hs.updated_at = now
        logger.debug("Health %s for user %s -> %s", event.value, user_id, hs.current_score)
        return hs.current_score
