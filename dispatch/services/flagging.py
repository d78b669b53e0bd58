# dispatch/services/flagging.py
"""Attendance flagging and the weekly cap.

A driver whose attendance falls below the threshold is flagged and warned.
Still flagged once the grace period is over, their weekly cap drops by one.
Drivers with a long, clean record get the reward cap instead.

``evaluate`` writes inside the caller's transaction; ``announce`` runs the
post-commit side effects for whatever ``evaluate`` changed.

A no-show hard stop (``requires_manager_intervention``) is lifted only by
``reinstate``.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from dispatch.core.config import settings
from dispatch.core.errors import NotFound
from dispatch.core.policy import DispatchPolicy
from dispatch.core.rbac import Forbidden, is_manager
from dispatch.core.timeutil import utc_now
from dispatch.models.assignment import Assignment, AssignmentStatus
from dispatch.models.driver_metrics import DriverHealthState, DriverMetrics
from dispatch.models.notification import NotificationType
from dispatch.models.user import User, UserRole
from dispatch.services import realtime
from dispatch.services.driver_stats import DriverStats
from dispatch.services.side_effects import SideEffects

logger = logging.getLogger(__name__)

ACTION_FLAG = "flag"
ACTION_UNFLAG = "unflag"
ACTION_UPDATE = "update"


@dataclass
class FlagResult:
    org_id: UUID
    user_id: UUID
    total_shifts: int
    attendance_rate: float
    threshold: float
    is_flagged: bool
    weekly_cap: int
    flag_warning_date: datetime | None = None
    warning_sent: bool = False
    grace_penalty_applied: bool = False
    reward_applied: bool = False
    # flag / unflag / update; None when nothing changed
    action: str | None = None
    before: dict | None = None

    @property
    def changed(self) -> bool:
        return self.action is not None


class FlaggingService:
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

    def threshold_for(self, total_shifts: int) -> float:
        p = self.policy.flagging
        return p.new_driver_threshold if total_shifts < p.new_driver_shifts else p.threshold

    def _settled_attendance(self, org_id: UUID, user_id: UUID) -> tuple[int, float]:
        """(shifts, attendance) over settled shifts only: a shift in progress is not a miss yet."""
        m = self.db.execute(
            select(DriverMetrics).where(DriverMetrics.org_id == org_id, DriverMetrics.user_id == user_id)
        ).scalar_one_or_none()
        if m is None:
            return 0, 0.0

        in_progress = self.db.execute(
            select(Assignment.id).where(
                Assignment.org_id == org_id,
                Assignment.user_id == user_id,
                Assignment.status == AssignmentStatus.active.value,
            ).limit(1)
        ).first()
        total = (m.total_shifts or 0) - (1 if in_progress is not None else 0)
        if total <= 0:
            return 0, 0.0
        return total, min((m.completed_shifts or 0) / total, 1.0)

    def evaluate(self, org_id: UUID, user_id: UUID, *, now: datetime | None = None) -> FlagResult | None:
        """Recompute flag and weekly cap for one driver. Does not commit."""
        now = now or utc_now()
        p = self.policy.flagging

        user = self.db.execute(
            select(User).where(User.org_id == org_id, User.id == user_id)
        ).scalar_one_or_none()
        if user is None or user.role != UserRole.driver.value:
            return None

        total, rate = self._settled_attendance(org_id, user_id)
        threshold = self.threshold_for(total)
        reward = total >= p.reward_min_shifts and rate >= p.reward_attendance
        should_flag = total > 0 and rate < threshold
        base_cap = p.reward_weekly_cap if reward else self.policy.scheduling.default_weekly_cap

        before = {
            "is_flagged": user.is_flagged,
            "flag_warning_date": user.flag_warning_date,
            "weekly_cap": user.weekly_cap,
        }
        warning_date = user.flag_warning_date
        cap = base_cap
        warning_sent = False
        penalty = False

        if should_flag:
            if not user.is_flagged or warning_date is None:
                warning_date = now
                warning_sent = True
            if warning_date + timedelta(days=p.grace_period_days) <= now:
                cap = max(base_cap - 1, p.min_weekly_cap)
                penalty = cap < base_cap
        else:
            warning_date = None

        result = FlagResult(
            org_id=org_id,
            user_id=user_id,
            total_shifts=total,
            attendance_rate=rate,
            threshold=threshold,
            is_flagged=should_flag,
            weekly_cap=cap,
            flag_warning_date=warning_date,
            warning_sent=warning_sent,
            grace_penalty_applied=penalty,
            reward_applied=reward and not should_flag,
            before=before,
        )

        if (should_flag, warning_date, cap) == (user.is_flagged, user.flag_warning_date, user.weekly_cap):
            return result

        if should_flag and not user.is_flagged:
            result.action = ACTION_FLAG
        elif not should_flag and user.is_flagged:
            result.action = ACTION_UNFLAG
        else:
            result.action = ACTION_UPDATE

        user.is_flagged = should_flag
        user.flag_warning_date = warning_date
        user.weekly_cap = cap

        logger.info(
            "Driver %s %s: attendance=%.2f threshold=%.2f shifts=%s cap=%s",
            user_id, result.action, rate, threshold, total, cap,
        )
        return result

    def announce(self, result: FlagResult | None) -> None:
        """Post-commit: audit, warning, dashboard event."""
        if result is None or not result.changed:
            return

        self.effects.run(
            f"audit_{result.action}",
            self.effects.audit.record,
            org_id=result.org_id,
            entity_type="user",
            entity_id=result.user_id,
            action=result.action,
            before=result.before,
            after={
                "is_flagged": result.is_flagged,
                "flag_warning_date": result.flag_warning_date,
                "weekly_cap": result.weekly_cap,
            },
            attendance_rate=result.attendance_rate,
            threshold=result.threshold,
            total_shifts=result.total_shifts,
            warning_sent=result.warning_sent,
            grace_penalty_applied=result.grace_penalty_applied,
            reward_applied=result.reward_applied,
        )
        if result.warning_sent:
            self.effects.run(
                "notify_flag_warning",
                self.effects.notifier.send,
                org_id=result.org_id,
                user_id=result.user_id,
                type=NotificationType.flag_warning,
                title="Attendance Warning",
                body=(
                    f"Your attendance is {result.attendance_rate:.0%}, below the required "
                    f"{result.threshold:.0%}. Improve it within {self.policy.flagging.grace_period_days} days "
                    "to keep your weekly shifts."
                ),
                data={"attendance_rate": result.attendance_rate, "threshold": result.threshold},
            )
        if result.action == ACTION_FLAG:
            self.effects.run(
                "broadcast_driver_flagged",
                self.effects.broadcaster.publish,
                result.org_id,
                realtime.DRIVER_FLAGGED,
                {
                    "user_id": str(result.user_id),
                    "attendance_rate": result.attendance_rate,
                    "threshold": result.threshold,
                    "total_shifts": result.total_shifts,
                },
            )

    def run_performance_check(self, *, now: datetime | None = None, org_id: UUID | None = None) -> dict[str, int]:
        now = now or utc_now()
        stmt = select(User.org_id, User.id).where(User.role == UserRole.driver.value).order_by(User.id)
        if org_id is not None:
            stmt = stmt.where(User.org_id == org_id)

        stats = {"checked": 0, "newly_flagged": 0, "caps_reduced": 0, "rewards_granted": 0, "failed": 0}
        for driver_org, driver_id in self.db.execute(stmt).all():
            stats["checked"] += 1
            try:
                result = self.evaluate(driver_org, driver_id, now=now)
                self.db.commit()
            except Exception:
                self.db.rollback()
                logger.error("Performance check failed for driver %s", driver_id, exc_info=True)
                stats["failed"] += 1
                continue

            if result is None or not result.changed:
                continue
            if result.action == ACTION_FLAG:
                stats["newly_flagged"] += 1
            if result.grace_penalty_applied:
                stats["caps_reduced"] += 1
            if result.reward_applied:
                stats["rewards_granted"] += 1
            self.announce(result)

        logger.info("Performance check: %s", stats)
        return stats

    # ------------------------------------------------------------------
    # manager actions
    # ------------------------------------------------------------------

    def load_driver(self, org_id: UUID, user_id: UUID) -> User:
        driver = self.db.execute(
            select(User).where(User.org_id == org_id, User.id == user_id, User.role == UserRole.driver.value)
        ).scalar_one_or_none()
        if driver is None:
            raise NotFound("Driver not found", code="driver_not_found")
        return driver

    def reinstate(
        self,
        *,
        org_id: UUID,
        actor_id: UUID,
        role: str,
        user_id: UUID,
        now: datetime | None = None,
    ) -> DriverHealthState:
        """Lift the no-show hard stop. Repeating it changes nothing."""
        now = now or utc_now()
        if not is_manager(role):
            raise Forbidden(f"Role '{role}' is not allowed for 'driver.reinstate'")
        self.load_driver(org_id, user_id)

        hs = DriverStats(self.db, self.policy).health_state(org_id, user_id)
        if not hs.requires_manager_intervention:
            self.db.commit()
            return hs

        hs.requires_manager_intervention = False
        hs.updated_at = now
        self.db.commit()

        logger.info("Driver %s reinstated by %s", user_id, actor_id)
        self.effects.run(
            "audit_reinstate",
            self.effects.audit.record,
            org_id=org_id,
            entity_type="user",
            entity_id=user_id,
            action="reinstate",
            actor_id=actor_id,
            before={"requires_manager_intervention": True},
            after={"requires_manager_intervention": False},
        )
        return hs
