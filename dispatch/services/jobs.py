# dispatch/services/jobs.py
"""Batch triggers.

Plain idempotent functions: any scheduler (cron endpoint, CLI, orchestrator)
may call them at least once per period. Each runs organization by
organization; one organization failing does not stop the others.
"""
from __future__ import annotations

import logging
from collections import Counter
from datetime import date, datetime
from typing import Callable
from uuid import UUID

from sqlalchemy.orm import Session

from dispatch.core.policy import DispatchPolicy
from dispatch.core.timeutil import utc_now
from dispatch.services.bid_resolution_service import BidResolutionService
from dispatch.services.escalation_service import EscalationService
from dispatch.services.flagging import FlaggingService
from dispatch.services.scheduling_service import SchedulingService, organization_ids
from dispatch.services.side_effects import SideEffects

logger = logging.getLogger(__name__)


def _per_org(db: Session, job: str, fn: Callable[[UUID], dict[str, int]]) -> dict[str, int]:
    totals: Counter = Counter()
    for org_id in organization_ids(db):
        try:
            totals.update(fn(org_id))
            totals["organizations"] += 1
        except Exception:
            db.rollback()
            logger.error("Job %s failed for org %s", job, org_id, exc_info=True)
            totals["failed_organizations"] += 1
    out = dict(totals)
    logger.info("Job %s finished: %s", job, out)
    return out


def run_auto_drop(
    db: Session,
    *,
    now: datetime | None = None,
    policy: DispatchPolicy | None = None,
    effects: SideEffects | None = None,
) -> dict[str, int]:
    now = now or utc_now()
    svc = EscalationService(db, policy=policy, effects=effects)
    return _per_org(db, "auto-drop", lambda org_id: svc.run_auto_drop(now=now, org_id=org_id))


def run_no_show_detection(
    db: Session,
    *,
    now: datetime | None = None,
    policy: DispatchPolicy | None = None,
    effects: SideEffects | None = None,
) -> dict[str, int]:
    now = now or utc_now()
    svc = EscalationService(db, policy=policy, effects=effects)
    return _per_org(db, "no-show-detection", lambda org_id: svc.run_no_show_detection(now=now, org_id=org_id))


def run_bid_window_expiry_sweep(
    db: Session,
    *,
    now: datetime | None = None,
    policy: DispatchPolicy | None = None,
    effects: SideEffects | None = None,
) -> dict[str, int]:
    now = now or utc_now()
    svc = BidResolutionService(db, policy=policy, effects=effects)
    return _per_org(db, "close-bid-windows", lambda org_id: svc.sweep_expired(now=now, org_id=org_id))


def run_weekly_schedule_generation(
    db: Session,
    week_start: date,
    *,
    now: datetime | None = None,
    policy: DispatchPolicy | None = None,
    effects: SideEffects | None = None,
) -> dict[str, int]:
    now = now or utc_now()
    svc = SchedulingService(db, policy=policy, effects=effects)

    def one(org_id: UUID) -> dict[str, int]:
        r = svc.generate_week(org_id=org_id, monday=week_start, now=now)
        return {"scheduled": r.scheduled, "unfilled": r.unfilled, "skipped": r.skipped}

    return _per_org(db, "schedule-generation", one)


def run_preference_lock(
    db: Session,
    *,
    now: datetime | None = None,
    policy: DispatchPolicy | None = None,
    effects: SideEffects | None = None,
) -> dict[str, int]:
    now = now or utc_now()
    svc = SchedulingService(db, policy=policy, effects=effects)
    return _per_org(db, "lock-preferences", lambda org_id: svc.run_preference_lock(org_id=org_id, now=now))


def run_performance_check(
    db: Session,
    *,
    now: datetime | None = None,
    policy: DispatchPolicy | None = None,
    effects: SideEffects | None = None,
) -> dict[str, int]:
    now = now or utc_now()
    svc = FlaggingService(db, policy=policy, effects=effects)
    return _per_org(db, "performance-check", lambda org_id: svc.run_performance_check(now=now, org_id=org_id))


# job name -> callable(db, now=...) ; schedule generation also takes week_start
JOBS: dict[str, Callable[..., dict[str, int]]] = {
    "auto-drop": run_auto_drop,
    "no-show-detection": run_no_show_detection,
    "close-bid-windows": run_bid_window_expiry_sweep,
    "schedule-generation": run_weekly_schedule_generation,
    "lock-preferences": run_preference_lock,
    "performance-check": run_performance_check,
}
