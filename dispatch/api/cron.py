# dispatch/api/cron.py
"""Scheduler-invoked batch triggers. Safe to call more than once per period."""
from __future__ import annotations

from datetime import timedelta

from fastapi import APIRouter, Body, Depends
from sqlalchemy.orm import Session

from dispatch.api.deps import require_cron_secret
from dispatch.core.config import settings
from dispatch.core.db import get_db
from dispatch.core.timeutil import local_today, utc_now, week_start
from dispatch.schemas.cron import JobResponse, ScheduleGenerationRequest
from dispatch.services import jobs

router = APIRouter(prefix="/cron", tags=["cron"], dependencies=[Depends(require_cron_secret)])


@router.post("/auto-drop", response_model=JobResponse)
def auto_drop(db: Session = Depends(get_db)):
    return JobResponse(job="auto-drop", result=jobs.run_auto_drop(db))


@router.post("/no-show-detection", response_model=JobResponse)
def no_show_detection(db: Session = Depends(get_db)):
    return JobResponse(job="no-show-detection", result=jobs.run_no_show_detection(db))


@router.post("/close-bid-windows", response_model=JobResponse)
def close_bid_windows(db: Session = Depends(get_db)):
    return JobResponse(job="close-bid-windows", result=jobs.run_bid_window_expiry_sweep(db))


@router.post("/schedule-generation", response_model=JobResponse)
def schedule_generation(
    req: ScheduleGenerationRequest | None = Body(None),
    db: Session = Depends(get_db),
):
    now = utc_now()
    if req is not None and req.week_start is not None:
        monday = week_start(req.week_start)
    else:
        monday = week_start(local_today(now, settings.policy)) + timedelta(days=7)
    return JobResponse(
        job="schedule-generation",
        result=jobs.run_weekly_schedule_generation(db, monday, now=now),
    )


@router.post("/lock-preferences", response_model=JobResponse)
def lock_preferences(db: Session = Depends(get_db)):
    return JobResponse(job="lock-preferences", result=jobs.run_preference_lock(db))


@router.post("/performance-check", response_model=JobResponse)
def performance_check(db: Session = Depends(get_db)):
    return JobResponse(job="performance-check", result=jobs.run_performance_check(db))
