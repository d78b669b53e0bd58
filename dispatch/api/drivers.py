# dispatch/api/drivers.py
from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from dispatch.api.deps import ActorContext, get_actor_context
from dispatch.api.errors import http_error
from dispatch.core.db import get_db
from dispatch.core.errors import DispatchError, NotFound
from dispatch.core.rbac import DRIVER, ensure_allowed
from dispatch.schemas.driver import DriverStandingRead
from dispatch.services.driver_stats import DriverStats
from dispatch.services.flagging import FlaggingService

router = APIRouter(prefix="/drivers", tags=["drivers"])


def _standing(db: Session, svc: FlaggingService, org_id: UUID, user_id: UUID) -> DriverStandingRead:
    driver = svc.load_driver(org_id, user_id)
    stats = DriverStats(db, svc.policy)
    hs = stats.health_state(org_id, user_id)
    m = stats.metrics_for(org_id, user_id)
    db.commit()
    return DriverStandingRead(
        user_id=driver.id,
        is_flagged=driver.is_flagged,
        flag_warning_date=driver.flag_warning_date,
        weekly_cap=driver.weekly_cap,
        health_score=hs.current_score,
        hard_stop_active=hs.requires_manager_intervention,
        attendance_rate=m.attendance_rate,
        total_shifts=m.total_shifts,
    )


@router.get("/{user_id}/standing", response_model=DriverStandingRead)
def driver_standing(
    user_id: UUID,
    ctx: ActorContext = Depends(get_actor_context),
    db: Session = Depends(get_db),
):
    """Flag, weekly cap, health and the no-show hard stop. Drivers see only themselves."""
    try:
        ensure_allowed("driver.read", ctx.role)
        if ctx.role == DRIVER and ctx.actor_user_id != user_id:
            raise NotFound("Driver not found", code="driver_not_found")
        return _standing(db, FlaggingService(db), ctx.org_id, user_id)
    except DispatchError as e:
        raise http_error(e) from e


@router.post("/{user_id}/reinstate", response_model=DriverStandingRead)
def reinstate_driver(
    user_id: UUID,
    ctx: ActorContext = Depends(get_actor_context),
    db: Session = Depends(get_db),
):
    try:
        ensure_allowed("driver.reinstate", ctx.role)
        svc = FlaggingService(db)
        svc.reinstate(org_id=ctx.org_id, actor_id=ctx.actor_user_id, role=ctx.role, user_id=user_id)
        return _standing(db, svc, ctx.org_id, user_id)
    except DispatchError as e:
        raise http_error(e) from e
