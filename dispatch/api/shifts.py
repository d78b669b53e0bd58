# dispatch/api/shifts.py
from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from dispatch.api.deps import ActorContext, get_actor_context
from dispatch.api.errors import http_error
from dispatch.core.db import get_db
from dispatch.core.errors import DispatchError
from dispatch.core.rbac import ensure_allowed
from dispatch.schemas.shift import CompleteShiftRequest, EditShiftRequest, ShiftRead, StartShiftRequest
from dispatch.services.shift_service import ShiftService

router = APIRouter(prefix="/shifts", tags=["shifts"])


@router.post("/{assignment_id}/arrive", response_model=ShiftRead)
def arrive(
    assignment_id: UUID,
    ctx: ActorContext = Depends(get_actor_context),
    db: Session = Depends(get_db),
):
    try:
        ensure_allowed("shift.arrive", ctx.role)
        return ShiftService(db).arrive(
            org_id=ctx.org_id,
            user_id=ctx.actor_user_id,
            assignment_id=assignment_id,
        )
    except DispatchError as e:
        raise http_error(e) from e


@router.post("/{assignment_id}/start", response_model=ShiftRead)
def start(
    assignment_id: UUID,
    req: StartShiftRequest,
    ctx: ActorContext = Depends(get_actor_context),
    db: Session = Depends(get_db),
):
    try:
        ensure_allowed("shift.start", ctx.role)
        return ShiftService(db).start(
            org_id=ctx.org_id,
            user_id=ctx.actor_user_id,
            assignment_id=assignment_id,
            parcels_start=req.parcels_start,
        )
    except DispatchError as e:
        raise http_error(e) from e


@router.post("/{assignment_id}/complete", response_model=ShiftRead)
def complete(
    assignment_id: UUID,
    req: CompleteShiftRequest,
    ctx: ActorContext = Depends(get_actor_context),
    db: Session = Depends(get_db),
):
    try:
        ensure_allowed("shift.complete", ctx.role)
        return ShiftService(db).complete(
            org_id=ctx.org_id,
            user_id=ctx.actor_user_id,
            assignment_id=assignment_id,
            parcels_returned=req.parcels_returned,
            parcels_delivered=req.parcels_delivered,
        )
    except DispatchError as e:
        raise http_error(e) from e


@router.patch("/{assignment_id}", response_model=ShiftRead)
def edit(
    assignment_id: UUID,
    req: EditShiftRequest,
    ctx: ActorContext = Depends(get_actor_context),
    db: Session = Depends(get_db),
):
    """Parcel corrections. Drivers: only inside the edit window; managers: any time."""
    try:
        ensure_allowed("shift.edit", ctx.role)
        return ShiftService(db).edit(
            org_id=ctx.org_id,
            actor_id=ctx.actor_user_id,
            role=ctx.role,
            assignment_id=assignment_id,
            **req.model_dump(exclude_unset=True),
        )
    except DispatchError as e:
        raise http_error(e) from e
