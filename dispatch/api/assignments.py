# dispatch/api/assignments.py
from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Body, Depends
from sqlalchemy.orm import Session

from dispatch.api.deps import ActorContext, get_actor_context
from dispatch.api.errors import http_error
from dispatch.core.db import get_db
from dispatch.core.errors import DispatchError
from dispatch.core.rbac import DRIVER, ensure_allowed
from dispatch.schemas.assignment import (
    AssignmentLifecycleResponse,
    AssignmentRead,
    CancelAssignmentRequest,
    CancelAssignmentResponse,
    LifecycleRead,
    ReplacementWindowRead,
)
from dispatch.schemas.bid import BidWindowRead
from dispatch.schemas.override import OverrideRequest, OverrideResponse
from dispatch.services.assignment_service import AssignmentService, load_owned_assignment
from dispatch.services.escalation_service import EscalationService

router = APIRouter(prefix="/assignments", tags=["assignments"])


@router.get("/{assignment_id}/lifecycle", response_model=AssignmentLifecycleResponse)
def get_lifecycle(
    assignment_id: UUID,
    ctx: ActorContext = Depends(get_actor_context),
    db: Session = Depends(get_db),
):
    """Текущий статус + derived-флаги (что водитель может сделать сейчас)."""
    try:
        ensure_allowed("assignment.read", ctx.role)
        if ctx.role == DRIVER:
            # водитель видит только свои назначения
            load_owned_assignment(db, ctx.org_id, ctx.actor_user_id, assignment_id)
        view = AssignmentService(db).view(org_id=ctx.org_id, assignment_id=assignment_id)
    except DispatchError as e:
        raise http_error(e) from e

    return AssignmentLifecycleResponse(
        assignment=AssignmentRead.model_validate(view.assignment),
        lifecycle=LifecycleRead.model_validate(view.lifecycle),
    )


@router.post("/{assignment_id}/confirm", response_model=AssignmentRead)
def confirm_assignment(
    assignment_id: UUID,
    ctx: ActorContext = Depends(get_actor_context),
    db: Session = Depends(get_db),
):
    try:
        ensure_allowed("assignment.confirm", ctx.role)
        return AssignmentService(db).confirm(
            org_id=ctx.org_id,
            user_id=ctx.actor_user_id,
            assignment_id=assignment_id,
        )
    except DispatchError as e:
        raise http_error(e) from e


@router.post("/{assignment_id}/cancel", response_model=CancelAssignmentResponse)
def cancel_assignment(
    assignment_id: UUID,
    req: CancelAssignmentRequest,
    ctx: ActorContext = Depends(get_actor_context),
    db: Session = Depends(get_db),
):
    try:
        ensure_allowed("assignment.cancel", ctx.role)
        result = EscalationService(db).cancel_assignment(
            org_id=ctx.org_id,
            user_id=ctx.actor_user_id,
            assignment_id=assignment_id,
            reason=req.reason.value,
            notes=req.notes,
        )
    except DispatchError as e:
        raise http_error(e) from e

    return CancelAssignmentResponse(
        assignment=AssignmentRead.model_validate(result.assignment),
        replacement_window=ReplacementWindowRead.model_validate(result.replacement_window),
        already_cancelled=result.already_cancelled,
        is_late=result.is_late,
    )


@router.post("/{assignment_id}/override", response_model=OverrideResponse)
def override_assignment(
    assignment_id: UUID,
    req: OverrideRequest = Body(...),
    ctx: ActorContext = Depends(get_actor_context),
    db: Session = Depends(get_db),
):
    """Manager override: reassign | open_bidding | open_urgent_bidding."""
    try:
        ensure_allowed("assignment.override", ctx.role)
        result = EscalationService(db).override(
            org_id=ctx.org_id,
            actor_id=ctx.actor_user_id,
            role=ctx.role,
            assignment_id=assignment_id,
            action=req.action,
            target_user_id=getattr(req, "user_id", None),
            pay_bonus_percent=getattr(req, "pay_bonus_percent", None),
        )
    except DispatchError as e:
        raise http_error(e) from e

    return OverrideResponse(
        action=result.action,
        assignment=AssignmentRead.model_validate(result.assignment),
        bid_window=BidWindowRead.model_validate(result.bid_window) if result.bid_window is not None else None,
        created=result.created,
    )
