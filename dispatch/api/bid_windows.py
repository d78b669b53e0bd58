# dispatch/api/bid_windows.py
from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.orm import Session

from dispatch.api.deps import ActorContext, get_actor_context
from dispatch.api.errors import http_error
from dispatch.core.db import get_db
from dispatch.core.errors import DispatchError
from dispatch.core.rbac import ensure_allowed
from dispatch.models.bid_window import BidWindow
from dispatch.schemas.bid import BidWindowRead, ResolveBidWindowResponse
from dispatch.services.bid_resolution_service import BidResolutionService

router = APIRouter(prefix="/bid-windows", tags=["bid-windows"])


@router.get("", response_model=list[BidWindowRead])
def list_bid_windows(
    status: str | None = Query(None, pattern="^(open|closed|resolved)$"),
    assignment_id: UUID | None = Query(None),
    ctx: ActorContext = Depends(get_actor_context),
    db: Session = Depends(get_db),
):
    try:
        ensure_allowed("bid_window.read", ctx.role)
    except DispatchError as e:
        raise http_error(e) from e

    # resolve-on-read: expired windows never show up as open
    BidResolutionService(db).sweep_expired(org_id=ctx.org_id)

    stmt = select(BidWindow).where(BidWindow.org_id == ctx.org_id)
    if status is not None:
        stmt = stmt.where(BidWindow.status == status)
    if assignment_id is not None:
        stmt = stmt.where(BidWindow.assignment_id == assignment_id)
    return list(db.execute(stmt.order_by(BidWindow.closes_at.desc(), BidWindow.id)).scalars())


@router.post("/{bid_window_id}/resolve", response_model=ResolveBidWindowResponse)
def resolve_bid_window(
    bid_window_id: UUID,
    ctx: ActorContext = Depends(get_actor_context),
    db: Session = Depends(get_db),
):
    """Resolve now, without waiting for closes_at. 409 already_resolved on a second call."""
    try:
        ensure_allowed("bid_window.resolve", ctx.role)
        r = BidResolutionService(db).resolve(org_id=ctx.org_id, bid_window_id=bid_window_id)
    except DispatchError as e:
        raise http_error(e) from e

    return ResolveBidWindowResponse(
        resolved=r.resolved,
        bid_window_id=r.bid_window_id,
        bid_count=r.bid_count,
        winner_user_id=r.winner_user_id,
        reason=r.reason,
        fallback_bid_window_id=(
            r.fallback.bid_window_id if r.fallback is not None and r.fallback.success else None
        ),
    )
