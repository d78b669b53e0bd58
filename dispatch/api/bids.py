# dispatch/api/bids.py
from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from dispatch.api.deps import ActorContext, get_actor_context
from dispatch.api.errors import http_error
from dispatch.core.db import get_db
from dispatch.core.errors import DispatchError
from dispatch.core.rbac import ensure_allowed
from dispatch.schemas.bid import AvailableWindowRead, BidRead, SubmitBidRequest, SubmitBidResponse
from dispatch.services.bid_service import BidService

router = APIRouter(prefix="/bids", tags=["bids"])


@router.post("", response_model=SubmitBidResponse, status_code=status.HTTP_201_CREATED)
def submit_bid(
    req: SubmitBidRequest,
    ctx: ActorContext = Depends(get_actor_context),
    db: Session = Depends(get_db),
):
    """Bid into the open window of an assignment.

    Instant/emergency windows resolve inside the same request: first valid bid wins.
    """
    try:
        ensure_allowed("bid.submit", ctx.role)
        return BidService(db).submit_bid(
            org_id=ctx.org_id,
            user_id=ctx.actor_user_id,
            assignment_id=req.assignment_id,
        )
    except DispatchError as e:
        raise http_error(e) from e


@router.get("/available", response_model=list[AvailableWindowRead])
def list_available(
    ctx: ActorContext = Depends(get_actor_context),
    db: Session = Depends(get_db),
):
    try:
        ensure_allowed("bid.read", ctx.role)
        return BidService(db).available_windows(org_id=ctx.org_id, user_id=ctx.actor_user_id)
    except DispatchError as e:
        raise http_error(e) from e


@router.get("/mine", response_model=list[BidRead])
def list_mine(
    ctx: ActorContext = Depends(get_actor_context),
    db: Session = Depends(get_db),
):
    try:
        ensure_allowed("bid.read", ctx.role)
        return BidService(db).my_bids(org_id=ctx.org_id, user_id=ctx.actor_user_id)
    except DispatchError as e:
        raise http_error(e) from e
