# dispatch/schemas/bid.py
from __future__ import annotations

from datetime import date, datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from dispatch.schemas.common import ORMModel, StrictBaseModel


class SubmitBidRequest(StrictBaseModel):
    assignment_id: UUID = Field(
        ...,
        description="Assignment the driver wants to pick up",
        examples=["44444444-4444-4444-4444-444444444444"],
    )


class SubmitBidResponse(ORMModel):
    status: str  # won | pending
    bid_id: UUID
    bid_window_id: UUID
    mode: str
    closes_at: datetime


class BidRead(ORMModel):
    id: UUID
    bid_window_id: UUID
    assignment_id: UUID
    user_id: UUID
    status: str
    score: Optional[float] = None
    bid_at: datetime
    window_closes_at: datetime
    resolved_at: Optional[datetime] = None


class AvailableWindowRead(ORMModel):
    bid_window_id: UUID
    assignment_id: UUID
    route_id: UUID
    route_name: str
    date: date
    mode: str
    pay_bonus_percent: int
    closes_at: datetime
    already_bid: bool


class BidWindowRead(ORMModel):
    id: UUID
    assignment_id: UUID
    mode: str
    trigger: Optional[str] = None
    pay_bonus_percent: int
    opens_at: datetime
    closes_at: datetime
    status: str
    winner_id: Optional[UUID] = None


class ResolveBidWindowResponse(BaseModel):
    resolved: bool
    bid_window_id: UUID
    bid_count: int
    winner_user_id: Optional[UUID] = None
    reason: Optional[str] = None
    fallback_bid_window_id: Optional[UUID] = None
