# dispatch/schemas/override.py
from __future__ import annotations

from typing import Annotated, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, Field

from dispatch.schemas.assignment import AssignmentRead
from dispatch.schemas.bid import BidWindowRead
from dispatch.schemas.common import StrictBaseModel

# ============================================================================
# MANAGER OVERRIDE (discriminator = action)
# ============================================================================


class ReassignOverride(StrictBaseModel):
    """Назначить водителя напрямую, минуя торги."""

    action: Literal["reassign"] = "reassign"
    user_id: UUID = Field(
        ...,
        description="Driver to assign",
        examples=["33333333-3333-3333-3333-333333333333"],
    )


class OpenBiddingOverride(StrictBaseModel):
    """Open a bid window on an unfilled assignment (mode picked by time to shift)."""

    action: Literal["open_bidding"] = "open_bidding"


class OpenUrgentBiddingOverride(StrictBaseModel):
    """Escalate to an emergency window. Idempotent."""

    action: Literal["open_urgent_bidding"] = "open_urgent_bidding"
    pay_bonus_percent: Optional[int] = Field(
        None,
        gt=0,
        le=200,
        description="Pay bonus, percent. Default: organization / policy emergency bonus.",
        examples=[20],
    )


OverrideRequest = Annotated[
    Union[ReassignOverride, OpenBiddingOverride, OpenUrgentBiddingOverride],
    Field(discriminator="action"),
]


class OverrideResponse(BaseModel):
    action: str
    assignment: AssignmentRead
    bid_window: Optional[BidWindowRead] = None
    created: bool
