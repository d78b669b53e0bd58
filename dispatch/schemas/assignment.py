# dispatch/schemas/assignment.py
from __future__ import annotations

from datetime import date, datetime
from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from dispatch.models.assignment import CancelReason
from dispatch.schemas.common import ORMModel, StrictBaseModel


class AssignmentRead(ORMModel):
    id: UUID
    org_id: UUID
    route_id: UUID
    warehouse_id: UUID
    date: date
    user_id: Optional[UUID] = None
    status: str
    assigned_by: Optional[str] = None
    assigned_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None
    cancel_type: Optional[str] = None
    cancel_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None


class LifecycleRead(ORMModel):
    is_confirmable: bool
    is_cancelable: bool
    is_late_cancel: bool
    is_arrivable: bool
    is_startable: bool
    is_completable: bool
    shift_start: datetime
    confirmation_opens_at: datetime
    confirmation_deadline: datetime
    arrival_deadline: datetime


class AssignmentLifecycleResponse(BaseModel):
    assignment: AssignmentRead
    lifecycle: LifecycleRead


class CancelAssignmentRequest(StrictBaseModel):
    reason: CancelReason = Field(
        ...,
        description="Причина отмены (из фиксированного списка)",
        examples=["vehicle_breakdown"],
    )
    notes: Optional[str] = Field(
        None,
        max_length=500,
        description="Комментарий водителя (опционально)",
    )


class ReplacementWindowRead(ORMModel):
    status: Literal["created", "already_open", "not_created", "filled"]
    bid_window_id: Optional[UUID] = None
    mode: Optional[str] = None
    reason: Optional[str] = None


class CancelAssignmentResponse(BaseModel):
    assignment: AssignmentRead
    replacement_window: ReplacementWindowRead
    already_cancelled: bool
    is_late: bool
