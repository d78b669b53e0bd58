# dispatch/schemas/shift.py
from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import Field

from dispatch.schemas.common import ORMModel, StrictBaseModel


class ShiftRead(ORMModel):
    id: UUID
    assignment_id: UUID
    arrived_at: Optional[datetime] = None
    parcels_start: Optional[int] = None
    started_at: Optional[datetime] = None
    parcels_delivered: Optional[int] = None
    parcels_returned: Optional[int] = None
    completed_at: Optional[datetime] = None
    editable_until: Optional[datetime] = None


class StartShiftRequest(StrictBaseModel):
    parcels_start: int = Field(..., ge=0, le=10000, examples=[120])


class CompleteShiftRequest(StrictBaseModel):
    parcels_returned: int = Field(..., ge=0, le=10000, examples=[3])
    # по умолчанию = parcels_start - parcels_returned
    parcels_delivered: Optional[int] = Field(None, ge=0, le=10000)


class EditShiftRequest(StrictBaseModel):
    parcels_start: Optional[int] = Field(None, ge=0, le=10000)
    parcels_returned: Optional[int] = Field(None, ge=0, le=10000)
    parcels_delivered: Optional[int] = Field(None, ge=0, le=10000)
