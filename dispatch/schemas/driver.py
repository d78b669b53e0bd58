# dispatch/schemas/driver.py
from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel


class DriverStandingRead(BaseModel):
    user_id: UUID
    is_flagged: bool
    flag_warning_date: Optional[datetime] = None
    weekly_cap: int
    health_score: int
    # no-show hard stop: out of the generated schedule until a manager reinstates
    hard_stop_active: bool
    attendance_rate: float
    total_shifts: int
