# dispatch/schemas/cron.py
from __future__ import annotations

from datetime import date
from typing import Optional

from pydantic import BaseModel, Field

from dispatch.schemas.common import StrictBaseModel


class ScheduleGenerationRequest(StrictBaseModel):
    week_start: Optional[date] = Field(
        None,
        description="Any date of the target week (normalized to Monday). Default: next week.",
        examples=["2026-03-02"],
    )


class JobResponse(BaseModel):
    job: str
    result: dict[str, int]
