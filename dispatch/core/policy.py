# dispatch/core/policy.py
"""Dispatch policy: every tunable constant of the dispatch engine.

The policy is a frozen, versioned value. Pure functions receive it as an
argument, services take it in their constructor, so a retune never needs a
code change (see ``Settings.policy`` for the env overrides).
"""
from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, model_validator


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class ShiftPolicy(_Frozen):
    # локальный час начала смены, если у маршрута нет start_time
    start_hour_local: int = Field(7, ge=0, le=23)
    # жёсткий дедлайн прибытия, если у маршрута нет start_time
    arrival_deadline_hour_local: int = Field(9, ge=0, le=23)
    completion_edit_window_hours: int = Field(1, ge=0)


class ConfirmationPolicy(_Frozen):
    window_days_before_shift: int = Field(7, ge=1)
    deadline_hours_before_shift: int = Field(48, ge=1)


class ScoreWeights(_Frozen):
    health: float = 0.45
    route_familiarity: float = 0.25
    seniority: float = 0.15
    route_preference_bonus: float = 0.15


class BiddingPolicy(_Frozen):
    instant_mode_cutoff_hours: int = Field(24, ge=0)
    emergency_bonus_percent: int = Field(20, gt=0)
    health_normalization_cap: float = Field(96, gt=0)
    familiarity_normalization_cap: float = Field(20, gt=0)
    seniority_cap_months: float = Field(12, gt=0)
    preference_top_n: int = Field(3, ge=1)
    weights: ScoreWeights = ScoreWeights()

    @model_validator(mode="after")
    def _weights_sum_to_one(self) -> "BiddingPolicy":
        w = self.weights
        total = w.health + w.route_familiarity + w.seniority + w.route_preference_bonus
        if abs(total - 1.0) > 1e-6:
            raise ValueError(f"Score weights must sum to 1.0, got {total:.4f}")
        return self


class HealthPoints(_Frozen):
    confirmed_on_time: int = 1
    arrived_on_time: int = 2
    completed_shift: int = 2
    bid_pickup: int = 2
    urgent_pickup: int = 4
    auto_drop: int = -12
    late_cancel: int = -48


class SchedulingPolicy(_Frozen):
    default_weekly_cap: int = Field(4, ge=1)
    days_per_week: int = Field(7, ge=1, le=7)


class FlaggingPolicy(_Frozen):
    # attendance below the threshold flags the driver; new drivers are held to more
    new_driver_shifts: int = Field(10, ge=1)
    new_driver_threshold: float = Field(0.8, ge=0, le=1)
    threshold: float = Field(0.7, ge=0, le=1)
    grace_period_days: int = Field(7, ge=0)
    min_weekly_cap: int = Field(1, ge=1)
    reward_min_shifts: int = Field(20, ge=1)
    reward_attendance: float = Field(0.95, ge=0, le=1)
    reward_weekly_cap: int = Field(6, ge=1)


class DispatchPolicy(_Frozen):
    version: str = "2026.1"
    timezone: str = "America/Toronto"
    shifts: ShiftPolicy = ShiftPolicy()
    confirmation: ConfirmationPolicy = ConfirmationPolicy()
    bidding: BiddingPolicy = BiddingPolicy()
    health: HealthPoints = HealthPoints()
    scheduling: SchedulingPolicy = SchedulingPolicy()
    flagging: FlaggingPolicy = FlaggingPolicy()


DEFAULT_POLICY = DispatchPolicy()
