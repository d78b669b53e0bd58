# dispatch/models/driver_metrics.py
from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import Boolean, Float, ForeignKey, ForeignKeyConstraint, Integer, UniqueConstraint, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from dispatch.models.base import Base, UTCDateTime


class DriverMetrics(Base):
    """Rolling per-driver counters. One row per driver, created lazily."""

    __tablename__ = "driver_metrics"
    __table_args__ = (
        UniqueConstraint("user_id", name="uq_driver_metrics_user"),
        ForeignKeyConstraint(["org_id", "user_id"], ["users.org_id", "users.id"], name="fk_driver_metrics_user_org"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    org_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("organizations.id"), nullable=False, index=True)
    user_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)

    total_shifts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    completed_shifts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    confirmed_shifts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    arrived_on_time_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    auto_dropped_shifts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    late_cancellations: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    no_shows: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    bid_pickups: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    urgent_pickups: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # 0..1
    attendance_rate: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    completion_rate: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        server_default=func.now(),
        nullable=False,
    )


class DriverHealthState(Base):
    __tablename__ = "driver_health_state"
    __table_args__ = (
        UniqueConstraint("user_id", name="uq_driver_health_state_user"),
        ForeignKeyConstraint(
            ["org_id", "user_id"], ["users.org_id", "users.id"], name="fk_driver_health_state_user_org"
        ),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    org_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("organizations.id"), nullable=False, index=True)
    user_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)

    current_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    requires_manager_intervention: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    last_score_reset_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        server_default=func.now(),
        nullable=False,
    )
