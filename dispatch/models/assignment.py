# dispatch/models/assignment.py
from __future__ import annotations

import enum
import datetime as dt
from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import (
    CheckConstraint,
    Date,
    ForeignKey,
    ForeignKeyConstraint,
    Index,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from dispatch.models.base import Base, UTCDateTime


class AssignmentStatus(str, enum.Enum):
    scheduled = "scheduled"
    active = "active"
    completed = "completed"
    cancelled = "cancelled"
    unfilled = "unfilled"


class AssignedBy(str, enum.Enum):
    algorithm = "algorithm"
    manager = "manager"
    bid = "bid"


class CancelType(str, enum.Enum):
    driver = "driver"
    late = "late"
    auto_drop = "auto_drop"


class CancelReason(str, enum.Enum):
    vehicle_breakdown = "vehicle_breakdown"
    medical_emergency = "medical_emergency"
    family_emergency = "family_emergency"
    traffic_accident = "traffic_accident"
    weather_conditions = "weather_conditions"
    personal_emergency = "personal_emergency"
    other = "other"


ACTIVE_USER_DATE_WHERE = "user_id IS NOT NULL AND status <> 'cancelled'"


class Assignment(Base):
    """Driver-to-route-to-date binding. Never deleted: cancellation is a status."""

    __tablename__ = "assignments"
    __table_args__ = (
        # target for org-safe FKs from bid_windows/bids/shifts
        UniqueConstraint("org_id", "id", name="uq_assignments_org_id"),
        # route/warehouse/driver must belong to the same org
        ForeignKeyConstraint(
            ["org_id", "route_id"], ["routes.org_id", "routes.id"], name="fk_assignments_route_org"
        ),
        ForeignKeyConstraint(
            ["org_id", "warehouse_id"], ["warehouses.org_id", "warehouses.id"], name="fk_assignments_warehouse_org"
        ),
        ForeignKeyConstraint(
            ["org_id", "user_id"], ["users.org_id", "users.id"], name="fk_assignments_user_org"
        ),
        CheckConstraint(
            "status IN ('scheduled','active','completed','cancelled','unfilled')",
            name="ck_assignments_status",
        ),
        CheckConstraint(
            "cancel_type IS NULL OR cancel_type IN ('driver','late','auto_drop')",
            name="ck_assignments_cancel_type",
        ),
        # unfilled = nobody holds it
        CheckConstraint(
            "status <> 'unfilled' OR user_id IS NULL",
            name="ck_assignments_unfilled_no_user",
        ),
        # active/completed always have a driver
        CheckConstraint(
            "status NOT IN ('active','completed') OR user_id IS NOT NULL",
            name="ck_assignments_active_has_user",
        ),
        # один водитель = максимум одно неотменённое назначение на дату
        Index(
            "uq_assignments_active_user_date",
            "user_id",
            "date",
            unique=True,
            postgresql_where=text(ACTIVE_USER_DATE_WHERE),
            sqlite_where=text(ACTIVE_USER_DATE_WHERE),
        ),
        Index("idx_assignments_status_date", "status", "date"),
        Index("idx_assignments_route_date", "route_id", "date"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    org_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("organizations.id"), nullable=False, index=True)

    route_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    warehouse_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)

    # NULL = unfilled
    user_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)

    status: Mapped[str] = mapped_column(String, nullable=False, default=AssignmentStatus.scheduled.value)

    assigned_by: Mapped[str | None] = mapped_column(String, nullable=True)
    assigned_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    confirmed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    cancel_type: Mapped[str | None] = mapped_column(String, nullable=True)
    cancel_reason: Mapped[str | None] = mapped_column(String, nullable=True)
    cancel_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        server_default=func.now(),
        nullable=False,
    )
