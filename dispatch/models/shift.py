# dispatch/models/shift.py
from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, ForeignKey, ForeignKeyConstraint, Integer, UniqueConstraint, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from dispatch.models.base import Base, UTCDateTime


class Shift(Base):
    """Execution record, 1:1 with an assignment, created on arrival."""

    __tablename__ = "shifts"
    __table_args__ = (
        UniqueConstraint("assignment_id", name="uq_shifts_assignment"),
        ForeignKeyConstraint(
            ["org_id", "assignment_id"],
            ["assignments.org_id", "assignments.id"],
            name="fk_shifts_assignment_org",
            ondelete="CASCADE",
        ),
        CheckConstraint("parcels_start IS NULL OR parcels_start >= 0", name="ck_shifts_parcels_start"),
        CheckConstraint(
            "parcels_returned IS NULL OR parcels_returned >= 0",
            name="ck_shifts_parcels_returned",
        ),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    org_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("organizations.id"), nullable=False, index=True)

    assignment_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)

    arrived_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    parcels_start: Mapped[int | None] = mapped_column(Integer, nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    parcels_delivered: Mapped[int | None] = mapped_column(Integer, nullable=True)
    parcels_returned: Mapped[int | None] = mapped_column(Integer, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    # после этого момента правки только через менеджера
    editable_until: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        server_default=func.now(),
        nullable=False,
    )
