# dispatch/models/notification.py
from __future__ import annotations

import enum
from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import Boolean, ForeignKey, ForeignKeyConstraint, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from dispatch.models.base import Base, JSONType, UTCDateTime


class NotificationType(str, enum.Enum):
    bid_open = "bid_open"
    bid_won = "bid_won"
    bid_lost = "bid_lost"
    emergency_route_available = "emergency_route_available"
    shift_auto_dropped = "shift_auto_dropped"
    shift_cancelled = "shift_cancelled"
    assignment_confirmed = "assignment_confirmed"
    schedule_locked = "schedule_locked"
    route_unfilled = "route_unfilled"
    route_cancelled = "route_cancelled"
    driver_no_show = "driver_no_show"
    flag_warning = "flag_warning"
    manual = "manual"


class Notification(Base):
    """In-app notification record. Delivery (push/email) happens elsewhere."""

    __tablename__ = "notifications"
    __table_args__ = (
        ForeignKeyConstraint(["org_id", "user_id"], ["users.org_id", "users.id"], name="fk_notifications_user_org"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    org_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("organizations.id"), nullable=False, index=True)
    user_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)

    type: Mapped[str] = mapped_column(String, nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    data: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)

    read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        server_default=func.now(),
        nullable=False,
    )
