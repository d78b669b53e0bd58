# dispatch/models/user.py
from __future__ import annotations

import enum
from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Integer, String, Text, UniqueConstraint, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from dispatch.models.base import Base, UTCDateTime


class UserRole(str, enum.Enum):
    driver = "driver"
    manager = "manager"
    admin = "admin"


class User(Base):
    __tablename__ = "users"
    __table_args__ = (
        # target for org-safe FKs: (org_id, user_id) everywhere a driver is referenced
        UniqueConstraint("org_id", "id", name="uq_users_org_id"),
        CheckConstraint("role IN ('driver','manager','admin')", name="ck_users_role"),
        CheckConstraint("weekly_cap >= 1", name="ck_users_weekly_cap_min"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    org_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("organizations.id"), nullable=False, index=True)

    name: Mapped[str] = mapped_column(Text, nullable=False)
    role: Mapped[str] = mapped_column(String, nullable=False, default=UserRole.driver.value)

    # максимум назначений в неделю (Mon-Sun, локальная неделя)
    weekly_cap: Mapped[int] = mapped_column(Integer, nullable=False, default=4)

    # flagged drivers cannot bid and are skipped by the scheduler
    is_flagged: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    # first flagged at; the weekly cap drops once the grace period is over
    flag_warning_date: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        server_default=func.now(),
        nullable=False,
    )
