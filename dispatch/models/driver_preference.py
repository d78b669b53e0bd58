# dispatch/models/driver_preference.py
from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import ForeignKey, ForeignKeyConstraint, Integer, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from dispatch.models.base import Base, JSONType, UTCDateTime


class DriverPreference(Base):
    __tablename__ = "driver_preferences"
    __table_args__ = (
        UniqueConstraint("user_id", name="uq_driver_preferences_user"),
        ForeignKeyConstraint(
            ["org_id", "user_id"], ["users.org_id", "users.id"], name="fk_driver_preferences_user_org"
        ),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    org_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("organizations.id"), nullable=False, index=True)
    user_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)

    # weekday numbers, 0 = Monday (date.weekday())
    preferred_days: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)

    # route ids as strings, ranked; only the top-N count
    preferred_routes: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)

    locked_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)


class RouteCompletion(Base):
    """Route familiarity: how many shifts a driver completed on a route."""

    __tablename__ = "route_completions"
    __table_args__ = (
        UniqueConstraint("user_id", "route_id", name="uq_route_completions_user_route"),
        ForeignKeyConstraint(
            ["org_id", "user_id"], ["users.org_id", "users.id"], name="fk_route_completions_user_org"
        ),
        ForeignKeyConstraint(
            ["org_id", "route_id"], ["routes.org_id", "routes.id"], name="fk_route_completions_route_org"
        ),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    org_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("organizations.id"), nullable=False, index=True)
    user_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    route_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)

    completion_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
