# dispatch/models/route.py
from __future__ import annotations

from uuid import UUID, uuid4

from sqlalchemy import ForeignKey, ForeignKeyConstraint, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from dispatch.models.base import Base


class Route(Base):
    __tablename__ = "routes"
    __table_args__ = (
        UniqueConstraint("org_id", "id", name="uq_routes_org_id"),
        ForeignKeyConstraint(
            ["org_id", "warehouse_id"], ["warehouses.org_id", "warehouses.id"], name="fk_routes_warehouse_org"
        ),
        ForeignKeyConstraint(["org_id", "manager_id"], ["users.org_id", "users.id"], name="fk_routes_manager_org"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    org_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("organizations.id"), nullable=False, index=True)
    warehouse_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)

    name: Mapped[str] = mapped_column(Text, nullable=False)

    # "HH:MM" local; NULL = policy defaults (start 07:00, arrival cutoff 09:00)
    start_time: Mapped[str | None] = mapped_column(Text, nullable=True)

    manager_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
