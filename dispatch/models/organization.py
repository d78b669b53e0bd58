# dispatch/models/organization.py
from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import ForeignKey, ForeignKeyConstraint, Index, Integer, Text, UniqueConstraint, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from dispatch.models.base import Base, UTCDateTime


class Organization(Base):
    """Tenant boundary: every other row belongs to exactly one organization."""

    __tablename__ = "organizations"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(Text, nullable=False)

    # NULL = use policy.bidding.emergency_bonus_percent
    emergency_bonus_percent: Mapped[int | None] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        server_default=func.now(),
        nullable=False,
    )


class Warehouse(Base):
    __tablename__ = "warehouses"
    __table_args__ = (
        UniqueConstraint("org_id", "id", name="uq_warehouses_org_id"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    org_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("organizations.id"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    address: Mapped[str | None] = mapped_column(Text, nullable=True)


class WarehouseManager(Base):
    """Which managers may act on a warehouse's assignments. Admins are not listed."""

    __tablename__ = "warehouse_managers"
    __table_args__ = (
        UniqueConstraint("warehouse_id", "user_id", name="uq_warehouse_managers_pair"),
        ForeignKeyConstraint(
            ["org_id", "warehouse_id"],
            ["warehouses.org_id", "warehouses.id"],
            name="fk_warehouse_managers_warehouse_org",
            ondelete="CASCADE",
        ),
        ForeignKeyConstraint(
            ["org_id", "user_id"],
            ["users.org_id", "users.id"],
            name="fk_warehouse_managers_user_org",
            ondelete="CASCADE",
        ),
        Index("idx_warehouse_managers_warehouse", "warehouse_id"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    org_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("organizations.id"), nullable=False, index=True)
    warehouse_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    user_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        server_default=func.now(),
        nullable=False,
    )
