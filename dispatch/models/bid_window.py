# dispatch/models/bid_window.py
from __future__ import annotations

import enum
from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import (
    CheckConstraint,
    ForeignKey,
    ForeignKeyConstraint,
    Index,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from dispatch.models.base import Base, UTCDateTime


class BidWindowMode(str, enum.Enum):
    competitive = "competitive"
    instant = "instant"
    emergency = "emergency"


class BidWindowStatus(str, enum.Enum):
    open = "open"
    # closed without a winner (expired empty, superseded, manager took over)
    closed = "closed"
    # closed with exactly one won bid
    resolved = "resolved"


class BidWindowTrigger(str, enum.Enum):
    auto_drop = "auto_drop"
    cancellation = "cancellation"
    no_show = "no_show"
    manager = "manager"
    # competitive window expired with zero bids
    no_bids_fallback = "no_bids_fallback"
    # weekly generation found nobody for the slot
    schedule_generation = "schedule_generation"


OPEN_WINDOW_WHERE = "status = 'open'"


class BidWindow(Base):
    __tablename__ = "bid_windows"
    __table_args__ = (
        UniqueConstraint("org_id", "id", name="uq_bid_windows_org_id"),
        ForeignKeyConstraint(
            ["org_id", "assignment_id"],
            ["assignments.org_id", "assignments.id"],
            name="fk_bid_windows_assignment_org",
            ondelete="CASCADE",
        ),
        ForeignKeyConstraint(
            ["org_id", "winner_id"], ["users.org_id", "users.id"], name="fk_bid_windows_winner_org"
        ),
        ForeignKeyConstraint(
            ["org_id", "vacated_user_id"], ["users.org_id", "users.id"], name="fk_bid_windows_vacated_user_org"
        ),
        CheckConstraint(
            "mode IN ('competitive','instant','emergency')",
            name="ck_bid_windows_mode",
        ),
        CheckConstraint(
            "status IN ('open','closed','resolved')",
            name="ck_bid_windows_status",
        ),
        CheckConstraint("pay_bonus_percent >= 0", name="ck_bid_windows_bonus_non_negative"),
        CheckConstraint("closes_at > opens_at", name="ck_bid_windows_closes_after_opens"),
        # resolved <=> winner present
        CheckConstraint(
            "(status = 'resolved') = (winner_id IS NOT NULL)",
            name="ck_bid_windows_resolved_has_winner",
        ),
        # не больше одного открытого окна на назначение
        Index(
            "uq_bid_windows_open_assignment",
            "assignment_id",
            unique=True,
            postgresql_where=text(OPEN_WINDOW_WHERE),
            sqlite_where=text(OPEN_WINDOW_WHERE),
        ),
        Index("idx_bid_windows_status_closes", "status", "closes_at"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    org_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("organizations.id"), nullable=False, index=True)

    assignment_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)

    mode: Mapped[str] = mapped_column(String, nullable=False, default=BidWindowMode.competitive.value)
    trigger: Mapped[str | None] = mapped_column(String, nullable=True)
    pay_bonus_percent: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    opens_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    closes_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    status: Mapped[str] = mapped_column(String, nullable=False, default=BidWindowStatus.open.value)
    winner_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)

    # driver who held the assignment when the window opened;
    # a cancel retry after the slot was refilled is answered from here
    vacated_user_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    vacated_cancel_type: Mapped[str | None] = mapped_column(String, nullable=True)

    resolved_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        server_default=func.now(),
        nullable=False,
    )
