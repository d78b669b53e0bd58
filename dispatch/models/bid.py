# dispatch/models/bid.py
from __future__ import annotations

import enum
from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import (
    CheckConstraint,
    Float,
    ForeignKey,
    ForeignKeyConstraint,
    Index,
    String,
    UniqueConstraint,
    Uuid,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from dispatch.models.base import Base, UTCDateTime


class BidStatus(str, enum.Enum):
    pending = "pending"
    won = "won"
    lost = "lost"


WON_BID_WHERE = "status = 'won'"


class Bid(Base):
    __tablename__ = "bids"
    __table_args__ = (
        # window, assignment and bidder all in the bid's org
        ForeignKeyConstraint(
            ["org_id", "bid_window_id"],
            ["bid_windows.org_id", "bid_windows.id"],
            name="fk_bids_bid_window_org",
            ondelete="CASCADE",
        ),
        ForeignKeyConstraint(
            ["org_id", "assignment_id"],
            ["assignments.org_id", "assignments.id"],
            name="fk_bids_assignment_org",
            ondelete="CASCADE",
        ),
        ForeignKeyConstraint(["org_id", "user_id"], ["users.org_id", "users.id"], name="fk_bids_user_org"),
        CheckConstraint("status IN ('pending','won','lost')", name="ck_bids_status"),
        CheckConstraint("score IS NULL OR (score >= 0 AND score <= 1)", name="ck_bids_score_range"),
        # водитель не может подать дважды в одно окно
        UniqueConstraint("bid_window_id", "user_id", name="uq_bids_window_user"),
        # at most one won bid per window
        Index(
            "uq_bids_window_won",
            "bid_window_id",
            unique=True,
            postgresql_where=text(WON_BID_WHERE),
            sqlite_where=text(WON_BID_WHERE),
        ),
        Index("idx_bids_window_status", "bid_window_id", "status"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    org_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("organizations.id"), nullable=False, index=True)

    bid_window_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    assignment_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    user_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)

    status: Mapped[str] = mapped_column(String, nullable=False, default=BidStatus.pending.value)

    # NULL for instant/emergency windows: never scored
    score: Mapped[float | None] = mapped_column(Float, nullable=True)

    bid_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    window_closes_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    resolved_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
