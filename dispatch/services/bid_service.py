# dispatch/services/bid_service.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from dispatch.core.config import settings
from dispatch.core.errors import Conflict, NotFound, ValidationFailed
from dispatch.core.policy import DispatchPolicy
from dispatch.core.rbac import Forbidden
from dispatch.core.store import UniqueViolation, unique_guard
from dispatch.core.timeutil import utc_now
from dispatch.models.assignment import Assignment
from dispatch.models.bid import Bid, BidStatus
from dispatch.models.bid_window import BidWindow, BidWindowMode, BidWindowStatus
from dispatch.models.route import Route
from dispatch.models.user import User, UserRole
from dispatch.services import eligibility
from dispatch.services.bid_resolution_service import BidResolutionService, ResolutionResult
from dispatch.services.side_effects import SideEffects

logger = logging.getLogger(__name__)

BID_WINDOW_CLOSED = "bid_window_closed"
ALREADY_BID = "already_bid"


@dataclass(frozen=True)
class SubmitBidResult:
    status: str  # "won" | "pending"
    bid_id: UUID
    bid_window_id: UUID
    mode: str
    closes_at: datetime


@dataclass(frozen=True)
class AvailableWindow:
    bid_window_id: UUID
    assignment_id: UUID
    route_id: UUID
    route_name: str
    date: date
    mode: str
    pay_bonus_percent: int
    closes_at: datetime
    already_bid: bool


class BidService:
    def __init__(
        self,
        db: Session,
        *,
        policy: DispatchPolicy | None = None,
        effects: SideEffects | None = None,
    ):
        self.db = db
        self.policy = policy or settings.policy
        self.effects = effects or SideEffects(db)
        self.resolution = BidResolutionService(db, policy=self.policy, effects=self.effects)

    def submit_bid(
        self,
        *,
        org_id: UUID,
        user_id: UUID,
        assignment_id: UUID,
        now: datetime | None = None,
    ) -> SubmitBidResult:
        now = now or utc_now()

        driver = self.db.execute(
            select(User).where(User.org_id == org_id, User.id == user_id)
        ).scalar_one_or_none()
        if driver is None:
            raise NotFound("Driver not found")
        if driver.role != UserRole.driver.value:
            raise Forbidden("Only drivers can bid")
        if driver.is_flagged:
            raise Forbidden("Flagged drivers cannot bid", code=eligibility.DRIVER_FLAGGED)

        assignment = self.db.execute(
            select(Assignment).where(Assignment.org_id == org_id, Assignment.id == assignment_id)
        ).scalar_one_or_none()
        if assignment is None:
            raise NotFound("Assignment not found")

        # a window past closes_at is resolved first, never bid into
        self.resolution.sweep_expired(now=now, org_id=org_id)

        reason = eligibility.ineligibility_reason(self.db, driver, on=assignment.date)
        if reason == eligibility.OVER_WEEKLY_CAP:
            raise ValidationFailed("Driver is at the weekly assignment cap", code=reason)
        if reason == eligibility.ALREADY_BOOKED:
            raise Conflict("Driver already has an assignment on this date", code=reason)

        try:
            window = self.db.execute(
                select(BidWindow)
                .where(
                    BidWindow.org_id == org_id,
                    BidWindow.assignment_id == assignment_id,
                    BidWindow.status == BidWindowStatus.open.value,
                    BidWindow.closes_at > now,
                )
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalar_one_or_none()
            if window is None:
                raise Conflict("Bid window is no longer open", code=BID_WINDOW_CLOSED)

            bid = Bid(
                org_id=org_id,
                bid_window_id=window.id,
                assignment_id=assignment_id,
                user_id=user_id,
                status=BidStatus.pending.value,
                bid_at=now,
                window_closes_at=window.closes_at,
            )
            try:
                with unique_guard(self.db):
                    self.db.add(bid)
            except UniqueViolation as e:
                raise Conflict("Driver already bid in this window", code=ALREADY_BID) from e

            resolution: ResolutionResult | None = None
            if window.mode != BidWindowMode.competitive.value:
                resolution = self.resolution.resolve_locked(window, now=now)

            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info("Bid %s submitted by %s into window %s (%s)", bid.id, user_id, window.id, window.mode)

        status = BidStatus.pending.value
        if resolution is not None:
            self.resolution.finish(resolution)
            if resolution.winning_bid_id == bid.id:
                status = BidStatus.won.value

        return SubmitBidResult(
            status=status,
            bid_id=bid.id,
            bid_window_id=window.id,
            mode=window.mode,
            closes_at=window.closes_at,
        )

    def available_windows(self, *, org_id: UUID, user_id: UUID, now: datetime | None = None) -> list[AvailableWindow]:
        now = now or utc_now()
        self.resolution.sweep_expired(now=now, org_id=org_id)

        rows = self.db.execute(
            select(BidWindow, Assignment, Route)
            .join(Assignment, Assignment.id == BidWindow.assignment_id)
            .join(Route, Route.id == Assignment.route_id)
            .where(
                BidWindow.org_id == org_id,
                BidWindow.status == BidWindowStatus.open.value,
                BidWindow.closes_at > now,
            )
            .order_by(BidWindow.closes_at, BidWindow.id)
        ).all()

        my_windows = set(
            self.db.execute(
                select(Bid.bid_window_id).where(Bid.org_id == org_id, Bid.user_id == user_id)
            ).scalars()
        )

        return [
            AvailableWindow(
                bid_window_id=w.id,
                assignment_id=a.id,
                route_id=r.id,
                route_name=r.name,
                date=a.date,
                mode=w.mode,
                pay_bonus_percent=w.pay_bonus_percent,
                closes_at=w.closes_at,
                already_bid=w.id in my_windows,
            )
            for w, a, r in rows
        ]

    def my_bids(self, *, org_id: UUID, user_id: UUID, now: datetime | None = None) -> list[Bid]:
        now = now or utc_now()
        self.resolution.sweep_expired(now=now, org_id=org_id)
        return list(
            self.db.execute(
                select(Bid)
                .where(Bid.org_id == org_id, Bid.user_id == user_id)
                .order_by(Bid.bid_at.desc())
            ).scalars()
        )
