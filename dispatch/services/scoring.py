# dispatch/services/scoring.py
"""Scoring Engine for competitive bid windows.

    score = w_h * min(health / cap_h, 1)
          + w_f * min(familiarity / cap_f, 1)
          + w_s * min(tenure_months / cap_s, 1)
          + w_p * [route in driver's top-N preferred routes]

Weights and caps come from ``policy.bidding``. Instant and emergency windows
are never scored.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from dispatch.core.config import settings
from dispatch.core.policy import DispatchPolicy
from dispatch.core.timeutil import months_between
from dispatch.models.driver_preference import DriverPreference
from dispatch.models.user import User
from dispatch.services.driver_stats import DriverStats


@dataclass(frozen=True)
class ScoreInputs:
    health_score: float
    route_familiarity: int
    tenure_months: float
    preferred_route_ids: tuple[str, ...]
    route_id: str


def _norm(value: float, cap: float) -> float:
    if value <= 0:
        return 0.0
    return min(value / cap, 1.0)


def compute_bid_score(inputs: ScoreInputs, policy: DispatchPolicy) -> float:
    b = policy.bidding
    w = b.weights
    top_n = inputs.preferred_route_ids[: b.preference_top_n]
    preferred = 1.0 if inputs.route_id in top_n else 0.0

    score = (
        w.health * _norm(inputs.health_score, b.health_normalization_cap)
        + w.route_familiarity * _norm(inputs.route_familiarity, b.familiarity_normalization_cap)
        + w.seniority * _norm(inputs.tenure_months, b.seniority_cap_months)
        + w.route_preference_bonus * preferred
    )
    # float noise must not push a perfect score past 1.0
    return round(min(max(score, 0.0), 1.0), 6)


class ScoringService:
    def __init__(self, db: Session, policy: DispatchPolicy | None = None):
        self.db = db
        self.policy = policy or settings.policy
        self.stats = DriverStats(db, self.policy)

    def inputs_for(self, *, org_id: UUID, user_id: UUID, route_id: UUID, now: datetime) -> ScoreInputs:
        user = self.db.execute(
            select(User).where(User.org_id == org_id, User.id == user_id)
        ).scalar_one()

        prefs = self.db.execute(
            select(DriverPreference.preferred_routes).where(
                DriverPreference.org_id == org_id,
                DriverPreference.user_id == user_id,
            )
        ).scalar_one_or_none()

        return ScoreInputs(
            health_score=self.stats.health_score(org_id, user_id),
            route_familiarity=self.stats.familiarity(org_id, user_id, route_id),
            tenure_months=months_between(user.created_at, now),
            preferred_route_ids=tuple(str(r) for r in (prefs or [])),
            route_id=str(route_id),
        )

    def score(self, *, org_id: UUID, user_id: UUID, route_id: UUID, now: datetime) -> float:
        return compute_bid_score(
            self.inputs_for(org_id=org_id, user_id=user_id, route_id=route_id, now=now),
            self.policy,
        )
