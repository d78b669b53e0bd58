# tests/test_scoring.py
from __future__ import annotations

from datetime import timedelta

import pytest

from dispatch.core.policy import DEFAULT_POLICY, DispatchPolicy
from dispatch.services.scoring import ScoreInputs, ScoringService, compute_bid_score

from tests.factories import (
    NOW,
    make_health,
    make_org,
    make_preference,
    make_route,
    make_route_completion,
    make_user,
)

ROUTE = "route-1"


def _inputs(**kw) -> ScoreInputs:
    base = dict(
        health_score=96,
        route_familiarity=20,
        tenure_months=12,
        preferred_route_ids=(ROUTE,),
        route_id=ROUTE,
    )
    base.update(kw)
    return ScoreInputs(**base)


def test_perfect_driver_scores_one():
    assert compute_bid_score(_inputs(), DEFAULT_POLICY) == 1.0


def test_components_are_capped():
    assert compute_bid_score(_inputs(health_score=500, route_familiarity=90, tenure_months=80), DEFAULT_POLICY) == 1.0


@pytest.mark.parametrize(
    "familiarity, preferred, expected",
    [
        (16, True, 0.95),
        (12, True, 0.9),
        (8, False, 0.7),
    ],
)
def test_weighted_sum(familiarity, preferred, expected):
    inputs = _inputs(
        route_familiarity=familiarity,
        preferred_route_ids=(ROUTE,) if preferred else ("other",),
    )
    assert compute_bid_score(inputs, DEFAULT_POLICY) == pytest.approx(expected)


def test_only_top_n_preferences_count():
    inputs = _inputs(preferred_route_ids=("a", "b", "c", ROUTE))
    assert compute_bid_score(inputs, DEFAULT_POLICY) == pytest.approx(0.85)


def test_negative_inputs_contribute_zero():
    inputs = _inputs(health_score=-10, route_familiarity=0, tenure_months=0, preferred_route_ids=())
    assert compute_bid_score(inputs, DEFAULT_POLICY) == 0.0


def test_new_driver_tenure_is_proportional():
    inputs = _inputs(tenure_months=6)
    assert compute_bid_score(inputs, DEFAULT_POLICY) == pytest.approx(0.925)


def test_weights_come_from_policy():
    policy = DispatchPolicy(
        bidding={
            "weights": {
                "health": 1.0,
                "route_familiarity": 0.0,
                "seniority": 0.0,
                "route_preference_bonus": 0.0,
            }
        }
    )
    assert compute_bid_score(_inputs(health_score=48), policy) == pytest.approx(0.5)


def test_scoring_service_reads_driver_state(db):
    org = make_org(db)
    route = make_route(db, org)
    other = make_route(db, org, name="R2")
    driver = make_user(db, org)
    make_health(db, driver, 96)
    make_route_completion(db, driver, route, 16)
    make_route_completion(db, driver, other, 3)
    make_preference(db, driver, routes=[route])

    svc = ScoringService(db)
    inputs = svc.inputs_for(org_id=org.id, user_id=driver.id, route_id=route.id, now=NOW)

    assert inputs.health_score == 96
    assert inputs.route_familiarity == 16
    assert inputs.tenure_months > 12
    assert svc.score(org_id=org.id, user_id=driver.id, route_id=route.id, now=NOW) == pytest.approx(0.95)


def test_scoring_service_defaults_for_a_fresh_driver(db):
    org = make_org(db)
    route = make_route(db, org)
    driver = make_user(db, org, created_at=NOW - timedelta(days=1))

    score = ScoringService(db).score(org_id=org.id, user_id=driver.id, route_id=route.id, now=NOW)

    # no health row, no completions, no preferences: only a sliver of tenure
    assert 0.0 < score < 0.01
