# tests/test_bid_resolution.py
"""Resolution Engine: competitive by score at expiry, guarded against double resolution."""
from __future__ import annotations

import uuid
from datetime import timedelta

import pytest
from sqlalchemy import select, update

from dispatch.core.errors import Conflict, NotFound
from dispatch.models.assignment import Assignment
from dispatch.models.bid import Bid
from dispatch.models.bid_window import BidWindow
from dispatch.models.driver_metrics import DriverHealthState, DriverMetrics
from dispatch.models.notification import Notification
from dispatch.services.bid_resolution_service import BidResolutionService, rank_bids

from tests.factories import (
    NOW,
    TODAY,
    at_local,
    make_assignment,
    make_bid,
    make_bid_window,
    make_health,
    make_org,
    make_preference,
    make_route,
    make_route_completion,
    make_user,
)

SHIFT_DAY = TODAY + timedelta(days=3)
CLOSES_AT = at_local(SHIFT_DAY - timedelta(days=1), 7)


def _driver(db, org, route, *, name, familiarity, preferred):
    d = make_user(db, org, name=name)
    make_health(db, d, 96)
    make_route_completion(db, d, route, familiarity)
    make_preference(db, d, routes=[route] if preferred else [])
    return d


@pytest.fixture()
def competitive(db):
    """Unfilled assignment with an open competitive window and three bidders (0.95 bids last)."""
    org = make_org(db)
    manager = make_user(db, org, role="manager", name="Manager")
    route = make_route(db, org, manager=manager)
    assignment = make_assignment(db, route, on=SHIFT_DAY)
    window = make_bid_window(db, assignment, opens_at=NOW, closes_at=CLOSES_AT)

    d90 = _driver(db, org, route, name="D90", familiarity=12, preferred=True)
    d70 = _driver(db, org, route, name="D70", familiarity=8, preferred=False)
    d95 = _driver(db, org, route, name="D95", familiarity=16, preferred=True)

    bids = {
        "d90": make_bid(db, window, d90, bid_at=NOW + timedelta(minutes=1)),
        "d70": make_bid(db, window, d70, bid_at=NOW + timedelta(minutes=2)),
        "d95": make_bid(db, window, d95, bid_at=NOW + timedelta(minutes=3)),
    }
    db.commit()
    return {
        "org": org,
        "route": route,
        "assignment": assignment,
        "window": window,
        "drivers": {"d90": d90, "d70": d70, "d95": d95},
        "bids": bids,
    }


def test_highest_score_wins_regardless_of_submission_order(db, effects, competitive):
    c = competitive
    stats = BidResolutionService(db, effects=effects).sweep_expired(now=CLOSES_AT)

    assert stats == {"checked": 1, "resolved": 1, "closed": 0, "skipped": 0, "failed": 0}

    winner = c["drivers"]["d95"]
    a = db.get(Assignment, c["assignment"].id)
    assert a.status == "scheduled"
    assert a.user_id == winner.id
    assert a.assigned_by == "bid"
    assert a.confirmed_at == CLOSES_AT

    w = db.get(BidWindow, c["window"].id)
    assert w.status == "resolved"
    assert w.winner_id == winner.id

    by_user = {b.user_id: b for b in db.execute(select(Bid).where(Bid.bid_window_id == w.id)).scalars()}
    assert by_user[winner.id].status == "won"
    assert by_user[c["drivers"]["d90"].id].status == "lost"
    assert by_user[c["drivers"]["d70"].id].status == "lost"
    assert by_user[winner.id].score == pytest.approx(0.95)
    assert by_user[c["drivers"]["d90"].id].score == pytest.approx(0.9)
    assert by_user[c["drivers"]["d70"].id].score == pytest.approx(0.7)


def test_winner_is_credited_and_everyone_is_told(db, effects, competitive):
    c = competitive
    BidResolutionService(db, effects=effects).sweep_expired(now=CLOSES_AT)

    winner = c["drivers"]["d95"]
    metrics = db.execute(select(DriverMetrics).where(DriverMetrics.user_id == winner.id)).scalar_one()
    assert metrics.bid_pickups == 1
    assert metrics.urgent_pickups == 0

    health = db.execute(select(DriverHealthState).where(DriverHealthState.user_id == winner.id)).scalar_one()
    assert health.current_score == 96 + 2

    rows = [tuple(r) for r in db.execute(select(Notification.user_id, Notification.type)).all()]
    assert (winner.id, "bid_won") in rows
    assert (c["drivers"]["d90"].id, "bid_lost") in rows
    assert (c["drivers"]["d70"].id, "bid_lost") in rows


def test_resolving_twice_is_a_conflict(db, effects, competitive):
    c = competitive
    svc = BidResolutionService(db, effects=effects)
    svc.resolve(org_id=c["org"].id, bid_window_id=c["window"].id, now=CLOSES_AT)

    with pytest.raises(Conflict) as ei:
        svc.resolve(org_id=c["org"].id, bid_window_id=c["window"].id, now=CLOSES_AT)
    assert ei.value.code == "already_resolved"

    # and the sweep has nothing left to do
    assert svc.sweep_expired(now=CLOSES_AT)["checked"] == 0


def test_sweep_ignores_windows_that_have_not_closed(db, effects, competitive):
    stats = BidResolutionService(db, effects=effects).sweep_expired(now=CLOSES_AT - timedelta(seconds=1))
    assert stats["checked"] == 0
    assert competitive["window"].status == "open"


def test_booked_top_bidder_is_skipped(db, effects, competitive):
    c = competitive
    top = c["drivers"]["d95"]
    # d95 picked up another route the same day in the meantime
    other_route = make_route(db, c["org"], name="R2")
    make_assignment(db, other_route, on=SHIFT_DAY, user=top)
    db.commit()

    result = BidResolutionService(db, effects=effects).resolve(
        org_id=c["org"].id, bid_window_id=c["window"].id, now=CLOSES_AT
    )

    assert result.resolved
    assert result.winner_user_id == c["drivers"]["d90"].id
    assert db.get(Bid, c["bids"]["d95"].id).status == "lost"
    assert db.get(Bid, c["bids"]["d90"].id).status == "won"


def test_unknown_window_is_not_found(db, effects):
    org = make_org(db)
    db.commit()
    with pytest.raises(NotFound):
        BidResolutionService(db, effects=effects).resolve(org_id=org.id, bid_window_id=uuid.uuid4(), now=NOW)


def test_window_of_another_org_is_not_found(db, effects, competitive):
    stranger = make_org(db, name="Other Org")
    db.commit()
    with pytest.raises(NotFound):
        BidResolutionService(db, effects=effects).resolve(
            org_id=stranger.id, bid_window_id=competitive["window"].id, now=CLOSES_AT
        )


def test_competitive_without_bids_falls_back_to_instant(db, effects, broadcaster):
    org = make_org(db)
    manager = make_user(db, org, role="manager")
    route = make_route(db, org, manager=manager)
    assignment = make_assignment(db, route, on=SHIFT_DAY)
    window = make_bid_window(db, assignment, opens_at=NOW, closes_at=CLOSES_AT)
    db.commit()
    events = broadcaster.subscribe(org.id)

    result = BidResolutionService(db, effects=effects).resolve(
        org_id=org.id, bid_window_id=window.id, now=CLOSES_AT
    )

    assert not result.resolved
    assert result.reason == "no_bids"
    assert result.fallback is not None and result.fallback.success
    assert db.get(BidWindow, window.id).status == "closed"

    fallback = db.get(BidWindow, result.fallback.bid_window_id)
    assert fallback.mode == "instant"
    assert fallback.trigger == "no_bids_fallback"
    assert fallback.status == "open"
    assert fallback.closes_at == at_local(SHIFT_DAY, 7)

    assert [events.get_nowait()["event"] for _ in range(2)] == ["bid_window.closed", "bid_window.opened"]


def test_instant_without_bids_alerts_the_route_manager(db, effects):
    org = make_org(db)
    manager = make_user(db, org, role="manager")
    route = make_route(db, org, manager=manager)
    assignment = make_assignment(db, route, on=SHIFT_DAY)
    window = make_bid_window(db, assignment, mode="instant", opens_at=NOW, closes_at=CLOSES_AT)
    db.commit()

    result = BidResolutionService(db, effects=effects).resolve(
        org_id=org.id, bid_window_id=window.id, now=CLOSES_AT
    )

    assert not result.resolved
    assert result.fallback is None
    assert db.execute(select(BidWindow).where(BidWindow.status == "open")).first() is None
    alert = db.execute(select(Notification).where(Notification.user_id == manager.id)).scalar_one()
    assert alert.type == "route_unfilled"


def test_rank_bids_ties_go_to_the_earliest_bid():
    early = Bid(id=uuid.uuid4(), score=0.5, bid_at=NOW)
    late = Bid(id=uuid.uuid4(), score=0.5, bid_at=NOW + timedelta(seconds=1))
    better = Bid(id=uuid.uuid4(), score=0.6, bid_at=NOW + timedelta(seconds=2))

    assert rank_bids([late, better, early], "competitive") == [better, early, late]
    assert rank_bids([late, better, early], "instant") == [early, late, better]


def test_slot_filled_by_a_racer_is_a_conflict(db, effects, competitive):
    c = competitive
    racer = make_user(db, c["org"], name="Racer")
    db.commit()
    # менеджер успел назначить водителя, окно ещё открыто
    db.execute(
        update(Assignment)
        .where(Assignment.id == c["assignment"].id)
        .values(status="scheduled", user_id=racer.id, assigned_by="manager", assigned_at=NOW)
    )
    db.commit()

    svc = BidResolutionService(db, effects=effects)
    with pytest.raises(Conflict) as ei:
        svc.resolve(org_id=c["org"].id, bid_window_id=c["window"].id, now=CLOSES_AT)
    assert ei.value.code == "assignment_already_filled"

    assert db.get(Assignment, c["assignment"].id).user_id == racer.id
    assert db.get(BidWindow, c["window"].id).status == "open"
    statuses = db.execute(select(Bid.status).where(Bid.bid_window_id == c["window"].id)).scalars().all()
    assert set(statuses) == {"pending"}

    assert svc.sweep_expired(now=CLOSES_AT)["skipped"] == 1
