# tests/test_org_isolation.py
from __future__ import annotations

from datetime import timedelta

import pytest

from dispatch.core.errors import NotFound
from dispatch.services.assignment_service import AssignmentService
from dispatch.services.bid_resolution_service import BidResolutionService
from dispatch.services.bid_service import BidService
from dispatch.services.escalation_service import EscalationService

from tests.factories import NOW, TODAY, at_local, make_assignment, make_bid, make_bid_window, make_org, make_route, make_user

SHIFT_DAY = TODAY + timedelta(days=3)


@pytest.fixture()
def two_orgs(db):
    ours = make_org(db, name="Ours")
    theirs = make_org(db, name="Theirs")
    our_route = make_route(db, ours)
    their_route = make_route(db, theirs)
    our_driver = make_user(db, ours, name="Ours")
    their_driver = make_user(db, theirs, name="Theirs")
    their_manager = make_user(db, theirs, role="manager")
    our_open = make_assignment(db, our_route, on=SHIFT_DAY)
    window = make_bid_window(db, our_open, closes_at=at_local(SHIFT_DAY - timedelta(days=1), 7))
    their_open = make_assignment(db, their_route, on=SHIFT_DAY)
    db.commit()
    return {
        "ours": ours,
        "theirs": theirs,
        "our_driver": our_driver,
        "their_driver": their_driver,
        "their_manager": their_manager,
        "our_open": our_open,
        "their_open": their_open,
        "window": window,
    }


def test_foreign_assignment_is_invisible(db, effects, two_orgs):
    t = two_orgs
    with pytest.raises(NotFound):
        AssignmentService(db, effects=effects).view(org_id=t["theirs"].id, assignment_id=t["our_open"].id, now=NOW)


def test_cannot_bid_across_orgs(db, effects, two_orgs):
    t = two_orgs
    svc = BidService(db, effects=effects)

    # their driver, our assignment, claimed under their org
    with pytest.raises(NotFound):
        svc.submit_bid(org_id=t["theirs"].id, user_id=t["their_driver"].id, assignment_id=t["our_open"].id, now=NOW)
    # their driver claimed under our org
    with pytest.raises(NotFound):
        svc.submit_bid(org_id=t["ours"].id, user_id=t["their_driver"].id, assignment_id=t["our_open"].id, now=NOW)


def test_available_windows_are_per_org(db, effects, two_orgs):
    t = two_orgs
    svc = BidService(db, effects=effects)

    assert [w.bid_window_id for w in svc.available_windows(org_id=t["ours"].id, user_id=t["our_driver"].id, now=NOW)] == [
        t["window"].id
    ]
    assert svc.available_windows(org_id=t["theirs"].id, user_id=t["their_driver"].id, now=NOW) == []


def test_manager_cannot_override_another_orgs_assignment(db, effects, two_orgs):
    t = two_orgs
    with pytest.raises(NotFound):
        EscalationService(db, effects=effects).override(
            org_id=t["theirs"].id,
            actor_id=t["their_manager"].id,
            role="manager",
            assignment_id=t["our_open"].id,
            action="open_urgent_bidding",
            now=NOW,
        )


def test_sweep_scoped_to_one_org_leaves_others(db, effects, two_orgs):
    t = two_orgs
    make_bid(db, t["window"], t["our_driver"])
    db.commit()

    closes = t["window"].closes_at
    stats = BidResolutionService(db, effects=effects).sweep_expired(now=closes, org_id=t["theirs"].id)

    assert stats["checked"] == 0
    assert t["window"].status == "open"
