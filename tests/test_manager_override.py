# tests/test_manager_override.py
from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import select

from dispatch.core.errors import Conflict, ValidationFailed
from dispatch.core.rbac import Forbidden
from dispatch.fsm.assignment_fsm import TransitionNotAllowed
from dispatch.models.audit_log import AuditLog
from dispatch.models.bid import Bid
from dispatch.models.bid_window import BidWindow
from dispatch.models.notification import Notification
from dispatch.services.escalation_service import EscalationService

from tests.factories import (
    NOW,
    TODAY,
    at_local,
    make_assignment,
    make_bid,
    make_bid_window,
    make_org,
    make_route,
    make_user,
)

SHIFT_DAY = TODAY + timedelta(days=3)


@pytest.fixture()
def org_setup(db):
    org = make_org(db)
    manager = make_user(db, org, role="manager", name="Manager")
    route = make_route(db, org, manager=manager)
    a = make_user(db, org, name="A")
    b = make_user(db, org, name="B")
    db.commit()
    return {"org": org, "manager": manager, "route": route, "a": a, "b": b}


def _override(db, effects, s, assignment, action, **kw):
    return EscalationService(db, effects=effects).override(
        org_id=s["org"].id,
        actor_id=s["manager"].id,
        role=kw.pop("role", "manager"),
        assignment_id=assignment.id,
        action=action,
        now=kw.pop("now", NOW),
        **kw,
    )


# ============================================================================
# open_urgent_bidding
# ============================================================================

def test_urgent_bidding_supersedes_competitive_window(db, effects, org_setup):
    s = org_setup
    assignment = make_assignment(db, s["route"], on=SHIFT_DAY)
    competitive = make_bid_window(db, assignment, opens_at=NOW - timedelta(hours=2))
    bids = [make_bid(db, competitive, s["a"]), make_bid(db, competitive, s["b"])]
    db.commit()

    first = _override(db, effects, s, assignment, "open_urgent_bidding")

    assert first.created
    assert db.get(BidWindow, competitive.id).status == "closed"
    assert {db.get(Bid, b.id).status for b in bids} == {"lost"}

    urgent = first.bid_window
    assert urgent.mode == "emergency"
    assert urgent.status == "open"
    assert urgent.pay_bonus_percent > 0
    assert urgent.closes_at == at_local(SHIFT_DAY, 7)

    again = _override(db, effects, s, assignment, "open_urgent_bidding", now=NOW + timedelta(seconds=5))

    assert not again.created
    assert again.bid_window.id == urgent.id
    assert again.bid_window.pay_bonus_percent == urgent.pay_bonus_percent
    open_windows = db.execute(
        select(BidWindow).where(BidWindow.assignment_id == assignment.id, BidWindow.status == "open")
    ).scalars().all()
    assert [w.id for w in open_windows] == [urgent.id]


def test_urgent_bidding_uses_requested_bonus(db, effects, org_setup):
    s = org_setup
    assignment = make_assignment(db, s["route"], on=SHIFT_DAY)
    db.commit()

    result = _override(db, effects, s, assignment, "open_urgent_bidding", pay_bonus_percent=75)
    assert result.bid_window.pay_bonus_percent == 75


def test_urgent_bidding_vacates_a_scheduled_driver(db, effects, org_setup):
    s = org_setup
    assignment = make_assignment(db, s["route"], on=SHIFT_DAY, user=s["a"], confirmed_at=NOW)
    db.commit()

    result = _override(db, effects, s, assignment, "open_urgent_bidding")

    assert result.assignment.status == "unfilled"
    assert result.assignment.user_id is None
    offered = db.execute(
        select(Notification.user_id).where(Notification.type == "emergency_route_available")
    ).scalars().all()
    assert set(offered) == {s["a"].id, s["b"].id}

    told = db.execute(
        select(Notification).where(Notification.user_id == s["a"].id, Notification.type == "shift_cancelled")
    ).scalar_one()
    assert told.data["bid_window_id"] == str(result.bid_window.id)


def test_urgent_bidding_after_a_stale_read_returns_the_racers_window(db, effects, org_setup, monkeypatch):
    s = org_setup
    assignment = make_assignment(db, s["route"], on=SHIFT_DAY)
    competitive = make_bid_window(db, assignment, opens_at=NOW - timedelta(hours=2))
    db.commit()
    urgent = _override(db, effects, s, assignment, "open_urgent_bidding").bid_window

    svc = EscalationService(db, effects=effects)
    real = svc.windows.open_window_for
    reads = []

    def stale_first(org_id, assignment_id):
        reads.append(assignment_id)
        # первое чтение ещё видит конкурентное окно, которое уже закрыл соперник
        return competitive if len(reads) == 1 else real(org_id, assignment_id)

    monkeypatch.setattr(svc.windows, "open_window_for", stale_first)

    result = svc.override(
        org_id=s["org"].id,
        actor_id=s["manager"].id,
        role="manager",
        assignment_id=assignment.id,
        action="open_urgent_bidding",
        now=NOW + timedelta(seconds=5),
    )

    assert not result.created
    assert result.bid_window.id == urgent.id
    open_windows = db.execute(
        select(BidWindow.id).where(BidWindow.assignment_id == assignment.id, BidWindow.status == "open")
    ).scalars().all()
    assert open_windows == [urgent.id]


def test_urgent_bidding_missing_the_racers_window_returns_it(db, effects, org_setup, monkeypatch):
    s = org_setup
    assignment = make_assignment(db, s["route"], on=SHIFT_DAY)
    db.commit()
    urgent = _override(db, effects, s, assignment, "open_urgent_bidding").bid_window

    svc = EscalationService(db, effects=effects)
    real = svc.windows.open_window_for
    reads = []

    def missing_first(org_id, assignment_id):
        reads.append(assignment_id)
        return None if len(reads) == 1 else real(org_id, assignment_id)

    monkeypatch.setattr(svc.windows, "open_window_for", missing_first)

    result = svc.override(
        org_id=s["org"].id,
        actor_id=s["manager"].id,
        role="manager",
        assignment_id=assignment.id,
        action="open_urgent_bidding",
        now=NOW + timedelta(seconds=5),
    )

    assert not result.created
    assert result.bid_window.id == urgent.id
    assert db.execute(
        select(BidWindow.id).where(BidWindow.assignment_id == assignment.id)
    ).scalars().all() == [urgent.id]


# ============================================================================
# open_bidding
# ============================================================================

def test_open_bidding_on_unfilled(db, effects, org_setup):
    s = org_setup
    assignment = make_assignment(db, s["route"], on=SHIFT_DAY)
    db.commit()

    result = _override(db, effects, s, assignment, "open_bidding")

    assert result.created
    assert result.bid_window.mode == "competitive"
    assert result.bid_window.trigger == "manager"

    with pytest.raises(Conflict) as ei:
        _override(db, effects, s, assignment, "open_bidding")
    assert ei.value.code == "open_window_exists"


def test_open_bidding_requires_unfilled(db, effects, org_setup):
    s = org_setup
    assignment = make_assignment(db, s["route"], on=SHIFT_DAY, user=s["a"])
    db.commit()

    with pytest.raises(TransitionNotAllowed):
        _override(db, effects, s, assignment, "open_bidding")


def test_open_bidding_after_the_shift_passed(db, effects, org_setup):
    s = org_setup
    assignment = make_assignment(db, s["route"], on=TODAY)
    db.commit()

    with pytest.raises(ValidationFailed) as ei:
        _override(db, effects, s, assignment, "open_bidding")
    assert ei.value.code == "shift_already_passed"


# ============================================================================
# reassign
# ============================================================================

def test_reassign_scheduled_assignment(db, effects, org_setup):
    s = org_setup
    assignment = make_assignment(db, s["route"], on=SHIFT_DAY, user=s["a"])
    db.commit()

    result = _override(db, effects, s, assignment, "reassign", target_user_id=s["b"].id)

    a = result.assignment
    assert a.status == "scheduled"
    assert a.user_id == s["b"].id
    assert a.assigned_by == "manager"
    assert a.confirmed_at == NOW

    rows = {(n.user_id, n.type) for n in db.execute(select(Notification)).scalars()}
    assert (s["b"].id, "assignment_confirmed") in rows
    assert (s["a"].id, "shift_cancelled") in rows

    audit = db.execute(select(AuditLog).where(AuditLog.action == "override_reassign")).scalar_one()
    assert audit.actor_id == s["manager"].id
    assert audit.changes["before"]["user_id"] == str(s["a"].id)


def test_reassign_closes_the_open_window(db, effects, org_setup):
    s = org_setup
    assignment = make_assignment(db, s["route"], on=SHIFT_DAY)
    window = make_bid_window(db, assignment)
    bid = make_bid(db, window, s["a"])
    db.commit()

    result = _override(db, effects, s, assignment, "reassign", target_user_id=s["b"].id)

    assert result.bid_window.id == window.id
    assert db.get(BidWindow, window.id).status == "closed"
    assert db.get(Bid, bid.id).status == "lost"
    assert result.assignment.user_id == s["b"].id


def test_reassign_cancelled_assignment(db, effects, org_setup):
    s = org_setup
    assignment = make_assignment(db, s["route"], on=SHIFT_DAY, user=s["a"], status="cancelled", cancel_type="late")
    db.commit()

    result = _override(db, effects, s, assignment, "reassign", target_user_id=s["b"].id)

    assert result.assignment.status == "scheduled"
    assert result.assignment.cancel_type is None


def test_reassign_to_a_booked_driver(db, effects, org_setup):
    s = org_setup
    assignment = make_assignment(db, s["route"], on=SHIFT_DAY)
    elsewhere = make_route(db, s["org"], name="R2")
    make_assignment(db, elsewhere, on=SHIFT_DAY, user=s["b"])
    db.commit()

    with pytest.raises(Conflict) as ei:
        _override(db, effects, s, assignment, "reassign", target_user_id=s["b"].id)
    assert ei.value.code == "driver_already_booked"


def test_reassign_to_flagged_driver(db, effects, org_setup):
    s = org_setup
    flagged = make_user(db, s["org"], is_flagged=True)
    assignment = make_assignment(db, s["route"], on=SHIFT_DAY)
    db.commit()

    with pytest.raises(ValidationFailed) as ei:
        _override(db, effects, s, assignment, "reassign", target_user_id=flagged.id)
    assert ei.value.code == "driver_flagged"


def test_reassign_completed_is_not_allowed(db, effects, org_setup):
    s = org_setup
    assignment = make_assignment(db, s["route"], on=TODAY - timedelta(days=1), user=s["a"], status="completed")
    db.commit()

    with pytest.raises(TransitionNotAllowed):
        _override(db, effects, s, assignment, "reassign", target_user_id=s["b"].id)


def test_reassign_to_the_same_driver_changes_nothing(db, effects, org_setup):
    s = org_setup
    assignment = make_assignment(db, s["route"], on=SHIFT_DAY, user=s["a"])
    db.commit()

    result = _override(db, effects, s, assignment, "reassign", target_user_id=s["a"].id)

    assert result.assignment.user_id == s["a"].id
    assert result.assignment.assigned_by == "algorithm"


def test_drivers_cannot_override(db, effects, org_setup):
    s = org_setup
    assignment = make_assignment(db, s["route"], on=SHIFT_DAY)
    db.commit()

    with pytest.raises(Forbidden):
        _override(db, effects, s, assignment, "open_bidding", role="driver")


def test_unknown_action(db, effects, org_setup):
    s = org_setup
    assignment = make_assignment(db, s["route"], on=SHIFT_DAY)
    db.commit()

    with pytest.raises(ValidationFailed):
        _override(db, effects, s, assignment, "teleport")


def test_manager_of_another_warehouse_cannot_override(db, effects, org_setup):
    s = org_setup
    outsider = make_user(db, s["org"], role="manager", name="Other Manager")
    make_route(db, s["org"], manager=outsider, name="Other Route")
    assignment = make_assignment(db, s["route"], on=SHIFT_DAY)
    db.commit()

    with pytest.raises(Forbidden) as ei:
        EscalationService(db, effects=effects).override(
            org_id=s["org"].id,
            actor_id=outsider.id,
            role="manager",
            assignment_id=assignment.id,
            action="open_bidding",
            now=NOW,
        )

    assert ei.value.code == "warehouse_forbidden"
    assert db.execute(select(BidWindow).where(BidWindow.assignment_id == assignment.id)).first() is None


def test_admin_overrides_any_warehouse(db, effects, org_setup):
    s = org_setup
    admin = make_user(db, s["org"], role="admin", name="Admin")
    assignment = make_assignment(db, s["route"], on=SHIFT_DAY)
    db.commit()

    result = EscalationService(db, effects=effects).override(
        org_id=s["org"].id,
        actor_id=admin.id,
        role="admin",
        assignment_id=assignment.id,
        action="open_bidding",
        now=NOW,
    )

    assert result.created
    assert result.bid_window.status == "open"
