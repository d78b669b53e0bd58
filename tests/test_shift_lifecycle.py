# tests/test_shift_lifecycle.py
"""Arrive -> start -> complete -> edit on the shift day."""
from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import select

from dispatch.core.errors import Conflict, NotFound, ValidationFailed
from dispatch.models.assignment import Assignment
from dispatch.models.audit_log import AuditLog
from dispatch.models.driver_metrics import DriverHealthState, DriverMetrics
from dispatch.models.driver_preference import RouteCompletion
from dispatch.services.shift_service import ShiftService

from tests.factories import NOW, TODAY, at_local, make_assignment, make_org, make_route, make_user

BEFORE_START = at_local(TODAY, 6, 45)


@pytest.fixture()
def shift_day(db):
    org = make_org(db)
    manager = make_user(db, org, role="manager", name="Manager")
    route = make_route(db, org, manager=manager)
    driver = make_user(db, org, name="Driver")
    assignment = make_assignment(db, route, on=TODAY, user=driver, confirmed_at=NOW - timedelta(days=3))
    db.commit()
    return {"org": org, "manager": manager, "route": route, "driver": driver, "assignment": assignment}


def _svc(db, effects):
    return ShiftService(db, effects=effects)


def _ids(s):
    return {"org_id": s["org"].id, "user_id": s["driver"].id, "assignment_id": s["assignment"].id}


def _started(db, effects, s, parcels=120):
    svc = _svc(db, effects)
    svc.arrive(**_ids(s), now=BEFORE_START)
    svc.start(**_ids(s), parcels_start=parcels, now=BEFORE_START + timedelta(minutes=20))
    return svc


def _completed(db, effects, s, *, at):
    svc = _started(db, effects, s)
    svc.complete(**_ids(s), parcels_returned=5, now=at)
    return svc


# ============================================================================
# arrive
# ============================================================================

def test_on_time_arrival(db, effects, shift_day):
    s = shift_day
    shift = _svc(db, effects).arrive(**_ids(s), now=BEFORE_START)

    assert shift.arrived_at == BEFORE_START
    assert db.get(Assignment, s["assignment"].id).status == "active"

    m = db.execute(select(DriverMetrics).where(DriverMetrics.user_id == s["driver"].id)).scalar_one()
    assert (m.total_shifts, m.arrived_on_time_count) == (1, 1)
    hs = db.execute(select(DriverHealthState).where(DriverHealthState.user_id == s["driver"].id)).scalar_one()
    assert hs.current_score == 2


def test_late_arrival_before_cutoff_is_not_rewarded(db, effects, shift_day):
    s = shift_day
    _svc(db, effects).arrive(**_ids(s), now=at_local(TODAY, 8, 15))

    m = db.execute(select(DriverMetrics).where(DriverMetrics.user_id == s["driver"].id)).scalar_one()
    assert (m.total_shifts, m.arrived_on_time_count) == (1, 0)
    assert db.execute(
        select(DriverHealthState).where(DriverHealthState.user_id == s["driver"].id)
    ).first() is None


def test_arrival_after_cutoff_is_refused(db, effects, shift_day):
    with pytest.raises(ValidationFailed) as ei:
        _svc(db, effects).arrive(**_ids(shift_day), now=at_local(TODAY, 9))
    assert ei.value.code == "not_arrivable"


def test_unconfirmed_assignment_cannot_arrive(db, effects):
    org = make_org(db)
    route = make_route(db, org)
    driver = make_user(db, org)
    assignment = make_assignment(db, route, on=TODAY, user=driver)
    db.commit()

    with pytest.raises(ValidationFailed):
        _svc(db, effects).arrive(org_id=org.id, user_id=driver.id, assignment_id=assignment.id, now=BEFORE_START)


def test_arriving_twice(db, effects, shift_day):
    s = shift_day
    svc = _svc(db, effects)
    svc.arrive(**_ids(s), now=BEFORE_START)
    with pytest.raises(ValidationFailed):
        svc.arrive(**_ids(s), now=BEFORE_START + timedelta(minutes=1))


def test_one_shift_in_progress_at_a_time(db, effects, shift_day):
    s = shift_day
    yesterday = make_route(db, s["org"], name="R0")
    make_assignment(db, yesterday, on=TODAY - timedelta(days=1), user=s["driver"], status="active")
    db.commit()

    with pytest.raises(Conflict) as ei:
        _svc(db, effects).arrive(**_ids(s), now=BEFORE_START)
    assert ei.value.code == "shift_in_progress"


def test_only_the_assigned_driver_can_arrive(db, effects, shift_day):
    s = shift_day
    stranger = make_user(db, s["org"], name="Stranger")
    db.commit()

    with pytest.raises(NotFound):
        _svc(db, effects).arrive(
            org_id=s["org"].id, user_id=stranger.id, assignment_id=s["assignment"].id, now=BEFORE_START
        )


# ============================================================================
# start / complete
# ============================================================================

def test_start_records_parcels(db, effects, shift_day):
    s = shift_day
    svc = _started(db, effects, s, parcels=120)

    shift = svc.complete(**_ids(s), parcels_returned=5, now=at_local(TODAY, 16))

    assert shift.parcels_start == 120
    assert shift.parcels_delivered == 115
    assert shift.completed_at == at_local(TODAY, 16)
    assert shift.editable_until == at_local(TODAY, 17)
    assert db.get(Assignment, s["assignment"].id).status == "completed"


def test_start_twice_is_refused(db, effects, shift_day):
    s = shift_day
    svc = _started(db, effects, s)
    with pytest.raises(ValidationFailed) as ei:
        svc.start(**_ids(s), parcels_start=10, now=BEFORE_START + timedelta(hours=1))
    assert ei.value.code == "not_startable"


def test_negative_parcels_are_refused(db, effects, shift_day):
    s = shift_day
    svc = _svc(db, effects)
    svc.arrive(**_ids(s), now=BEFORE_START)
    with pytest.raises(ValidationFailed):
        svc.start(**_ids(s), parcels_start=-1, now=BEFORE_START)


def test_complete_before_start(db, effects, shift_day):
    s = shift_day
    svc = _svc(db, effects)
    svc.arrive(**_ids(s), now=BEFORE_START)
    with pytest.raises(ValidationFailed) as ei:
        svc.complete(**_ids(s), parcels_returned=0, now=at_local(TODAY, 16))
    assert ei.value.code == "not_completable"


def test_returned_cannot_exceed_start(db, effects, shift_day):
    s = shift_day
    svc = _started(db, effects, s, parcels=10)
    with pytest.raises(ValidationFailed):
        svc.complete(**_ids(s), parcels_returned=11, now=at_local(TODAY, 16))
    assert db.get(Assignment, s["assignment"].id).status == "active"


def test_completion_feeds_familiarity_and_health(db, effects, shift_day):
    s = shift_day
    _completed(db, effects, s, at=at_local(TODAY, 16))

    rc = db.execute(select(RouteCompletion).where(RouteCompletion.user_id == s["driver"].id)).scalar_one()
    assert rc.route_id == s["route"].id
    assert rc.completion_count == 1

    m = db.execute(select(DriverMetrics).where(DriverMetrics.user_id == s["driver"].id)).scalar_one()
    assert m.completed_shifts == 1
    hs = db.execute(select(DriverHealthState).where(DriverHealthState.user_id == s["driver"].id)).scalar_one()
    # arrived on time +2, completed +2
    assert hs.current_score == 4


# ============================================================================
# edit
# ============================================================================

def test_driver_edits_inside_the_window(db, effects, shift_day):
    s = shift_day
    svc = _completed(db, effects, s, at=at_local(TODAY, 16))

    shift = svc.edit(
        org_id=s["org"].id,
        actor_id=s["driver"].id,
        role="driver",
        assignment_id=s["assignment"].id,
        parcels_returned=10,
        now=at_local(TODAY, 16, 30),
    )

    assert shift.parcels_returned == 10
    assert shift.parcels_delivered == 110
    audit = db.execute(select(AuditLog).where(AuditLog.entity_id == shift.id)).scalar_one()
    assert audit.action == "driver_edit"
    assert audit.changes["before"]["parcels_returned"] == 5


def test_driver_edit_window_closes(db, effects, shift_day):
    s = shift_day
    svc = _completed(db, effects, s, at=at_local(TODAY, 16))

    with pytest.raises(ValidationFailed) as ei:
        svc.edit(
            org_id=s["org"].id,
            actor_id=s["driver"].id,
            role="driver",
            assignment_id=s["assignment"].id,
            parcels_returned=10,
            now=at_local(TODAY, 17, 1),
        )
    assert ei.value.code == "edit_window_closed"


def test_manager_can_edit_any_time(db, effects, shift_day):
    s = shift_day
    svc = _completed(db, effects, s, at=at_local(TODAY, 16))

    shift = svc.edit(
        org_id=s["org"].id,
        actor_id=s["manager"].id,
        role="manager",
        assignment_id=s["assignment"].id,
        parcels_start=130,
        now=at_local(TODAY + timedelta(days=2), 9),
    )

    assert shift.parcels_start == 130
    assert shift.parcels_delivered == 125
    audit = db.execute(select(AuditLog).where(AuditLog.entity_id == shift.id)).scalar_one()
    assert audit.action == "manager_edit"
    assert audit.actor_id == s["manager"].id


def test_empty_edit_is_rejected(db, effects, shift_day):
    s = shift_day
    svc = _completed(db, effects, s, at=at_local(TODAY, 16))

    with pytest.raises(ValidationFailed):
        svc.edit(
            org_id=s["org"].id,
            actor_id=s["driver"].id,
            role="driver",
            assignment_id=s["assignment"].id,
            now=at_local(TODAY, 16, 10),
        )


def test_unfinished_shift_cannot_be_edited(db, effects, shift_day):
    s = shift_day
    _started(db, effects, s)

    with pytest.raises(ValidationFailed) as ei:
        _svc(db, effects).edit(
            org_id=s["org"].id,
            actor_id=s["manager"].id,
            role="manager",
            assignment_id=s["assignment"].id,
            parcels_start=1,
            now=at_local(TODAY, 12),
        )
    assert ei.value.code == "shift_not_completed"
