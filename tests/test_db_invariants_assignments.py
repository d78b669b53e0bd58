from datetime import timedelta

import pytest
from sqlalchemy.exc import IntegrityError

from tests.factories import NOW, TODAY, make_assignment, make_org, make_route, make_shift, make_user


def _route_and_driver(db):
    org = make_org(db)
    route = make_route(db, org)
    driver = make_user(db, org)
    db.commit()
    return org, route, driver


def test_db_ck_assignments_unfilled_cannot_have_driver(db):
    _org, route, driver = _route_and_driver(db)

    make_assignment(db, route, on=TODAY, user=driver, status="unfilled", flush=False)
    with pytest.raises(IntegrityError):
        db.commit()


def test_db_ck_assignments_active_requires_driver(db):
    _org, route, _driver = _route_and_driver(db)

    make_assignment(db, route, on=TODAY, status="active", flush=False)
    with pytest.raises(IntegrityError):
        db.commit()


def test_db_ck_assignments_completed_requires_driver(db):
    _org, route, _driver = _route_and_driver(db)

    make_assignment(db, route, on=TODAY, status="completed", flush=False)
    with pytest.raises(IntegrityError):
        db.commit()


def test_db_ck_assignments_status_domain(db):
    _org, route, driver = _route_and_driver(db)

    make_assignment(db, route, on=TODAY, user=driver, status="confirmed", flush=False)
    with pytest.raises(IntegrityError):
        db.commit()


def test_db_ck_assignments_cancel_type_domain(db):
    _org, route, driver = _route_and_driver(db)

    make_assignment(db, route, on=TODAY, user=driver, status="cancelled", cancel_type="whim", flush=False)
    with pytest.raises(IntegrityError):
        db.commit()


def test_db_uq_one_active_assignment_per_driver_per_day(db):
    org, route, driver = _route_and_driver(db)
    other_route = make_route(db, org, name="R2")
    make_assignment(db, route, on=TODAY, user=driver)
    db.commit()

    make_assignment(db, other_route, on=TODAY, user=driver, flush=False)
    with pytest.raises(IntegrityError):
        db.commit()


def test_db_uq_cancelled_assignment_does_not_block_the_day(db):
    org, route, driver = _route_and_driver(db)
    other_route = make_route(db, org, name="R2")
    make_assignment(db, route, on=TODAY, user=driver, status="cancelled", cancel_type="driver")
    make_assignment(db, other_route, on=TODAY, user=driver)
    db.commit()


def test_db_uq_different_days_are_fine(db):
    _org, route, driver = _route_and_driver(db)
    make_assignment(db, route, on=TODAY, user=driver)
    make_assignment(db, route, on=TODAY + timedelta(days=1), user=driver)
    db.commit()


def test_db_uq_one_shift_per_assignment(db):
    _org, route, driver = _route_and_driver(db)
    a = make_assignment(db, route, on=TODAY, user=driver, status="active")
    make_shift(db, a, arrived_at=NOW)
    db.commit()

    make_shift(db, a, arrived_at=NOW, flush=False)
    with pytest.raises(IntegrityError):
        db.commit()


def test_db_ck_shifts_parcels_start_non_negative(db):
    _org, route, driver = _route_and_driver(db)
    a = make_assignment(db, route, on=TODAY, user=driver, status="active")
    db.commit()

    make_shift(db, a, arrived_at=NOW, parcels_start=-1, flush=False)
    with pytest.raises(IntegrityError):
        db.commit()


def test_db_ck_users_weekly_cap_min(db):
    org = make_org(db)
    db.commit()

    make_user(db, org, weekly_cap=0, flush=False)
    with pytest.raises(IntegrityError):
        db.commit()
