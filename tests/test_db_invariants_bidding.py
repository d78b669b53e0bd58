from datetime import timedelta

import pytest
from sqlalchemy.exc import IntegrityError

from tests.factories import NOW, TODAY, make_assignment, make_bid, make_bid_window, make_org, make_route, make_user


def _unfilled(db):
    org = make_org(db)
    route = make_route(db, org)
    assignment = make_assignment(db, route, on=TODAY + timedelta(days=3))
    db.commit()
    return org, assignment


def test_db_uq_one_open_window_per_assignment(db):
    _org, a = _unfilled(db)
    make_bid_window(db, a)
    db.commit()

    make_bid_window(db, a, flush=False)
    with pytest.raises(IntegrityError):
        db.commit()


def test_db_uq_closed_windows_do_not_count(db):
    _org, a = _unfilled(db)
    make_bid_window(db, a, status="closed")
    make_bid_window(db, a, status="closed", opens_at=NOW)
    make_bid_window(db, a)
    db.commit()


def test_db_ck_bid_windows_close_after_open(db):
    _org, a = _unfilled(db)

    make_bid_window(db, a, opens_at=NOW, closes_at=NOW, flush=False)
    with pytest.raises(IntegrityError):
        db.commit()


def test_db_ck_bid_windows_resolved_requires_winner(db):
    _org, a = _unfilled(db)

    make_bid_window(db, a, status="resolved", flush=False)
    with pytest.raises(IntegrityError):
        db.commit()


def test_db_ck_bid_windows_open_cannot_have_winner(db):
    org, a = _unfilled(db)
    driver = make_user(db, org)
    db.commit()

    make_bid_window(db, a, winner_id=driver.id, flush=False)
    with pytest.raises(IntegrityError):
        db.commit()


def test_db_ck_bid_windows_mode_domain(db):
    _org, a = _unfilled(db)

    make_bid_window(db, a, mode="auction", flush=False)
    with pytest.raises(IntegrityError):
        db.commit()


def test_db_ck_bid_windows_bonus_non_negative(db):
    _org, a = _unfilled(db)

    make_bid_window(db, a, pay_bonus_percent=-5, flush=False)
    with pytest.raises(IntegrityError):
        db.commit()


def test_db_uq_one_bid_per_driver_per_window(db):
    org, a = _unfilled(db)
    w = make_bid_window(db, a)
    driver = make_user(db, org)
    make_bid(db, w, driver)
    db.commit()

    make_bid(db, w, driver, flush=False)
    with pytest.raises(IntegrityError):
        db.commit()


def test_db_uq_one_won_bid_per_window(db):
    org, a = _unfilled(db)
    w = make_bid_window(db, a)
    first, second = make_user(db, org, name="First"), make_user(db, org, name="Second")
    make_bid(db, w, first, status="won")
    db.commit()

    make_bid(db, w, second, status="won", flush=False)
    with pytest.raises(IntegrityError):
        db.commit()


def test_db_ck_bids_score_range(db):
    org, a = _unfilled(db)
    w = make_bid_window(db, a)
    driver = make_user(db, org)
    db.commit()

    make_bid(db, w, driver, score=1.5, flush=False)
    with pytest.raises(IntegrityError):
        db.commit()
