# dispatch/core/timeutil.py
"""Business-timezone arithmetic.

Every deadline in the system is expressed in one canonical business timezone
(``policy.timezone``), whatever the caller's wall clock. All instants leaving
this module are timezone-aware UTC.
"""
from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from functools import lru_cache
from zoneinfo import ZoneInfo

from dispatch.core.policy import DispatchPolicy

UTC = timezone.utc


@lru_cache(maxsize=16)
def _zone(name: str) -> ZoneInfo:
    return ZoneInfo(name)


def business_tz(policy: DispatchPolicy) -> ZoneInfo:
    return _zone(policy.timezone)


def utc_now() -> datetime:
    return datetime.now(UTC)


def ensure_aware(dt: datetime) -> datetime:
    """Naive datetimes are treated as UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt


def to_local(dt: datetime, policy: DispatchPolicy) -> datetime:
    return ensure_aware(dt).astimezone(business_tz(policy))


def local_today(now: datetime, policy: DispatchPolicy) -> date:
    return to_local(now, policy).date()


def parse_hhmm(value: str | None) -> time | None:
    """'07:30' -> time(7, 30). Empty / malformed -> None."""
    if not value:
        return None
    try:
        hh, mm = value.strip().split(":")[:2]
        return time(int(hh), int(mm))
    except ValueError:
        return None


def local_instant(d: date, t: time, policy: DispatchPolicy) -> datetime:
    """Wall-clock ``d t`` in the business timezone, as a UTC instant."""
    return datetime.combine(d, t, tzinfo=business_tz(policy)).astimezone(UTC)


def shift_local_wall(d: date, t: time, delta: timedelta, policy: DispatchPolicy) -> datetime:
    """Wall-clock arithmetic: ``(d t) + delta`` evaluated on the local calendar.

    Across a DST change "two days before 07:00" stays 07:00 local, not 06:00/08:00.
    """
    wall = datetime.combine(d, t) + delta
    return datetime.combine(wall.date(), wall.time(), tzinfo=business_tz(policy)).astimezone(UTC)


def start_of_local_day(d: date, policy: DispatchPolicy) -> datetime:
    return local_instant(d, time(0, 0), policy)


def end_of_local_day(d: date, policy: DispatchPolicy) -> datetime:
    """Exclusive end: local midnight that starts the next day."""
    return start_of_local_day(d + timedelta(days=1), policy)


def week_start(d: date) -> date:
    """Monday of the week containing ``d``."""
    return d - timedelta(days=d.weekday())


def week_dates(monday: date, days: int = 7) -> list[date]:
    return [monday + timedelta(days=i) for i in range(days)]


def preference_lock_deadline(target_week_start: date, policy: DispatchPolicy) -> datetime:
    """Preferences for a week lock at the last instant of the preceding Sunday."""
    return end_of_local_day(target_week_start - timedelta(days=1), policy) - timedelta(microseconds=1)


def months_between(start: datetime, end: datetime) -> float:
    """Tenure in months (30.44-day months), never negative."""
    days = (ensure_aware(end) - ensure_aware(start)).total_seconds() / 86400
    return max(days / 30.44, 0.0)
