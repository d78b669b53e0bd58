# dispatch/core/store.py
"""Storage primitives the engine relies on for concurrency.

* ``guarded_update``: conditional UPDATE that reports affected rows; zero
  rows means a concurrent writer got there first.
* ``unique_guard``: SAVEPOINT around a write; a unique-constraint failure is
  rolled back to the savepoint and re-raised as ``UniqueViolation`` so the
  outer transaction stays usable.

Both work the same on PostgreSQL and SQLite.
"""
from __future__ import annotations

import re
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.sql.dml import Update

PG_UNIQUE_VIOLATION = "23505"

_SQLITE_UNIQUE = re.compile(r"UNIQUE constraint failed: (?P<cols>.+)$", re.MULTILINE)


class UniqueViolation(Exception):
    """A unique constraint / unique index rejected the write."""

    def __init__(self, constraint: str | None, detail: str):
        super().__init__(detail)
        self.constraint = constraint
        self.detail = detail


def _as_unique_violation(err: IntegrityError) -> UniqueViolation | None:
    orig = err.orig
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate == PG_UNIQUE_VIOLATION:
        diag = getattr(orig, "diag", None)
        return UniqueViolation(getattr(diag, "constraint_name", None), str(orig))

    m = _SQLITE_UNIQUE.search(str(orig))
    if m:
        # sqlite reports columns ("assignments.user_id, assignments.date"), not index names
        return UniqueViolation(m.group("cols").strip(), str(orig))
    return None


def guarded_update(db: Session, stmt: Update) -> int:
    """Execute a conditional UPDATE and return the affected row count."""
    result = db.execute(stmt)
    return result.rowcount or 0


@contextmanager
def unique_guard(db: Session) -> Iterator[None]:
    nested = db.begin_nested()
    try:
        yield
        db.flush()
        nested.commit()
    except IntegrityError as e:
        nested.rollback()
        violation = _as_unique_violation(e)
        if violation is None:
            raise
        raise violation from e
    except Exception:
        if nested.is_active:
            nested.rollback()
        raise


def violates(v: UniqueViolation, *needles: str) -> bool:
    """True if the violation names any of ``needles`` (index name or column list)."""
    text = f"{v.constraint or ''} {v.detail}"
    return any(n in text for n in needles)
