# dispatch/core/rbac.py
from __future__ import annotations

from typing import Mapping, Set

from dispatch.core.errors import DispatchError


class Forbidden(DispatchError):
    """Raised when actor role is not allowed for an operation."""

    code = "forbidden"


DRIVER = "driver"
MANAGER = "manager"
ADMIN = "admin"
SYSTEM = "system"

# Roles stay plain strings: they arrive in the X-Role header.
ALLOW: Mapping[str, Set[str]] = {
    # ---- Assignments ----
    "assignment.confirm": {DRIVER},
    "assignment.cancel": {DRIVER},
    "assignment.read": {DRIVER, MANAGER, ADMIN},
    "assignment.override": {MANAGER, ADMIN},

    # ---- Shifts ----
    "shift.arrive": {DRIVER},
    "shift.start": {DRIVER},
    "shift.complete": {DRIVER},
    "shift.edit": {DRIVER, MANAGER, ADMIN},

    # ---- Bidding ----
    "bid.submit": {DRIVER},
    "bid.read": {DRIVER},
    "bid_window.read": {MANAGER, ADMIN},
    "bid_window.resolve": {MANAGER, ADMIN, SYSTEM},

    # ---- Drivers ----
    "driver.read": {DRIVER, MANAGER, ADMIN},
    "driver.reinstate": {MANAGER, ADMIN},
}

MANAGER_ROLES = {MANAGER, ADMIN}


def ensure_allowed(permission: str, role: str) -> None:
    allowed = ALLOW.get(permission, set())
    if role not in allowed:
        raise Forbidden(f"Role '{role}' is not allowed for '{permission}'")


def is_manager(role: str) -> bool:
    return role in MANAGER_ROLES
