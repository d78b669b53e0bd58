# dispatch/fsm/assignment_fsm.py
from __future__ import annotations

from enum import Enum

from dispatch.core.errors import Conflict
from dispatch.models.assignment import AssignmentStatus

"""Assignment FSM.

  scheduled -> active -> completed
  scheduled/active -> cancelled          (driver cancel)
  scheduled -> unfilled                  (escalation vacates the driver)
  unfilled/cancelled/scheduled -> scheduled   (bid win / manager reassign)

ВАЖНО:
- completed и cancelled не возвращаются назад; правки завершённой смены
  это edit, а не переход.
- cancelled -> scheduled только через новое назначение (bid / reassign),
  т.е. это уже другой водитель на том же слоте.
"""


class TransitionNotAllowed(Conflict):
    code = "invalid_assignment_state"


class Action(str, Enum):
    CONFIRM = "confirm"  # scheduled -> scheduled (confirmed_at stamped)
    ARRIVE = "arrive"  # scheduled -> active
    COMPLETE = "complete"  # active -> completed
    CANCEL = "cancel"  # scheduled/active -> cancelled

    # escalation
    VACATE = "vacate"  # scheduled -> unfilled (auto-drop, no-show, urgent)

    # filling the slot
    FILL_BY_BID = "fill_by_bid"  # unfilled/cancelled -> scheduled
    REASSIGN = "reassign"  # scheduled/unfilled/cancelled -> scheduled (manager)


S = AssignmentStatus

TERMINAL = {S.completed}

# action -> allowed from statuses + to status
TRANSITIONS: dict[Action, tuple[set[AssignmentStatus], AssignmentStatus]] = {
    Action.CONFIRM: ({S.scheduled}, S.scheduled),
    Action.ARRIVE: ({S.scheduled}, S.active),
    Action.COMPLETE: ({S.active}, S.completed),
    Action.CANCEL: ({S.scheduled, S.active}, S.cancelled),

    Action.VACATE: ({S.scheduled}, S.unfilled),

    Action.FILL_BY_BID: ({S.unfilled, S.cancelled}, S.scheduled),
    Action.REASSIGN: ({S.scheduled, S.unfilled, S.cancelled}, S.scheduled),
}


def allowed_from(action: Action) -> list[str]:
    """Status values usable in a guarded ``WHERE status IN (...)``."""
    return sorted(s.value for s in TRANSITIONS[action][0])


def apply_transition(current: str | AssignmentStatus, action: Action) -> AssignmentStatus:
    current = AssignmentStatus(current)
    allowed, to_status = TRANSITIONS[action]
    if current not in allowed:
        allowed_s = ", ".join(sorted(s.value for s in allowed))
        raise TransitionNotAllowed(
            f"Action '{action.value}' not allowed from status '{current.value}'. Allowed from: {allowed_s}"
        )
    return to_status
