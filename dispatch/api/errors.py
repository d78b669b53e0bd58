# dispatch/api/errors.py
from __future__ import annotations

from fastapi import HTTPException

from dispatch.core.errors import Conflict, DispatchError, NotFound, ValidationFailed
from dispatch.core.rbac import Forbidden

_STATUS: list[tuple[type[DispatchError], int]] = [
    (Forbidden, 403),
    (NotFound, 404),
    (Conflict, 409),  # TransitionNotAllowed included
    (ValidationFailed, 400),
]


def http_error(err: DispatchError) -> HTTPException:
    """Domain error -> HTTPException with ``{"code", "message"}`` detail."""
    for cls, status_code in _STATUS:
        if isinstance(err, cls):
            return HTTPException(status_code=status_code, detail=err.as_detail())
    return HTTPException(status_code=400, detail=err.as_detail())
