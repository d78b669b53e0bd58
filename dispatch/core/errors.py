# dispatch/core/errors.py
from __future__ import annotations


class DispatchError(Exception):
    """Base for domain errors. ``code`` is stable and machine-readable."""

    code: str = "dispatch_error"

    def __init__(self, message: str, *, code: str | None = None):
        super().__init__(message)
        if code is not None:
            self.code = code
        self.message = message

    def as_detail(self) -> dict[str, str]:
        return {"code": self.code, "message": self.message}


class ValidationFailed(DispatchError):
    """Input is malformed or the operation is not allowed right now (4xx)."""

    code = "validation_failed"


class NotFound(DispatchError):
    """Absent, or outside the caller's organization / ownership."""

    code = "not_found"


class Conflict(DispatchError):
    """State conflict: already resolved, already filled, already booked..."""

    code = "conflict"
