# dispatch/services/side_effects.py
from __future__ import annotations

import logging
from typing import Any, Callable

from sqlalchemy.orm import Session

from dispatch.services.audit import AuditSink
from dispatch.services.notifications import NotificationDispatcher
from dispatch.services.realtime import ManagerBroadcaster, broadcaster as default_broadcaster

logger = logging.getLogger(__name__)


class SideEffects:
    """Post-commit collaborators. Failures are logged and swallowed here, never raised.

    ``run`` must only be called after the core transaction has committed.
    """

    def __init__(
        self,
        db: Session,
        *,
        notifier: NotificationDispatcher | None = None,
        audit: AuditSink | None = None,
        broadcaster: ManagerBroadcaster | None = None,
    ):
        self.db = db
        self.notifier = notifier or NotificationDispatcher(db)
        self.audit = audit or AuditSink(db)
        self.broadcaster = broadcaster or default_broadcaster

    def run(self, label: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        try:
            return fn(*args, **kwargs)
        except Exception:
            logger.warning("Side effect '%s' failed", label, exc_info=True)
            try:
                self.db.rollback()
            except Exception:
                logger.warning("Rollback after side effect '%s' failed", label, exc_info=True)
            return None
