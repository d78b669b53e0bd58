# dispatch/services/notifications.py
from __future__ import annotations

import logging
from typing import Any, Iterable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from dispatch.models.notification import Notification, NotificationType
from dispatch.models.route import Route

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """Writes in-app notifications. Push/email fan-out reads these rows.

    Every call commits its own rows: it runs after the core transaction and
    must not be able to touch it.
    """

    def __init__(self, db: Session):
        self.db = db

    def send(
        self,
        *,
        org_id: UUID,
        user_id: UUID,
        type: NotificationType,
        title: str,
        body: str,
        data: dict[str, Any] | None = None,
    ) -> None:
        self.db.add(self._build(org_id, user_id, type, title, body, data))
        self.db.commit()

    def send_bulk(
        self,
        *,
        org_id: UUID,
        user_ids: Iterable[UUID],
        type: NotificationType,
        title: str,
        body: str,
        data: dict[str, Any] | None = None,
    ) -> int:
        rows = [self._build(org_id, uid, type, title, body, data) for uid in user_ids]
        if not rows:
            return 0
        self.db.add_all(rows)
        self.db.commit()
        return len(rows)

    def alert_route_manager(
        self,
        *,
        org_id: UUID,
        route_id: UUID,
        type: NotificationType,
        title: str,
        body: str,
        data: dict[str, Any] | None = None,
    ) -> bool:
        manager_id = self.db.execute(
            select(Route.manager_id).where(Route.org_id == org_id, Route.id == route_id)
        ).scalar_one_or_none()
        if manager_id is None:
            logger.info("Route %s has no manager, alert %s dropped", route_id, type.value)
            return False
        self.send(org_id=org_id, user_id=manager_id, type=type, title=title, body=body, data=data)
        return True

    @staticmethod
    def _build(org_id, user_id, type: NotificationType, title, body, data) -> Notification:
        return Notification(
            org_id=org_id,
            user_id=user_id,
            type=type.value,
            title=title,
            body=body,
            data={k: _jsonable(v) for k, v in (data or {}).items()},
        )


def _jsonable(value: Any) -> Any:
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    return str(value)
