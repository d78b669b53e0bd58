# dispatch/services/audit.py
from __future__ import annotations

from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from dispatch.models.audit_log import AuditLog

ACTOR_USER = "user"
ACTOR_SYSTEM = "system"


class AuditSink:
    """Append-only audit records (entity, action, actor, before/after)."""

    def __init__(self, db: Session):
        self.db = db

    def record(
        self,
        *,
        org_id: UUID,
        entity_type: str,
        entity_id: UUID,
        action: str,
        actor_id: UUID | None = None,
        before: dict[str, Any] | None = None,
        after: dict[str, Any] | None = None,
        **details: Any,
    ) -> None:
        changes: dict[str, Any] = {}
        if before is not None:
            changes["before"] = _plain(before)
        if after is not None:
            changes["after"] = _plain(after)
        changes.update(_plain(details))

        self.db.add(
            AuditLog(
                org_id=org_id,
                entity_type=entity_type,
                entity_id=entity_id,
                action=action,
                actor_type=ACTOR_USER if actor_id is not None else ACTOR_SYSTEM,
                actor_id=actor_id,
                changes=changes,
            )
        )
        self.db.commit()


def _plain(d: dict[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for k, v in d.items():
        if isinstance(v, dict):
            out[k] = _plain(v)
        elif isinstance(v, (str, int, float, bool)) or v is None:
            out[k] = v
        else:
            out[k] = str(v)
    return out
