# dispatch/services/manager_access.py
from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from dispatch.core.rbac import ADMIN, Forbidden
from dispatch.models.organization import WarehouseManager

WAREHOUSE_FORBIDDEN = "warehouse_forbidden"


def can_manager_access_warehouse(db: Session, *, org_id: UUID, user_id: UUID, warehouse_id: UUID) -> bool:
    return (
        db.execute(
            select(WarehouseManager.id)
            .where(
                WarehouseManager.org_id == org_id,
                WarehouseManager.warehouse_id == warehouse_id,
                WarehouseManager.user_id == user_id,
            )
            .limit(1)
        ).scalar_one_or_none()
        is not None
    )


def ensure_warehouse_access(db: Session, *, org_id: UUID, user_id: UUID, role: str, warehouse_id: UUID) -> None:
    # админ видит все склады организации
    if role == ADMIN:
        return
    if not can_manager_access_warehouse(db, org_id=org_id, user_id=user_id, warehouse_id=warehouse_id):
        raise Forbidden("Manager does not manage this warehouse", code=WAREHOUSE_FORBIDDEN)
