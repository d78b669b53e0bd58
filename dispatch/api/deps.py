# dispatch/api/deps.py
from __future__ import annotations

import hmac
from dataclasses import dataclass
from uuid import UUID

from fastapi import Depends, Header, HTTPException

from dispatch.core.config import settings


# -----------------------------------------------------------------------------
# Headers-first auth context
# -----------------------------------------------------------------------------


def get_current_user_id(
    x_actor_user_id: str | None = Header(
        default=None,
        alias="X-Actor-User-Id",
        description="UUID пользователя, выполняющего действие.",
        examples=["33333333-3333-3333-3333-333333333333"],
    ),
) -> UUID:
    if not x_actor_user_id:
        raise HTTPException(status_code=401, detail="Missing X-Actor-User-Id header")
    try:
        return UUID(x_actor_user_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail="Invalid X-Actor-User-Id format (must be UUID)") from e


def get_actor_role(
    x_role: str = Header(
        ...,
        alias="X-Role",
        description="RBAC роль пользователя: driver, manager, admin.",
        examples=["driver", "manager", "admin"],
    )
) -> str:
    return x_role.strip().lower()


def get_org_id(
    x_org_id: str | None = Header(
        default=None,
        alias="X-Org-Id",
        description="Organization context (required for protected endpoints)",
        examples=["11111111-1111-1111-1111-111111111111"],
    ),
) -> UUID:
    if not x_org_id:
        raise HTTPException(status_code=401, detail="Missing X-Org-Id header")
    try:
        return UUID(x_org_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail="Invalid X-Org-Id format (must be UUID)") from e


@dataclass(frozen=True)
class ActorContext:
    org_id: UUID
    actor_user_id: UUID
    role: str


def get_actor_context(
    org_id: UUID = Depends(get_org_id),
    actor_user_id: UUID = Depends(get_current_user_id),
    role: str = Depends(get_actor_role),
) -> ActorContext:
    return ActorContext(org_id=org_id, actor_user_id=actor_user_id, role=role)


# -----------------------------------------------------------------------------
# Scheduler auth for batch triggers
# -----------------------------------------------------------------------------


def require_cron_secret(
    authorization: str | None = Header(
        default=None,
        alias="Authorization",
        description="Bearer <CRON_SECRET>",
    ),
) -> None:
    secret = settings.cron_secret
    if not secret:
        raise HTTPException(status_code=503, detail="Batch triggers are disabled (CRON_SECRET is not set)")
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not hmac.compare_digest(token.strip(), secret):
        raise HTTPException(status_code=401, detail="Invalid cron credentials")
