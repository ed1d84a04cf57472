from __future__ import annotations

import uuid
from collections.abc import Callable
from dataclasses import dataclass, field

from fastapi import Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.orm import Session
from starlette.requests import Request

from app.context import get_correlation_id
from app.core.auth import AuthUser, require_auth
from app.core.database import get_db
from app.identity.models import Role, User, UserRole


DEFAULT_ROLES: dict[str, list[str]] = {
    "admin": ["*"],
    "manager": ["users.read", "users.write", "roles.read"],
    "senior_manager": ["users.read"],
    "finance_manager": ["users.read", "ledger.read", "ledger.write"],
    "staff": ["users.read"],
    "customer": [],
}

APPROVAL_ROLES = ("manager", "senior_manager", "finance_manager")


@dataclass
class Actor:
    user_id: str
    email: str | None = None
    name: str | None = None
    roles: set[str] = field(default_factory=set)
    permissions: set[str] = field(default_factory=set)
    correlation_id: str | None = None

    @property
    def is_admin(self) -> bool:
        return "admin" in self.roles or "*" in self.permissions

    def has_role(self, role: str) -> bool:
        return role in self.roles

    def has_permission(self, permission: str) -> bool:
        return "*" in self.permissions or permission in self.permissions

    @property
    def display_name(self) -> str:
        return self.name or self.email or self.user_id


def resolve_roles(session: Session, user_id: uuid.UUID) -> list[Role]:
    return list(
        session.scalars(
            select(Role).join(UserRole, UserRole.role_id == Role.id).where(UserRole.user_id == user_id)
        ).all()
    )


def get_current_actor(
    request: Request,
    auth_user: AuthUser = Depends(require_auth),
    db: Session = Depends(get_db),
) -> Actor:
    correlation_id = get_correlation_id() or getattr(getattr(request.state, "context", None), "correlation_id", None)
    try:
        user_uuid = uuid.UUID(auth_user.sub)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="unauthorized")

    user = db.get(User, user_uuid)
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="unauthorized")
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="account_inactive")

    roles = resolve_roles(db, user.id)
    permissions: set[str] = set()
    for role in roles:
        permissions.update(str(item) for item in (role.permissions or []))
    return Actor(
        user_id=str(user.id),
        email=user.email,
        name=user.name,
        roles={role.name for role in roles},
        permissions=permissions,
        correlation_id=correlation_id,
    )


def ensure_permission(actor: Actor, permission: str) -> None:
    if not actor.has_permission(permission):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="forbidden")


def require_permissions(*permissions: str) -> Callable[..., Actor]:
    def checker(actor: Actor = Depends(get_current_actor)) -> Actor:
        for permission in permissions:
            ensure_permission(actor, permission)
        return actor

    return checker
