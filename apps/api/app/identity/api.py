from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from app.api.envelope import Envelope, ok
from app.core.database import get_db
from app.core.rbac import Actor, get_current_actor, require_permissions
from app.identity.schemas import (
    AuthTokenRead,
    LoginRequest,
    MeRead,
    RegisterRequest,
    RoleGrantRequest,
    RoleRead,
    UserRead,
    UserUpdate,
)
from app.identity.service import identity_service


router = APIRouter(prefix="/auth", tags=["auth"])
admin_router = APIRouter(prefix="/admin", tags=["admin"])


@router.post("/register", response_model=Envelope[AuthTokenRead], status_code=status.HTTP_201_CREATED)
def register(payload: RegisterRequest, db: Session = Depends(get_db)) -> dict:
    return ok(identity_service.register(db, payload))


@router.post("/login", response_model=Envelope[AuthTokenRead])
def login(payload: LoginRequest, db: Session = Depends(get_db)) -> dict:
    return ok(identity_service.login(db, payload))


@router.get("/me", response_model=Envelope[MeRead])
def me(actor: Actor = Depends(get_current_actor)) -> dict:
    return ok(identity_service.me(actor))


@admin_router.get("/roles", response_model=Envelope[list[RoleRead]])
def list_roles(
    db: Session = Depends(get_db),
    _: Actor = Depends(require_permissions("roles.read")),
) -> dict:
    return ok(identity_service.list_roles(db))


@admin_router.get("/users", response_model=Envelope[list[UserRead]])
def list_users(
    db: Session = Depends(get_db),
    _: Actor = Depends(require_permissions("users.read")),
) -> dict:
    return ok(identity_service.list_users(db))


@admin_router.post("/users/{user_id}/roles", response_model=Envelope[UserRead])
def grant_role(
    user_id: uuid.UUID,
    payload: RoleGrantRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permissions("users.write")),
) -> dict:
    return ok(identity_service.grant_role(db, actor, user_id, payload.role))


@admin_router.delete("/users/{user_id}/roles/{role}", response_model=Envelope[UserRead])
def revoke_role(
    user_id: uuid.UUID,
    role: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permissions("users.write")),
) -> dict:
    return ok(identity_service.revoke_role(db, actor, user_id, role))


@admin_router.patch("/users/{user_id}", response_model=Envelope[UserRead])
def update_user(
    user_id: uuid.UUID,
    payload: UserUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permissions("users.write")),
) -> dict:
    return ok(identity_service.update_user(db, actor, user_id, payload))
