from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app import audit
from app.core.auth import create_access_token
from app.core.passwords import hash_password, verify_password
from app.core.rbac import DEFAULT_ROLES, Actor, resolve_roles
from app.identity.models import Role, User, UserRole
from app.identity.schemas import (
    AuthTokenRead,
    LoginRequest,
    MeRead,
    RegisterRequest,
    RoleRead,
    UserRead,
    UserUpdate,
)

logger = logging.getLogger("app.identity")


@dataclass(slots=True)
class IdentityService:
    default_role: str = "staff"

    def ensure_default_roles(self, session: Session) -> list[str]:
        """Create any missing default role; existing roles keep their permissions."""
        existing = {role.name for role in session.scalars(select(Role)).all()}
        created: list[str] = []
        for name, permissions in DEFAULT_ROLES.items():
            if name in existing:
                continue
            session.add(Role(name=name, permissions=list(permissions)))
            created.append(name)
        if created:
            session.commit()
            logger.info("identity.roles_seeded", extra={"action": ",".join(created)})
        return created

    def register(self, session: Session, payload: RegisterRequest) -> AuthTokenRead:
        email = payload.email.lower()
        if session.scalar(select(User).where(User.email == email)) is not None:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="email_taken")

        self.ensure_default_roles(session)
        user = User(email=email, name=payload.name.strip(), password_hash=hash_password(payload.password))
        session.add(user)
        try:
            session.flush()
        except IntegrityError:
            session.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="email_taken")

        role = self._get_role(session, self.default_role)
        session.add(UserRole(user_id=user.id, role_id=role.id))
        audit.record(
            actor_user_id=str(user.id),
            entity_type="auth.user",
            entity_id=str(user.id),
            action="auth.registered",
            before=None,
            after={"email": email},
            session=session,
        )
        session.commit()
        session.refresh(user)
        return AuthTokenRead(token=self._issue_token(session, user), user=self._to_user_read(session, user))

    def login(self, session: Session, payload: LoginRequest) -> AuthTokenRead:
        user = session.scalar(select(User).where(User.email == payload.email.lower()))
        if user is None or not verify_password(payload.password, user.password_hash):
            logger.info("auth.login_failed", extra={"recipient": payload.email.lower()})
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_credentials")
        if not user.is_active:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="account_inactive")
        return AuthTokenRead(token=self._issue_token(session, user), user=self._to_user_read(session, user))

    def me(self, actor: Actor) -> MeRead:
        return MeRead(
            id=uuid.UUID(actor.user_id),
            email=actor.email or "",
            name=actor.name,
            roles=sorted(actor.roles),
            permissions=sorted(actor.permissions),
        )

    def list_roles(self, session: Session) -> list[RoleRead]:
        rows = session.scalars(select(Role).order_by(Role.name.asc())).all()
        return [RoleRead.model_validate(row) for row in rows]

    def list_users(self, session: Session) -> list[UserRead]:
        rows = session.scalars(select(User).order_by(User.email.asc())).all()
        return [self._to_user_read(session, row) for row in rows]

    def grant_role(self, session: Session, actor: Actor, user_id: uuid.UUID, role_name: str) -> UserRead:
        user = self._get_user(session, user_id)
        role = self._get_role(session, role_name)
        linked = session.scalar(select(UserRole).where(UserRole.user_id == user.id, UserRole.role_id == role.id))
        if linked is None:
            session.add(UserRole(user_id=user.id, role_id=role.id))
            audit.record(
                actor_user_id=actor.user_id,
                entity_type="auth.user",
                entity_id=str(user.id),
                action="auth.role_granted",
                before=None,
                after={"role": role.name},
                session=session,
            )
            session.commit()
        return self._to_user_read(session, user)

    def revoke_role(self, session: Session, actor: Actor, user_id: uuid.UUID, role_name: str) -> UserRead:
        user = self._get_user(session, user_id)
        role = self._get_role(session, role_name)
        linked = session.scalar(select(UserRole).where(UserRole.user_id == user.id, UserRole.role_id == role.id))
        if linked is not None:
            session.delete(linked)
            audit.record(
                actor_user_id=actor.user_id,
                entity_type="auth.user",
                entity_id=str(user.id),
                action="auth.role_revoked",
                before={"role": role.name},
                after=None,
                session=session,
            )
            session.commit()
        return self._to_user_read(session, user)

    def update_user(self, session: Session, actor: Actor, user_id: uuid.UUID, payload: UserUpdate) -> UserRead:
        user = self._get_user(session, user_id)
        changes = payload.model_dump(exclude_unset=True)
        if changes.get("manager_id") is not None:
            if changes["manager_id"] == user.id:
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="invalid_manager")
            self._get_user(session, changes["manager_id"])

        before = {key: getattr(user, key) for key in changes}
        for key, value in changes.items():
            if key == "is_active" and value is None:
                continue
            setattr(user, key, value)
        audit.record(
            actor_user_id=actor.user_id,
            entity_type="auth.user",
            entity_id=str(user.id),
            action="auth.user_updated",
            before=before,
            after=changes,
            session=session,
        )
        session.commit()
        session.refresh(user)
        return self._to_user_read(session, user)

    def _issue_token(self, session: Session, user: User) -> str:
        roles = [role.name for role in resolve_roles(session, user.id)]
        return create_access_token(str(user.id), email=user.email, roles=roles)

    def _get_user(self, session: Session, user_id: uuid.UUID) -> User:
        user = session.get(User, user_id)
        if user is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="user_not_found")
        return user

    def _get_role(self, session: Session, name: str) -> Role:
        role = session.scalar(select(Role).where(Role.name == name))
        if role is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="role_not_found")
        return role

    def _to_user_read(self, session: Session, user: User) -> UserRead:
        roles = sorted(role.name for role in resolve_roles(session, user.id))
        return UserRead(
            id=user.id,
            email=user.email,
            name=user.name,
            is_active=user.is_active,
            manager_id=user.manager_id,
            roles=roles,
            created_at=user.created_at,
        )


identity_service = IdentityService()
