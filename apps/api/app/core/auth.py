from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from fastapi import Depends, HTTPException, status
from jose import JWTError, jwt
from starlette.requests import Request

from app.context import set_actor_id
from app.core.config import get_settings


ANONYMOUS = "anonymous"


@dataclass
class AuthUser:
    sub: str
    roles: list[str]
    email: str | None = None
    token_type: str = "staff"
    claims: dict[str, Any] = field(default_factory=dict)

    @property
    def is_anonymous(self) -> bool:
        return self.sub == ANONYMOUS


def create_access_token(
    subject: str,
    *,
    email: str | None = None,
    roles: list[str] | None = None,
    token_type: str = "staff",
    expires_delta: timedelta | None = None,
    extra_claims: dict[str, Any] | None = None,
) -> str:
    settings = get_settings()
    expires_at = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=settings.jwt_expires_minutes))
    payload: dict[str, Any] = {
        "sub": subject,
        "email": email,
        "roles": roles or [],
        "typ": token_type,
        "exp": expires_at,
    }
    if extra_claims:
        payload.update(extra_claims)
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> dict[str, Any]:
    settings = get_settings()
    return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])


def _bearer_token(request: Request) -> str:
    auth_header = request.headers.get("authorization", "")
    return auth_header.replace("Bearer ", "") if auth_header.startswith("Bearer ") else ""


async def get_current_user(request: Request) -> AuthUser:
    token = _bearer_token(request)
    if not token:
        return AuthUser(sub=ANONYMOUS, roles=["guest"])

    try:
        payload = decode_access_token(token)
    except JWTError:
        return AuthUser(sub=ANONYMOUS, roles=["guest"])

    subject = str(payload.get("sub", ANONYMOUS))
    roles = payload.get("roles", [])
    if not isinstance(roles, list):
        roles = []
    token_type = str(payload.get("typ", "staff"))
    context = getattr(request.state, "context", None)
    if context is not None:
        context.user_id = subject
        context.portal_customer = token_type != "staff"
    set_actor_id(subject if token_type == "staff" else f"customer:{subject}")
    return AuthUser(
        sub=subject,
        roles=[str(role) for role in roles],
        email=payload.get("email"),
        token_type=token_type,
        claims=payload,
    )


async def require_auth(user: AuthUser = Depends(get_current_user)) -> AuthUser:
    if user.is_anonymous or user.token_type != "staff":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="unauthorized")
    return user
