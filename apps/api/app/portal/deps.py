from __future__ import annotations

import uuid
from dataclasses import dataclass

from fastapi import Depends, HTTPException, status

from app.core.auth import AuthUser, get_current_user

PORTAL_TOKEN_TYPE = "portal"


@dataclass(frozen=True)
class PortalCustomer:
    customer_id: uuid.UUID
    email: str
    account_id: uuid.UUID | None


def _as_uuid(value: object) -> uuid.UUID | None:
    if not value:
        return None
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


async def get_portal_customer(user: AuthUser = Depends(get_current_user)) -> PortalCustomer:
    if user.is_anonymous or user.token_type != PORTAL_TOKEN_TYPE:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="unauthorized")
    customer_id = _as_uuid(user.claims.get("customer_id"))
    if customer_id is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="unauthorized")
    return PortalCustomer(
        customer_id=customer_id,
        email=str(user.email or ""),
        account_id=_as_uuid(user.claims.get("account_id")),
    )
