from __future__ import annotations

from contextvars import ContextVar, Token

MAX_CORRELATION_ID_LENGTH = 128

correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)
actor_id_var: ContextVar[str | None] = ContextVar("actor_id", default=None)


def clean_correlation_id(value: str | None) -> str | None:
    """Return a client-supplied id if it fits the audit column, otherwise None."""
    if value is None:
        return None
    value = value.strip()
    if not value or len(value) > MAX_CORRELATION_ID_LENGTH or not value.isprintable():
        return None
    return value


def set_correlation_id(value: str | None) -> Token[str | None]:
    return correlation_id_var.set(value)


def reset_correlation_id(token: Token[str | None]) -> None:
    correlation_id_var.reset(token)


def get_correlation_id() -> str | None:
    return correlation_id_var.get()


def set_actor_id(value: str | None) -> Token[str | None]:
    return actor_id_var.set(value)


def get_actor_id() -> str | None:
    return actor_id_var.get()
