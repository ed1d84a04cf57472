from __future__ import annotations

import logging
import math
import threading
import time
import uuid
from dataclasses import dataclass

from fastapi.responses import JSONResponse
from jose import JWTError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from app.context import get_correlation_id
from app.core.auth import decode_access_token
from app.core.config import get_settings


logger = logging.getLogger("app.rate_limit")

WINDOW_SECONDS = 60
MUTATING_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})


@dataclass
class _Bucket:
    tokens: float
    refilled_at: float


class MutationLimiter:
    """Token buckets keyed by (client, route group), refilled continuously over the window."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._buckets: dict[tuple[str, str], _Bucket] = {}

    def acquire(self, client_key: str, route_group: str, per_window: int) -> tuple[bool, int]:
        """Take one token; return ``(allowed, retry_after_seconds)``."""
        if per_window <= 0:
            return False, WINDOW_SECONDS

        rate = per_window / WINDOW_SECONDS
        now = time.monotonic()
        with self._lock:
            bucket = self._buckets.setdefault((client_key, route_group), _Bucket(float(per_window), now))
            bucket.tokens = min(float(per_window), bucket.tokens + (now - bucket.refilled_at) * rate)
            bucket.refilled_at = now
            if bucket.tokens >= 1.0:
                bucket.tokens -= 1.0
                return True, 0
            return False, max(1, math.ceil((1.0 - bucket.tokens) / rate))

    def clear(self) -> None:
        with self._lock:
            self._buckets.clear()


_limiter = MutationLimiter()


class MutationRateLimitMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        settings = get_settings()
        path = request.url.path
        if (
            settings.rate_limit_disabled
            or request.method.upper() not in MUTATING_METHODS
            or not path.startswith("/api/")
        ):
            return await call_next(request)

        client_key = client_key_for(request)
        allowed, retry_after = _limiter.acquire(client_key, route_group_for(path), settings.rate_limit_mutations_per_minute)
        if allowed:
            return await call_next(request)

        correlation_id = get_correlation_id() or getattr(request.state, "correlation_id", None) or str(uuid.uuid4())
        logger.warning("http.rate_limited", extra={"path": path, "method": request.method, "actor_id": client_key})
        return JSONResponse(
            status_code=429,
            content={"data": None, "error": "rate_limited"},
            headers={"Retry-After": str(retry_after), "X-Correlation-Id": correlation_id},
        )


def route_group_for(path: str) -> str:
    """``/api/crm/<resource>/...`` groups by resource; every other router groups by its prefix."""
    parts = [part for part in path.split("/") if part]
    if len(parts) < 2:
        return "api"
    if parts[1] == "crm" and len(parts) >= 3:
        return f"crm.{parts[2]}"
    return parts[1]


def client_key_for(request: Request) -> str:
    auth_header = request.headers.get("authorization", "")
    if auth_header.startswith("Bearer "):
        try:
            claims = decode_access_token(auth_header[len("Bearer "):])
        except JWTError:
            return "anonymous"
        subject = claims.get("sub")
        if subject:
            return f"{claims.get('typ', 'staff')}:{subject}"
    return f"ip:{request.client.host}" if request.client else "anonymous"


def reset_rate_limiter() -> None:
    _limiter.clear()
