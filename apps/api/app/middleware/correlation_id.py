from __future__ import annotations

import uuid

from opentelemetry import trace
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from app.context import clean_correlation_id, reset_correlation_id, set_correlation_id

HEADER = "x-correlation-id"


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Bind one correlation id per request and echo it back on every response.

    Ids that are blank, oversized or contain control characters are replaced
    with a fresh uuid4 so they can be stored on audit rows unchanged.
    """

    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        correlation_id = clean_correlation_id(request.headers.get(HEADER)) or str(uuid.uuid4())
        request.state.correlation_id = correlation_id
        span = trace.get_current_span()
        if span.is_recording():
            span.set_attribute("correlation_id", correlation_id)

        token = set_correlation_id(correlation_id)
        try:
            response = await call_next(request)
        finally:
            reset_correlation_id(token)

        response.headers[HEADER] = correlation_id
        return response
