from dataclasses import dataclass

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request


@dataclass
class RequestContext:
    correlation_id: str
    user_id: str | None
    client_ip: str | None
    user_agent: str | None
    portal_customer: bool = False


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Attach a mutable ``RequestContext`` to ``request.state``.

    ``get_current_user`` fills in ``user_id`` once the bearer token is decoded;
    the request logger reads it back after the response is produced.
    """

    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        forwarded = request.headers.get("x-forwarded-for", "")
        client_ip = forwarded.split(",")[0].strip() or (request.client.host if request.client else None)
        request.state.context = RequestContext(
            correlation_id=getattr(request.state, "correlation_id", None) or "",
            user_id=None,
            client_ip=client_ip,
            user_agent=request.headers.get("user-agent"),
        )
        return await call_next(request)
