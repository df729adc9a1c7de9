from jose import JWTError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from app.custody.core.context import build_request_context
from app.custody.core.security import decode_token


class ActorContextMiddleware(BaseHTTPMiddleware):
    """Attach the bearer token's custodian id and tier to request state for logging.

    Authorization is enforced by the route dependencies; an unreadable token here
    only leaves the context empty.
    """

    async def dispatch(self, request: Request, call_next):
        request.state.custodian_id = None
        request.state.tier = None

        auth_header = request.headers.get("Authorization")
        if auth_header and auth_header.lower().startswith("bearer "):
            token = auth_header.split(" ", 1)[1]
            try:
                payload = decode_token(token)
                request.state.custodian_id = payload.get("sub")
                request.state.tier = payload.get("tier")
            except JWTError:
                request.state.custodian_id = None

        request.state.context = build_request_context(
            custodian_id=request.state.custodian_id,
            tier=request.state.tier,
            trace_id=getattr(request.state, "trace_id", ""),
        )

        return await call_next(request)
