from __future__ import annotations

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from app.custody.core.db_timing import get_db_time_ms, start_db_timer, stop_db_timer
from app.custody.core.logging import log_json
from app.custody.core.metrics import metrics
from app.custody.services.idempotency import IDEMPOTENCY_RESULT_HEADER

logger = logging.getLogger("custody.request")


def _route_template(request: Request) -> str:
    # Templated path keeps metric label cardinality bounded (no custodian ids).
    route = request.scope.get("route")
    return getattr(route, "path", None) or request.url.path


def _rounded(value: float | None) -> float | None:
    return round(value, 2) if value is not None else None


def build_request_log_payload(
    *,
    request: Request,
    response: Response | None,
    latency_ms: float,
    db_time_ms: float | None,
) -> dict:
    state = request.state
    return {
        "event": "http_request",
        "trace_id": getattr(state, "trace_id", ""),
        "custodian_id": getattr(state, "custodian_id", None),
        "tier": getattr(state, "tier", None),
        "route": _route_template(request),
        "method": request.method,
        "status_code": response.status_code if response is not None else 500,
        "latency_ms": _rounded(latency_ms),
        "db_time_ms": _rounded(db_time_ms),
        "replayed": response is not None and IDEMPOTENCY_RESULT_HEADER in response.headers,
        "error_code": getattr(state, "error_code", None),
        "error_class": getattr(state, "error_class", None),
    }


class ObservabilityMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        started = time.perf_counter()
        token = start_db_timer()
        response: Response | None = None
        try:
            response = await call_next(request)
            return response
        finally:
            latency_ms = (time.perf_counter() - started) * 1000
            db_time_ms = get_db_time_ms()
            stop_db_timer(token)
            payload = build_request_log_payload(
                request=request,
                response=response,
                latency_ms=latency_ms,
                db_time_ms=db_time_ms,
            )
            level = logging.ERROR if payload["status_code"] >= 500 else logging.INFO
            log_json(logger, payload, level=level)
            metrics.record_http_request(
                route=payload["route"],
                method=payload["method"],
                status_code=payload["status_code"],
                latency_ms=latency_ms,
            )
