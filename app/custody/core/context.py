from dataclasses import dataclass

from fastapi import Request


@dataclass(frozen=True)
class RequestContext:
    custodian_id: str | None
    tier: str | None
    trace_id: str


def build_request_context(
    *,
    custodian_id: str | None,
    tier: str | None,
    trace_id: str,
) -> RequestContext:
    return RequestContext(
        custodian_id=custodian_id,
        tier=tier,
        trace_id=trace_id,
    )


def get_request_context(request: Request) -> RequestContext:
    context = getattr(request.state, "context", None)
    if isinstance(context, RequestContext):
        return context
    return build_request_context(
        custodian_id=getattr(request.state, "custodian_id", None),
        tier=getattr(request.state, "tier", None),
        trace_id=getattr(request.state, "trace_id", ""),
    )
