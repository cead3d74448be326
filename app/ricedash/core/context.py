from dataclasses import dataclass

from fastapi import Request


@dataclass(frozen=True)
class RequestContext:
    external_id: str | None
    trace_id: str


def build_request_context(*, external_id: str | None, trace_id: str) -> RequestContext:
    return RequestContext(external_id=external_id, trace_id=trace_id)


def get_request_context(request: Request) -> RequestContext:
    context = getattr(request.state, "context", None)
    if isinstance(context, RequestContext):
        return context
    return build_request_context(
        external_id=None,
        trace_id=getattr(request.state, "trace_id", ""),
    )
