from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from time import perf_counter
from uuid import uuid4

from fastapi import Request, Response

REQUEST_ID_HEADER = "X-Request-ID"


@dataclass
class RequestContext:
    request_id: str
    start_time: float


def create_request_context(request_id: str | None = None) -> RequestContext:
    return RequestContext(
        request_id=request_id or str(uuid4()),
        start_time=perf_counter(),
    )


def get_request_id(request: Request) -> str:
    """Request id of the current request, creating one if the middleware did not run."""
    context = getattr(request.state, "context", None)
    if context is None:
        context = create_request_context(request.headers.get(REQUEST_ID_HEADER))
        request.state.context = context
    return context.request_id


async def request_context_middleware(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    """Attach a request id (honoring an incoming X-Request-ID) and echo it back."""
    request.state.context = create_request_context(request.headers.get(REQUEST_ID_HEADER))
    response = await call_next(request)
    response.headers[REQUEST_ID_HEADER] = request.state.context.request_id
    return response
