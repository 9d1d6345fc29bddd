"""
Tracing middleware: W3C trace context for every HTTP request

Continues the caller's trace when a valid `traceparent` header arrives,
otherwise starts a new one. The ids are bound to structlog for the lifetime
of the request and echoed back as X-Trace-Id / X-Request-Id / traceparent.
Register before LoggingMiddleware so request logs carry the trace id.
"""

import uuid
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from orderflow.core.logging import get_logger
from orderflow.core.tracing import (
    TraceContext,
    bind_trace_context,
    clear_trace_context,
    create_trace_context,
)

logger = get_logger(__name__)


class TracingMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Response]
    ) -> Response:
        traceparent_header = request.headers.get("traceparent")
        trace_context: TraceContext | None = None

        if traceparent_header:
            trace_context = TraceContext.from_traceparent_header(traceparent_header)
            if trace_context is None:
                logger.warning("trace_context_invalid_header", traceparent=traceparent_header)

        if trace_context is None:
            trace_context = create_trace_context()

        # Unique per HTTP request; the trace id is shared by retries and
        # downstream work
        request_id = str(uuid.uuid4())
        bind_trace_context(trace_context, request_id=request_id)

        try:
            response = await call_next(request)
            response.headers["X-Trace-Id"] = trace_context.trace_id
            response.headers["X-Request-Id"] = request_id
            response.headers["traceparent"] = trace_context.to_traceparent_header()
            return response
        finally:
            clear_trace_context()
