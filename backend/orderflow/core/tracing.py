"""
W3C Trace Context propagation

trace/span ids live in contextvars so they follow a request through every
await. They are persisted on outbox rows when an event is written, injected
as a `traceparent` Kafka header by the outbox worker, and picked up again by
the notification consumer, so one order's logs share a trace id from the HTTP
request to the confirmation email.

traceparent format: 00-{trace_id:32 hex}-{span_id:16 hex}-{flags:2 hex}
"""

import secrets
from contextvars import ContextVar
from dataclasses import dataclass
from typing import Optional

import structlog

trace_id_var: ContextVar[Optional[str]] = ContextVar("trace.id", default=None)
span_id_var: ContextVar[Optional[str]] = ContextVar("span.id", default=None)
parent_span_id_var: ContextVar[Optional[str]] = ContextVar(
    "parent_span_id", default=None
)


@dataclass
class TraceContext:
    trace_id: str
    span_id: str
    parent_span_id: Optional[str] = None
    sampled: bool = True
    version: str = "00"

    def to_traceparent_header(self) -> str:
        # The current span goes in the parent position; the receiver makes it its parent
        trace_flags = "01" if self.sampled else "00"
        return f"{self.version}-{self.trace_id}-{self.span_id}-{trace_flags}"

    @classmethod
    def from_traceparent_header(cls, header_value: str) -> Optional["TraceContext"]:
        """
        Parse a traceparent header into a new child span context.

        Returns None for anything malformed: wrong part count, unknown version,
        bad lengths, all-zero ids or non-hex characters.
        """
        try:
            parts = header_value.split("-")
            if len(parts) != 4:
                return None

            version, trace_id, parent_span_id, trace_flags = parts
            if version != "00":
                return None
            if len(trace_id) != 32 or trace_id == "0" * 32:
                return None
            if len(parent_span_id) != 16 or parent_span_id == "0" * 16:
                return None

            int(trace_id, 16)
            int(parent_span_id, 16)
            sampled = (int(trace_flags, 16) & 0x01) == 0x01

            return cls(
                version=version,
                trace_id=trace_id,
                span_id=generate_span_id(),
                parent_span_id=parent_span_id,
                sampled=sampled,
            )
        except (ValueError, AttributeError):
            return None


def generate_trace_id() -> str:
    return secrets.token_bytes(16).hex()


def generate_span_id() -> str:
    return secrets.token_bytes(8).hex()


def create_trace_context(
    trace_id: Optional[str] = None,
    parent_span_id: Optional[str] = None,
    sampled: bool = True,
) -> TraceContext:
    """Start a new trace, or continue `trace_id` with a fresh span."""
    return TraceContext(
        trace_id=trace_id or generate_trace_id(),
        span_id=generate_span_id(),
        parent_span_id=parent_span_id,
        sampled=sampled,
    )


def set_trace_context(context: TraceContext) -> None:
    trace_id_var.set(context.trace_id)
    span_id_var.set(context.span_id)
    if context.parent_span_id:
        parent_span_id_var.set(context.parent_span_id)


def bind_trace_context(context: TraceContext, **extra) -> None:
    """Set the context and bind its ids to structlog for every following log line."""
    set_trace_context(context)
    structlog.contextvars.bind_contextvars(
        **{"trace.id": context.trace_id},
        **{"span.id": context.span_id},
        parent_span_id=context.parent_span_id,
        **extra,
    )


def get_trace_context() -> Optional[TraceContext]:
    trace_id = trace_id_var.get()
    if not trace_id:
        return None

    return TraceContext(
        trace_id=trace_id,
        span_id=span_id_var.get() or generate_span_id(),
        parent_span_id=parent_span_id_var.get(),
    )


def clear_trace_context() -> None:
    trace_id_var.set(None)
    span_id_var.set(None)
    parent_span_id_var.set(None)
    structlog.contextvars.clear_contextvars()


def extract_trace_context_from_kafka_headers(
    headers: list[tuple[str, bytes]] | None,
) -> Optional[TraceContext]:
    if not headers:
        return None

    for key, value in headers:
        if key == "traceparent":
            return TraceContext.from_traceparent_header(value.decode("utf-8"))

    return None
