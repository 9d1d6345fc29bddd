"""
Outbox service - transactional event publishing with trace context
"""

from sqlmodel import Session

from orderflow.core.logging import get_logger
from orderflow.core.tracing import get_trace_context
from orderflow.events.base import BaseEventData, EventEnvelope
from orderflow.models import OutboxEvent

logger = get_logger(__name__)


class OutboxService:
    """Service for transactional outbox pattern"""

    @staticmethod
    def create_event(
        session: Session,
        event_type: str,
        topic: str,
        event_data: BaseEventData,
        partition_key: str | None = None,
    ) -> OutboxEvent:
        """
        Add an outbox row to the caller's transaction.

        The current trace context (if any) is persisted on the row so the
        outbox worker can emit a `traceparent` header when it publishes,
        possibly long after the request that produced the event has finished.

        Args:
            session: Session of the business transaction; not committed here
            event_type: Event type, e.g. "order.created"
            topic: Kafka topic name
            event_data: Event payload
            partition_key: Kafka key; the order id keeps one order's events in order

        Returns:
            OutboxEvent: The pending row
        """
        envelope = EventEnvelope.wrap(event_type, event_data)
        event_id = envelope.event_id
        trace_context = get_trace_context()

        outbox_event = OutboxEvent(
            event_id=event_id,
            event_type=event_type,
            topic=topic,
            partition_key=partition_key,
            payload=envelope.model_dump(mode="json"),
            trace_id=trace_context.trace_id if trace_context else None,
            span_id=trace_context.span_id if trace_context else None,
            parent_span_id=trace_context.parent_span_id if trace_context else None,
        )
        session.add(outbox_event)

        logger.info(
            "outbox_event_created",
            event_id=event_id,
            event_type=event_type,
            topic=topic,
            has_trace_context=trace_context is not None,
        )
        return outbox_event
