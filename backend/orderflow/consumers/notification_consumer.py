"""
Notification consumer - turns committed order events into customer messages

Consumes order.created, order.status_changed and order.payment_updated.
Rendering the invoice and sending messages is best effort: the collaborator
clients retry transient failures themselves, and a final failure is logged
and counted but never blocks the partition. Duplicate deliveries are skipped
through a Redis processed-event key.
"""

import asyncio
from typing import Any

from orderflow.clients.document_client import document_client
from orderflow.clients.notification_client import notification_client
from orderflow.core.config import settings
from orderflow.core.kafka import kafka_consumer
from orderflow.core.logging import get_logger
from orderflow.core.metrics import (
    kafka_events_consumed_total,
    kafka_events_duplicate_total,
    notifications_dispatched_total,
)
from orderflow.core.redis import redis_client
from orderflow.core.tracing import (
    bind_trace_context,
    clear_trace_context,
    extract_trace_context_from_kafka_headers,
)
from orderflow.events import (
    OrderCreatedData,
    OrderPaymentUpdatedData,
    OrderStatusChangedData,
)
from orderflow.events.order_events import (
    ORDER_CREATED,
    ORDER_PAYMENT_UPDATED,
    ORDER_STATUS_CHANGED,
)
from orderflow.models import PaymentStatus
from orderflow.services.user_service import UserService

logger = get_logger(__name__)


async def start_consumer():
    """
    Main consumer loop - runs as background task in the API process
    """
    logger.info("notification_consumer_starting", topics=settings.order_topics)

    try:
        async for message in kafka_consumer.consume_messages():
            await handle_message(message)

    except asyncio.CancelledError:
        logger.info("notification_consumer_cancelled")
        raise
    except Exception as e:
        logger.error(
            "notification_consumer_crashed",
            error_type=type(e).__name__,
            error_message=str(e),
            exc_info=True,
        )
        raise


async def handle_message(message):
    """
    Process a single Kafka message, continuing the trace of the request that
    wrote the outbox row.
    """
    event = message.value
    event_id = event["event_id"]
    event_type = event["event_type"]

    trace_context = extract_trace_context_from_kafka_headers(message.headers)
    if trace_context:
        bind_trace_context(trace_context, event_id=event_id)

    try:
        cache_key = f"processed_event:{event_id}"
        if await redis_client.exists(cache_key):
            logger.debug("kafka_event_duplicate", event_id=event_id, event_type=event_type)
            kafka_events_duplicate_total.labels(
                topic=message.topic, event_type=event_type
            ).inc()
            await kafka_consumer.commit()
            return

        if event_type == ORDER_CREATED:
            await handle_order_created(event["data"])
        elif event_type == ORDER_STATUS_CHANGED:
            await handle_status_changed(event["data"])
        elif event_type == ORDER_PAYMENT_UPDATED:
            await handle_payment_updated(event["data"])
        else:
            logger.warning("kafka_event_unknown_type", event_type=event_type)

        await redis_client.set(cache_key, "1", ttl=settings.PROCESSED_EVENT_TTL)
        await kafka_consumer.commit()

        kafka_events_consumed_total.labels(
            topic=message.topic, event_type=event_type, status="success"
        ).inc()
        logger.info(
            "kafka_event_processed",
            event_id=event_id,
            event_type=event_type,
            has_trace_context=trace_context is not None,
        )

    except Exception as e:
        logger.error(
            "kafka_event_processing_failed",
            event_id=event_id,
            event_type=event_type,
            error_type=type(e).__name__,
            error_message=str(e),
            exc_info=True,
        )
        kafka_events_consumed_total.labels(
            topic=message.topic, event_type=event_type, status="failure"
        ).inc()
        # Not committed: redelivered after rebalance or restart
    finally:
        clear_trace_context()


async def _dispatch(kind: str, order_id: str, send) -> bool:
    try:
        await send()
    except Exception as e:
        notifications_dispatched_total.labels(kind=kind, result="failure").inc()
        logger.error(
            "notification_dispatch_failed",
            kind=kind,
            order_id=order_id,
            error_type=type(e).__name__,
            error_message=str(e),
        )
        return False
    notifications_dispatched_total.labels(kind=kind, result="success").inc()
    return True


async def handle_order_created(data: dict[str, Any]):
    """Render the invoice, then send the confirmation (with the invoice if it rendered)"""
    event_data = OrderCreatedData(**data)
    recipient = await UserService.get_recipient(event_data.user_id, redis_client)
    if recipient is None:
        notifications_dispatched_total.labels(
            kind="order_confirmation", result="skipped"
        ).inc()
        logger.warning("order_confirmation_skipped", order_id=event_data.order_id)
        return

    invoice_pdf = None
    try:
        invoice_pdf = await document_client.render_invoice(data)
    except Exception as e:
        logger.error(
            "invoice_render_failed",
            order_id=event_data.order_id,
            invoice_number=event_data.invoice_number,
            error_type=type(e).__name__,
            error_message=str(e),
        )

    await _dispatch(
        "order_confirmation",
        event_data.order_id,
        lambda: notification_client.send_order_confirmation(recipient, data, invoice_pdf),
    )


async def handle_status_changed(data: dict[str, Any]):
    event_data = OrderStatusChangedData(**data)
    recipient = await UserService.get_recipient(event_data.user_id, redis_client)
    if recipient is None:
        notifications_dispatched_total.labels(
            kind="order_status_update", result="skipped"
        ).inc()
        logger.warning("status_update_skipped", order_id=event_data.order_id)
        return

    await _dispatch(
        "order_status_update",
        event_data.order_id,
        lambda: notification_client.send_status_update(recipient, data, event_data.status),
    )


async def handle_payment_updated(data: dict[str, Any]):
    """Only failures are messaged; a successful payment was already confirmed at checkout"""
    event_data = OrderPaymentUpdatedData(**data)
    if event_data.payment_status != PaymentStatus.FAILED.value:
        logger.debug(
            "payment_update_not_notified",
            order_id=event_data.order_id,
            payment_status=event_data.payment_status,
        )
        return

    recipient = await UserService.get_recipient(event_data.user_id, redis_client)
    if recipient is None:
        notifications_dispatched_total.labels(kind="payment_failed", result="skipped").inc()
        logger.warning("payment_failed_notice_skipped", order_id=event_data.order_id)
        return

    await _dispatch(
        "payment_failed",
        event_data.order_id,
        lambda: notification_client.send_payment_failed(
            recipient, data, event_data.failure_reason
        ),
    )
