"""
Outbox worker - separate process that publishes outbox rows to Kafka

Rows are read oldest first with SKIP LOCKED so several workers can run side
by side. The trace context saved on each row becomes a `traceparent` header,
so the notification consumer logs under the trace of the original request.

Run with:  python -m orderflow.workers.outbox_worker
"""

import asyncio
import signal
import sys
import time
from datetime import datetime, UTC

from prometheus_client import start_http_server
from sqlalchemy.engine import Engine
from sqlmodel import Session, func, select

from orderflow.core.config import settings
from orderflow.core.db import engine
from orderflow.core.kafka import KafkaProducerClient, kafka_producer
from orderflow.core.logging import configure_logging, get_logger
from orderflow.core.metrics import (
    outbox_events_pending,
    outbox_events_processed_total,
    outbox_publish_duration_seconds,
    registry,
)
from orderflow.core.tracing import bind_trace_context, clear_trace_context, create_trace_context
from orderflow.models import OutboxEvent

logger = get_logger(__name__)

shutdown_flag = False


def signal_handler(sig, frame):
    global shutdown_flag
    logger.info("shutdown_signal_received", signal=sig)
    shutdown_flag = True


async def process_outbox_events():
    """
    Main worker loop - polls the outbox table and publishes events
    """
    logger.info("outbox_worker_starting")
    await kafka_producer.start()

    try:
        while not shutdown_flag:
            try:
                published_count = await publish_pending_events(settings.OUTBOX_BATCH_SIZE)
                if published_count > 0:
                    logger.info("outbox_events_published", count=published_count)
                update_pending_count()
                await asyncio.sleep(settings.OUTBOX_POLL_INTERVAL_SECONDS)

            except Exception as e:
                logger.error(
                    "outbox_processing_error",
                    error_type=type(e).__name__,
                    error_message=str(e),
                    exc_info=True,
                )
                await asyncio.sleep(settings.OUTBOX_ERROR_BACKOFF_SECONDS)

    except asyncio.CancelledError:
        logger.info("outbox_worker_cancelled")
        raise
    finally:
        await kafka_producer.stop()
        logger.info("outbox_worker_stopped")


async def publish_pending_events(
    batch_size: int,
    db_engine: Engine = engine,
    producer: KafkaProducerClient = kafka_producer,
) -> int:
    """
    Publish one batch of unpublished events.

    Rows that reached OUTBOX_MAX_RETRY_ATTEMPTS are left for manual
    intervention and no longer picked up.

    Returns:
        Number of events published
    """
    published_count = 0

    with Session(db_engine) as session:
        statement = (
            select(OutboxEvent)
            .where(
                OutboxEvent.published == False,  # noqa: E712
                OutboxEvent.attempts < settings.OUTBOX_MAX_RETRY_ATTEMPTS,
            )
            .order_by(OutboxEvent.created_at.asc())  # type: ignore[attr-defined]
            .limit(batch_size)
            .with_for_update(skip_locked=True)
        )
        events = session.exec(statement).all()

        for event in events:
            start_time = time.time()

            trace_context = None
            if event.trace_id:
                # The publishing span is a child of the span that wrote the row
                trace_context = create_trace_context(
                    trace_id=event.trace_id, parent_span_id=event.span_id
                )
                bind_trace_context(trace_context, event_id=event.event_id)

            try:
                headers = []
                if trace_context:
                    headers.append(
                        ("traceparent", trace_context.to_traceparent_header().encode("utf-8"))
                    )

                await producer.send(
                    topic=event.topic,
                    event_type=event.event_type,
                    value=event.payload,
                    key=event.partition_key,
                    headers=headers,
                )

                event.published = True
                event.published_at = datetime.now(UTC)
                event.updated_at = datetime.now(UTC)
                session.add(event)
                session.commit()

                published_count += 1
                outbox_events_processed_total.labels(status="success").inc()
                outbox_publish_duration_seconds.observe(time.time() - start_time)
                logger.info(
                    "outbox_event_published",
                    event_id=event.event_id,
                    event_type=event.event_type,
                    topic=event.topic,
                    has_trace_context=trace_context is not None,
                )

            except Exception as e:
                session.rollback()
                event.attempts += 1
                event.last_error = str(e)[: settings.OUTBOX_ERROR_MESSAGE_MAX_LENGTH]
                event.updated_at = datetime.now(UTC)
                session.add(event)
                session.commit()

                outbox_events_processed_total.labels(status="failure").inc()
                logger.error(
                    "outbox_event_publish_failed",
                    event_id=event.event_id,
                    event_type=event.event_type,
                    attempts=event.attempts,
                    error_type=type(e).__name__,
                    error_message=str(e),
                )
                if event.attempts >= settings.OUTBOX_MAX_RETRY_ATTEMPTS:
                    logger.critical(
                        "outbox_event_max_retries_exceeded",
                        event_id=event.event_id,
                        attempts=event.attempts,
                        needs_manual_intervention=True,
                    )
            finally:
                clear_trace_context()

    return published_count


def update_pending_count(db_engine: Engine = engine):
    try:
        with Session(db_engine) as session:
            pending_count = session.exec(
                select(func.count())
                .select_from(OutboxEvent)
                .where(OutboxEvent.published == False)  # noqa: E712
            ).one()
            outbox_events_pending.set(pending_count)
    except Exception as e:
        logger.error("outbox_pending_count_failed", error_type=type(e).__name__, error_message=str(e))


async def main():
    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    logger.info(
        "outbox_worker_main_starting",
        service=settings.SERVICE_NAME,
        environment=settings.ENVIRONMENT,
    )
    start_http_server(settings.METRICS_PORT, registry=registry)
    logger.info("metrics_server_started", port=settings.METRICS_PORT)

    try:
        await process_outbox_events()
    except KeyboardInterrupt:
        logger.info("keyboard_interrupt_received")
    except Exception as e:
        logger.error(
            "outbox_worker_fatal_error",
            error_type=type(e).__name__,
            error_message=str(e),
            exc_info=True,
        )
        sys.exit(1)
    logger.info("outbox_worker_shutdown_complete")


if __name__ == "__main__":
    configure_logging()
    asyncio.run(main())
