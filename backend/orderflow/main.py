import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from orderflow.core.config import settings
from orderflow.core.redis import redis_client
from orderflow.core.kafka import kafka_producer, kafka_consumer
from orderflow.core.metrics import (
    registry,
    background_tasks_running,
    background_task_errors_total,
)
from orderflow.api.main import api_router, install_error_handlers
from orderflow.clients.document_client import document_client
from orderflow.clients.notification_client import notification_client
from orderflow.clients.user_client import user_client
from orderflow.consumers.notification_consumer import start_consumer
from orderflow.gateways import gateway_registry
from orderflow.processors.payment_sweeper import start_payment_sweeper
from orderflow.middleware.metrics_middleware import MetricsMiddleware
from orderflow.middleware.tracing_middleware import TracingMiddleware
from orderflow.middleware.logging_middleware import LoggingMiddleware

# Must run before any module-level get_logger() output is emitted
from orderflow.core.logging import configure_logging, get_logger

configure_logging()
logger = get_logger(__name__)

CONSUMER_TASK = "notification_consumer"


async def _cancel(task: asyncio.Task | None) -> None:
    if task and not task.done():
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        background_tasks_running.labels(task_name=task.get_name()).set(0)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle"""
    consumer_task = None
    sweeper_task = None
    monitor_task = None

    logger.info("application_starting", service=settings.SERVICE_NAME, environment=settings.ENVIRONMENT)

    try:
        await redis_client.connect()
        await kafka_producer.start()
        await kafka_consumer.start()
        gateway_registry.start()

        consumer_task = asyncio.create_task(start_consumer(), name=CONSUMER_TASK)
        sweeper_task = asyncio.create_task(start_payment_sweeper(), name="payment_sweeper")
        # The sweeper maintains its own running gauge
        background_tasks_running.labels(task_name=CONSUMER_TASK).set(1)

        monitor_task = asyncio.create_task(monitor_background_tasks(consumer_task, sweeper_task))

        logger.info(
            "application_started",
            redis_connected=True,
            kafka_connected=True,
            gateways=sorted(gateway_registry.gateways),
            background_tasks=[CONSUMER_TASK, "payment_sweeper"],
        )
    except Exception as e:
        logger.error("application_startup_failed", error_type=type(e).__name__, error_message=str(e), exc_info=True)
        background_task_errors_total.labels(
            task_name="startup", error_type="startup_error"
        ).inc()
        raise

    yield

    logger.info("application_shutting_down")

    try:
        await _cancel(monitor_task)
        await _cancel(consumer_task)
        await _cancel(sweeper_task)

        await kafka_consumer.stop()
        await kafka_producer.stop()
        await gateway_registry.stop()
        for client in (user_client, document_client, notification_client):
            await client.close()
        await redis_client.disconnect()

        logger.info("application_shutdown_complete")
    except Exception as e:
        logger.error("application_shutdown_error", error_type=type(e).__name__, error_message=str(e), exc_info=True)


async def monitor_background_tasks(*tasks: asyncio.Task):
    """Flag background tasks that died with an exception"""
    reported: set[str] = set()
    while True:
        await asyncio.sleep(30)

        for task in tasks:
            task_name = task.get_name()
            if task_name in reported or not task.done() or task.cancelled():
                continue
            exc = task.exception()
            if exc is None:
                continue
            reported.add(task_name)
            logger.error(
                "background_task_failed",
                task_name=task_name,
                error_type=type(exc).__name__,
                error_message=str(exc),
                exc_info=exc,
            )
            background_tasks_running.labels(task_name=task_name).set(0)
            background_task_errors_total.labels(
                task_name=task_name, error_type=type(exc).__name__
            ).inc()


app = FastAPI(
    title=settings.PROJECT_NAME,
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    lifespan=lifespan,
)


async def metrics():
    """Prometheus metrics endpoint"""
    return Response(generate_latest(registry), media_type=CONTENT_TYPE_LATEST)


if settings.ENABLE_METRICS:
    app.add_api_route("/metrics", metrics, methods=["GET"], include_in_schema=False)


# Registration order is the reverse of execution order: tracing runs first so
# the request log line and the metrics carry the trace id.
if settings.ENABLE_METRICS:
    app.add_middleware(MetricsMiddleware)
app.add_middleware(LoggingMiddleware)
app.add_middleware(TracingMiddleware)

install_error_handlers(app)
app.include_router(api_router, prefix=settings.API_V1_STR)
