"""
Payment sweeper - background reconciliation of abandoned payment attempts

A shopper who closes the tab after paying never calls confirm, and webhooks
can be lost. Every PAYMENT_SWEEP_INTERVAL seconds this task asks the gateway
about intents that have been PENDING for longer than
PAYMENT_SWEEP_MIN_AGE_SECONDS and applies whatever it answers through the
same idempotent path as confirm and the webhook.
"""

import asyncio

from orderflow.core.config import settings
from orderflow.core.db import session_scope
from orderflow.core.logging import get_logger
from orderflow.core.metrics import background_task_errors_total, background_tasks_running
from orderflow.core.tracing import bind_trace_context, clear_trace_context, create_trace_context
from orderflow.gateways.registry import GatewayRegistry, gateway_registry
from orderflow.services.reconciliation import ReconciliationService

logger = get_logger(__name__)

TASK_NAME = "payment_sweeper"


async def run_sweep(registry: GatewayRegistry = gateway_registry) -> int:
    """One sweep under its own trace; returns the number of orders changed"""
    bind_trace_context(create_trace_context(), task=TASK_NAME)
    try:
        with session_scope() as session:
            return await ReconciliationService.sweep_pending(session, registry.gateways)
    finally:
        clear_trace_context()


async def start_payment_sweeper():
    """
    Main sweeper loop - runs as background task in the API process
    """
    logger.info("payment_sweeper_starting", interval=settings.PAYMENT_SWEEP_INTERVAL)
    background_tasks_running.labels(task_name=TASK_NAME).inc()

    try:
        while True:
            try:
                await run_sweep()
            except Exception as e:
                background_task_errors_total.labels(
                    task_name=TASK_NAME, error_type=type(e).__name__
                ).inc()
                logger.error(
                    "payment_sweeper_error",
                    error_type=type(e).__name__,
                    error_message=str(e),
                    exc_info=True,
                )
            await asyncio.sleep(settings.PAYMENT_SWEEP_INTERVAL)

    except asyncio.CancelledError:
        logger.info("payment_sweeper_cancelled")
        raise
    finally:
        background_tasks_running.labels(task_name=TASK_NAME).dec()
