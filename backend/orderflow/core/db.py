"""
Database engine, pool/query instrumentation and session scope
"""

import re
import time
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import event
from sqlmodel import Session, create_engine

from orderflow.core.config import settings
from orderflow.core.metrics import (
    db_pool_available,
    db_pool_in_use,
    db_pool_wait_seconds,
    db_query_duration_seconds,
    db_query_errors_total,
)

engine = create_engine(
    str(settings.SQLALCHEMY_DATABASE_URI),
    pool_size=10,
    max_overflow=20,
    pool_pre_ping=True,
    pool_recycle=3600,
    # Stock and coupon counters rely on row locks and conditional updates
    isolation_level="READ COMMITTED",
)

_TABLE_PATTERN = re.compile(r"(?:from|into|update|join)\s+([a-z_][a-z0-9_]*)")


def update_pool_metrics() -> None:
    pool_obj = engine.pool
    if not hasattr(pool_obj, "checkedout"):
        return
    checked_out = pool_obj.checkedout()  # type: ignore[attr-defined]
    size = pool_obj.size()  # type: ignore[attr-defined]
    overflow = pool_obj.overflow()  # type: ignore[attr-defined]
    db_pool_in_use.set(checked_out)
    db_pool_available.set(size - checked_out + overflow)


def _extract_operation_and_table(statement: str) -> tuple[str, str]:
    """Return (operation, first table) for a SQL statement, for metric labels."""
    normalized = " ".join(statement.lower().split())
    operation = "other"
    for candidate in ("select", "insert", "update", "delete"):
        if normalized.startswith(candidate):
            operation = candidate
            break
    table_match = _TABLE_PATTERN.search(normalized)
    table = table_match.group(1) if table_match else "unknown"
    return operation, table


@event.listens_for(engine, "checkout")
def receive_checkout(dbapi_conn, connection_record, connection_proxy):
    connection_record.info["checkout_start"] = time.time()
    update_pool_metrics()


@event.listens_for(engine, "checkin")
def receive_checkin(dbapi_conn, connection_record):
    if "checkout_start" in connection_record.info:
        db_pool_wait_seconds.observe(time.time() - connection_record.info.pop("checkout_start"))
    update_pool_metrics()


@event.listens_for(engine, "before_cursor_execute")
def before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
    context._query_start_time = time.time()


@event.listens_for(engine, "after_cursor_execute")
def after_cursor_execute(conn, cursor, statement, parameters, context, executemany):
    if hasattr(context, "_query_start_time"):
        operation, table = _extract_operation_and_table(statement)
        db_query_duration_seconds.labels(operation=operation, table=table).observe(
            time.time() - context._query_start_time
        )


@event.listens_for(engine, "handle_error")
def handle_error(exception_context):
    error_type = type(exception_context.original_exception).__name__.lower()
    if "timeout" in error_type:
        category = "timeout"
    elif "constraint" in error_type or "integrity" in error_type:
        category = "constraint"
    elif "connection" in error_type:
        category = "connection"
    else:
        category = "other"
    db_query_errors_total.labels(error_type=category).inc()


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """
    Session for background work (outbox worker, consumers, sweeper).

    Commits on success, rolls back on error.

    Usage:
        with session_scope() as session:
            session.exec(...)
    """
    session = Session(engine)
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
        update_pool_metrics()
