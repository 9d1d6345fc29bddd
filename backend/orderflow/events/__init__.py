"""
Event schemas for Kafka events
Order events carry a full order snapshot so consumers never read the database
"""

from orderflow.events.base import EventEnvelope, BaseEventData
from orderflow.events.order_events import (
    OrderLineData,
    OrderSnapshotData,
    OrderCreatedData,
    OrderStatusChangedData,
    OrderPaymentUpdatedData,
)

__all__ = [
    # Base
    "EventEnvelope",
    "BaseEventData",
    # Order events
    "OrderLineData",
    "OrderSnapshotData",
    "OrderCreatedData",
    "OrderStatusChangedData",
    "OrderPaymentUpdatedData",
]
