"""
Fulfillment tracker

Forward-only state machine over Order.status plus the append-only tracking
log. Two triggers move an order: an administrator setting the status
directly (skips allowed, never backwards) and carrier tracking events whose
free-text label maps to a candidate status (applied only if strictly later).

Canonical ordering (CANCELLED sits outside it, reachable from any
non-terminal status by administrators only):

    PENDING -> CONFIRMED -> SHIPPED -> OUT_OF_DELIVERY -> DELIVERED
"""

import uuid

from sqlmodel import Session, select

from orderflow.core.config import settings
from orderflow.core.logging import get_logger
from orderflow.core.metrics import (
    fulfillment_transitions_total,
    tracking_events_ignored_total,
)
from orderflow.errors import ConflictError, NotFoundError
from orderflow.events.order_events import ORDER_STATUS_CHANGED, OrderStatusChangedData
from orderflow.models import (
    Order,
    OrderStatus,
    OrderTrackingEvent,
    TrackingEventCreate,
    get_datetime_utc,
)
from orderflow.services.outbox_service import OutboxService

logger = get_logger(__name__)

STATUS_SEQUENCE = (
    OrderStatus.PENDING,
    OrderStatus.CONFIRMED,
    OrderStatus.SHIPPED,
    OrderStatus.OUT_OF_DELIVERY,
    OrderStatus.DELIVERED,
)
STATUS_RANK = {status: index for index, status in enumerate(STATUS_SEQUENCE)}
TERMINAL_STATUSES = frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED})

# Tracking label written when an administrator sets a status
STATUS_LABELS = {
    OrderStatus.PENDING: "Order Pending",
    OrderStatus.CONFIRMED: "Order Confirmed",
    OrderStatus.SHIPPED: "Ready for Pickup",
    OrderStatus.OUT_OF_DELIVERY: "Out for Delivery",
    OrderStatus.DELIVERED: "Delivered",
    OrderStatus.CANCELLED: "Order Cancelled",
}

STATUS_DESCRIPTIONS = {
    OrderStatus.PENDING: "Your order is awaiting confirmation",
    OrderStatus.CONFIRMED: "Your order has been confirmed and is being packed",
    OrderStatus.SHIPPED: "Your package is ready and waiting for the courier",
    OrderStatus.OUT_OF_DELIVERY: "Your package is out for delivery",
    OrderStatus.DELIVERED: "Your package has been delivered",
    OrderStatus.CANCELLED: "Your order has been cancelled",
}

# Carrier label (lower-cased) -> candidate status
CARRIER_LABELS = {
    "order confirmed": OrderStatus.CONFIRMED,
    "packed": OrderStatus.CONFIRMED,
    "ready for pickup": OrderStatus.SHIPPED,
    "picked up": OrderStatus.SHIPPED,
    "handed to courier": OrderStatus.SHIPPED,
    "shipped": OrderStatus.SHIPPED,
    "in transit": OrderStatus.SHIPPED,
    "out for delivery": OrderStatus.OUT_OF_DELIVERY,
    "delivered": OrderStatus.DELIVERED,
}


def map_carrier_label(label: str) -> OrderStatus | None:
    return CARRIER_LABELS.get(" ".join(label.lower().split()))


def next_status(current: OrderStatus, candidate: OrderStatus | None) -> OrderStatus:
    """
    Merge a candidate status into the current one, forward only.

    Returns the candidate if it is strictly later in the canonical ordering,
    otherwise the current status unchanged. Terminal statuses never move and
    CANCELLED is never a candidate here.
    """
    if candidate is None or current in TERMINAL_STATUSES:
        return current
    if candidate not in STATUS_RANK:
        return current
    if STATUS_RANK[candidate] > STATUS_RANK[current]:
        return candidate
    return current


def check_admin_transition(current: OrderStatus, target: OrderStatus) -> None:
    """
    Raises:
        ConflictError: the order is terminal or the target is behind it
    """
    if current in TERMINAL_STATUSES:
        raise ConflictError(f"Order is {current.value} and can no longer change status")
    if target is OrderStatus.CANCELLED:
        return
    if STATUS_RANK[target] < STATUS_RANK[current]:
        raise ConflictError(f"Cannot move order from {current.value} back to {target.value}")


def lock_order(session: Session, order_id: uuid.UUID) -> Order:
    """
    Load an order with a row lock held until the caller's commit.

    Raises:
        NotFoundError
    """
    order = session.exec(select(Order).where(Order.id == order_id).with_for_update()).first()
    if order is None:
        raise NotFoundError("Order", str(order_id))
    return order


class FulfillmentService:
    @staticmethod
    def _apply_status(
        session: Session,
        order: Order,
        new_status: OrderStatus,
        trigger: str,
        tracking_label: str,
    ) -> None:
        previous_status = order.status
        now = get_datetime_utc()
        order.status = new_status.value
        order.updated_at = now
        session.add(order)

        OutboxService.create_event(
            session=session,
            event_type=ORDER_STATUS_CHANGED,
            topic=settings.KAFKA_TOPIC_ORDER_STATUS_CHANGED,
            event_data=OrderStatusChangedData.from_order(
                order,
                previous_status=previous_status,
                trigger=trigger,
                tracking_label=tracking_label,
                changed_at=now,
            ),
            partition_key=str(order.id),
        )
        fulfillment_transitions_total.labels(trigger=trigger, to_status=new_status.value).inc()
        logger.info(
            "order_status_changed",
            order_id=str(order.id),
            previous_status=previous_status,
            new_status=new_status.value,
            trigger=trigger,
        )

    @staticmethod
    def set_status(session: Session, order_id: uuid.UUID, target: OrderStatus) -> Order:
        """
        Administrative status change.

        Skipping forward is allowed and CANCELLED is reachable from any
        non-terminal status. Setting the current status again changes
        nothing and writes no tracking event.

        Raises:
            NotFoundError
            ConflictError: backwards move, or the order is DELIVERED/CANCELLED
        """
        order = lock_order(session, order_id)
        current = OrderStatus(order.status)
        if target is current:
            session.rollback()
            return order

        check_admin_transition(current, target)

        label = STATUS_LABELS[target]
        session.add(
            OrderTrackingEvent(
                order_id=order.id,
                status=label,
                description=STATUS_DESCRIPTIONS[target],
            )
        )
        FulfillmentService._apply_status(session, order, target, "admin", label)

        session.commit()
        session.refresh(order)
        return order

    @staticmethod
    def record_tracking_event(
        session: Session, order_id: uuid.UUID, data: TrackingEventCreate
    ) -> tuple[Order, OrderTrackingEvent]:
        """
        Append a carrier tracking event and move the order forward if the
        label maps to a strictly later status.

        Unknown labels and stale (not later) labels are still recorded.

        Raises:
            NotFoundError
        """
        order = lock_order(session, order_id)
        current = OrderStatus(order.status)

        event = OrderTrackingEvent(
            order_id=order.id,
            status=data.status,
            description=data.description,
            location=data.location,
        )
        session.add(event)

        candidate = map_carrier_label(data.status)
        new_status = next_status(current, candidate)
        if new_status is not current:
            FulfillmentService._apply_status(session, order, new_status, "carrier", data.status)
        else:
            reason = "unrecognized_label" if candidate is None else "not_forward"
            tracking_events_ignored_total.labels(reason=reason).inc()
            logger.info(
                "tracking_event_without_transition",
                order_id=str(order.id),
                label=data.status,
                current_status=current.value,
                reason=reason,
            )

        session.commit()
        session.refresh(order)
        session.refresh(event)
        return order, event

    @staticmethod
    def delete_tracking_event(
        session: Session, order_id: uuid.UUID, event_id: uuid.UUID
    ) -> None:
        """
        Remove one tracking log entry. The order status is not recomputed.

        Raises:
            NotFoundError
        """
        event = session.get(OrderTrackingEvent, event_id)
        if event is None or event.order_id != order_id:
            raise NotFoundError("Tracking event", str(event_id))

        label = event.status
        session.delete(event)
        session.commit()
        logger.info(
            "tracking_event_deleted",
            order_id=str(order_id),
            event_id=str(event_id),
            label=label,
        )
