"""
Order event schemas

Event types:
    order.created          order committed (confirmation + invoice)
    order.status_changed   fulfillment status moved (status update message)
    order.payment_updated  payment outcome applied (PAID or FAILED)
"""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel

from orderflow.events.base import BaseEventData
from orderflow.models import Order

ORDER_CREATED = "order.created"
ORDER_STATUS_CHANGED = "order.status_changed"
ORDER_PAYMENT_UPDATED = "order.payment_updated"


class OrderLineData(BaseModel):
    product_id: str
    product_name: str
    quantity: int
    unit_price: Decimal


class OrderSnapshotData(BaseEventData):
    """Committed order state at the time the event was written"""

    order_id: str
    order_number: str
    invoice_number: str
    tracking_token: str
    user_id: str
    status: str
    payment_status: str
    payment_method: str
    payment_id: str | None = None
    subtotal: Decimal
    discount: Decimal
    coupon_code: str | None = None
    total_amount: Decimal
    currency: str
    estimated_delivery_days: int
    shipping: dict[str, str | None]
    items: list[OrderLineData]
    created_at: datetime

    @classmethod
    def snapshot_fields(cls, order: Order) -> dict:
        return {
            "order_id": str(order.id),
            "order_number": order.order_number,
            "invoice_number": order.invoice_number,
            "tracking_token": order.tracking_token,
            "user_id": order.user_id,
            "status": order.status,
            "payment_status": order.payment_status,
            "payment_method": order.payment_method,
            "payment_id": order.payment_id,
            "subtotal": order.subtotal,
            "discount": order.discount,
            "coupon_code": order.coupon_code,
            "total_amount": order.total_amount,
            "currency": order.currency,
            "estimated_delivery_days": order.estimated_delivery_days,
            "shipping": {
                "name": order.shipping_name,
                "address": order.shipping_address,
                "city": order.shipping_city,
                "state": order.shipping_state,
                "zip": order.shipping_zip,
                "phone": order.shipping_phone,
            },
            "items": [
                OrderLineData(
                    product_id=item.product_id,
                    product_name=item.product_name,
                    quantity=item.quantity,
                    unit_price=item.unit_price,
                )
                for item in order.items
            ],
            "created_at": order.created_at,
        }


class OrderCreatedData(OrderSnapshotData):
    """Order creation event payload"""

    @classmethod
    def from_order(cls, order: Order) -> "OrderCreatedData":
        return cls(**cls.snapshot_fields(order))


class OrderStatusChangedData(OrderSnapshotData):
    """Fulfillment status change event payload"""

    previous_status: str
    trigger: str  # admin or carrier
    tracking_label: str  # Label of the tracking event that recorded the move
    changed_at: datetime

    @classmethod
    def from_order(
        cls,
        order: Order,
        previous_status: str,
        trigger: str,
        tracking_label: str,
        changed_at: datetime,
    ) -> "OrderStatusChangedData":
        return cls(
            **cls.snapshot_fields(order),
            previous_status=previous_status,
            trigger=trigger,
            tracking_label=tracking_label,
            changed_at=changed_at,
        )


class OrderPaymentUpdatedData(OrderSnapshotData):
    """Payment outcome event payload (PAID or FAILED)"""

    previous_payment_status: str
    gateway: str
    source: str  # confirm, webhook or sweeper
    failure_reason: str | None = None

    @classmethod
    def from_order(
        cls, order: Order, previous_payment_status: str, gateway: str, source: str
    ) -> "OrderPaymentUpdatedData":
        return cls(
            **cls.snapshot_fields(order),
            previous_payment_status=previous_payment_status,
            gateway=gateway,
            source=source,
            failure_reason=order.failure_reason,
        )
