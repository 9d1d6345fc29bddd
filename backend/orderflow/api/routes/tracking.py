from typing import Any

from fastapi import APIRouter

from orderflow.deps import SessionDep
from orderflow.models import OrderItemPublic, OrderTrackingView, TrackingEventPublic
from orderflow.services import OrderLedger

router = APIRouter(prefix="/track", tags=["tracking"])


@router.get("/{token}", response_model=OrderTrackingView)
def track_order(session: SessionDep, token: str) -> Any:
    """Public tracking page data; no personal details beyond name and city"""
    order = OrderLedger.lookup_by_tracking_token(session, token)
    events = sorted(order.tracking_events, key=lambda e: e.created_at, reverse=True)
    return OrderTrackingView(
        order_number=order.order_number,
        status=order.status,
        payment_status=order.payment_status,
        payment_method=order.payment_method,
        total_amount=order.total_amount,
        currency=order.currency,
        estimated_delivery_days=order.estimated_delivery_days,
        shipping_name=order.shipping_name,
        shipping_city=order.shipping_city,
        shipping_state=order.shipping_state,
        created_at=order.created_at,
        items=[OrderItemPublic.model_validate(item) for item in order.items],
        tracking_events=[TrackingEventPublic.model_validate(event) for event in events],
    )
