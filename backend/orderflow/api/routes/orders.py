import uuid
from typing import Any

from fastapi import APIRouter, Query

from orderflow.core.config import settings
from orderflow.core.logging import get_logger
from orderflow.deps import AdminUser, CurrentUser, SessionDep
from orderflow.models import (
    OrderCreate,
    OrderPublic,
    OrdersPublic,
    OrderStatus,
    OrderStatusUpdate,
    TrackingEventCreate,
)
from orderflow.services import FulfillmentService, OrderLedger

router = APIRouter(prefix="/orders", tags=["orders"])
logger = get_logger(__name__)


@router.post("/", response_model=OrderPublic, status_code=201)
def create_order(*, session: SessionDep, user: CurrentUser, order_in: OrderCreate) -> Any:
    """Place an order: stock, coupon and the order itself commit together"""
    return OrderLedger.create_order(session, user.user_id, order_in)


@router.get("/my-orders", response_model=OrdersPublic)
def read_my_orders(session: SessionDep, user: CurrentUser) -> Any:
    orders = OrderLedger.list_user_orders(session, user.user_id)
    return OrdersPublic(
        data=[OrderPublic.model_validate(order) for order in orders], count=len(orders)
    )


@router.get("/", response_model=OrdersPublic)
def read_orders(
    session: SessionDep,
    admin: AdminUser,
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=20, ge=1, le=settings.ORDERS_PAGE_LIMIT_MAX),
    status: OrderStatus | None = None,
) -> Any:
    """All orders, newest first (admin)"""
    orders, count = OrderLedger.list_orders(session, skip=skip, limit=limit, status=status)
    logger.info(
        "orders_list_retrieved",
        count=count,
        returned=len(orders),
        skip=skip,
        limit=limit,
        status=status.value if status else None,
    )
    return OrdersPublic(
        data=[OrderPublic.model_validate(order) for order in orders], count=count
    )


@router.get("/{order_id}", response_model=OrderPublic)
def read_order(session: SessionDep, user: CurrentUser, order_id: uuid.UUID) -> Any:
    return OrderLedger.get_order(session, order_id, user)


@router.patch("/{order_id}/status", response_model=OrderPublic)
def update_order_status(
    session: SessionDep, admin: AdminUser, order_id: uuid.UUID, body: OrderStatusUpdate
) -> Any:
    logger.info(
        "order_status_update_requested",
        order_id=str(order_id),
        target_status=body.status.value,
        admin_id=admin.user_id,
    )
    FulfillmentService.set_status(session, order_id, body.status)
    return OrderLedger.get_order(session, order_id, admin)


@router.post(
    "/{order_id}/tracking",
    response_model=OrderPublic,
    status_code=201,
)
def add_tracking_event(
    session: SessionDep, admin: AdminUser, order_id: uuid.UUID, body: TrackingEventCreate
) -> Any:
    """Append a carrier event; the order moves forward when the label maps to a later status"""
    FulfillmentService.record_tracking_event(session, order_id, body)
    return OrderLedger.get_order(session, order_id, admin)


@router.delete("/{order_id}/tracking/{event_id}", status_code=204)
def delete_tracking_event(
    session: SessionDep, admin: AdminUser, order_id: uuid.UUID, event_id: uuid.UUID
) -> None:
    FulfillmentService.delete_tracking_event(session, order_id, event_id)
