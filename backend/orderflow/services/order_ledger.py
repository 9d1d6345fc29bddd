"""
Order ledger: transactional order creation and order reads

create_order runs stock reservation, coupon redemption, the order insert, the
first tracking event and the order.created outbox row in one database
transaction. Confirmation and invoice delivery happen after commit, driven by
the outbox (see consumers.notification_consumer).
"""

import secrets
import time
import uuid
from decimal import Decimal

from sqlalchemy.orm import selectinload
from sqlmodel import Session, func, select

from orderflow.core.config import settings
from orderflow.core.logging import get_logger
from orderflow.core.metrics import orders_created_total, orders_rejected_total
from orderflow.errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from orderflow.events.order_events import ORDER_CREATED, OrderCreatedData
from orderflow.models import (
    AuthenticatedUser,
    Order,
    OrderCreate,
    OrderItem,
    OrderStatus,
    OrderTrackingEvent,
    PaymentStatus,
    quantize_money,
)
from orderflow.services.catalog import CatalogService
from orderflow.services.outbox_service import OutboxService
from orderflow.services.promotions import PromotionsService

logger = get_logger(__name__)

INITIAL_TRACKING_LABEL = "Order Received"


def generate_order_number() -> str:
    """ORD-<epoch ms>-<4 hex>: unique, human-facing, sorts by creation time"""
    return f"ORD-{int(time.time() * 1000)}-{uuid.uuid4().hex[:4].upper()}"


def invoice_number_for(order_number: str) -> str:
    return f"INV-{order_number.removeprefix('ORD-')}"


def _order_query():
    return select(Order).options(
        selectinload(Order.items),  # type: ignore[arg-type]
        selectinload(Order.tracking_events),  # type: ignore[arg-type]
    )


class OrderLedger:
    @staticmethod
    def create_order(session: Session, user_id: str, order_in: OrderCreate) -> Order:
        """
        Turn a cart into a committed order, or change nothing at all.

        Raises:
            ValidationError: empty cart
            ConflictError: unknown or under-stocked products (per-item details)
        """
        if not order_in.items:
            orders_rejected_total.labels(reason="empty_cart").inc()
            raise ValidationError("Cart is empty")

        logger.info(
            "order_creation_started",
            user_id=user_id,
            items_count=len(order_in.items),
            payment_method=order_in.payment_method.value,
            coupon_code=order_in.coupon_code,
        )

        try:
            lines = CatalogService.resolve_cart(session, order_in.items)
            subtotal = quantize_money(sum((line.line_total for line in lines), Decimal("0")))

            applied = None
            if order_in.coupon_code:
                applied = PromotionsService.evaluate(session, order_in.coupon_code, subtotal)

            CatalogService.reserve_cart(session, lines)

            if applied and not PromotionsService.redeem(session, applied.coupon):
                logger.info(
                    "coupon_ignored",
                    coupon_code=applied.coupon.code,
                    reason="usage limit reached concurrently",
                )
                applied = None

            discount = applied.discount if applied else Decimal("0.00")
            payment_method = order_in.payment_method
            order_number = generate_order_number()
            shipping = order_in.shipping

            order = Order(
                order_number=order_number,
                invoice_number=invoice_number_for(order_number),
                tracking_token=secrets.token_urlsafe(24),
                user_id=user_id,
                subtotal=subtotal,
                discount=discount,
                coupon_code=applied.coupon.code if applied else None,
                total_amount=quantize_money(subtotal - discount),
                currency=settings.DEFAULT_CURRENCY,
                payment_method=payment_method.value,
                payment_status=(
                    PaymentStatus.PENDING.value
                    if payment_method.is_gateway
                    else PaymentStatus.COD_PENDING.value
                ),
                status=OrderStatus.PENDING.value,
                estimated_delivery_days=settings.DEFAULT_ESTIMATED_DELIVERY_DAYS,
                shipping_name=shipping.name,
                shipping_address=shipping.address,
                shipping_city=shipping.city,
                shipping_state=shipping.state,
                shipping_zip=shipping.zip,
                shipping_phone=shipping.phone,
            )
            order.items = [
                OrderItem(
                    product_id=line.product.id,
                    product_name=line.product.name,
                    quantity=line.quantity,
                    unit_price=line.unit_price,
                )
                for line in lines
            ]
            order.tracking_events = [
                OrderTrackingEvent(
                    status=INITIAL_TRACKING_LABEL,
                    description="Your order has been placed successfully",
                )
            ]
            session.add(order)

            OutboxService.create_event(
                session=session,
                event_type=ORDER_CREATED,
                topic=settings.KAFKA_TOPIC_ORDER_CREATED,
                event_data=OrderCreatedData.from_order(order),
                partition_key=str(order.id),
            )

            session.commit()
        except ConflictError as e:
            session.rollback()
            reason = (e.details[0].get("reason") if e.details else None) or "conflict"
            orders_rejected_total.labels(reason=reason).inc()
            logger.warning("order_creation_rejected", user_id=user_id, errors=e.details)
            raise
        except Exception:
            session.rollback()
            raise

        session.refresh(order)
        orders_created_total.labels(payment_method=order.payment_method).inc()
        logger.info(
            "order_created",
            order_id=str(order.id),
            order_number=order.order_number,
            user_id=user_id,
            subtotal=str(order.subtotal),
            discount=str(order.discount),
            total_amount=str(order.total_amount),
            payment_status=order.payment_status,
        )
        return order

    @staticmethod
    def get_order(session: Session, order_id: uuid.UUID, user: AuthenticatedUser) -> Order:
        """
        Raises:
            NotFoundError
            AuthorizationError: requester is neither the owner nor an admin
        """
        order = session.exec(_order_query().where(Order.id == order_id)).first()
        if order is None:
            raise NotFoundError("Order", str(order_id))
        if order.user_id != user.user_id and not user.is_admin:
            logger.warning(
                "order_access_denied", order_id=str(order_id), user_id=user.user_id
            )
            raise AuthorizationError()
        return order

    @staticmethod
    def list_user_orders(session: Session, user_id: str) -> list[Order]:
        statement = (
            _order_query()
            .where(Order.user_id == user_id)
            .order_by(Order.created_at.desc())  # type: ignore[attr-defined]
        )
        return list(session.exec(statement).all())

    @staticmethod
    def list_orders(
        session: Session,
        skip: int = 0,
        limit: int = 100,
        status: OrderStatus | None = None,
    ) -> tuple[list[Order], int]:
        """All orders, newest first, optionally filtered by status"""
        count_statement = select(func.count()).select_from(Order)
        statement = _order_query()
        if status is not None:
            count_statement = count_statement.where(Order.status == status.value)
            statement = statement.where(Order.status == status.value)

        count = session.exec(count_statement).one()
        orders = session.exec(
            statement.order_by(Order.created_at.desc())  # type: ignore[attr-defined]
            .offset(skip)
            .limit(limit)
        ).all()
        return list(orders), count

    @staticmethod
    def lookup_by_tracking_token(session: Session, token: str) -> Order:
        """
        Unauthenticated lookup; falls back to the order number for links
        issued before tracking tokens existed.

        Raises:
            NotFoundError
        """
        order = session.exec(_order_query().where(Order.tracking_token == token)).first()
        if order is None:
            order = session.exec(_order_query().where(Order.order_number == token)).first()
        if order is None:
            raise NotFoundError("Order", token)
        return order
