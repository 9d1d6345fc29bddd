import uuid
from enum import Enum
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Any

from pydantic import EmailStr
from sqlalchemy import CheckConstraint, DateTime, JSON, UniqueConstraint
from sqlmodel import Field, SQLModel, Column, String, Relationship


MONEY_QUANTUM = Decimal("0.01")


def get_datetime_utc() -> datetime:
    return datetime.now(timezone.utc)


def quantize_money(value: Decimal) -> Decimal:
    return Decimal(value).quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)


class OrderStatus(str, Enum):
    """Fulfillment states; see services.fulfillment for the canonical ordering"""

    PENDING = "PENDING"  # Placed, awaiting administrative confirmation
    CONFIRMED = "CONFIRMED"
    SHIPPED = "SHIPPED"
    OUT_OF_DELIVERY = "OUT_OF_DELIVERY"
    DELIVERED = "DELIVERED"  # Terminal
    CANCELLED = "CANCELLED"  # Terminal


class PaymentMethod(str, Enum):
    COD = "COD"
    RAZORPAY = "RAZORPAY"  # Gateway A: signature verified
    PHONEPE = "PHONEPE"  # Gateway B: token + status polling + webhook
    PAYPAL = "PAYPAL"  # Gateway C: create + capture

    @property
    def is_gateway(self) -> bool:
        return self is not PaymentMethod.COD


class PaymentStatus(str, Enum):
    PENDING = "PENDING"  # Awaiting a gateway outcome
    COD_PENDING = "COD_PENDING"  # Collected on delivery
    PAID = "PAID"
    FAILED = "FAILED"


class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class UserRole(str, Enum):
    USER = "USER"
    ADMIN = "ADMIN"


# CATALOG


class Product(SQLModel, table=True):
    """Catalog product; this service only ever decrements `stock`"""

    __tablename__ = "products"
    __table_args__ = (CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),)

    id: str = Field(primary_key=True)
    name: str
    price: Decimal = Field(max_digits=12, decimal_places=2)
    sale_price: Decimal | None = Field(default=None, max_digits=12, decimal_places=2)
    stock: int = Field(default=0)
    updated_at: datetime = Field(
        default_factory=get_datetime_utc,
        sa_type=DateTime(timezone=True),
    )

    @property
    def effective_price(self) -> Decimal:
        return self.sale_price if self.sale_price else self.price


# PROMOTIONS


class Coupon(SQLModel, table=True):
    __tablename__ = "coupons"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    code: str = Field(index=True, unique=True)  # Stored upper-case
    description: str | None = Field(default=None)
    discount_type: str = Field(default=DiscountType.PERCENTAGE.value)
    discount_value: Decimal = Field(max_digits=12, decimal_places=2)
    min_order_value: Decimal | None = Field(default=None, max_digits=12, decimal_places=2)
    max_uses: int | None = Field(default=None)
    used_count: int = Field(default=0)
    expires_at: datetime | None = Field(default=None, sa_type=DateTime(timezone=True))
    active: bool = Field(default=True)
    created_at: datetime = Field(
        default_factory=get_datetime_utc,
        sa_type=DateTime(timezone=True),
    )


class CouponValidateRequest(SQLModel):
    code: str
    subtotal: Decimal = Field(ge=0)


class CouponValidation(SQLModel):
    valid: bool = True
    code: str
    discount_type: str
    discount_value: Decimal
    discount: Decimal
    description: str | None = None


# ORDER ITEM MODELS


class OrderItemIn(SQLModel):
    """Cart line submitted by the client"""

    product_id: str
    quantity: int = Field(ge=1)


class OrderItem(SQLModel, table=True):
    """Order line; unit_price is frozen at order time"""

    __tablename__ = "order_items"
    __table_args__ = (CheckConstraint("quantity >= 1", name="ck_order_items_quantity_positive"),)

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    order_id: uuid.UUID = Field(foreign_key="orders.id", nullable=False, index=True)
    product_id: str = Field(foreign_key="products.id", nullable=False)
    product_name: str
    quantity: int
    unit_price: Decimal = Field(max_digits=12, decimal_places=2)

    order: "Order" = Relationship(back_populates="items")

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


class OrderItemPublic(SQLModel):
    id: uuid.UUID
    product_id: str
    product_name: str
    quantity: int
    unit_price: Decimal


# TRACKING EVENTS


class OrderTrackingEvent(SQLModel, table=True):
    """Append-only tracking log entry; never updated, only deleted by admins"""

    __tablename__ = "order_tracking_events"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    order_id: uuid.UUID = Field(foreign_key="orders.id", nullable=False, index=True)
    status: str  # Carrier-facing label, not an OrderStatus
    description: str | None = Field(default=None)
    location: str | None = Field(default=None)
    created_at: datetime = Field(
        default_factory=get_datetime_utc,
        sa_type=DateTime(timezone=True),
    )

    order: "Order" = Relationship(back_populates="tracking_events")


# PAYMENT INTENTS


class PaymentIntent(SQLModel, table=True):
    """
    Every intent an order has issued, on any gateway.

    Order.payment_intent_id only points at the latest attempt; a shopper can
    still pay an earlier checkout, so confirmation, webhooks and the sweeper
    resolve intents through this table.
    """

    __tablename__ = "payment_intents"
    __table_args__ = (
        UniqueConstraint("gateway", "intent_id", name="uq_payment_intents_gateway_intent"),
    )

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    order_id: uuid.UUID = Field(foreign_key="orders.id", nullable=False, index=True)
    gateway: str
    intent_id: str = Field(index=True)
    created_at: datetime = Field(
        default_factory=get_datetime_utc,
        sa_type=DateTime(timezone=True),
    )


class TrackingEventCreate(SQLModel):
    status: str = Field(min_length=1, max_length=120)
    description: str | None = None
    location: str | None = None


class TrackingEventPublic(SQLModel):
    id: uuid.UUID
    status: str
    description: str | None
    location: str | None
    created_at: datetime


# ORDER MODELS


class ShippingInfo(SQLModel):
    name: str = Field(min_length=1)
    address: str = Field(min_length=1)
    city: str = Field(min_length=1)
    state: str = Field(min_length=1)
    zip: str = Field(min_length=1)
    phone: str | None = None


class OrderCreate(SQLModel):
    """Checkout request: client-side cart plus shipping snapshot"""

    shipping: ShippingInfo
    items: list[OrderItemIn]
    coupon_code: str | None = None
    payment_method: PaymentMethod = PaymentMethod.COD


class Order(SQLModel, table=True):
    """Order aggregate root"""

    __tablename__ = "orders"
    __table_args__ = (
        CheckConstraint("total_amount >= 0", name="ck_orders_total_non_negative"),
    )

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    order_number: str = Field(index=True, unique=True)
    invoice_number: str = Field(unique=True)
    tracking_token: str = Field(index=True, unique=True)
    user_id: str = Field(index=True)

    # Commercial
    subtotal: Decimal = Field(max_digits=12, decimal_places=2)
    discount: Decimal = Field(default=Decimal("0.00"), max_digits=12, decimal_places=2)
    coupon_code: str | None = Field(default=None)
    total_amount: Decimal = Field(max_digits=12, decimal_places=2)
    currency: str = Field(default="INR", max_length=3)

    # Payment
    payment_method: str = Field(default=PaymentMethod.COD.value)
    payment_status: str = Field(default=PaymentStatus.COD_PENDING.value, index=True)
    payment_gateway: str | None = Field(default=None)  # Gateway that issued the intent
    payment_intent_id: str | None = Field(default=None, index=True)
    payment_id: str | None = Field(default=None)  # Final gateway transaction id
    payment_type: str | None = Field(default=None)  # Advisory: card, UPI, wallet...
    failure_reason: str | None = Field(default=None)
    paid_at: datetime | None = Field(default=None, sa_type=DateTime(timezone=True))
    payment_initiated_at: datetime | None = Field(
        default=None, sa_type=DateTime(timezone=True)
    )

    # Fulfillment
    status: str = Field(
        default=OrderStatus.PENDING.value,
        sa_column=Column(String, nullable=False, index=True),
    )
    estimated_delivery_days: int = Field(default=5)

    # Shipping snapshot, immutable after creation
    shipping_name: str
    shipping_address: str
    shipping_city: str
    shipping_state: str
    shipping_zip: str
    shipping_phone: str | None = Field(default=None)

    created_at: datetime = Field(
        default_factory=get_datetime_utc,
        sa_type=DateTime(timezone=True),
    )
    updated_at: datetime = Field(
        default_factory=get_datetime_utc,
        sa_type=DateTime(timezone=True),
    )

    items: list[OrderItem] = Relationship(back_populates="order")
    tracking_events: list[OrderTrackingEvent] = Relationship(
        back_populates="order",
        sa_relationship_kwargs={"order_by": "OrderTrackingEvent.created_at"},
    )

    def items_subtotal(self) -> Decimal:
        return quantize_money(sum((item.line_total for item in self.items), Decimal("0")))


class OrderPublic(SQLModel):
    """Order as seen by its owner or an administrator"""

    id: uuid.UUID
    order_number: str
    invoice_number: str
    tracking_token: str
    user_id: str
    subtotal: Decimal
    discount: Decimal
    coupon_code: str | None
    total_amount: Decimal
    currency: str
    payment_method: str
    payment_status: str
    payment_id: str | None
    payment_type: str | None
    failure_reason: str | None
    paid_at: datetime | None
    status: str
    estimated_delivery_days: int
    shipping_name: str
    shipping_address: str
    shipping_city: str
    shipping_state: str
    shipping_zip: str
    shipping_phone: str | None
    created_at: datetime
    updated_at: datetime
    items: list[OrderItemPublic] = []
    tracking_events: list[TrackingEventPublic] = []


class OrdersPublic(SQLModel):
    """List of orders with count"""

    data: list[OrderPublic]
    count: int


class OrderTrackingView(SQLModel):
    """Unauthenticated tracking snapshot: no user id, no street address or phone"""

    order_number: str
    status: str
    payment_status: str
    payment_method: str
    total_amount: Decimal
    currency: str
    estimated_delivery_days: int
    shipping_name: str
    shipping_city: str
    shipping_state: str
    created_at: datetime
    items: list[OrderItemPublic] = []
    tracking_events: list[TrackingEventPublic] = []  # Newest first


class OrderStatusUpdate(SQLModel):
    status: OrderStatus


# PAYMENT MODELS


class PaymentInitiateRequest(SQLModel):
    order_id: uuid.UUID
    amount: Decimal | None = Field(default=None, gt=0)


class PaymentInitiatePublic(SQLModel):
    order_id: uuid.UUID
    gateway: str
    intent_id: str
    client_data: dict[str, Any]


class PaymentConfirmRequest(SQLModel):
    order_id: uuid.UUID
    proof: dict[str, Any] = {}


class PaymentConfirmPublic(SQLModel):
    success: bool
    message: str
    order: OrderPublic


# IDENTITY / RECIPIENTS


class AuthenticatedUser(SQLModel):
    """Verified identity handed over by the upstream identity proxy"""

    user_id: str
    role: UserRole = UserRole.USER

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


class Recipient(SQLModel):
    """Cached user contact data used for notifications"""

    user_id: str
    email: EmailStr
    name: str | None = None


# OUTBOX PATTERN


class OutboxEvent(SQLModel, table=True):
    """
    Outbox table for transactional event publishing
    Rows are written in the same transaction as the order change, then
    published by the outbox worker
    """

    __tablename__ = "outbox_events"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    event_id: str = Field(index=True, unique=True)
    event_type: str = Field(index=True)
    topic: str = Field(index=True)
    partition_key: str | None = Field(default=None)
    payload: dict[str, Any] = Field(sa_column=Column(JSON))

    published: bool = Field(default=False, index=True)
    published_at: datetime | None = Field(default=None, sa_type=DateTime(timezone=True))
    attempts: int = Field(default=0)
    last_error: str | None = Field(default=None)

    trace_id: str | None = Field(default=None, index=True)
    span_id: str | None = Field(default=None)
    parent_span_id: str | None = Field(default=None)

    created_at: datetime = Field(
        default_factory=get_datetime_utc, sa_type=DateTime(timezone=True)
    )
    updated_at: datetime = Field(
        default_factory=get_datetime_utc, sa_type=DateTime(timezone=True)
    )
