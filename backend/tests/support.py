"""Shared fixtures for the unittest suites: settings env, SQLite engine, fake Redis"""

import json
import os
from decimal import Decimal
from typing import Any, Mapping

os.environ.setdefault("POSTGRES_SERVER", "localhost")
os.environ.setdefault("POSTGRES_USER", "test")
os.environ.setdefault("POSTGRES_PASSWORD", "test")
os.environ.setdefault("POSTGRES_DB", "test")

from sqlalchemy.pool import StaticPool  # noqa: E402
from sqlmodel import Session, SQLModel, create_engine  # noqa: E402

from orderflow.errors import GatewayError  # noqa: E402
from orderflow.gateways.base import (  # noqa: E402
    GatewayIntentRef,
    OrderRef,
    PaymentGateway,
    PaymentOutcome,
)
from orderflow.models import (  # noqa: E402
    AuthenticatedUser,
    Coupon,
    OrderCreate,
    OrderItemIn,
    PaymentMethod,
    Product,
    ShippingInfo,
    UserRole,
)

CUSTOMER = AuthenticatedUser(user_id="user-1", role=UserRole.USER)
OTHER_CUSTOMER = AuthenticatedUser(user_id="user-2", role=UserRole.USER)
ADMIN = AuthenticatedUser(user_id="admin-1", role=UserRole.ADMIN)


def create_test_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    return engine


def seed_catalog(session: Session) -> None:
    """Two products (50.00 x5, 60.00 x2) and a few coupons"""
    session.add(Product(id="mug", name="Hand-thrown Mug", price=Decimal("50.00"), stock=5))
    session.add(
        Product(
            id="vase",
            name="Glazed Vase",
            price=Decimal("80.00"),
            sale_price=Decimal("60.00"),
            stock=2,
        )
    )
    session.add(
        Coupon(code="FLASH25", discount_type="percentage", discount_value=Decimal("25"))
    )
    session.add(
        Coupon(code="ONCE", discount_type="fixed", discount_value=Decimal("30"), max_uses=1)
    )
    session.add(
        Coupon(
            code="BIGSPEND",
            discount_type="fixed",
            discount_value=Decimal("100"),
            min_order_value=Decimal("1000"),
        )
    )
    session.add(
        Coupon(code="RETIRED", discount_type="fixed", discount_value=Decimal("10"), active=False)
    )
    session.commit()


def order_request(
    items: list[tuple[str, int]],
    coupon_code: str | None = None,
    payment_method: PaymentMethod = PaymentMethod.COD,
) -> OrderCreate:
    return OrderCreate(
        shipping=ShippingInfo(
            name="Asha Rao",
            address="12 Temple Street",
            city="Mysuru",
            state="Karnataka",
            zip="570001",
            phone="+91 90000 00000",
        ),
        items=[OrderItemIn(product_id=pid, quantity=qty) for pid, qty in items],
        coupon_code=coupon_code,
        payment_method=payment_method,
    )


class FakeRedis:
    """In-memory stand-in for core.redis.RedisClient (TTL ignored)"""

    def __init__(self, fail: bool = False):
        self.store: dict[str, str] = {}
        self.fail = fail

    def _check(self) -> None:
        if self.fail:
            raise ConnectionError("redis down")

    async def ping(self) -> bool:
        return not self.fail

    async def get(self, key: str) -> str | None:
        self._check()
        return self.store.get(key)

    async def set(self, key: str, value: str, ttl: int | None = None) -> bool:
        self._check()
        self.store[key] = value
        return True

    async def set_if_absent(self, key: str, value: str, ttl: int) -> bool:
        self._check()
        if key in self.store:
            return False
        self.store[key] = value
        return True

    async def delete(self, key: str) -> int:
        self._check()
        return 1 if self.store.pop(key, None) is not None else 0

    async def exists(self, key: str) -> bool:
        self._check()
        return key in self.store

    async def get_json(self, key: str):
        value = await self.get(key)
        return json.loads(value) if value else None

    async def set_json(self, key: str, value, ttl: int | None = None) -> bool:
        return await self.set(key, json.dumps(value), ttl)


class ScriptedGateway(PaymentGateway):
    """Gateway double answering from a preset outcome"""

    supports_webhook = True

    def __init__(self, method: PaymentMethod = PaymentMethod.PHONEPE):
        super().__init__(http=None)  # type: ignore[arg-type]
        self.method = method
        self.intents = 0
        self.queries = 0
        self.outcome = PaymentOutcome.pending("PENDING")
        self.outcomes: dict[str, PaymentOutcome] = {}  # Per-intent overrides
        self.error: GatewayError | None = None

    def public_config(self) -> dict[str, Any]:
        return {"merchant_id": "M-TEST"}

    async def create_intent(self, order: OrderRef, amount: Decimal) -> GatewayIntentRef:
        self.intents += 1
        return GatewayIntentRef(self.name, f"intent-{self.intents}", {"amount": str(amount)})

    async def verify(self, intent_id: str, proof: Mapping[str, Any]) -> PaymentOutcome:
        return await self.query_status(intent_id)

    async def query_status(self, intent_id: str) -> PaymentOutcome:
        self.queries += 1
        if self.error:
            raise self.error
        return self.outcomes.get(intent_id, self.outcome)

    async def parse_webhook(self, raw_body: bytes, headers: Mapping[str, str]) -> str:
        return json.loads(raw_body)["merchantOrderId"]
