import json
import unittest
from datetime import timedelta
from decimal import Decimal
from unittest.mock import patch

from tests.support import (
    CUSTOMER,
    OTHER_CUSTOMER,
    FakeRedis,
    ScriptedGateway,
    create_test_engine,
    order_request,
    seed_catalog,
)

import httpx
from sqlmodel import Session, select

from orderflow.errors import (
    AuthorizationError,
    ConflictError,
    GatewayError,
    PaymentPendingError,
    PaymentRejectedError,
    ValidationError,
)
from orderflow.gateways.base import PaymentOutcome
from orderflow.gateways.razorpay import RazorpayGateway, razorpay_signature
from orderflow.models import (
    Order,
    OrderStatus,
    OutboxEvent,
    PaymentMethod,
    PaymentStatus,
    Product,
    get_datetime_utc,
)
from orderflow.services.order_ledger import OrderLedger
from orderflow.services.reconciliation import ReconciliationService


class ReconciliationTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.engine = create_test_engine()
        self.session = Session(self.engine)
        seed_catalog(self.session)
        self.order = OrderLedger.create_order(
            self.session,
            CUSTOMER.user_id,
            order_request([("mug", 1)], payment_method=PaymentMethod.PHONEPE),
        )
        self.order_id = self.order.id

    def tearDown(self) -> None:
        self.session.close()
        self.engine.dispose()

    def reload(self) -> Order:
        with Session(self.engine) as session:
            order = session.get(Order, self.order_id)
            order.tracking_events  # load before the session closes
            return order

    def payment_events(self) -> list[OutboxEvent]:
        with Session(self.engine) as session:
            return list(
                session.exec(
                    select(OutboxEvent).where(OutboxEvent.event_type == "order.payment_updated")
                ).all()
            )


class TestInitiate(ReconciliationTestCase):
    async def test_initiate_records_intent(self) -> None:
        gateway = ScriptedGateway()

        intent = await ReconciliationService.initiate(
            self.session, gateway, self.order_id, CUSTOMER, amount=Decimal("50")
        )

        order = self.reload()
        self.assertEqual(intent.intent_id, "intent-1")
        self.assertEqual(order.payment_intent_id, "intent-1")
        self.assertEqual(order.payment_gateway, "phonepe")
        self.assertIsNotNone(order.payment_initiated_at)
        self.assertEqual(order.payment_status, PaymentStatus.PENDING.value)

    async def test_amount_must_match_stored_total(self) -> None:
        with self.assertRaises(ValidationError):
            await ReconciliationService.initiate(
                self.session, ScriptedGateway(), self.order_id, CUSTOMER, amount=Decimal("1")
            )

    async def test_only_owner_can_pay(self) -> None:
        with self.assertRaises(AuthorizationError):
            await ReconciliationService.initiate(
                self.session, ScriptedGateway(), self.order_id, OTHER_CUSTOMER
            )

    async def test_cod_orders_are_not_payable_online(self) -> None:
        cod = OrderLedger.create_order(self.session, CUSTOMER.user_id, order_request([("mug", 1)]))

        with self.assertRaises(ConflictError):
            await ReconciliationService.initiate(self.session, ScriptedGateway(), cod.id, CUSTOMER)

    async def test_gateway_error_leaves_order_untouched(self) -> None:
        gateway = ScriptedGateway()

        async def unreachable(order, amount):
            raise GatewayError("phonepe", "create_intent", "unreachable")

        gateway.create_intent = unreachable  # type: ignore[method-assign]

        with self.assertRaises(GatewayError):
            await ReconciliationService.initiate(self.session, gateway, self.order_id, CUSTOMER)
        self.assertIsNone(self.reload().payment_intent_id)


class TestRazorpayConfirm(ReconciliationTestCase):
    async def asyncSetUp(self) -> None:
        self.gateway = RazorpayGateway(
            httpx.AsyncClient(
                transport=httpx.MockTransport(
                    lambda request: httpx.Response(
                        200, json={"id": "order_Rz1", "amount": 5000, "currency": "INR"}
                    )
                )
            ),
            key_id="rzp_test_key",
            key_secret="rzp_secret",
            base_url="https://rzp.test",
        )
        await ReconciliationService.initiate(self.session, self.gateway, self.order_id, CUSTOMER)

    async def test_valid_signature_marks_paid(self) -> None:
        proof = {
            "razorpay_order_id": "order_Rz1",
            "razorpay_payment_id": "pay_9",
            "razorpay_signature": razorpay_signature("rzp_secret", "order_Rz1", "pay_9"),
        }

        order = await ReconciliationService.confirm(
            self.session, self.gateway, self.order_id, CUSTOMER, proof
        )
        paid_at = order.paid_at

        self.assertEqual(order.payment_status, PaymentStatus.PAID.value)
        self.assertEqual(order.payment_method, PaymentMethod.RAZORPAY.value)
        self.assertEqual(order.payment_id, "pay_9")
        self.assertEqual(order.status, OrderStatus.PENDING.value)
        self.assertIsNotNone(paid_at)

        again = await ReconciliationService.confirm(
            self.session, self.gateway, self.order_id, CUSTOMER, proof
        )
        self.assertEqual(again.paid_at, paid_at)
        self.assertEqual(len(self.payment_events()), 1)

    async def test_tampered_signature_cancels_without_restock(self) -> None:
        proof = {"razorpay_payment_id": "pay_9", "razorpay_signature": "f" * 64}

        with self.assertRaises(PaymentRejectedError):
            await ReconciliationService.confirm(
                self.session, self.gateway, self.order_id, CUSTOMER, proof
            )

        order = self.reload()
        self.assertEqual(order.payment_status, PaymentStatus.FAILED.value)
        self.assertEqual(order.status, OrderStatus.CANCELLED.value)
        self.assertEqual(order.failure_reason, "Invalid payment signature")
        self.assertEqual(order.tracking_events[-1].status, "Payment Failed")
        with Session(self.engine) as session:
            self.assertEqual(session.get(Product, "mug").stock, 4)

        events = self.payment_events()
        self.assertEqual(len(events), 1)
        self.assertEqual(events[0].payload["data"]["payment_status"], "FAILED")

    async def test_confirm_on_other_gateway_rejected(self) -> None:
        with self.assertRaises(ValidationError):
            await ReconciliationService.confirm(
                self.session, ScriptedGateway(), self.order_id, CUSTOMER, {}
            )


class TestRepeatedCheckout(ReconciliationTestCase):
    """The shopper opened checkout twice and may pay either one"""

    async def asyncSetUp(self) -> None:
        created = []

        def handler(request: httpx.Request) -> httpx.Response:
            created.append(request)
            return httpx.Response(
                200, json={"id": f"order_Rz{len(created)}", "amount": 5000, "currency": "INR"}
            )

        self.gateway = RazorpayGateway(
            httpx.AsyncClient(transport=httpx.MockTransport(handler)),
            key_id="rzp_test_key",
            key_secret="rzp_secret",
            base_url="https://rzp.test",
        )
        await ReconciliationService.initiate(self.session, self.gateway, self.order_id, CUSTOMER)
        await ReconciliationService.initiate(self.session, self.gateway, self.order_id, CUSTOMER)

    def signed_proof(self, intent_id: str, payment_id: str = "pay_1") -> dict:
        return {
            "razorpay_order_id": intent_id,
            "razorpay_payment_id": payment_id,
            "razorpay_signature": razorpay_signature("rzp_secret", intent_id, payment_id),
        }

    async def test_paying_earlier_checkout_marks_paid(self) -> None:
        order = await ReconciliationService.confirm(
            self.session, self.gateway, self.order_id, CUSTOMER, self.signed_proof("order_Rz1")
        )

        self.assertEqual(order.payment_status, PaymentStatus.PAID.value)
        self.assertEqual(order.payment_id, "pay_1")
        self.assertEqual(order.payment_intent_id, "order_Rz2")
        self.assertEqual(order.status, OrderStatus.PENDING.value)

    async def test_latest_checkout_still_verifies(self) -> None:
        order = await ReconciliationService.confirm(
            self.session, self.gateway, self.order_id, CUSTOMER, self.signed_proof("order_Rz2")
        )

        self.assertEqual(order.payment_status, PaymentStatus.PAID.value)

    async def test_intent_never_issued_is_rejected(self) -> None:
        with self.assertRaises(PaymentRejectedError):
            await ReconciliationService.confirm(
                self.session, self.gateway, self.order_id, CUSTOMER, self.signed_proof("order_Rz9")
            )

        order = self.reload()
        self.assertEqual(order.payment_status, PaymentStatus.FAILED.value)
        self.assertEqual(order.failure_reason, "Payment does not belong to this order")

    async def test_intent_of_another_order_is_rejected(self) -> None:
        other = OrderLedger.create_order(
            self.session,
            CUSTOMER.user_id,
            order_request([("mug", 1)], payment_method=PaymentMethod.RAZORPAY),
        )
        await ReconciliationService.initiate(self.session, self.gateway, other.id, CUSTOMER)

        with self.assertRaises(PaymentRejectedError):
            await ReconciliationService.confirm(
                self.session, self.gateway, self.order_id, CUSTOMER, self.signed_proof("order_Rz3")
            )
        self.assertNotEqual(self.reload().payment_status, PaymentStatus.PAID.value)


class TestApplyOutcome(ReconciliationTestCase):
    async def asyncSetUp(self) -> None:
        self.gateway = ScriptedGateway()
        await ReconciliationService.initiate(self.session, self.gateway, self.order_id, CUSTOMER)

    async def test_pending_changes_nothing(self) -> None:
        with self.assertRaises(PaymentPendingError):
            await ReconciliationService.confirm(
                self.session, self.gateway, self.order_id, CUSTOMER, {}
            )

        self.assertEqual(self.reload().payment_status, PaymentStatus.PENDING.value)
        self.assertEqual(self.payment_events(), [])

    async def test_gateway_error_on_confirm_keeps_state(self) -> None:
        self.gateway.error = GatewayError("phonepe", "query_status", "timed out")

        with self.assertRaises(GatewayError):
            await ReconciliationService.confirm(
                self.session, self.gateway, self.order_id, CUSTOMER, {}
            )

        order = self.reload()
        self.assertEqual(order.payment_status, PaymentStatus.PENDING.value)
        self.assertEqual(order.status, OrderStatus.PENDING.value)

    async def test_failure_after_success_is_ignored(self) -> None:
        ReconciliationService.apply_outcome(
            self.session, self.order_id, self.gateway, "intent-1",
            PaymentOutcome.succeeded("T1", "UPI"), source="webhook",
        )
        order = ReconciliationService.apply_outcome(
            self.session, self.order_id, self.gateway, "intent-1",
            PaymentOutcome.failed("late decline"), source="sweeper",
        )

        self.assertEqual(order.payment_status, PaymentStatus.PAID.value)
        self.assertEqual(order.status, OrderStatus.PENDING.value)

    async def test_success_after_failure_wins(self) -> None:
        ReconciliationService.apply_outcome(
            self.session, self.order_id, self.gateway, "intent-1",
            PaymentOutcome.failed("TIMED_OUT"), source="confirm",
        )
        order = ReconciliationService.apply_outcome(
            self.session, self.order_id, self.gateway, "intent-1",
            PaymentOutcome.succeeded("T1", "UPI"), source="webhook",
        )

        self.assertEqual(order.payment_status, PaymentStatus.PAID.value)
        self.assertIsNone(order.failure_reason)

    async def test_failure_for_superseded_intent_is_ignored(self) -> None:
        await ReconciliationService.initiate(self.session, self.gateway, self.order_id, CUSTOMER)

        order = ReconciliationService.apply_outcome(
            self.session, self.order_id, self.gateway, "intent-1",
            PaymentOutcome.failed("expired"), source="webhook",
        )

        self.assertEqual(order.payment_intent_id, "intent-2")
        self.assertEqual(order.payment_status, PaymentStatus.PENDING.value)


class TestWebhook(ReconciliationTestCase):
    async def asyncSetUp(self) -> None:
        self.gateway = ScriptedGateway()
        self.redis = FakeRedis()
        await ReconciliationService.initiate(self.session, self.gateway, self.order_id, CUSTOMER)
        self.body = json.dumps({"merchantOrderId": "intent-1"}).encode()

    async def test_webhook_applies_queried_outcome_once(self) -> None:
        self.gateway.outcome = PaymentOutcome.succeeded("OMO1", "UPI", "COMPLETED")

        first = await ReconciliationService.handle_webhook(
            self.session, self.redis, self.gateway, self.body, {}
        )
        second = await ReconciliationService.handle_webhook(
            self.session, self.redis, self.gateway, self.body, {}
        )

        self.assertEqual((first, second), ("processed", "duplicate"))
        self.assertEqual(self.gateway.queries, 1)
        self.assertEqual(self.reload().payment_status, PaymentStatus.PAID.value)

    async def test_unknown_intent_acknowledged(self) -> None:
        body = json.dumps({"merchantOrderId": "intent-404"}).encode()

        result = await ReconciliationService.handle_webhook(
            self.session, self.redis, self.gateway, body, {}
        )

        self.assertEqual(result, "unknown_order")

    async def test_failed_query_allows_redelivery(self) -> None:
        self.gateway.error = GatewayError("phonepe", "query_status", "unreachable")
        with self.assertRaises(GatewayError):
            await ReconciliationService.handle_webhook(
                self.session, self.redis, self.gateway, self.body, {}
            )

        self.gateway.error = None
        self.gateway.outcome = PaymentOutcome.failed("PAYMENT_DECLINED", "FAILED")
        result = await ReconciliationService.handle_webhook(
            self.session, self.redis, self.gateway, self.body, {}
        )

        self.assertEqual(result, "processed")
        self.assertEqual(self.reload().status, OrderStatus.CANCELLED.value)

    async def test_earlier_intent_settles_order(self) -> None:
        await ReconciliationService.initiate(self.session, self.gateway, self.order_id, CUSTOMER)
        self.gateway.outcomes["intent-1"] = PaymentOutcome.succeeded("OMO1", "UPI", "COMPLETED")

        result = await ReconciliationService.handle_webhook(
            self.session, self.redis, self.gateway, self.body, {}
        )

        order = self.reload()
        self.assertEqual(result, "processed")
        self.assertEqual(order.payment_status, PaymentStatus.PAID.value)
        self.assertEqual(order.payment_id, "OMO1")

    async def test_delivery_ahead_of_initiate_is_redelivered(self) -> None:
        body = json.dumps({"merchantOrderId": "intent-2"}).encode()
        self.gateway.outcome = PaymentOutcome.succeeded("OMO2", "UPI", "COMPLETED")

        first = await ReconciliationService.handle_webhook(
            self.session, self.redis, self.gateway, body, {}
        )
        await ReconciliationService.initiate(self.session, self.gateway, self.order_id, CUSTOMER)
        second = await ReconciliationService.handle_webhook(
            self.session, self.redis, self.gateway, body, {}
        )

        self.assertEqual((first, second), ("unknown_order", "processed"))
        self.assertEqual(self.reload().payment_status, PaymentStatus.PAID.value)

    async def test_failed_apply_allows_redelivery(self) -> None:
        self.gateway.outcome = PaymentOutcome.succeeded("OMO1", "UPI", "COMPLETED")

        with patch.object(
            ReconciliationService, "apply_outcome", side_effect=RuntimeError("database gone")
        ):
            with self.assertRaises(RuntimeError):
                await ReconciliationService.handle_webhook(
                    self.session, self.redis, self.gateway, self.body, {}
                )
        self.assertEqual(self.redis.store, {})

        result = await ReconciliationService.handle_webhook(
            self.session, self.redis, self.gateway, self.body, {}
        )

        self.assertEqual(result, "processed")
        self.assertEqual(self.reload().payment_status, PaymentStatus.PAID.value)

    async def test_redis_outage_does_not_block_webhook(self) -> None:
        self.gateway.outcome = PaymentOutcome.succeeded("OMO1", "UPI", "COMPLETED")

        result = await ReconciliationService.handle_webhook(
            self.session, FakeRedis(fail=True), self.gateway, self.body, {}
        )

        self.assertEqual(result, "processed")


class TestSweep(ReconciliationTestCase):
    async def asyncSetUp(self) -> None:
        self.gateway = ScriptedGateway()
        await ReconciliationService.initiate(self.session, self.gateway, self.order_id, CUSTOMER)

    def age_intent(self, minutes: int) -> None:
        order = self.session.get(Order, self.order_id)
        order.payment_initiated_at = get_datetime_utc() - timedelta(minutes=minutes)
        self.session.add(order)
        self.session.commit()

    async def test_fresh_intents_are_left_alone(self) -> None:
        self.gateway.outcome = PaymentOutcome.succeeded("OMO1")

        changed = await ReconciliationService.sweep_pending(
            self.session, {"phonepe": self.gateway}
        )

        self.assertEqual(changed, 0)
        self.assertEqual(self.gateway.queries, 0)

    async def test_stale_intent_settled(self) -> None:
        self.age_intent(60)
        self.gateway.outcome = PaymentOutcome.succeeded("OMO1", "UPI")

        changed = await ReconciliationService.sweep_pending(
            self.session, {"phonepe": self.gateway}
        )

        self.assertEqual(changed, 1)
        self.assertEqual(self.reload().payment_status, PaymentStatus.PAID.value)

    async def test_still_pending_and_errors_are_skipped(self) -> None:
        self.age_intent(60)
        changed = await ReconciliationService.sweep_pending(
            self.session, {"phonepe": self.gateway}
        )
        self.assertEqual(changed, 0)

        self.gateway.error = GatewayError("phonepe", "query_status", "timed out")
        changed = await ReconciliationService.sweep_pending(
            self.session, {"phonepe": self.gateway}
        )
        self.assertEqual(changed, 0)
        self.assertEqual(self.reload().payment_status, PaymentStatus.PENDING.value)

    async def test_success_on_replaced_intent_wins(self) -> None:
        await ReconciliationService.initiate(self.session, self.gateway, self.order_id, CUSTOMER)
        self.age_intent(60)
        self.gateway.outcomes = {
            "intent-1": PaymentOutcome.succeeded("OMO1", "UPI"),
            "intent-2": PaymentOutcome.failed("EXPIRED", "FAILED"),
        }

        changed = await ReconciliationService.sweep_pending(
            self.session, {"phonepe": self.gateway}
        )

        order = self.reload()
        self.assertEqual(changed, 1)
        self.assertEqual(order.payment_status, PaymentStatus.PAID.value)
        self.assertEqual(order.payment_id, "OMO1")


if __name__ == "__main__":
    unittest.main()
