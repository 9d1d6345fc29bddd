import unittest
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

from tests.support import FakeRedis

from orderflow.consumers import notification_consumer
from orderflow.core.tracing import get_trace_context
from orderflow.models import Recipient
from orderflow.services.user_service import UserService

RECIPIENT = Recipient(user_id="user-1", email="asha@shop.in", name="Asha")


def order_snapshot(**overrides) -> dict:
    data = {
        "order_id": "7d4f2c1e-0000-4000-8000-000000000001",
        "order_number": "ORD-1700000000000-AB12",
        "invoice_number": "INV-1700000000000-AB12",
        "tracking_token": "tok",
        "user_id": "user-1",
        "status": "PENDING",
        "payment_status": "COD_PENDING",
        "payment_method": "COD",
        "payment_id": None,
        "subtotal": "160.00",
        "discount": "0.00",
        "coupon_code": None,
        "total_amount": "160.00",
        "currency": "INR",
        "estimated_delivery_days": 5,
        "shipping": {"name": "Asha Rao", "city": "Mysuru"},
        "items": [
            {"product_id": "mug", "product_name": "Mug", "quantity": 2, "unit_price": "50.00"}
        ],
        "created_at": "2026-10-19T09:00:00+00:00",
    }
    data.update(overrides)
    return data


def message(event_type: str, data: dict, event_id: str = "evt-1", headers=None):
    return SimpleNamespace(
        topic=event_type,
        headers=headers or [],
        value={"event_id": event_id, "event_type": event_type, "data": data},
    )


class TestNotificationConsumer(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.redis = FakeRedis()
        self.kafka = MagicMock(commit=AsyncMock())
        self.documents = MagicMock(render_invoice=AsyncMock(return_value=b"%PDF-1.4"))
        self.notifications = MagicMock(
            send_order_confirmation=AsyncMock(),
            send_status_update=AsyncMock(),
            send_payment_failed=AsyncMock(),
        )
        self.get_recipient = AsyncMock(return_value=RECIPIENT)

        for target, value in (
            ("redis_client", self.redis),
            ("kafka_consumer", self.kafka),
            ("document_client", self.documents),
            ("notification_client", self.notifications),
        ):
            patcher = patch.object(notification_consumer, target, value)
            patcher.start()
            self.addCleanup(patcher.stop)

        patcher = patch.object(UserService, "get_recipient", self.get_recipient)
        patcher.start()
        self.addCleanup(patcher.stop)

    async def test_order_created_sends_confirmation_with_invoice(self) -> None:
        data = order_snapshot()

        await notification_consumer.handle_message(message("order.created", data))

        self.documents.render_invoice.assert_awaited_once_with(data)
        self.notifications.send_order_confirmation.assert_awaited_once_with(
            RECIPIENT, data, b"%PDF-1.4"
        )
        self.kafka.commit.assert_awaited_once()
        self.assertIn("processed_event:evt-1", self.redis.store)

    async def test_invoice_failure_still_sends_confirmation(self) -> None:
        self.documents.render_invoice.side_effect = RuntimeError("renderer down")
        data = order_snapshot()

        await notification_consumer.handle_message(message("order.created", data))

        self.notifications.send_order_confirmation.assert_awaited_once_with(RECIPIENT, data, None)
        self.kafka.commit.assert_awaited_once()

    async def test_notification_failure_does_not_block_partition(self) -> None:
        self.notifications.send_order_confirmation.side_effect = RuntimeError("smtp down")

        await notification_consumer.handle_message(message("order.created", order_snapshot()))

        self.kafka.commit.assert_awaited_once()

    async def test_duplicate_event_skipped(self) -> None:
        self.redis.store["processed_event:evt-1"] = "1"

        await notification_consumer.handle_message(message("order.created", order_snapshot()))

        self.notifications.send_order_confirmation.assert_not_awaited()
        self.kafka.commit.assert_awaited_once()

    async def test_status_change_sends_update(self) -> None:
        data = order_snapshot(
            status="SHIPPED",
            previous_status="CONFIRMED",
            trigger="carrier",
            tracking_label="In Transit",
            changed_at="2026-10-20T09:00:00+00:00",
        )

        await notification_consumer.handle_message(message("order.status_changed", data))

        self.notifications.send_status_update.assert_awaited_once_with(RECIPIENT, data, "SHIPPED")

    async def test_only_failed_payments_are_notified(self) -> None:
        paid = order_snapshot(
            payment_status="PAID", previous_payment_status="PENDING", gateway="paypal", source="confirm"
        )
        failed = order_snapshot(
            payment_status="FAILED",
            status="CANCELLED",
            previous_payment_status="PENDING",
            gateway="razorpay",
            source="confirm",
            failure_reason="Invalid payment signature",
        )

        await notification_consumer.handle_message(message("order.payment_updated", paid, "evt-1"))
        await notification_consumer.handle_message(message("order.payment_updated", failed, "evt-2"))

        self.notifications.send_payment_failed.assert_awaited_once_with(
            RECIPIENT, failed, "Invalid payment signature"
        )

    async def test_unresolvable_recipient_skips_message(self) -> None:
        self.get_recipient.return_value = None

        await notification_consumer.handle_message(message("order.created", order_snapshot()))

        self.documents.render_invoice.assert_not_awaited()
        self.notifications.send_order_confirmation.assert_not_awaited()
        self.kafka.commit.assert_awaited_once()

    async def test_trace_context_continued_from_headers(self) -> None:
        headers = [("traceparent", b"00-0af7651916cd43dd8448eb211c80319c-b7ad6b7169203331-01")]
        seen = {}

        async def capture(recipient, order, invoice_pdf):
            seen["trace_id"] = get_trace_context().trace_id

        self.notifications.send_order_confirmation.side_effect = capture

        await notification_consumer.handle_message(
            message("order.created", order_snapshot(), headers=headers)
        )

        self.assertEqual(seen["trace_id"], "0af7651916cd43dd8448eb211c80319c")


if __name__ == "__main__":
    unittest.main()
