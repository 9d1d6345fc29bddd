import unittest
import uuid

from tests.support import CUSTOMER, create_test_engine, order_request, seed_catalog

from sqlmodel import Session, select

from orderflow.errors import ConflictError, NotFoundError
from orderflow.models import OrderStatus, OutboxEvent, TrackingEventCreate
from orderflow.services.fulfillment import (
    FulfillmentService,
    check_admin_transition,
    map_carrier_label,
    next_status,
)
from orderflow.services.order_ledger import OrderLedger


class TestNextStatus(unittest.TestCase):
    def test_moves_strictly_forward(self) -> None:
        self.assertEqual(
            next_status(OrderStatus.PENDING, OrderStatus.SHIPPED), OrderStatus.SHIPPED
        )
        self.assertEqual(
            next_status(OrderStatus.OUT_OF_DELIVERY, OrderStatus.DELIVERED),
            OrderStatus.DELIVERED,
        )

    def test_never_moves_backwards_or_sideways(self) -> None:
        self.assertEqual(
            next_status(OrderStatus.SHIPPED, OrderStatus.CONFIRMED), OrderStatus.SHIPPED
        )
        self.assertEqual(
            next_status(OrderStatus.SHIPPED, OrderStatus.SHIPPED), OrderStatus.SHIPPED
        )

    def test_unknown_label_and_terminal_status_are_kept(self) -> None:
        self.assertEqual(next_status(OrderStatus.CONFIRMED, None), OrderStatus.CONFIRMED)
        self.assertEqual(
            next_status(OrderStatus.CANCELLED, OrderStatus.DELIVERED), OrderStatus.CANCELLED
        )
        self.assertEqual(
            next_status(OrderStatus.PENDING, OrderStatus.CANCELLED), OrderStatus.PENDING
        )


class TestCarrierLabels(unittest.TestCase):
    def test_labels_are_case_and_whitespace_insensitive(self) -> None:
        self.assertEqual(map_carrier_label("  Out   for Delivery "), OrderStatus.OUT_OF_DELIVERY)
        self.assertEqual(map_carrier_label("DELIVERED"), OrderStatus.DELIVERED)
        self.assertIsNone(map_carrier_label("Arrived at sorting hub"))


class TestAdminTransitions(unittest.TestCase):
    def test_skipping_forward_and_cancelling_allowed(self) -> None:
        check_admin_transition(OrderStatus.PENDING, OrderStatus.DELIVERED)
        check_admin_transition(OrderStatus.SHIPPED, OrderStatus.CANCELLED)

    def test_backwards_rejected(self) -> None:
        with self.assertRaises(ConflictError):
            check_admin_transition(OrderStatus.SHIPPED, OrderStatus.PENDING)

    def test_terminal_rejected(self) -> None:
        with self.assertRaises(ConflictError):
            check_admin_transition(OrderStatus.DELIVERED, OrderStatus.CANCELLED)
        with self.assertRaises(ConflictError):
            check_admin_transition(OrderStatus.CANCELLED, OrderStatus.CONFIRMED)


class TestFulfillmentService(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = create_test_engine()
        self.session = Session(self.engine)
        seed_catalog(self.session)
        self.order = OrderLedger.create_order(
            self.session, CUSTOMER.user_id, order_request([("mug", 1)])
        )

    def tearDown(self) -> None:
        self.session.close()
        self.engine.dispose()

    def status_events(self) -> list[OutboxEvent]:
        return list(
            self.session.exec(
                select(OutboxEvent).where(OutboxEvent.event_type == "order.status_changed")
            ).all()
        )

    def test_set_status_appends_label_and_event(self) -> None:
        order = FulfillmentService.set_status(self.session, self.order.id, OrderStatus.SHIPPED)

        self.assertEqual(order.status, OrderStatus.SHIPPED.value)
        self.assertEqual(
            [e.status for e in order.tracking_events], ["Order Received", "Ready for Pickup"]
        )
        events = self.status_events()
        self.assertEqual(len(events), 1)
        self.assertEqual(events[0].payload["data"]["previous_status"], "PENDING")
        self.assertEqual(events[0].payload["data"]["status"], "SHIPPED")

    def test_setting_same_status_is_a_no_op(self) -> None:
        order = FulfillmentService.set_status(self.session, self.order.id, OrderStatus.PENDING)

        self.assertEqual(order.status, OrderStatus.PENDING.value)
        self.assertEqual(len(order.tracking_events), 1)
        self.assertEqual(self.status_events(), [])

    def test_cancel_from_pending_then_frozen(self) -> None:
        FulfillmentService.set_status(self.session, self.order.id, OrderStatus.CANCELLED)

        with self.assertRaises(ConflictError):
            FulfillmentService.set_status(self.session, self.order.id, OrderStatus.CONFIRMED)

    def test_delivered_cannot_be_cancelled(self) -> None:
        FulfillmentService.set_status(self.session, self.order.id, OrderStatus.DELIVERED)

        with self.assertRaises(ConflictError):
            FulfillmentService.set_status(self.session, self.order.id, OrderStatus.CANCELLED)

    def test_carrier_event_moves_order_forward(self) -> None:
        order, event = FulfillmentService.record_tracking_event(
            self.session,
            self.order.id,
            TrackingEventCreate(status="Out for delivery", location="Mysuru hub"),
        )

        self.assertEqual(order.status, OrderStatus.OUT_OF_DELIVERY.value)
        self.assertEqual(event.location, "Mysuru hub")
        self.assertEqual(len(self.status_events()), 1)

    def test_stale_and_unknown_carrier_events_are_logged_only(self) -> None:
        FulfillmentService.set_status(self.session, self.order.id, OrderStatus.SHIPPED)

        for label in ("Order Confirmed", "Arrived at sorting hub"):
            order, _ = FulfillmentService.record_tracking_event(
                self.session, self.order.id, TrackingEventCreate(status=label)
            )
            self.assertEqual(order.status, OrderStatus.SHIPPED.value)

        self.assertEqual(len(order.tracking_events), 4)
        self.assertEqual(len(self.status_events()), 1)

    def test_carrier_event_on_unknown_order(self) -> None:
        with self.assertRaises(NotFoundError):
            FulfillmentService.record_tracking_event(
                self.session, uuid.uuid4(), TrackingEventCreate(status="Delivered")
            )

    def test_delete_tracking_event_keeps_status(self) -> None:
        order, event = FulfillmentService.record_tracking_event(
            self.session, self.order.id, TrackingEventCreate(status="Shipped")
        )

        FulfillmentService.delete_tracking_event(self.session, self.order.id, event.id)

        self.session.refresh(order)
        self.assertEqual(order.status, OrderStatus.SHIPPED.value)
        self.assertEqual([e.status for e in order.tracking_events], ["Order Received"])

        with self.assertRaises(NotFoundError):
            FulfillmentService.delete_tracking_event(self.session, self.order.id, event.id)


if __name__ == "__main__":
    unittest.main()
