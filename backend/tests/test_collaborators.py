import base64
import json
import unittest

from tests.support import FakeRedis

import httpx
from tenacity import wait_none

from orderflow.clients.base import CollaboratorUnavailable
from orderflow.clients.document_client import DocumentClient
from orderflow.clients.notification_client import NotificationClient, tracking_url
from orderflow.clients.user_client import UserClient
from orderflow.models import Recipient
from orderflow.services.user_service import UserService

ORDER = {
    "order_id": "o-1",
    "order_number": "ORD-1700000000000-AB12",
    "invoice_number": "INV-1700000000000-AB12",
    "tracking_token": "tok123",
    "estimated_delivery_days": 5,
    "total_amount": "120.00",
    "currency": "INR",
    "shipping": {"name": "Asha Rao"},
}


def client_for(cls, handler):
    client = cls(
        "http://collaborator.test",
        http_client=httpx.AsyncClient(
            base_url="http://collaborator.test", transport=httpx.MockTransport(handler)
        ),
    )
    client.retry_wait = wait_none()
    return client


class TestCollaboratorRetries(unittest.IsolatedAsyncioTestCase):
    async def test_server_errors_are_retried(self) -> None:
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            if len(calls) < 3:
                return httpx.Response(503)
            return httpx.Response(200, json={"email": "asha@shop.in", "name": "Asha"})

        user = await client_for(UserClient, handler).get_user("user-1")

        self.assertEqual(len(calls), 3)
        self.assertEqual(user["email"], "asha@shop.in")

    async def test_gives_up_after_last_attempt(self) -> None:
        client = client_for(UserClient, lambda request: httpx.Response(500))

        with self.assertRaises(CollaboratorUnavailable):
            await client.get_user("user-1")

    async def test_unknown_user_is_none(self) -> None:
        client = client_for(UserClient, lambda request: httpx.Response(404))
        self.assertIsNone(await client.get_user("ghost"))


class TestDocumentAndNotificationClients(unittest.IsolatedAsyncioTestCase):
    async def test_render_invoice_returns_pdf_bytes(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            self.assertEqual(request.url.path, "/invoices/render")
            self.assertEqual(body["invoice_number"], ORDER["invoice_number"])
            return httpx.Response(200, content=b"%PDF-1.4")

        pdf = await client_for(DocumentClient, handler).render_invoice(ORDER)
        self.assertEqual(pdf, b"%PDF-1.4")

    async def test_confirmation_attaches_invoice(self) -> None:
        sent = {}

        def handler(request: httpx.Request) -> httpx.Response:
            sent.update(json.loads(request.content))
            return httpx.Response(202)

        recipient = Recipient(user_id="user-1", email="asha@shop.in", name="Asha")
        await client_for(NotificationClient, handler).send_order_confirmation(
            recipient, ORDER, b"%PDF-1.4"
        )

        self.assertEqual(sent["kind"], "order_confirmation")
        self.assertEqual(sent["to"], "asha@shop.in")
        attachment = sent["attachments"][0]
        self.assertEqual(attachment["filename"], "Invoice-ORD-1700000000000-AB12.pdf")
        self.assertEqual(base64.b64decode(attachment["content"]), b"%PDF-1.4")
        self.assertEqual(sent["data"]["tracking_url"], tracking_url(ORDER))

    async def test_status_update_links_tracking_only_while_in_transit(self) -> None:
        sent = []

        def handler(request: httpx.Request) -> httpx.Response:
            sent.append(json.loads(request.content))
            return httpx.Response(202)

        client = client_for(NotificationClient, handler)
        recipient = Recipient(user_id="user-1", email="asha@shop.in")
        await client.send_status_update(recipient, ORDER, "SHIPPED")
        await client.send_status_update(recipient, ORDER, "DELIVERED")

        self.assertEqual(sent[0]["data"]["detail"], "Estimated delivery in 5 days.")
        self.assertTrue(sent[0]["data"]["tracking_url"].endswith("/track/tok123"))
        self.assertIsNone(sent[1]["data"]["tracking_url"])
        self.assertEqual(sent[1]["data"]["customer_name"], "Asha Rao")


class TestUserService(unittest.IsolatedAsyncioTestCase):
    async def test_cache_aside(self) -> None:
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(200, json={"email": "asha@shop.in", "name": "Asha"})

        client = client_for(UserClient, handler)
        redis = FakeRedis()

        first = await UserService.get_recipient("user-1", redis, client)
        second = await UserService.get_recipient("user-1", redis, client)

        self.assertEqual(first, second)
        self.assertEqual(len(calls), 1)
        self.assertIn("user:user-1", redis.store)

    async def test_redis_outage_falls_back_to_identity(self) -> None:
        client = client_for(
            UserClient,
            lambda request: httpx.Response(200, json={"email": "asha@shop.in"}),
        )

        recipient = await UserService.get_recipient("user-1", FakeRedis(fail=True), client)

        self.assertEqual(recipient.email, "asha@shop.in")

    async def test_identity_failure_yields_none(self) -> None:
        client = client_for(UserClient, lambda request: httpx.Response(500))

        self.assertIsNone(await UserService.get_recipient("user-1", FakeRedis(), client))


if __name__ == "__main__":
    unittest.main()
