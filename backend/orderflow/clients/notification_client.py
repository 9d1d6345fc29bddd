"""
Notification service client

Builds the customer-facing messages (order confirmation, status update,
payment failure) and hands them to the notification service for delivery.
Rendering of the final HTML happens on the notification side; this client
only supplies subject, headline text and template data.
"""

import base64
from typing import Any

from orderflow.clients.base import CollaboratorClient
from orderflow.core.config import settings
from orderflow.core.logging import get_logger
from orderflow.models import Recipient

logger = get_logger(__name__)

STATUS_HEADLINES = {
    "PENDING": "Your order has been placed",
    "CONFIRMED": "Your order has been confirmed",
    "SHIPPED": "Your order has been shipped",
    "OUT_OF_DELIVERY": "Your order is out for delivery",
    "DELIVERED": "Your order has been delivered",
    "CANCELLED": "Your order has been cancelled",
}

# Statuses whose message links to the tracking page
TRACKABLE_STATUSES = {"CONFIRMED", "SHIPPED", "OUT_OF_DELIVERY"}


def status_detail(status: str, estimated_delivery_days: int) -> str:
    if status == "PENDING":
        return "We are reviewing your order. You will receive an update once confirmed."
    if status == "CONFIRMED":
        return "Your order is confirmed and will be shipped soon."
    if status == "SHIPPED":
        return f"Estimated delivery in {estimated_delivery_days} days."
    if status == "OUT_OF_DELIVERY":
        return "Your order is on the way! It will be delivered today."
    if status == "DELIVERED":
        return "Thank you for shopping with us!"
    return "If you have any questions, please contact support."


def tracking_url(order: dict[str, Any]) -> str:
    return f"{settings.FRONTEND_URL.rstrip('/')}/track/{order['tracking_token']}"


class NotificationClient(CollaboratorClient):
    service_name = "notification"

    async def _send(self, kind: str, recipient: Recipient, payload: dict[str, Any]) -> None:
        response = await self._request(
            "POST",
            "/notifications",
            json={"kind": kind, "to": recipient.email, **payload},
        )
        response.raise_for_status()
        logger.info("notification_sent", kind=kind, user_id=recipient.user_id)

    async def send_order_confirmation(
        self,
        recipient: Recipient,
        order: dict[str, Any],
        invoice_pdf: bytes | None = None,
    ) -> None:
        """Order placed message, with the invoice attached when it could be rendered"""
        attachments = []
        if invoice_pdf:
            attachments.append(
                {
                    "filename": f"Invoice-{order['order_number']}.pdf",
                    "content_type": "application/pdf",
                    "content": base64.b64encode(invoice_pdf).decode("ascii"),
                }
            )

        await self._send(
            "order_confirmation",
            recipient,
            {
                "subject": f"Order Placed Successfully - {order['order_number']}",
                "data": {
                    "customer_name": recipient.name or order["shipping"]["name"],
                    "order": order,
                    "tracking_url": tracking_url(order),
                },
                "attachments": attachments,
            },
        )

    async def send_status_update(
        self, recipient: Recipient, order: dict[str, Any], new_status: str
    ) -> None:
        await self._send(
            "order_status_update",
            recipient,
            {
                "subject": f"Order {new_status} - {order['order_number']}",
                "data": {
                    "customer_name": recipient.name or order["shipping"]["name"],
                    "order_number": order["order_number"],
                    "status": new_status,
                    "headline": STATUS_HEADLINES.get(new_status, "Your order was updated"),
                    "detail": status_detail(new_status, order["estimated_delivery_days"]),
                    "tracking_url": (
                        tracking_url(order) if new_status in TRACKABLE_STATUSES else None
                    ),
                },
            },
        )

    async def send_payment_failed(
        self, recipient: Recipient, order: dict[str, Any], reason: str | None
    ) -> None:
        await self._send(
            "payment_failed",
            recipient,
            {
                "subject": f"Payment Failed - {order['order_number']}",
                "data": {
                    "customer_name": recipient.name or order["shipping"]["name"],
                    "order_number": order["order_number"],
                    "total_amount": order["total_amount"],
                    "currency": order["currency"],
                    "reason": reason,
                },
            },
        )


# Global instance
notification_client = NotificationClient(settings.NOTIFICATION_SERVICE_URL)
