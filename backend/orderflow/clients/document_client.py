"""
Document service client: renders invoice PDFs from an order snapshot
"""

from typing import Any

from orderflow.clients.base import CollaboratorClient
from orderflow.core.config import settings
from orderflow.core.logging import get_logger

logger = get_logger(__name__)


class DocumentClient(CollaboratorClient):
    service_name = "document"

    async def render_invoice(self, order: dict[str, Any]) -> bytes:
        """
        Render the invoice for an order

        Args:
            order: Order snapshot as carried by order events

        Returns:
            PDF bytes
        """
        response = await self._request(
            "POST",
            "/invoices/render",
            json={
                "invoice_number": order["invoice_number"],
                "order": order,
            },
        )
        response.raise_for_status()

        logger.info(
            "invoice_rendered",
            order_id=order["order_id"],
            invoice_number=order["invoice_number"],
            size_bytes=len(response.content),
        )
        return response.content


# Global instance
document_client = DocumentClient(settings.DOCUMENT_SERVICE_URL)
