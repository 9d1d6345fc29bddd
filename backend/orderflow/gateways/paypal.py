"""
PayPal adapter (create + capture), Orders v2

Flow: server creates a CAPTURE-intent order -> client approves it on PayPal
-> server captures. The capture answer is authoritative; the create step
proves nothing about payment.
"""

from decimal import Decimal
from typing import Any, Mapping

import httpx

from orderflow.core.config import settings
from orderflow.core.logging import get_logger
from orderflow.errors import GatewayError, ValidationError
from orderflow.gateways.base import (
    GatewayIntentRef,
    OrderRef,
    PaymentGateway,
    PaymentOutcome,
)
from orderflow.gateways.tokens import GatewayTokenCache
from orderflow.models import PaymentMethod, quantize_money

logger = get_logger(__name__)

# Capture errors that settle the attempt as declined
DECLINE_ISSUES = {"INSTRUMENT_DECLINED", "TRANSACTION_REFUSED", "PAYER_CANNOT_PAY"}
DECLINED_CAPTURE_STATES = {"DECLINED", "FAILED"}


def payment_type_from_source(source: dict[str, Any] | None) -> str:
    if not source:
        return "PayPal"
    if "card" in source:
        brand = (source.get("card") or {}).get("brand")
        return f"{brand} Card" if brand else "Card"
    if "paypal" in source:
        return "PayPal Wallet"
    return "PayPal"


def _first_capture(body: dict[str, Any]) -> dict[str, Any] | None:
    for unit in body.get("purchase_units") or []:
        captures = (unit.get("payments") or {}).get("captures") or []
        if captures:
            return captures[0]
    return None


def _issues(body: dict[str, Any]) -> set[str]:
    return {detail.get("issue", "") for detail in body.get("details") or []}


class PayPalGateway(PaymentGateway):
    method = PaymentMethod.PAYPAL
    proof_intent_field = "paypal_order_id"

    def __init__(
        self,
        http: httpx.AsyncClient,
        tokens: GatewayTokenCache,
        base_url: str | None = None,
        client_id: str | None = None,
        client_secret: str | None = None,
    ):
        super().__init__(http)
        self.tokens = tokens
        self.base_url = (base_url or settings.PAYPAL_BASE_URL).rstrip("/")
        self.client_id = client_id if client_id is not None else settings.PAYPAL_CLIENT_ID
        self.client_secret = (
            client_secret if client_secret is not None else settings.PAYPAL_CLIENT_SECRET
        )

    def public_config(self) -> dict[str, Any]:
        return {"client_id": self.client_id}

    async def _fetch_token(self) -> tuple[str, int]:
        response = await self._call(
            "oauth_token",
            "POST",
            f"{self.base_url}/v1/oauth2/token",
            auth=httpx.BasicAuth(self.client_id, self.client_secret),
            data={"grant_type": "client_credentials"},
        )
        body = self._json(response, "oauth_token", ok=(200,))
        if not body.get("access_token"):
            raise GatewayError(self.name, "oauth_token", "no access token in response")
        return body["access_token"], int(body.get("expires_in", 0))

    async def _authorized(self, operation: str, method: str, path: str, **kwargs) -> httpx.Response:
        token = await self.tokens.get_token(self._fetch_token)
        headers = {"Authorization": f"Bearer {token}", **kwargs.pop("headers", {})}
        response = await self._call(
            operation, method, f"{self.base_url}{path}", headers=headers, **kwargs
        )
        if response.status_code == 401:
            await self.tokens.invalidate()
        return response

    async def create_intent(self, order: OrderRef, amount: Decimal) -> GatewayIntentRef:
        frontend = settings.FRONTEND_URL.rstrip("/")
        response = await self._authorized(
            "create_intent",
            "POST",
            "/v2/checkout/orders",
            headers={"Prefer": "return=representation", "PayPal-Request-Id": order.order_id},
            json={
                "intent": "CAPTURE",
                "purchase_units": [
                    {
                        "reference_id": order.order_id,
                        "custom_id": order.order_number,
                        "description": f"{settings.PAYPAL_BRAND_NAME} Order #{order.order_number}",
                        "amount": {
                            "currency_code": order.currency,
                            "value": str(quantize_money(amount)),
                        },
                    }
                ],
                "application_context": {
                    "brand_name": settings.PAYPAL_BRAND_NAME,
                    "landing_page": "BILLING",
                    "user_action": "PAY_NOW",
                    "return_url": f"{frontend}/payment/success",
                    "cancel_url": f"{frontend}/payment/cancel",
                },
            },
        )
        body = self._json(response, "create_intent")
        if not body.get("id"):
            raise GatewayError(self.name, "create_intent", "no order id in response")

        links = body.get("links") or []
        approve_url = next(
            (link["href"] for link in links if link.get("rel") in ("approve", "payer-action")),
            None,
        )
        return GatewayIntentRef(
            gateway=self.name,
            intent_id=body["id"],
            client_data={
                "id": body["id"],
                "status": body.get("status"),
                "approve_url": approve_url,
                "links": links,
            },
        )

    def _outcome_from_order(self, body: dict[str, Any], intent_id: str) -> PaymentOutcome:
        status = body.get("status")
        capture = _first_capture(body)
        capture_status = capture.get("status") if capture else None

        if capture_status in DECLINED_CAPTURE_STATES:
            return PaymentOutcome.failed(
                reason=f"Payment status: {capture_status}", gateway_state=capture_status
            )
        if status == "COMPLETED":
            return PaymentOutcome.succeeded(
                payment_id=capture["id"] if capture else intent_id,
                payment_type=payment_type_from_source(body.get("payment_source")),
                gateway_state=status,
            )
        if status == "VOIDED":
            return PaymentOutcome.failed(reason="Payment status: VOIDED", gateway_state=status)
        return PaymentOutcome.pending(gateway_state=status or "UNKNOWN")

    async def verify(self, intent_id: str, proof: Mapping[str, Any]) -> PaymentOutcome:
        """Capture the approved order; the capture answer settles the payment"""
        claimed = self.claimed_intent(proof)
        if claimed and claimed != intent_id:
            raise ValidationError("PayPal order id does not match this order")

        response = await self._authorized(
            "capture",
            "POST",
            f"/v2/checkout/orders/{intent_id}/capture",
            headers={"Prefer": "return=representation"},
            json={},
        )
        if response.status_code == 422:
            issues = _issues(self._json(response, "capture", ok=(422,)))
            if "ORDER_ALREADY_CAPTURED" in issues:
                logger.info("paypal_order_already_captured", intent_id=intent_id)
                return await self.query_status(intent_id)
            if issues & DECLINE_ISSUES:
                return PaymentOutcome.failed(
                    reason=sorted(issues & DECLINE_ISSUES)[0], gateway_state="DECLINED"
                )
            if "ORDER_NOT_APPROVED" in issues:
                return PaymentOutcome.pending(gateway_state="ORDER_NOT_APPROVED")
            raise GatewayError(self.name, "capture", ",".join(sorted(issues)) or "HTTP 422")

        body = self._json(response, "capture")
        return self._outcome_from_order(body, intent_id)

    async def query_status(self, intent_id: str) -> PaymentOutcome:
        response = await self._authorized("query_status", "GET", f"/v2/checkout/orders/{intent_id}")
        body = self._json(response, "query_status", ok=(200,))
        return self._outcome_from_order(body, intent_id)
