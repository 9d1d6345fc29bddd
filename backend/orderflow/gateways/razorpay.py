"""
Razorpay adapter (signature verified)

Flow: server creates a Razorpay order -> client completes checkout with the
public key -> client posts back {razorpay_payment_id, razorpay_signature}
-> server recomputes HMAC-SHA256(key_secret, "<order id>|<payment id>")
over the *stored* intent id and requires an exact match.
"""

import hashlib
import hmac
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
    to_minor_units,
)
from orderflow.models import PaymentMethod

logger = get_logger(__name__)

DEFAULT_PAYMENT_TYPE = "Online Payment"


def razorpay_signature(secret: str, intent_id: str, payment_id: str) -> str:
    message = f"{intent_id}|{payment_id}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


class RazorpayGateway(PaymentGateway):
    method = PaymentMethod.RAZORPAY
    proof_intent_field = "razorpay_order_id"

    def __init__(
        self,
        http: httpx.AsyncClient,
        key_id: str | None = None,
        key_secret: str | None = None,
        base_url: str | None = None,
    ):
        super().__init__(http)
        self.key_id = key_id if key_id is not None else settings.RAZORPAY_KEY_ID
        self.key_secret = key_secret if key_secret is not None else settings.RAZORPAY_KEY_SECRET
        self.base_url = (base_url or settings.RAZORPAY_BASE_URL).rstrip("/")

    @property
    def _auth(self) -> httpx.BasicAuth:
        return httpx.BasicAuth(self.key_id, self.key_secret)

    def public_config(self) -> dict[str, Any]:
        return {"key": self.key_id}

    async def create_intent(self, order: OrderRef, amount: Decimal) -> GatewayIntentRef:
        response = await self._call(
            "create_intent",
            "POST",
            f"{self.base_url}/v1/orders",
            auth=self._auth,
            json={
                "amount": to_minor_units(amount),
                "currency": order.currency,
                "receipt": order.order_number,
                "notes": {"order_id": order.order_id, "order_number": order.order_number},
            },
        )
        body = self._json(response, "create_intent")
        intent_id = body.get("id")
        if not intent_id:
            raise GatewayError(self.name, "create_intent", "no order id in response")

        return GatewayIntentRef(
            gateway=self.name,
            intent_id=intent_id,
            client_data={
                "id": intent_id,
                "amount": body.get("amount"),
                "currency": body.get("currency", order.currency),
                "key": self.key_id,
            },
        )

    async def verify(self, intent_id: str, proof: Mapping[str, Any]) -> PaymentOutcome:
        payment_id = proof.get("razorpay_payment_id")
        signature = proof.get("razorpay_signature")
        if not payment_id or not signature:
            raise ValidationError("Missing payment verification parameters")

        claimed_intent = self.claimed_intent(proof)
        if claimed_intent and claimed_intent != intent_id:
            logger.warning(
                "razorpay_intent_mismatch", intent_id=intent_id, claimed_intent=claimed_intent
            )
            return PaymentOutcome.failed("Payment does not belong to this order")

        expected = razorpay_signature(self.key_secret, intent_id, str(payment_id))
        if not hmac.compare_digest(expected, str(signature)):
            logger.warning("razorpay_signature_mismatch", intent_id=intent_id)
            return PaymentOutcome.failed("Invalid payment signature")

        return PaymentOutcome.succeeded(
            payment_id=str(payment_id),
            payment_type=proof.get("payment_type") or DEFAULT_PAYMENT_TYPE,
            gateway_state="signature_verified",
        )

    async def query_status(self, intent_id: str) -> PaymentOutcome:
        """
        A Razorpay order accepts several attempts, so a failed attempt is not
        final: only a captured payment settles the intent.
        """
        response = await self._call(
            "query_status",
            "GET",
            f"{self.base_url}/v1/orders/{intent_id}/payments",
            auth=self._auth,
        )
        body = self._json(response, "query_status", ok=(200,))
        for payment in body.get("items", []):
            if payment.get("status") == "captured":
                return PaymentOutcome.succeeded(
                    payment_id=payment["id"],
                    payment_type=payment.get("method") or DEFAULT_PAYMENT_TYPE,
                    gateway_state="captured",
                )
        states = sorted({p.get("status", "unknown") for p in body.get("items", [])})
        return PaymentOutcome.pending(gateway_state=",".join(states) or "created")
