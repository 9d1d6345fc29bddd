"""
PhonePe adapter (OAuth token + status polling + webhook), Standard Checkout v2

Flow: server creates a checkout with a merchant order id -> client is sent to
the returned redirect URL -> on return (or on the webhook) the server asks
PhonePe for the order status. Neither the redirect nor the webhook body is
trusted on its own; the status query is authoritative.
"""

import base64
import binascii
import hashlib
import hmac
import json
import time
from decimal import Decimal
from typing import Any, Mapping
from urllib.parse import urlencode

import httpx

from orderflow.core.config import settings
from orderflow.core.logging import get_logger
from orderflow.errors import AuthorizationError, GatewayError, ValidationError
from orderflow.gateways.base import (
    GatewayIntentRef,
    OrderRef,
    PaymentGateway,
    PaymentOutcome,
    to_minor_units,
)
from orderflow.gateways.tokens import GatewayTokenCache
from orderflow.models import PaymentMethod

logger = get_logger(__name__)

DEFAULT_TOKEN_LIFETIME_SECONDS = 3600


def merchant_order_id(order_number: str) -> str:
    return f"IC_{order_number}_{int(time.time() * 1000)}"


def _payment_mode(body: dict[str, Any]) -> str | None:
    details = body.get("paymentDetails")
    if isinstance(details, list) and details:
        return details[0].get("paymentMode")
    if isinstance(details, dict):
        return details.get("paymentMode")
    return None


class PhonePeGateway(PaymentGateway):
    method = PaymentMethod.PHONEPE
    proof_intent_field = "merchant_order_id"
    supports_webhook = True

    def __init__(
        self,
        http: httpx.AsyncClient,
        tokens: GatewayTokenCache,
        base_url: str | None = None,
        client_id: str | None = None,
        client_secret: str | None = None,
        webhook_username: str | None = None,
        webhook_password: str | None = None,
    ):
        super().__init__(http)
        self.tokens = tokens
        self.base_url = (base_url or settings.PHONEPE_BASE_URL).rstrip("/")
        self.client_id = client_id if client_id is not None else settings.PHONEPE_CLIENT_ID
        self.client_secret = (
            client_secret if client_secret is not None else settings.PHONEPE_CLIENT_SECRET
        )
        self.webhook_username = webhook_username or settings.PHONEPE_WEBHOOK_USERNAME
        self.webhook_password = webhook_password or settings.PHONEPE_WEBHOOK_PASSWORD

    def public_config(self) -> dict[str, Any]:
        return {"merchant_id": settings.PHONEPE_MERCHANT_ID}

    async def _fetch_token(self) -> tuple[str, int]:
        response = await self._call(
            "oauth_token",
            "POST",
            f"{self.base_url}/v1/oauth/token",
            data={
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "client_version": settings.PHONEPE_CLIENT_VERSION,
                "grant_type": "client_credentials",
            },
        )
        body = self._json(response, "oauth_token", ok=(200,))
        token = body.get("access_token")
        if not token:
            raise GatewayError(self.name, "oauth_token", "no access token in response")

        if body.get("expires_at"):
            lifetime = int(body["expires_at"]) - int(time.time())
        else:
            lifetime = int(body.get("expires_in") or DEFAULT_TOKEN_LIFETIME_SECONDS)
        return token, lifetime

    async def _authorized(self, operation: str, method: str, path: str, **kwargs) -> httpx.Response:
        token = await self.tokens.get_token(self._fetch_token)
        response = await self._call(
            operation,
            method,
            f"{self.base_url}{path}",
            headers={"Authorization": f"O-Bearer {token}"},
            **kwargs,
        )
        if response.status_code == 401:
            # Revoked or rotated early; next call fetches a new one
            await self.tokens.invalidate()
        return response

    async def create_intent(self, order: OrderRef, amount: Decimal) -> GatewayIntentRef:
        merchant_id = merchant_order_id(order.order_number)
        redirect_url = (
            f"{settings.FRONTEND_URL.rstrip('/')}/payment/phonepe/callback?"
            + urlencode({"orderId": order.order_id, "merchantOrderId": merchant_id})
        )
        response = await self._authorized(
            "create_intent",
            "POST",
            "/checkout/v2/pay",
            json={
                "merchantOrderId": merchant_id,
                "amount": to_minor_units(amount),
                "expireAfter": settings.PHONEPE_PAYMENT_EXPIRY_SECONDS,
                "metaInfo": {
                    "udf1": order.order_id,
                    "udf2": order.order_number,
                    "udf3": order.user_id,
                },
                "paymentFlow": {
                    "type": "PG_CHECKOUT",
                    "message": f"Payment for Order #{order.order_number}",
                    "merchantUrls": {"redirectUrl": redirect_url},
                },
            },
        )
        body = self._json(response, "create_intent")
        if not body.get("redirectUrl"):
            raise GatewayError(self.name, "create_intent", "no redirect URL in response")

        return GatewayIntentRef(
            gateway=self.name,
            intent_id=merchant_id,
            client_data={
                "redirect_url": body["redirectUrl"],
                "merchant_order_id": merchant_id,
                "gateway_order_id": body.get("orderId"),
                "state": body.get("state"),
            },
        )

    async def verify(self, intent_id: str, proof: Mapping[str, Any]) -> PaymentOutcome:
        # The client only says "I am back"; the gateway's status decides
        claimed = self.claimed_intent(proof)
        if claimed and claimed != intent_id:
            raise ValidationError("Merchant order id does not match this order")
        return await self.query_status(intent_id)

    async def query_status(self, intent_id: str) -> PaymentOutcome:
        response = await self._authorized(
            "query_status", "GET", f"/checkout/v2/order/{intent_id}/status"
        )
        body = self._json(response, "query_status", ok=(200,))
        state = body.get("state")

        if state == "COMPLETED":
            return PaymentOutcome.succeeded(
                payment_id=body.get("orderId") or intent_id,
                payment_type=_payment_mode(body) or "UPI",
                gateway_state=state,
            )
        if state == "FAILED":
            return PaymentOutcome.failed(
                reason=body.get("errorCode") or "Payment failed", gateway_state=state
            )
        return PaymentOutcome.pending(gateway_state=state or "UNKNOWN")

    def _check_webhook_auth(self, headers: Mapping[str, str]) -> None:
        if not (self.webhook_username and self.webhook_password):
            return
        expected = hashlib.sha256(
            f"{self.webhook_username}:{self.webhook_password}".encode("utf-8")
        ).hexdigest()
        supplied = headers.get("authorization", "")
        if supplied.lower().startswith("sha256 "):
            supplied = supplied[7:]
        if not hmac.compare_digest(expected, supplied.strip().lower()):
            raise AuthorizationError("Invalid webhook credentials")

    async def parse_webhook(self, raw_body: bytes, headers: Mapping[str, str]) -> str:
        """
        Accepts both delivery shapes:
            {"response": "<base64 JSON>"} with data.merchantTransactionId
            {"event": ..., "payload": {"merchantOrderId": ...}}

        Raises:
            AuthorizationError: credentials configured and not matching
            ValidationError: body cannot be decoded or names no intent
        """
        self._check_webhook_auth(headers)

        try:
            envelope = json.loads(raw_body)
            if "response" in envelope:
                decoded = json.loads(base64.b64decode(envelope["response"], validate=True))
                data = decoded.get("data") or {}
                intent_id = data.get("merchantTransactionId") or data.get("merchantOrderId")
            else:
                intent_id = (envelope.get("payload") or {}).get("merchantOrderId")
        except (ValueError, TypeError, AttributeError, binascii.Error) as e:
            raise ValidationError("Malformed webhook payload") from e

        if not intent_id:
            raise ValidationError("Webhook does not reference a payment")
        return str(intent_id)
