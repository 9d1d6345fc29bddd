"""
Payment gateway adapter contract

Every gateway, whatever its wire protocol, is driven through the same three
calls:

    create_intent(order, amount)  -> GatewayIntentRef
    verify(intent_id, proof)      -> PaymentOutcome
    query_status(intent_id)       -> PaymentOutcome

Adapters never touch the database. They translate transport problems into
GatewayError and report everything the gateway said as a PaymentOutcome;
deciding what an outcome does to an order is the reconciliation service's job.
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping

import httpx

from orderflow.core.logging import get_logger
from orderflow.core.metrics import gateway_errors_total, gateway_request_duration_seconds
from orderflow.errors import GatewayError, ValidationError
from orderflow.models import PaymentMethod

logger = get_logger(__name__)


class OutcomeState(str, Enum):
    SUCCEEDED = "SUCCEEDED"  # Gateway confirmed the money moved
    FAILED = "FAILED"  # Definitive decline or verification mismatch
    PENDING = "PENDING"  # Not settled yet; ask again later


@dataclass(frozen=True)
class OrderRef:
    """What an adapter needs to know about the order being paid"""

    order_id: str
    order_number: str
    user_id: str
    currency: str


@dataclass(frozen=True)
class GatewayIntentRef:
    gateway: str
    intent_id: str
    # Opaque continuation for the client: redirect URL, public key, links...
    client_data: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PaymentOutcome:
    state: OutcomeState
    payment_id: str | None = None
    payment_type: str | None = None
    reason: str | None = None
    gateway_state: str | None = None  # Raw state string reported by the gateway

    @classmethod
    def succeeded(
        cls, payment_id: str, payment_type: str | None = None, gateway_state: str | None = None
    ) -> "PaymentOutcome":
        return cls(
            OutcomeState.SUCCEEDED,
            payment_id=payment_id,
            payment_type=payment_type,
            gateway_state=gateway_state,
        )

    @classmethod
    def failed(cls, reason: str, gateway_state: str | None = None) -> "PaymentOutcome":
        return cls(OutcomeState.FAILED, reason=reason, gateway_state=gateway_state)

    @classmethod
    def pending(cls, gateway_state: str | None = None) -> "PaymentOutcome":
        return cls(OutcomeState.PENDING, gateway_state=gateway_state)


def to_minor_units(amount: Decimal) -> int:
    """Rupees/dollars to paise/cents"""
    return int((amount * 100).to_integral_value())


class PaymentGateway(ABC):
    """Base class for gateway adapters; one instance per gateway per process"""

    method: PaymentMethod
    supports_webhook = False
    # Proof field naming the intent the client paid, if the gateway sends one
    proof_intent_field: str | None = None

    def __init__(self, http: httpx.AsyncClient):
        self.http = http

    @property
    def name(self) -> str:
        return self.method.value.lower()

    @abstractmethod
    async def create_intent(self, order: OrderRef, amount: Decimal) -> GatewayIntentRef:
        """Open a payment attempt for `amount` on the gateway"""

    @abstractmethod
    async def verify(self, intent_id: str, proof: Mapping[str, Any]) -> PaymentOutcome:
        """
        Re-derive the payment result server side from the caller's proof.

        Raises:
            ValidationError: proof is missing or malformed
            GatewayError: the gateway could not be reached or answered garbage
        """

    @abstractmethod
    async def query_status(self, intent_id: str) -> PaymentOutcome:
        """Ask the gateway for the current state of an intent"""

    def claimed_intent(self, proof: Mapping[str, Any]) -> str | None:
        if not self.proof_intent_field:
            return None
        claimed = proof.get(self.proof_intent_field)
        return str(claimed) if claimed else None

    def public_config(self) -> dict[str, Any]:
        """Non-secret values the client needs to start a checkout"""
        return {}

    async def parse_webhook(self, raw_body: bytes, headers: Mapping[str, str]) -> str:
        """Authenticate a webhook delivery and return the intent id it refers to"""
        raise ValidationError(f"{self.name} does not send webhooks")

    async def _call(self, operation: str, method: str, url: str, **kwargs) -> httpx.Response:
        """
        Send one request to the gateway, timed and bounded by the client timeout.

        Raises:
            GatewayError: timeout or transport failure
        """
        start_time = time.time()
        try:
            response = await self.http.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            gateway_errors_total.labels(gateway=self.name, operation=operation).inc()
            logger.error("gateway_timeout", gateway=self.name, operation=operation)
            raise GatewayError(self.name, operation, "timed out") from e
        except httpx.HTTPError as e:
            gateway_errors_total.labels(gateway=self.name, operation=operation).inc()
            logger.error(
                "gateway_unreachable",
                gateway=self.name,
                operation=operation,
                error_type=type(e).__name__,
                error_message=str(e),
            )
            raise GatewayError(self.name, operation, "unreachable") from e
        finally:
            gateway_request_duration_seconds.labels(
                gateway=self.name, operation=operation
            ).observe(time.time() - start_time)

        logger.debug(
            "gateway_response",
            gateway=self.name,
            operation=operation,
            status_code=response.status_code,
        )
        return response

    def _json(
        self, response: httpx.Response, operation: str, ok: tuple[int, ...] = (200, 201)
    ) -> dict[str, Any]:
        """
        Decode a successful gateway answer.

        Raises:
            GatewayError: unexpected status code or a body that is not a JSON object
        """
        if response.status_code not in ok:
            gateway_errors_total.labels(gateway=self.name, operation=operation).inc()
            logger.error(
                "gateway_unexpected_status",
                gateway=self.name,
                operation=operation,
                status_code=response.status_code,
                body=response.text[:500],
            )
            raise GatewayError(self.name, operation, f"HTTP {response.status_code}")
        try:
            body = response.json()
        except ValueError as e:
            gateway_errors_total.labels(gateway=self.name, operation=operation).inc()
            raise GatewayError(self.name, operation, "invalid JSON response") from e
        if not isinstance(body, dict):
            raise GatewayError(self.name, operation, "unexpected response shape")
        return body
