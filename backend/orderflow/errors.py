"""Domain exceptions for Orderflow.

Each carries the HTTP status the API layer renders it with, so services never
import FastAPI.
"""

from typing import Any


class OrderflowError(Exception):
    """Base exception for all orderflow errors."""

    status_code = 500

    def __init__(self, message: str, details: list[dict[str, Any]] | None = None):
        self.message = message
        self.details = details or []
        super().__init__(message)


class ValidationError(OrderflowError):
    """Request is malformed or incomplete; nothing was changed."""

    status_code = 400


class AuthorizationError(OrderflowError):
    """Requester is neither the owner nor an administrator."""

    status_code = 403

    def __init__(self, message: str = "Access denied"):
        super().__init__(message)


class NotFoundError(OrderflowError):
    status_code = 404

    def __init__(self, resource: str, identifier: str):
        self.resource = resource
        self.identifier = identifier
        super().__init__(f"{resource} not found: {identifier}")


class ConflictError(OrderflowError):
    """Current state forbids the request (stock, terminal status, already paid)."""

    status_code = 409


class PaymentPendingError(OrderflowError):
    """Gateway has not settled the payment yet; confirmation may be retried."""

    status_code = 409

    def __init__(self, gateway: str, gateway_state: str | None):
        self.gateway = gateway
        self.gateway_state = gateway_state
        super().__init__(
            f"Payment not completed on {gateway} (state: {gateway_state or 'UNKNOWN'})"
        )


class PaymentRejectedError(OrderflowError):
    """Gateway declined the payment or its proof failed verification.

    The order has been moved to FAILED/CANCELLED; a new order is required.
    """

    status_code = 402

    def __init__(self, gateway: str, reason: str, order_id: str | None = None):
        self.gateway = gateway
        self.reason = reason
        self.order_id = order_id
        super().__init__(f"Payment rejected by {gateway}: {reason}")


class GatewayError(OrderflowError):
    """Gateway unreachable, timed out or answered with something unusable.

    The order's payment fields are left untouched; the caller should retry.
    """

    status_code = 502

    def __init__(self, gateway: str, operation: str, reason: str):
        self.gateway = gateway
        self.operation = operation
        self.reason = reason
        super().__init__(f"{gateway} {operation} failed: {reason}")
