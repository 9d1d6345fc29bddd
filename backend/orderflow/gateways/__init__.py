"""
Payment gateway adapters behind one contract (see gateways.base)
"""

from orderflow.gateways.base import (
    GatewayIntentRef,
    OrderRef,
    OutcomeState,
    PaymentGateway,
    PaymentOutcome,
)
from orderflow.gateways.registry import GatewayRegistry, gateway_registry

__all__ = [
    "GatewayIntentRef",
    "OrderRef",
    "OutcomeState",
    "PaymentGateway",
    "PaymentOutcome",
    "GatewayRegistry",
    "gateway_registry",
]
