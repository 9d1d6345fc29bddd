"""
Process-wide gateway registry

Owns the shared httpx.AsyncClient (connection pool, timeout bound) and one
adapter per gateway. Started and stopped by the application lifespan and by
the payment sweeper.
"""

import httpx

from orderflow.core.config import settings
from orderflow.core.logging import get_logger
from orderflow.core.redis import RedisClient, redis_client
from orderflow.errors import NotFoundError
from orderflow.gateways.base import PaymentGateway
from orderflow.gateways.paypal import PayPalGateway
from orderflow.gateways.phonepe import PhonePeGateway
from orderflow.gateways.razorpay import RazorpayGateway
from orderflow.gateways.tokens import GatewayTokenCache

logger = get_logger(__name__)


class GatewayRegistry:
    def __init__(self, redis: RedisClient):
        self.redis = redis
        self.http: httpx.AsyncClient | None = None
        self._gateways: dict[str, PaymentGateway] = {}

    def start(self, http: httpx.AsyncClient | None = None) -> None:
        self.http = http or httpx.AsyncClient(
            timeout=httpx.Timeout(settings.GATEWAY_TIMEOUT_SECONDS)
        )
        gateways: list[PaymentGateway] = [
            RazorpayGateway(self.http),
            PhonePeGateway(self.http, GatewayTokenCache(self.redis, "phonepe")),
            PayPalGateway(self.http, GatewayTokenCache(self.redis, "paypal")),
        ]
        self._gateways = {gateway.name: gateway for gateway in gateways}
        logger.info("gateway_registry_started", gateways=sorted(self._gateways))

    async def stop(self) -> None:
        if self.http is not None:
            await self.http.aclose()
            self.http = None
        self._gateways = {}
        logger.info("gateway_registry_stopped")

    def register(self, gateway: PaymentGateway) -> None:
        self._gateways[gateway.name] = gateway

    def get(self, name: str) -> PaymentGateway:
        """
        Raises:
            NotFoundError: unknown gateway name (or registry not started)
        """
        gateway = self._gateways.get(name.lower())
        if gateway is None:
            raise NotFoundError("Payment gateway", name)
        return gateway

    @property
    def gateways(self) -> dict[str, PaymentGateway]:
        return dict(self._gateways)

    def public_config(self) -> dict[str, dict]:
        return {name: gateway.public_config() for name, gateway in self._gateways.items()}


# Global gateway registry
gateway_registry = GatewayRegistry(redis_client)
