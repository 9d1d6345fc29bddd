"""
OAuth access token cache shared by the token-gated gateways

Tokens live in Redis under gateway_token:<gateway> and expire a safety margin
before the gateway would reject them, so every API worker reuses one token.
If Redis is unavailable the token is fetched fresh for each call.
"""

from collections.abc import Awaitable, Callable

from orderflow.core.config import settings
from orderflow.core.logging import get_logger
from orderflow.core.metrics import cache_lookups_total
from orderflow.core.redis import RedisClient

logger = get_logger(__name__)

# (access_token, lifetime in seconds)
TokenFetcher = Callable[[], Awaitable[tuple[str, int]]]


class GatewayTokenCache:
    def __init__(self, redis: RedisClient, gateway: str):
        self.redis = redis
        self.gateway = gateway
        self.key = f"gateway_token:{gateway}"

    async def get_token(self, fetch: TokenFetcher) -> str:
        try:
            cached = await self.redis.get(self.key)
        except Exception as e:
            logger.warning(
                "gateway_token_cache_read_failed",
                gateway=self.gateway,
                error_type=type(e).__name__,
            )
            cached = None

        if cached:
            cache_lookups_total.labels(cache="gateway_token", result="hit").inc()
            return cached
        cache_lookups_total.labels(cache="gateway_token", result="miss").inc()

        token, lifetime = await fetch()
        ttl = lifetime - settings.GATEWAY_TOKEN_SAFETY_MARGIN_SECONDS
        if ttl > 0:
            try:
                await self.redis.set(self.key, token, ttl=ttl)
            except Exception as e:
                logger.warning(
                    "gateway_token_cache_write_failed",
                    gateway=self.gateway,
                    error_type=type(e).__name__,
                )
        logger.info("gateway_token_fetched", gateway=self.gateway, ttl=ttl)
        return token

    async def invalidate(self) -> None:
        try:
            await self.redis.delete(self.key)
        except Exception as e:
            logger.warning(
                "gateway_token_invalidate_failed",
                gateway=self.gateway,
                error_type=type(e).__name__,
            )
