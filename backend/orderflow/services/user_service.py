"""
User Service - resolves notification recipients

Implements cache-aside pattern:
1. Check Redis cache first (fast path)
2. On cache miss, fetch from the identity service
3. Update cache with fetched data
"""

import time

from orderflow.clients.user_client import UserClient, user_client
from orderflow.core.config import settings
from orderflow.core.logging import get_logger
from orderflow.core.metrics import cache_lookups_total
from orderflow.core.redis import RedisClient
from orderflow.models import Recipient

logger = get_logger(__name__)


class UserService:
    """Recipient lookup with Redis cache-aside"""

    @staticmethod
    async def get_recipient(
        user_id: str, redis: RedisClient, client: UserClient = user_client
    ) -> Recipient | None:
        """
        Resolve the contact data of a user

        A Redis failure degrades to a direct identity lookup; an identity
        failure is logged and yields None (the notification is skipped).

        Returns:
            Recipient, or None if the user cannot be resolved
        """
        start_time = time.time()
        cache_key = f"user:{user_id}"

        try:
            cached_data = await redis.get_json(cache_key)
        except Exception as cache_error:
            logger.warning(
                "recipient_cache_read_failed",
                user_id=user_id,
                error_type=type(cache_error).__name__,
            )
            cached_data = None

        if cached_data:
            cache_lookups_total.labels(cache="user", result="hit").inc()
            logger.debug("recipient_cache_hit", user_id=user_id)
            return Recipient(**cached_data)

        cache_lookups_total.labels(cache="user", result="miss").inc()

        try:
            api_data = await client.get_user(user_id)
        except Exception as e:
            logger.error(
                "recipient_lookup_failed",
                user_id=user_id,
                error_type=type(e).__name__,
                error_message=str(e),
            )
            return None

        if not api_data:
            logger.warning("recipient_not_found", user_id=user_id)
            return None

        recipient = Recipient(
            user_id=user_id,
            email=api_data["email"],
            name=api_data.get("name"),
        )

        try:
            await redis.set_json(
                cache_key, recipient.model_dump(mode="json"), ttl=settings.USER_CACHE_TTL
            )
        except Exception as cache_error:
            # Non-critical: we still have the data
            logger.warning(
                "recipient_cache_update_failed",
                user_id=user_id,
                error_type=type(cache_error).__name__,
                error_message=str(cache_error),
            )

        logger.info(
            "recipient_resolved",
            user_id=user_id,
            source="identity",
            duration_ms=round((time.time() - start_time) * 1000, 2),
        )
        return recipient
