import json
import logging
import time
from typing import Any

from redis.exceptions import RedisError, ConnectionError, TimeoutError
import redis.asyncio as redis
from orderflow.core.config import settings
from orderflow.core.metrics import (
    redis_commands_total,
    redis_command_duration_seconds,
    redis_errors_total,
)

logger = logging.getLogger(__name__)


class RedisClient:
    """Async Redis client wrapper with metrics and error classification"""

    def __init__(self):
        self.client: redis.Redis | None = None

    async def connect(self):
        """
        Connect to Redis

        Raises:
            ConnectionError: If unable to connect to Redis
        """
        try:
            self.client = redis.from_url(
                settings.REDIS_URL,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_keepalive=True,
                health_check_interval=30,
            )
            await self.client.ping()
            logger.info(
                f"Connected to Redis at {settings.REDIS_HOST}:{settings.REDIS_PORT}"
            )
        except Exception as e:
            logger.error(f"Failed to connect to Redis: {e}")
            raise

    async def disconnect(self):
        if self.client:
            await self.client.aclose()
            logger.info("Disconnected from Redis")

    async def _run(self, command: str, key: str, call):
        if not self.client:
            raise RuntimeError("Redis client not connected")

        start_time = time.time()
        try:
            result = await call(self.client)
        except (ConnectionError, TimeoutError) as e:
            redis_errors_total.labels(error_type="connection").inc()
            logger.error(f"Redis connection/timeout error for {command.upper()} {key}: {e}")
            raise
        except RedisError as e:
            redis_errors_total.labels(error_type="other").inc()
            logger.error(f"Redis error for {command.upper()} {key}: {e}")
            raise
        redis_commands_total.labels(command=command).inc()
        redis_command_duration_seconds.labels(command=command).observe(
            time.time() - start_time
        )
        return result

    async def ping(self) -> bool:
        """True if Redis answers, False otherwise"""
        if not self.client:
            return False
        try:
            await self.client.ping()
            return True
        except RedisError:
            return False

    async def get(self, key: str) -> str | None:
        return await self._run("get", key, lambda c: c.get(key))

    async def set(self, key: str, value: str, ttl: int | None = None) -> bool:
        if ttl:
            await self._run("setex", key, lambda c: c.setex(key, ttl, value))
        else:
            await self._run("set", key, lambda c: c.set(key, value))
        return True

    async def set_if_absent(self, key: str, value: str, ttl: int) -> bool:
        """
        SET NX with expiry

        Returns:
            True if the key was created, False if it already existed
        """
        result = await self._run("setnx", key, lambda c: c.set(key, value, ex=ttl, nx=True))
        return bool(result)

    async def delete(self, key: str) -> int:
        return await self._run("delete", key, lambda c: c.delete(key))

    async def exists(self, key: str) -> bool:
        return bool(await self._run("exists", key, lambda c: c.exists(key)))

    async def get_json(self, key: str) -> dict[str, Any] | None:
        """
        Get and deserialize a JSON value

        Raises:
            ValueError: If the stored value is not valid JSON
        """
        value = await self.get(key)
        if value:
            try:
                return json.loads(value)
            except json.JSONDecodeError as e:
                logger.error(f"JSON decode error for key {key}: {e}")
                raise ValueError(f"Invalid JSON in Redis key {key}") from e
        return None

    async def set_json(
        self, key: str, value: dict[str, Any], ttl: int | None = None
    ) -> bool:
        try:
            json_str = json.dumps(value)
        except (TypeError, ValueError) as e:
            logger.error(f"JSON encode error for key {key}: {e}")
            raise TypeError(f"Value not JSON-serializable for key {key}") from e
        return await self.set(key, json_str, ttl)


# Global Redis client instance
redis_client = RedisClient()
