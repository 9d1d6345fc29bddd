"""Kafka producer and consumer for order event streaming"""

import json
import logging
import time
from typing import Any

from aiokafka import AIOKafkaProducer, AIOKafkaConsumer
from aiokafka.errors import KafkaError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from orderflow.core.config import settings
from orderflow.core.metrics import (
    kafka_events_published_total,
    kafka_publish_duration_seconds,
)

logger = logging.getLogger(__name__)


class KafkaProducerClient:
    """Async Kafka producer"""

    def __init__(self):
        self.producer: AIOKafkaProducer | None = None

    async def start(self):
        try:
            self.producer = AIOKafkaProducer(
                bootstrap_servers=settings.KAFKA_BOOTSTRAP_SERVERS,
                value_serializer=lambda v: json.dumps(v).encode("utf-8"),
                acks="all",
                compression_type="gzip",
                request_timeout_ms=30000,
            )
            await self.producer.start()
            logger.info(f"Kafka producer started: {settings.KAFKA_BOOTSTRAP_SERVERS}")
        except Exception as e:
            logger.error(f"Failed to start Kafka producer: {e}")
            raise

    async def stop(self):
        if self.producer:
            await self.producer.stop()
            logger.info("Kafka producer stopped")

    @retry(
        retry=retry_if_exception_type(KafkaError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    async def send(
        self,
        topic: str,
        event_type: str,
        value: dict[str, Any],
        key: str | None = None,
        headers: list[tuple[str, bytes]] | None = None,
    ) -> None:
        """
        Publish an already-enveloped event

        Args:
            topic: Kafka topic name
            event_type: Event type label for metrics
            value: Full event envelope
            key: Partition key (order user id)
            headers: Kafka headers (traceparent)
        """
        if not self.producer:
            raise RuntimeError("Kafka producer not started")

        start_time = time.time()
        try:
            await self.producer.send_and_wait(
                topic,
                value=value,
                key=key.encode("utf-8") if key else None,
                headers=headers or [],
            )
        except KafkaError as e:
            kafka_events_published_total.labels(
                topic=topic, event_type=event_type, status="failure"
            ).inc()
            logger.error(f"Failed to publish to {topic}: {e}")
            raise

        kafka_events_published_total.labels(
            topic=topic, event_type=event_type, status="success"
        ).inc()
        kafka_publish_duration_seconds.labels(topic=topic, event_type=event_type).observe(
            time.time() - start_time
        )


class KafkaConsumerClient:
    """Async Kafka consumer with manual offset commits"""

    def __init__(self, topics: list[str]):
        self.topics = topics
        self.consumer: AIOKafkaConsumer | None = None

    async def start(self):
        try:
            self.consumer = AIOKafkaConsumer(
                *self.topics,
                bootstrap_servers=settings.KAFKA_BOOTSTRAP_SERVERS,
                group_id=settings.KAFKA_CONSUMER_GROUP_ID,
                value_deserializer=lambda m: json.loads(m.decode("utf-8")),
                auto_offset_reset="earliest",
                enable_auto_commit=False,  # at-least-once
                max_poll_records=100,
                session_timeout_ms=30000,
                max_poll_interval_ms=300000,
            )
            await self.consumer.start()
            logger.info(f"Kafka consumer started for topics: {self.topics}")
        except Exception as e:
            logger.error(f"Failed to start Kafka consumer: {e}")
            raise

    async def stop(self):
        if self.consumer:
            await self.consumer.stop()
            logger.info("Kafka consumer stopped")

    async def consume_messages(self):
        """Async generator yielding messages"""
        if not self.consumer:
            raise RuntimeError("Kafka consumer not started")

        async for message in self.consumer:
            yield message

    async def commit(self):
        if self.consumer:
            await self.consumer.commit()


# Global Kafka instances
kafka_producer = KafkaProducerClient()
kafka_consumer = KafkaConsumerClient(settings.order_topics)
