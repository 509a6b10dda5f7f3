"""
Kafka client for the log topic.

- Agents publish each LogEvent keyed by service name (per-service ordering).
- Processor polls one record at a time with a short timeout; offsets are
  auto-committed (at-least-once).
"""
import logging
from dataclasses import dataclass
from typing import Optional

from aiokafka import AIOKafkaConsumer, AIOKafkaProducer
from aiokafka.errors import KafkaError

from logharbor.core.errors import StartupError

logger = logging.getLogger("logharbor.kafka")


@dataclass(frozen=True)
class QueueMessage:
    key: Optional[bytes]
    value: bytes
    topic: str
    partition: int
    offset: int


class KafkaLogConsumer:
    """Subscribes to one topic in a consumer group and hands out single records."""

    def __init__(self, bootstrap_servers: str, topic: str, group_id: str):
        self.topic = topic
        self._bootstrap_servers = bootstrap_servers
        self._group_id = group_id
        self._consumer: Optional[AIOKafkaConsumer] = None

    async def start(self) -> None:
        consumer = AIOKafkaConsumer(
            self.topic,
            bootstrap_servers=self._bootstrap_servers,
            group_id=self._group_id,
            auto_offset_reset="earliest",
            enable_auto_commit=True,
            auto_commit_interval_ms=1000,
            session_timeout_ms=30000,
            heartbeat_interval_ms=3000,
        )
        try:
            await consumer.start()
        except KafkaError as exc:
            await consumer.stop()
            raise StartupError(
                f"Kafka unreachable at {self._bootstrap_servers}: {exc}"
            ) from exc
        self._consumer = consumer
        logger.info(
            "Kafka consumer subscribed to topic %s (group: %s)", self.topic, self._group_id
        )

    async def poll(self, timeout: float) -> Optional[QueueMessage]:
        """Next record, or None if nothing arrived within timeout seconds."""
        if self._consumer is None:
            raise RuntimeError("Kafka consumer not started")
        batch = await self._consumer.getmany(
            timeout_ms=int(timeout * 1000), max_records=1
        )
        for records in batch.values():
            for rec in records:
                return QueueMessage(
                    key=rec.key,
                    value=rec.value,
                    topic=rec.topic,
                    partition=rec.partition,
                    offset=rec.offset,
                )
        return None

    async def stop(self) -> None:
        consumer, self._consumer = self._consumer, None
        if consumer is not None:
            await consumer.stop()
            logger.info("Kafka consumer stopped")


class KafkaLogPublisher:
    """Producer side used by the log agent."""

    def __init__(self, bootstrap_servers: str, topic: str, client_id: str):
        self.topic = topic
        self._bootstrap_servers = bootstrap_servers
        self._client_id = client_id
        self._producer: Optional[AIOKafkaProducer] = None

    async def start(self) -> None:
        producer = AIOKafkaProducer(
            bootstrap_servers=self._bootstrap_servers,
            client_id=self._client_id,
            acks="all",
        )
        try:
            await producer.start()
        except KafkaError as exc:
            await producer.stop()
            raise StartupError(
                f"Kafka unreachable at {self._bootstrap_servers}: {exc}"
            ) from exc
        self._producer = producer

    async def publish(self, key: bytes, value: bytes) -> None:
        if self._producer is None:
            raise RuntimeError("Kafka producer not started")
        await self._producer.send_and_wait(self.topic, value=value, key=key)

    async def stop(self) -> None:
        producer, self._producer = self._producer, None
        if producer is not None:
            await producer.stop()
