"""
Message queue hand-off between the submission handler and the delivery worker.

Work items are correlation ids, used as both key and payload. Delivery is
at-least-once and ordered only per key, so consumers must be idempotent per
correlation id. A consumer commits only after a polled batch is handled.
"""

import logging
import threading
from collections import deque
from typing import Dict, List, NamedTuple, Optional

from kafka import KafkaConsumer, KafkaProducer
from kafka.errors import KafkaError

from app.config import Settings
from app.exceptions import QueueUnavailable

logger = logging.getLogger(__name__)


class QueueMessage(NamedTuple):
    key: str
    payload: str


class MessageQueue:
    """Contract shared by the queue adapters."""

    def publish(self, key: str, payload: str) -> None:
        raise NotImplementedError

    def poll(self, timeout_seconds: float = 1.0, max_records: int = 100) -> List[QueueMessage]:
        raise NotImplementedError

    def commit(self) -> None:
        raise NotImplementedError

    def rewind(self) -> None:
        """Make the uncommitted batch pollable again without acknowledging it."""
        raise NotImplementedError

    def close(self) -> None:
        pass


class KafkaMessageQueue(MessageQueue):
    """
    Kafka-backed queue.

    The producer waits for all in-sync replicas and blocks on each send for
    at most `timeout_seconds`. The consumer never auto-commits.
    """

    def __init__(
        self,
        bootstrap_servers: str,
        topic: str,
        group_id: str,
        timeout_seconds: float = 10.0,
    ):
        self.bootstrap_servers = bootstrap_servers.split(",")
        self.topic = topic
        self.group_id = group_id
        self.timeout_seconds = timeout_seconds
        self._producer: Optional[KafkaProducer] = None
        self._consumer: Optional[KafkaConsumer] = None

    def _get_producer(self) -> KafkaProducer:
        """Get or create Kafka producer with lazy initialization."""
        if self._producer is None:
            timeout_ms = int(self.timeout_seconds * 1000)
            try:
                self._producer = KafkaProducer(
                    bootstrap_servers=self.bootstrap_servers,
                    key_serializer=lambda k: k.encode("utf-8"),
                    value_serializer=lambda v: v.encode("utf-8"),
                    acks="all",
                    retries=3,
                    retry_backoff_ms=100,
                    request_timeout_ms=timeout_ms,
                    max_block_ms=timeout_ms,
                )
                logger.info("Kafka producer connected")
            except KafkaError as e:
                logger.error(f"Failed to connect to Kafka: {e}")
                raise QueueUnavailable(f"Failed to connect to Kafka: {e}") from e
        return self._producer

    def _get_consumer(self) -> KafkaConsumer:
        if self._consumer is None:
            try:
                self._consumer = KafkaConsumer(
                    self.topic,
                    bootstrap_servers=self.bootstrap_servers,
                    group_id=self.group_id,
                    key_deserializer=lambda k: k.decode("utf-8") if k else None,
                    value_deserializer=lambda v: v.decode("utf-8"),
                    auto_offset_reset="earliest",
                    enable_auto_commit=False,
                    request_timeout_ms=max(int(self.timeout_seconds * 1000), 30000),
                )
                logger.info(f"Kafka consumer subscribed to {self.topic} (group {self.group_id})")
            except KafkaError as e:
                logger.error(f"Failed to connect Kafka consumer: {e}")
                raise QueueUnavailable(f"Failed to connect to Kafka: {e}") from e
        return self._consumer

    def publish(self, key: str, payload: str) -> None:
        producer = self._get_producer()
        try:
            future = producer.send(self.topic, key=key, value=payload)
            future.get(timeout=self.timeout_seconds)
        except KafkaError as e:
            logger.error(f"Failed to publish to {self.topic}: {e}", extra={"correlation_id": key})
            raise QueueUnavailable(f"Failed to publish SMS request: {e}") from e
        logger.info(f"SMS request published to Kafka topic {self.topic}", extra={"correlation_id": key})

    def poll(self, timeout_seconds: float = 1.0, max_records: int = 100) -> List[QueueMessage]:
        consumer = self._get_consumer()
        try:
            batches = consumer.poll(timeout_ms=int(timeout_seconds * 1000), max_records=max_records)
        except KafkaError as e:
            raise QueueUnavailable(f"Failed to poll Kafka: {e}") from e
        messages = []
        for records in batches.values():
            for record in records:
                messages.append(QueueMessage(key=record.key or record.value, payload=record.value))
        return messages

    def commit(self) -> None:
        if self._consumer is None:
            return
        try:
            self._consumer.commit()
        except KafkaError as e:
            # Uncommitted offsets are redelivered; processing is idempotent
            logger.error(f"Failed to commit Kafka offsets: {e}")
            raise QueueUnavailable(f"Failed to commit offsets: {e}") from e

    def rewind(self) -> None:
        """
        Drop the consumer without committing. The next poll rejoins the group
        and resumes from the last committed offsets.
        """
        if self._consumer is None:
            return
        consumer, self._consumer = self._consumer, None
        try:
            consumer.close(autocommit=False)
        except KafkaError as e:
            logger.error(f"Failed to close Kafka consumer: {e}")
        logger.info(f"Kafka consumer rewound to committed offsets on {self.topic}")

    def close(self) -> None:
        if self._producer is not None:
            self._producer.flush(timeout=self.timeout_seconds)
            self._producer.close(timeout=self.timeout_seconds)
            self._producer = None
        if self._consumer is not None:
            self._consumer.close()
            self._consumer = None


class InMemoryMessageQueue(MessageQueue):
    """
    Process-local queue with the same contract, for local runs and tests.

    Items polled but not committed by a thread can be put back at the head
    of the queue with `redeliver_uncommitted`, as a consumer restart would.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._pending: deque = deque()
        self._uncommitted: Dict[int, List[QueueMessage]] = {}
        self.published: List[QueueMessage] = []

    def publish(self, key: str, payload: str) -> None:
        message = QueueMessage(key=key, payload=payload)
        with self._lock:
            self._pending.append(message)
            self.published.append(message)
        logger.info("SMS request published to in-memory queue", extra={"correlation_id": key})

    def poll(self, timeout_seconds: float = 1.0, max_records: int = 100) -> List[QueueMessage]:
        with self._lock:
            batch = []
            while self._pending and len(batch) < max_records:
                batch.append(self._pending.popleft())
            self._uncommitted.setdefault(threading.get_ident(), []).extend(batch)
        return batch

    def commit(self) -> None:
        with self._lock:
            self._uncommitted.pop(threading.get_ident(), None)

    def rewind(self) -> None:
        with self._lock:
            items = self._uncommitted.pop(threading.get_ident(), [])
            self._pending.extendleft(reversed(items))

    def redeliver_uncommitted(self) -> int:
        with self._lock:
            items = [m for batch in self._uncommitted.values() for m in batch]
            self._uncommitted.clear()
            self._pending.extendleft(reversed(items))
        return len(items)

    def __len__(self) -> int:
        with self._lock:
            return len(self._pending)


def build_message_queue(settings: Settings) -> MessageQueue:
    backend = settings.QUEUE_BACKEND.lower()
    if backend == "memory":
        return InMemoryMessageQueue()
    if backend == "kafka":
        return KafkaMessageQueue(
            bootstrap_servers=settings.KAFKA_BOOTSTRAP_SERVERS,
            topic=settings.SMS_SEND_TOPIC,
            group_id=settings.KAFKA_CONSUMER_GROUP,
            timeout_seconds=settings.QUEUE_TIMEOUT_SECONDS,
        )
    raise ValueError(f"Unknown QUEUE_BACKEND: {settings.QUEUE_BACKEND}")
