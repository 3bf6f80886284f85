"""Kafka producers bound to a default topic, with retries for the synchronous one."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Callable

from sitools.sikafka.kafka_error import is_retryable_error

DEFAULT_RETRY_MAX = 1
DEFAULT_RETRY_WAIT = 1.0
_BACKOFF_BASE = 0.25
_BACKOFF_CAP = 10.0


@dataclass
class ProducerMessage:
    """A message to be sent to a topic."""

    topic: str
    key: bytes | None = None
    value: bytes | None = None
    headers: list[tuple[bytes, bytes]] = field(default_factory=list)
    metadata: Any = None


def exponential_backoff(retries: int, max_retries: int) -> float:
    """Return the wait in seconds before a retry: 0.25 * 2**retries, at most 10."""
    return min((1 << retries) * _BACKOFF_BASE, _BACKOFF_CAP)


SyncProducerOption = Callable[["SyncProducer"], None]


def with_sync_producer_option_retry_max(retry_max: int) -> SyncProducerOption:
    """Set how many send attempts a SyncProducer makes."""
    def apply(producer: SyncProducer) -> None:
        producer.retry_max = retry_max
    return apply


class SyncProducer:
    """Sends messages through a producer with send_message(message) -> (partition, offset)."""

    def __init__(self, producer: Any, topic: str, *args: SyncProducerOption | None) -> None:
        self.producer = producer
        self.topic = topic
        self.retry_max = DEFAULT_RETRY_MAX
        self.retry_wait = DEFAULT_RETRY_WAIT
        for option in args:
            if option is not None:
                option(self)

    def produce(self, key: bytes, value: bytes) -> tuple[int, int]:
        """Send key and value to the default topic and return (partition, offset)."""
        return self._produce(ProducerMessage(self.topic, key, value))

    def produce_with_topic(self, topic: str, key: bytes, value: bytes) -> tuple[int, int]:
        """Send key and value to the given topic and return (partition, offset)."""
        return self._produce(ProducerMessage(topic, key, value))

    def produce_with_message(self, message: ProducerMessage) -> tuple[int, int]:
        """Send a prepared message and return (partition, offset)."""
        return self._produce(message)

    def _produce(self, message: ProducerMessage) -> tuple[int, int]:
        attempts = 0
        wait = self.retry_wait
        while attempts < self.retry_max:
            attempts += 1
            try:
                partition, offset = self.producer.send_message(message)
            except Exception as exc:
                if is_retryable_error(exc) and attempts < self.retry_max:
                    time.sleep(wait)
                    wait *= 2
                    continue
                raise
            return partition, offset
        return 0, 0

    def __enter__(self) -> SyncProducer:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.producer.close()


class AsyncProducer:
    """Queues messages on a producer's input queue without waiting for delivery."""

    def __init__(self, producer: Any, topic: str) -> None:
        self.producer = producer
        self.topic = topic

    def produce(self, key: bytes, value: bytes) -> tuple[int, int]:
        """Queue key and value for the default topic; always returns (0, 0)."""
        return self.produce_with_message(ProducerMessage(self.topic, key, value))

    def produce_with_topic(self, topic: str, key: bytes, value: bytes) -> tuple[int, int]:
        """Queue key and value for the given topic; always returns (0, 0)."""
        return self.produce_with_message(ProducerMessage(topic, key, value))

    def produce_with_message(self, message: ProducerMessage) -> tuple[int, int]:
        """Queue a prepared message; always returns (0, 0)."""
        self.producer.input.put(message)
        return 0, 0

    def __enter__(self) -> AsyncProducer:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.producer.close()