"""Kafka client errors and the rule for which of them are worth retrying."""

from __future__ import annotations

from enum import Enum


class ErrorKind(Enum):
    """Kinds of failure reported by a Kafka client."""

    BROKER_NOT_AVAILABLE = "kafka server: broker not available"
    LEADER_NOT_AVAILABLE = "kafka server: leader not available"
    REPLICA_NOT_AVAILABLE = "kafka server: replica not available"
    REQUEST_TIMED_OUT = "kafka server: request timed out"
    NOT_ENOUGH_REPLICAS = "kafka server: not enough in-sync replicas"
    NOT_ENOUGH_REPLICAS_AFTER_APPEND = (
        "kafka server: Messages are written to the log, "
        "but to fewer in-sync replicas than required"
    )
    NETWORK_EXCEPTION = "kafka server: The server disconnected before a response was received"
    OUT_OF_BROKERS = "kafka: client has run out of available brokers"
    OUT_OF_ORDER_SEQUENCE_NUMBER = "kafka server: out of order sequence number"
    NOT_CONTROLLER = "kafka server: not the controller"
    NOT_LEADER_FOR_PARTITION = "kafka server: not the leader for this partition"
    BREAKER_OPEN = "circuit breaker is open"
    CLOSED_CONSUMER_GROUP = "kafka: tried to use a consumer group that was closed"


RETRYABLE_KINDS = frozenset({
    ErrorKind.BROKER_NOT_AVAILABLE,
    ErrorKind.LEADER_NOT_AVAILABLE,
    ErrorKind.REPLICA_NOT_AVAILABLE,
    ErrorKind.REQUEST_TIMED_OUT,
    ErrorKind.NOT_ENOUGH_REPLICAS,
    ErrorKind.OUT_OF_BROKERS,
    ErrorKind.OUT_OF_ORDER_SEQUENCE_NUMBER,
    ErrorKind.NOT_CONTROLLER,
    ErrorKind.NOT_LEADER_FOR_PARTITION,
    ErrorKind.BREAKER_OPEN,
})


class KafkaError(Exception):
    """A Kafka client failure of a known kind."""

    def __init__(self, kind: ErrorKind, message: str | None = None) -> None:
        super().__init__(message or kind.value)
        self.kind = kind


class ConsumerGroupClosedError(KafkaError):
    """Raised when a closed consumer group is used."""

    def __init__(self, message: str | None = None) -> None:
        super().__init__(ErrorKind.CLOSED_CONSUMER_GROUP, message)


def is_retryable_error(err: BaseException | None) -> bool:
    """Return True if err is a transient Kafka failure that may succeed on retry."""
    return isinstance(err, KafkaError) and err.kind in RETRYABLE_KINDS