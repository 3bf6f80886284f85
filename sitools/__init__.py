"""HTTP client and server helpers, and Kafka producer and consumer-group wrappers."""

__version__ = "2.0.0"