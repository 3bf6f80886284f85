"""Kafka errors, retrying producers and a consumer group runner over supplied clients."""