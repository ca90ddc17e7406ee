"""Broker transport interface and the in-process partitioned broker."""

from messagepipe.broker.memory import (
    BrokerConfig,
    InMemoryBroker,
    InMemoryConsumer,
    OffsetResetStrategy,
)
from messagepipe.broker.transport import (
    BrokerTransport,
    ConsumerRecord,
    RebalanceListener,
    RecordMetadata,
    TopicPartition,
    TransportConsumer,
)

__all__ = [
    "BrokerTransport",
    "TransportConsumer",
    "RebalanceListener",
    "TopicPartition",
    "RecordMetadata",
    "ConsumerRecord",
    "BrokerConfig",
    "InMemoryBroker",
    "InMemoryConsumer",
    "OffsetResetStrategy",
]
