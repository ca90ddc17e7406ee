"""
Broker transport interface.

The core talks to the log transport only through these types:
- BrokerTransport.send(topic, key, value) -> Future[RecordMetadata]
- BrokerTransport.subscribe(topic, group_id, client_id) -> TransportConsumer
- TransportConsumer.poll / commit / seek / assignment / wakeup / close

Partition ownership is decided by the transport. A consumer learns about it
through RebalanceListener callbacks and can query it with assignment().
"""

from abc import ABC, abstractmethod
from concurrent.futures import Future
from dataclasses import dataclass
from typing import List, Optional, Set


@dataclass(frozen=True)
class TopicPartition:
    """
    Represents a topic-partition pair.

    Attributes:
        topic: Topic name
        partition: Partition number
    """
    topic: str
    partition: int

    def __str__(self) -> str:
        return f"{self.topic}-{self.partition}"


@dataclass(frozen=True)
class RecordMetadata:
    """
    Acknowledgement for a sent record.

    Attributes:
        topic: Topic name
        partition: Partition the record landed in
        offset: Offset within the partition
        timestamp: Append time in milliseconds
    """
    topic: str
    partition: int
    offset: int
    timestamp: int


@dataclass(frozen=True)
class ConsumerRecord:
    """
    A record consumed from a topic-partition.

    Attributes:
        topic: Topic name
        partition: Partition number
        offset: Record offset
        key: Partitioning key
        value: Payload
        timestamp: Append time in milliseconds
    """
    topic: str
    partition: int
    offset: int
    key: Optional[bytes]
    value: bytes
    timestamp: int

    @property
    def topic_partition(self) -> TopicPartition:
        return TopicPartition(self.topic, self.partition)


class RebalanceListener:
    """
    Callbacks invoked when the transport moves partitions between members.

    Revocation is reported before the new assignment.
    """

    def on_partitions_revoked(self, partitions: Set[TopicPartition]) -> None:
        pass

    def on_partitions_assigned(self, partitions: Set[TopicPartition]) -> None:
        pass


class TransportConsumer(ABC):
    """One member of a consumer group."""

    @abstractmethod
    def poll(self, timeout_ms: int = 1000) -> List[ConsumerRecord]:
        """
        Fetch the next batch from owned partitions.

        Blocks for at most timeout_ms when nothing is available.

        Raises:
            InterruptedShutdown: If wakeup() was called
        """
        pass

    @abstractmethod
    def commit(self, tp: TopicPartition, offset: int) -> bool:
        """
        Commit the next offset to read for a partition.

        Returns:
            False if the partition is no longer owned by this member
        """
        pass

    @abstractmethod
    def seek(self, tp: TopicPartition, offset: int) -> None:
        """Move the fetch position of an owned partition."""
        pass

    @abstractmethod
    def assignment(self) -> Set[TopicPartition]:
        """Partitions currently owned."""
        pass

    @abstractmethod
    def wakeup(self) -> None:
        """Make a blocked or the next poll raise InterruptedShutdown."""
        pass

    @abstractmethod
    def close(self) -> None:
        """Leave the group."""
        pass


class BrokerTransport(ABC):
    """Partitioned log transport."""

    @abstractmethod
    def send(self, topic: str, key: Optional[bytes], value: bytes) -> "Future[RecordMetadata]":
        """
        Submit a record.

        Args:
            topic: Topic name
            key: Partitioning key (same key -> same partition)
            value: Payload

        Returns:
            Future resolving to RecordMetadata, or failing with the send error
        """
        pass

    @abstractmethod
    def subscribe(
        self,
        topic: str,
        group_id: str,
        client_id: str,
        listener: Optional[RebalanceListener] = None,
    ) -> TransportConsumer:
        """
        Join a consumer group on a topic.

        Args:
            topic: Topic name
            group_id: Consumer group id
            client_id: Member name
            listener: Rebalance callbacks

        Returns:
            Group member handle
        """
        pass

    def close(self) -> None:
        pass
