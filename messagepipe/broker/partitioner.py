"""
Partitioner for choosing the partition of each record.

Strategies:
- Default: hash the key when present, round-robin otherwise
- Key-hash: always hash the key (same key -> same partition)
- Round-robin: spread evenly regardless of key
"""

import hashlib
import threading
from abc import ABC, abstractmethod
from typing import Optional

from messagepipe.utils.logging import get_logger

logger = get_logger(__name__)


def hash_key(key: bytes, num_partitions: int) -> int:
    """Stable md5-based mapping of a key to a partition."""
    return int(hashlib.md5(key).hexdigest(), 16) % num_partitions


class Partitioner(ABC):
    """Abstract base class for partitioners."""

    @abstractmethod
    def partition(self, topic: str, key: Optional[bytes], num_partitions: int) -> int:
        """
        Choose partition for a record.

        Args:
            topic: Topic name
            key: Record key (None for no key)
            num_partitions: Number of available partitions

        Returns:
            Partition number (0 to num_partitions-1)
        """
        pass


class RoundRobinPartitioner(Partitioner):
    """Distributes records evenly regardless of key."""

    def __init__(self):
        self._counter = 0
        self._lock = threading.Lock()

    def partition(self, topic: str, key: Optional[bytes], num_partitions: int) -> int:
        if num_partitions <= 0:
            raise ValueError(f"Invalid num_partitions: {num_partitions}")

        with self._lock:
            partition = self._counter % num_partitions
            self._counter += 1

        return partition


class DefaultPartitioner(RoundRobinPartitioner):
    """
    Hybrid strategy.

    - Key present: hash key to partition (sticky per key)
    - No key: round-robin across partitions
    """

    def partition(self, topic: str, key: Optional[bytes], num_partitions: int) -> int:
        if num_partitions <= 0:
            raise ValueError(f"Invalid num_partitions: {num_partitions}")

        if key is None:
            return super().partition(topic, key, num_partitions)

        partition = hash_key(key, num_partitions)

        logger.debug("Hashed key to partition", topic=topic, partition=partition)

        return partition


class KeyHashPartitioner(Partitioner):
    """Always uses the key hash; records must carry a key."""

    def partition(self, topic: str, key: Optional[bytes], num_partitions: int) -> int:
        if key is None:
            raise ValueError("KeyHashPartitioner requires key to be set")

        if num_partitions <= 0:
            raise ValueError(f"Invalid num_partitions: {num_partitions}")

        return hash_key(key, num_partitions)


def create_partitioner(partitioner_type: str = "default") -> Partitioner:
    """
    Factory method to create partitioner.

    Args:
        partitioner_type: "default", "key_hash" or "round_robin"

    Returns:
        Partitioner instance
    """
    partitioners = {
        "default": DefaultPartitioner,
        "key_hash": KeyHashPartitioner,
        "round_robin": RoundRobinPartitioner,
    }

    partitioner_class = partitioners.get(partitioner_type)

    if partitioner_class is None:
        raise ValueError(f"Unknown partitioner type: {partitioner_type}")

    return partitioner_class()
