"""
Key-value backends for the indexed store.

The indexed store only needs Redis-shaped primitives: string values per key,
sets of members per key, a bulk get, and a way to apply several writes as one
unit. Every primitive is individually atomic; transaction() groups writes and
atomic_update() reads one key and writes as a single unit.

Backends:
- InMemoryBackend: process-local dicts and sets behind one RLock
- RedisBackend: redis-py client, transactions via MULTI/EXEC pipelines
"""

import fnmatch
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, List, Optional, Set, Tuple

from messagepipe.utils.logging import get_logger

logger = get_logger(__name__)

UpdateBuilder = Callable[[Optional[str], "WriteBatch"], None]


class WriteBatch:
    """
    Queue of writes applied together when a transaction block exits.

    Operations are recorded as (op, key, arg) tuples and replayed by the
    owning backend.
    """

    def __init__(self):
        self.ops: List[Tuple[str, str, Optional[str]]] = []

    def set(self, key: str, value: str) -> "WriteBatch":
        self.ops.append(("set", key, value))
        return self

    def delete(self, key: str) -> "WriteBatch":
        self.ops.append(("delete", key, None))
        return self

    def sadd(self, key: str, member: str) -> "WriteBatch":
        self.ops.append(("sadd", key, member))
        return self

    def srem(self, key: str, member: str) -> "WriteBatch":
        self.ops.append(("srem", key, member))
        return self

    def __len__(self) -> int:
        return len(self.ops)


class KeyValueBackend(ABC):
    """Abstract storage primitives used by the indexed store."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Get the value at key, or None."""
        pass

    @abstractmethod
    def mget(self, keys: List[str]) -> List[Optional[str]]:
        """Get values for many keys in one round trip; None for holes."""
        pass

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        pass

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Delete key; returns True if it existed."""
        pass

    @abstractmethod
    def sadd(self, key: str, member: str) -> bool:
        """Add member to set; returns True if it was newly added."""
        pass

    @abstractmethod
    def srem(self, key: str, member: str) -> bool:
        """Remove member from set; returns True if it was present."""
        pass

    @abstractmethod
    def smembers(self, key: str) -> Set[str]:
        pass

    @abstractmethod
    def sismember(self, key: str, member: str) -> bool:
        pass

    @abstractmethod
    def keys(self, pattern: str = "*") -> List[str]:
        """List keys matching a glob pattern."""
        pass

    @abstractmethod
    def flush(self) -> None:
        """Remove everything."""
        pass

    @abstractmethod
    @contextmanager
    def transaction(self) -> Iterator[WriteBatch]:
        """
        Group writes into one unit.

        Usage:
            with backend.transaction() as tx:
                tx.set("a", "1")
                tx.sadd("s", "a")

        Writes are applied when the block exits normally and discarded if
        it raises.
        """
        pass

    @abstractmethod
    def atomic_update(self, key: str, build: UpdateBuilder) -> None:
        """
        Read key and apply dependent writes as one unit.

        build(current_value, batch) queues writes based on the value of key.
        No other writer can change key between the read and the apply. build
        may run more than once when a backend retries after a conflict, so it
        must only queue writes.

        Args:
            key: Key whose value the writes depend on
            build: Callback queuing writes onto the batch
        """
        pass


class InMemoryBackend(KeyValueBackend):
    """
    Thread-safe process-local backend.

    Values and sets live in separate dicts, mirroring how Redis keeps a key
    either a string or a set.
    """

    def __init__(self):
        self._values: Dict[str, str] = {}
        self._sets: Dict[str, Set[str]] = {}
        self._lock = threading.RLock()

        logger.info("Initialized in-memory backend")

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._values.get(key)

    def mget(self, keys: List[str]) -> List[Optional[str]]:
        with self._lock:
            return [self._values.get(key) for key in keys]

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._values[key] = value

    def delete(self, key: str) -> bool:
        with self._lock:
            existed = key in self._values or key in self._sets
            self._values.pop(key, None)
            self._sets.pop(key, None)
            return existed

    def sadd(self, key: str, member: str) -> bool:
        with self._lock:
            members = self._sets.setdefault(key, set())
            if member in members:
                return False
            members.add(member)
            return True

    def srem(self, key: str, member: str) -> bool:
        with self._lock:
            members = self._sets.get(key)
            if not members or member not in members:
                return False
            members.discard(member)
            if not members:
                del self._sets[key]
            return True

    def smembers(self, key: str) -> Set[str]:
        with self._lock:
            return set(self._sets.get(key, ()))

    def sismember(self, key: str, member: str) -> bool:
        with self._lock:
            return member in self._sets.get(key, ())

    def keys(self, pattern: str = "*") -> List[str]:
        with self._lock:
            all_keys = list(self._values) + list(self._sets)
        return [key for key in all_keys if fnmatch.fnmatchcase(key, pattern)]

    def flush(self) -> None:
        with self._lock:
            self._values.clear()
            self._sets.clear()

    @contextmanager
    def transaction(self) -> Iterator[WriteBatch]:
        batch = WriteBatch()
        yield batch

        with self._lock:
            self._apply(batch)

    def atomic_update(self, key: str, build: UpdateBuilder) -> None:
        with self._lock:
            batch = WriteBatch()
            build(self._values.get(key), batch)
            self._apply(batch)

    def _apply(self, batch: WriteBatch) -> None:
        for op, key, arg in batch.ops:
            if op == "set":
                self.set(key, arg)
            elif op == "delete":
                self.delete(key)
            elif op == "sadd":
                self.sadd(key, arg)
            elif op == "srem":
                self.srem(key, arg)

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {"values": len(self._values), "sets": len(self._sets)}


class RedisBackend(KeyValueBackend):
    """
    Backend over a Redis server via redis-py.

    Example:
        backend = RedisBackend.from_url("redis://localhost:6379/0")
    """

    max_watch_retries = 10

    def __init__(self, client):
        """
        Args:
            client: redis.Redis instance created with decode_responses=True
        """
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisBackend":
        import redis

        client = redis.Redis.from_url(url, decode_responses=True)
        logger.info("Initialized redis backend", url=url)
        return cls(client)

    def get(self, key: str) -> Optional[str]:
        return self._client.get(key)

    def mget(self, keys: List[str]) -> List[Optional[str]]:
        if not keys:
            return []
        return list(self._client.mget(keys))

    def set(self, key: str, value: str) -> None:
        self._client.set(key, value)

    def delete(self, key: str) -> bool:
        return bool(self._client.delete(key))

    def sadd(self, key: str, member: str) -> bool:
        return bool(self._client.sadd(key, member))

    def srem(self, key: str, member: str) -> bool:
        return bool(self._client.srem(key, member))

    def smembers(self, key: str) -> Set[str]:
        return set(self._client.smembers(key))

    def sismember(self, key: str, member: str) -> bool:
        return bool(self._client.sismember(key, member))

    def keys(self, pattern: str = "*") -> List[str]:
        return list(self._client.scan_iter(match=pattern))

    def flush(self) -> None:
        self._client.flushdb()

    @contextmanager
    def transaction(self) -> Iterator[WriteBatch]:
        batch = WriteBatch()
        yield batch

        if not batch:
            return

        pipe = self._client.pipeline(transaction=True)
        self._queue(pipe, batch)
        pipe.execute()

    def atomic_update(self, key: str, build: UpdateBuilder) -> None:
        """WATCH key, read it, then MULTI/EXEC the writes; retried on conflict."""
        from redis.exceptions import WatchError

        with self._client.pipeline(transaction=True) as pipe:
            for attempt in range(1, self.max_watch_retries + 1):
                try:
                    pipe.watch(key)
                    batch = WriteBatch()
                    build(pipe.get(key), batch)
                    pipe.multi()
                    self._queue(pipe, batch)
                    pipe.execute()
                    return
                except WatchError:
                    logger.debug("Watched key changed, retrying", key=key, attempt=attempt)
                    pipe.reset()

        raise RuntimeError(f"Update of {key} kept conflicting after {self.max_watch_retries} attempts")

    @staticmethod
    def _queue(pipe, batch: WriteBatch) -> None:
        for op, key, arg in batch.ops:
            if op == "set":
                pipe.set(key, arg)
            elif op == "delete":
                pipe.delete(key)
            elif op == "sadd":
                pipe.sadd(key, arg)
            elif op == "srem":
                pipe.srem(key, arg)


def create_backend(kind: str = "memory", redis_url: Optional[str] = None) -> KeyValueBackend:
    """
    Factory method to create a backend.

    Args:
        kind: "memory" or "redis"
        redis_url: Connection URL for the redis backend

    Returns:
        Backend instance
    """
    if kind == "memory":
        return InMemoryBackend()

    if kind == "redis":
        if not redis_url:
            raise ValueError("redis backend requires redis_url")
        return RedisBackend.from_url(redis_url)

    raise ValueError(f"Unknown store backend: {kind}")
