"""Indexed message store and its storage backends."""

from messagepipe.store.backend import (
    InMemoryBackend,
    KeyValueBackend,
    RedisBackend,
    WriteBatch,
    create_backend,
)
from messagepipe.store.indexed_store import IndexedMessageStore

__all__ = [
    "IndexedMessageStore",
    "KeyValueBackend",
    "InMemoryBackend",
    "RedisBackend",
    "WriteBatch",
    "create_backend",
]
