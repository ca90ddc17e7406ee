"""
Indexed message store.

Layout on the backend:
- message:<id>       -> serialized Message (envelope JSON)
- messages           -> set of all known ids
- sender:<sender>    -> set of ids sent by that sender

Invariant: an id is in the mapping iff it is in the global set and in exactly
one sender set, the one named by the stored message's sender. Writes that
touch the mapping and the indexes go through one backend transaction.
"""

from typing import Iterable, List, Optional, Set

from messagepipe.errors import CorruptionError, SerializationError
from messagepipe.model.envelope import decode_record, encode_record
from messagepipe.model.message import AgeLike, Message, to_timedelta
from messagepipe.store.backend import KeyValueBackend, WriteBatch
from messagepipe.utils.logging import get_logger

logger = get_logger(__name__)

MESSAGE_KEY_PREFIX = "message:"
MESSAGE_SET_KEY = "messages"
SENDER_INDEX_PREFIX = "sender:"


def message_key(message_id: str) -> str:
    return MESSAGE_KEY_PREFIX + message_id


def sender_key(sender: str) -> str:
    return SENDER_INDEX_PREFIX + sender


class IndexedMessageStore:
    """
    Key-value message store with a primary and a per-sender index.

    Shared by all consumer workers and by the service facade. The store adds
    no locking of its own; it relies on the backend's atomic primitives and
    transactions.

    Example:
        store = IndexedMessageStore(InMemoryBackend())
        store.save(message)
        store.list_by_sender("Producer-A")
        store.evict_older_than(timedelta(hours=1))
    """

    def __init__(self, backend: KeyValueBackend):
        """
        Initialize store.

        Args:
            backend: Storage backend
        """
        self._backend = backend

        logger.info("Indexed store initialized", backend=type(backend).__name__)

    @property
    def backend(self) -> KeyValueBackend:
        return self._backend

    def save(self, message: Message) -> Message:
        """
        Insert or overwrite a message and index it.

        If the id already exists under a different sender, the id moves from
        the old sender's index to the new one. The previous record is read
        and the writes applied as one unit, so concurrent saves of one id
        never leave it indexed under two senders.

        Args:
            message: Message to save

        Returns:
            The saved message

        Raises:
            SerializationError: If the message cannot be encoded (nothing is written)
        """
        record = encode_record(message)
        key = message_key(message.id)
        moved_from: Optional[str] = None

        def build(existing: Optional[str], tx: WriteBatch) -> None:
            nonlocal moved_from
            previous_sender = self._sender_of(existing, message.id)

            tx.set(key, record)
            tx.sadd(MESSAGE_SET_KEY, message.id)
            tx.sadd(sender_key(message.sender), message.id)

            if previous_sender is not None and previous_sender != message.sender:
                tx.srem(sender_key(previous_sender), message.id)
                moved_from = previous_sender
            else:
                moved_from = None

        self._backend.atomic_update(key, build)

        if moved_from is not None:
            logger.info(
                "Moved message to new sender index",
                message_id=message.id,
                old_sender=moved_from,
                new_sender=message.sender,
            )

        logger.debug("Saved message", message_id=message.id, sender=message.sender)

        return message

    def _sender_of(self, existing: Optional[str], message_id: str) -> Optional[str]:
        if existing is None:
            return None

        try:
            return decode_record(existing).sender
        except SerializationError as e:
            logger.warning(
                "Existing record is undecodable, sender index left untouched",
                message_id=message_id,
                error=str(e),
            )
            return None

    def get(self, message_id: str) -> Optional[Message]:
        """
        Get a message by id.

        Args:
            message_id: Message id

        Returns:
            Message or None if unknown

        Raises:
            CorruptionError: If the stored value cannot be decoded
        """
        key = message_key(message_id)
        record = self._backend.get(key)

        if record is None:
            return None

        try:
            return decode_record(record)
        except SerializationError as e:
            logger.error("Corrupt message record", message_id=message_id, error=str(e))
            raise CorruptionError(key, str(e)) from e

    def list(self) -> List[Message]:
        """
        List every stored message, in no particular order.

        Undecodable records and ids deleted concurrently are skipped.
        """
        return self._fetch_many(self._backend.smembers(MESSAGE_SET_KEY))

    def list_by_sender(self, sender: str) -> List[Message]:
        """List messages sent by the given sender."""
        return self._fetch_many(self._backend.smembers(sender_key(sender)))

    def _fetch_many(self, message_ids: Iterable[str]) -> List[Message]:
        ids = list(message_ids)
        if not ids:
            return []

        records = self._backend.mget([message_key(message_id) for message_id in ids])

        messages = []
        for message_id, record in zip(ids, records):
            if record is None:
                continue

            try:
                messages.append(decode_record(record))
            except SerializationError as e:
                logger.error(
                    "Skipping undecodable message",
                    message_id=message_id,
                    error=str(e),
                )

        return messages

    def delete(self, message_id: str) -> None:
        """
        Delete a message and its index entries.

        No-op for unknown ids. When the stored value is gone or corrupt, the
        sender index cannot be resolved and only the mapping entry and the
        global membership are removed. The sender is read and the entries
        removed as one unit.
        """
        key = message_key(message_id)

        def build(existing: Optional[str], tx: WriteBatch) -> None:
            tx.srem(MESSAGE_SET_KEY, message_id)
            if existing is None:
                return

            tx.delete(key)
            sender = self._sender_of(existing, message_id)
            if sender is not None:
                tx.srem(sender_key(sender), message_id)

        self._backend.atomic_update(key, build)

        logger.debug("Deleted message", message_id=message_id)

    def evict_older_than(self, age: AgeLike) -> int:
        """
        Delete every message older than age.

        Args:
            age: timedelta, or a number of minutes

        Returns:
            Number of messages deleted
        """
        max_age = to_timedelta(age)

        deleted = 0
        for message in self.list():
            if message.is_older_than(max_age):
                self.delete(message.id)
                deleted += 1

        logger.info("Evicted old messages", max_age_s=max_age.total_seconds(), deleted=deleted)

        return deleted

    def count(self) -> int:
        """Number of ids in the global index."""
        return len(self._backend.smembers(MESSAGE_SET_KEY))

    def senders(self) -> Set[str]:
        """Distinct senders with at least one indexed message."""
        senders = set()
        for key in self._backend.keys(SENDER_INDEX_PREFIX + "*"):
            if self._backend.smembers(key):
                senders.add(key[len(SENDER_INDEX_PREFIX):])
        return senders

    def check_consistency(self) -> List[str]:
        """
        Report index invariant violations.

        Returns:
            Human-readable problems; empty when mapping and indexes agree
        """
        problems = []

        stored_ids = {
            key[len(MESSAGE_KEY_PREFIX):]
            for key in self._backend.keys(MESSAGE_KEY_PREFIX + "*")
        }
        global_ids = self._backend.smembers(MESSAGE_SET_KEY)

        for message_id in sorted(stored_ids - global_ids):
            problems.append(f"{message_id} stored but missing from {MESSAGE_SET_KEY}")

        for message_id in sorted(global_ids - stored_ids):
            problems.append(f"{message_id} indexed in {MESSAGE_SET_KEY} but not stored")

        owners = {}
        for key in self._backend.keys(SENDER_INDEX_PREFIX + "*"):
            sender = key[len(SENDER_INDEX_PREFIX):]
            for message_id in self._backend.smembers(key):
                owners.setdefault(message_id, []).append(sender)

        for message_id in sorted(stored_ids):
            indexed_under = owners.pop(message_id, [])
            try:
                message = self.get(message_id)
            except CorruptionError:
                problems.append(f"{message_id} has a corrupt record")
                continue

            if message is None:
                continue

            if indexed_under != [message.sender]:
                problems.append(
                    f"{message_id} sent by {message.sender} indexed under {sorted(indexed_under)}"
                )

        for message_id, senders in sorted(owners.items()):
            problems.append(f"{message_id} dangling in sender index {sorted(senders)}")

        return problems
