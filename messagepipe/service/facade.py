"""
Message service facade.

The only component that knows about both the publisher and the store.
Writes go "create -> publish -> local save"; the consumer later saves the
same message again when it is delivered, which is harmless because save is
an idempotent upsert by id. Reads and deletes go straight to the store.
"""

from typing import List, Optional, Union

from messagepipe.errors import InvalidArgument
from messagepipe.model.message import Message, MessageType
from messagepipe.producer.publisher import MessagePublisher
from messagepipe.store.indexed_store import IndexedMessageStore
from messagepipe.utils.logging import get_logger

logger = get_logger(__name__)


class MessageService:
    """Entry point for the HTTP layer or any other adapter."""

    def __init__(self, store: IndexedMessageStore, publisher: MessagePublisher):
        self._store = store
        self._publisher = publisher

    def create_and_send(
        self,
        content: str,
        sender: str,
        type: Union[MessageType, str],
    ) -> Message:
        """
        Create a message, publish it and store it locally.

        Raises:
            InvalidArgument: If a field is missing
            SerializationError: If the message cannot be encoded; nothing is stored
        """
        message = Message.create(content, sender, type)

        self._publisher.publish(message)

        saved = self._store.save(message)

        logger.info(
            "Created message",
            message_id=message.id,
            sender=message.sender,
            type=message.type.name,
        )

        return saved

    def send_message(self, message: Message) -> None:
        """Publish an existing message; the consumer group stores it."""
        self._publisher.publish(message)

    def get_by_id(self, message_id: str) -> Optional[Message]:
        return self._store.get(message_id)

    def get_by_sender(self, sender: str) -> List[Message]:
        return self._store.list_by_sender(sender)

    def get_all(self) -> List[Message]:
        return self._store.list()

    def get_urgent(self) -> List[Message]:
        """Messages of type ERROR or WARNING."""
        return [message for message in self._store.list() if message.is_urgent()]

    def delete_by_id(self, message_id: str) -> None:
        self._store.delete(message_id)

    def cleanup(self, minutes: Union[int, float]) -> int:
        """
        Delete messages older than the given number of minutes.

        Returns:
            Number of messages deleted
        """
        if minutes < 0:
            raise InvalidArgument(f"minutes must be non-negative, got {minutes}")

        deleted = self._store.evict_older_than(minutes)

        logger.info("Cleaned up old messages", minutes=minutes, deleted=deleted)

        return deleted
