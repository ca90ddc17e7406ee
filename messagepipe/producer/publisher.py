"""
Publisher for sending messages to the broker.

Serializes a Message into the wire envelope and hands it to the transport,
keyed by message id. Delivery confirmation arrives asynchronously and is only
logged; retries are the transport's job.
"""

import threading
from concurrent.futures import Future

from messagepipe.broker.transport import BrokerTransport, RecordMetadata
from messagepipe.errors import DeliveryError, SerializationError
from messagepipe.model.envelope import encode_envelope
from messagepipe.model.message import Message
from messagepipe.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_TOPIC = "messages"


class MessagePublisher:
    """
    Fire-and-forget message publisher.

    Example:
        publisher = MessagePublisher(broker, topic="messages")
        publisher.publish(Message.create("hello", "Producer-A", MessageType.INFO))
    """

    def __init__(self, transport: BrokerTransport, topic: str = DEFAULT_TOPIC):
        """
        Initialize publisher.

        Args:
            transport: Broker transport
            topic: Destination topic
        """
        self._transport = transport
        self.topic = topic

        self._sent = 0
        self._failed = 0
        self._lock = threading.Lock()

    def publish(self, message: Message) -> "Future[RecordMetadata]":
        """
        Publish a message.

        Returns as soon as the transport accepts the send. The returned
        future may be ignored.

        Args:
            message: Message to publish

        Returns:
            Future resolving to the send acknowledgement

        Raises:
            SerializationError: If the message cannot be encoded
        """
        try:
            payload = encode_envelope(message)
        except SerializationError as e:
            logger.error("Failed to serialize message", message_id=message.id, error=str(e))
            raise

        future = self._transport.send(self.topic, key=message.id.encode("utf-8"), value=payload)
        future.add_done_callback(lambda f: self._on_complete(message, f))

        return future

    def _on_complete(self, message: Message, future: Future) -> None:
        error = future.exception()

        if error is not None:
            with self._lock:
                self._failed += 1
            delivery_error = DeliveryError(self.topic, message.id, error)
            logger.error(
                "Failed to send message",
                message_id=message.id,
                topic=self.topic,
                error=str(delivery_error),
            )
            return

        with self._lock:
            self._sent += 1
        metadata = future.result()
        logger.info(
            "Message sent successfully",
            message_id=message.id,
            topic=metadata.topic,
            partition=metadata.partition,
            offset=metadata.offset,
        )

    def metrics(self) -> dict:
        with self._lock:
            return {"topic": self.topic, "sent": self._sent, "failed": self._failed}
