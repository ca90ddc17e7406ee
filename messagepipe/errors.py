"""
Exception hierarchy for messagepipe.

Construction and single-entity failures surface to the immediate caller.
Batch paths (store listings, eviction, the consumer loop) catch these,
log them and move on to the next item.
"""

from typing import Optional


class MessagePipeError(Exception):
    """Base class for all messagepipe errors."""
    pass


class InvalidArgument(MessagePipeError, ValueError):
    """A required field is missing or invalid at construction time."""
    pass


class SerializationError(MessagePipeError):
    """A payload could not be encoded or decoded."""
    pass


class CorruptionError(MessagePipeError):
    """A single-key store read produced undecodable data."""

    def __init__(self, key: str, reason: str):
        super().__init__(f"Corrupt value at {key}: {reason}")
        self.key = key
        self.reason = reason


class DeliveryError(MessagePipeError):
    """The broker transport reported a send failure."""

    def __init__(self, topic: str, message_id: str, cause: Optional[BaseException] = None):
        super().__init__(f"Failed to deliver message {message_id} to {topic}: {cause}")
        self.topic = topic
        self.message_id = message_id
        self.cause = cause


class InterruptedShutdown(MessagePipeError):
    """Raised out of a blocking poll when the consumer is asked to stop."""
    pass
