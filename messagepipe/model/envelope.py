"""
Wire envelope codec.

The envelope is a flat JSON object with textual fields:

    {"id": ..., "content": ..., "sender": ...,
     "timestamp": "2024-05-01T10:15:30.123456", "type": "INFO"}

The timestamp is an ISO-8601 local date-time without zone. The same document
is used as the broker payload and as the value stored in the indexed store.
"""

import json
from datetime import datetime
from typing import Any, Dict, Union

from messagepipe.errors import InvalidArgument, SerializationError
from messagepipe.model.message import Message, MessageType

ENVELOPE_FIELDS = ("id", "content", "sender", "timestamp", "type")


def to_envelope(message: Message) -> Dict[str, str]:
    """Convert a message to its envelope dictionary."""
    return {
        "id": message.id,
        "content": message.content,
        "sender": message.sender,
        "timestamp": message.timestamp.isoformat(),
        "type": message.type.name,
    }


def from_envelope(data: Any) -> Message:
    """
    Build a message from an envelope dictionary.

    Raises:
        SerializationError: If the envelope is structurally invalid
    """
    if not isinstance(data, dict):
        raise SerializationError(f"Envelope must be an object, got {type(data).__name__}")

    missing = [name for name in ENVELOPE_FIELDS if data.get(name) is None]
    if missing:
        raise SerializationError(f"Envelope missing fields: {', '.join(missing)}")

    for name in ENVELOPE_FIELDS:
        if not isinstance(data[name], str):
            raise SerializationError(f"Envelope field {name} must be text")

    timestamp = _parse_timestamp(data["timestamp"])
    message_type = MessageType.from_name(data["type"])

    try:
        return Message(
            id=data["id"],
            content=data["content"],
            sender=data["sender"],
            timestamp=timestamp,
            type=message_type,
        )
    except InvalidArgument as e:
        raise SerializationError(str(e)) from e


def _parse_timestamp(text: str) -> datetime:
    try:
        timestamp = datetime.fromisoformat(text)
    except ValueError:
        raise SerializationError(f"Unparseable timestamp: {text!r}") from None

    if timestamp.tzinfo is not None:
        raise SerializationError(f"Timestamp must be a local date-time without zone: {text!r}")

    return timestamp


def encode_record(message: Message) -> str:
    """
    Serialize a message to envelope JSON text.

    Raises:
        SerializationError: If the message cannot be encoded
    """
    try:
        return json.dumps(to_envelope(message), ensure_ascii=False)
    except (TypeError, ValueError, AttributeError) as e:
        raise SerializationError(f"Failed to serialize message: {e}") from e


def decode_record(text: str) -> Message:
    """
    Parse envelope JSON text into a message.

    Raises:
        SerializationError: If the text is not a valid envelope
    """
    try:
        data = json.loads(text)
    except (TypeError, ValueError) as e:
        raise SerializationError(f"Failed to deserialize message: {e}") from e

    return from_envelope(data)


def encode_envelope(message: Message) -> bytes:
    """Serialize a message to the UTF-8 broker payload."""
    return encode_record(message).encode("utf-8")


def decode_envelope(payload: Union[bytes, str]) -> Message:
    """Parse a broker payload (bytes or text) into a message."""
    if isinstance(payload, (bytes, bytearray)):
        try:
            payload = payload.decode("utf-8")
        except UnicodeDecodeError as e:
            raise SerializationError(f"Payload is not UTF-8: {e}") from e

    return decode_record(payload)
