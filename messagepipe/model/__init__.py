"""Message model and envelope codec."""

from messagepipe.model.envelope import (
    decode_envelope,
    decode_record,
    encode_envelope,
    encode_record,
)
from messagepipe.model.message import Message, MessageType

__all__ = [
    "Message",
    "MessageType",
    "encode_envelope",
    "decode_envelope",
    "encode_record",
    "decode_record",
]
