"""Tests for the wire envelope codec."""

import json
from datetime import datetime

import pytest

from messagepipe.errors import SerializationError
from messagepipe.model.envelope import (
    decode_envelope,
    decode_record,
    encode_envelope,
    encode_record,
    to_envelope,
)
from messagepipe.model.message import Message, MessageType


@pytest.fixture
def message():
    return Message(
        id="0b6f1c9e-1111-2222-3333-444455556666",
        content="Order #42 placed",
        sender="Producer-A",
        timestamp=datetime(2024, 5, 1, 10, 15, 30, 123456),
        type=MessageType.ORDER,
    )


def envelope_text(**overrides):
    data = {
        "id": "m-1",
        "content": "hello",
        "sender": "alice",
        "timestamp": "2024-05-01T10:15:30.123456",
        "type": "INFO",
    }
    data.update(overrides)
    return json.dumps({k: v for k, v in data.items() if v is not ...})


class TestEncode:
    """Test encoding messages."""

    def test_envelope_fields(self, message):
        """Test the envelope carries textual fields only."""
        envelope = to_envelope(message)

        assert envelope == {
            "id": message.id,
            "content": "Order #42 placed",
            "sender": "Producer-A",
            "timestamp": "2024-05-01T10:15:30.123456",
            "type": "ORDER",
        }

    def test_encode_envelope_is_utf8_json(self, message):
        """Test the broker payload is UTF-8 JSON bytes."""
        payload = encode_envelope(message)

        assert isinstance(payload, bytes)
        assert json.loads(payload.decode("utf-8"))["type"] == "ORDER"

    def test_unicode_content(self):
        """Test non-ASCII content survives encoding."""
        message = Message.create("héllo wörld ✓", "alice", MessageType.INFO)

        assert decode_envelope(encode_envelope(message)) == message

    def test_decode_round_trip(self, message):
        """Test decode restores an equal message."""
        assert decode_record(encode_record(message)) == message


class TestDecode:
    """Test decoding failures."""

    def test_accepts_text_payload(self):
        """Test a str payload decodes like bytes."""
        message = decode_envelope(envelope_text())

        assert message.sender == "alice"
        assert message.timestamp == datetime(2024, 5, 1, 10, 15, 30, 123456)

    def test_timestamp_without_fraction(self):
        """Test whole-second timestamps are accepted."""
        message = decode_record(envelope_text(timestamp="2024-05-01T10:15:30"))

        assert message.timestamp == datetime(2024, 5, 1, 10, 15, 30)

    def test_invalid_json(self):
        """Test garbage is a serialization error."""
        with pytest.raises(SerializationError):
            decode_record("{not json")

    def test_not_an_object(self):
        """Test JSON that is not an object is rejected."""
        with pytest.raises(SerializationError):
            decode_record("[1, 2, 3]")

    def test_missing_field(self):
        """Test a missing field is rejected."""
        with pytest.raises(SerializationError):
            decode_record(envelope_text(sender=...))

    def test_null_field(self):
        """Test a null field is rejected."""
        with pytest.raises(SerializationError):
            decode_record(envelope_text(content=None))

    def test_non_text_field(self):
        """Test a numeric field is rejected."""
        with pytest.raises(SerializationError):
            decode_record(envelope_text(content=42))

    def test_unparseable_timestamp(self):
        """Test an invalid timestamp is rejected."""
        with pytest.raises(SerializationError):
            decode_record(envelope_text(timestamp="yesterday"))

    def test_timestamp_with_zone(self):
        """Test a zoned timestamp is rejected."""
        with pytest.raises(SerializationError):
            decode_record(envelope_text(timestamp="2024-05-01T10:15:30+02:00"))

    def test_unknown_type(self):
        """Test an unknown type name is rejected."""
        with pytest.raises(SerializationError):
            decode_record(envelope_text(type="URGENT"))

    def test_invalid_utf8(self):
        """Test undecodable bytes are rejected."""
        with pytest.raises(SerializationError):
            decode_envelope(b"\xff\xfe\x00")
