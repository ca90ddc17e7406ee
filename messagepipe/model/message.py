"""
Message domain model.

A Message is an immutable value object flowing from the facade through the
broker to the indexed store. It is stamped with an id and a timestamp once,
by Message.create, and never changes afterwards.
"""

import uuid
from dataclasses import dataclass, fields
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional, Union

from messagepipe.errors import InvalidArgument, SerializationError

AgeLike = Union[timedelta, int, float]


class MessageType(str, Enum):
    """Fixed set of message categories."""
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    SUCCESS = "SUCCESS"
    ORDER = "ORDER"
    NOTIFICATION = "NOTIFICATION"
    EVENT = "EVENT"

    @classmethod
    def from_name(cls, name: str) -> "MessageType":
        """
        Resolve a type from its enum name.

        Raises:
            SerializationError: If the name is not a known type
        """
        try:
            return cls[name]
        except (KeyError, TypeError):
            raise SerializationError(f"Unknown message type: {name!r}") from None


URGENT_TYPES = frozenset({MessageType.ERROR, MessageType.WARNING})


def to_timedelta(age: AgeLike) -> timedelta:
    """Normalize an age given as timedelta or minutes."""
    if isinstance(age, timedelta):
        return age
    return timedelta(minutes=age)


@dataclass(frozen=True)
class Message:
    """
    A message traveling through the pipeline.

    Attributes:
        id: Opaque unique identifier
        content: Message body
        sender: Producer name, used as the secondary index key
        timestamp: Local creation time (no zone)
        type: Message category
    """
    id: str
    content: str
    sender: str
    timestamp: datetime
    type: MessageType

    def __post_init__(self):
        for f in fields(self):
            if getattr(self, f.name) is None:
                raise InvalidArgument(f"Message {f.name} cannot be None")

        if not isinstance(self.type, MessageType):
            raise InvalidArgument(f"Message type must be a MessageType, got {self.type!r}")

        if not isinstance(self.timestamp, datetime):
            raise InvalidArgument(f"Message timestamp must be a datetime, got {self.timestamp!r}")

    @classmethod
    def create(
        cls,
        content: Optional[str],
        sender: Optional[str],
        type: Union[MessageType, str, None],
    ) -> "Message":
        """
        Create a new message with a fresh id and the current time.

        Args:
            content: Message body
            sender: Producer name
            type: MessageType or its name

        Returns:
            New Message

        Raises:
            InvalidArgument: If a field is missing or the type is unknown
        """
        if type is not None and not isinstance(type, MessageType):
            try:
                type = MessageType.from_name(type)
            except SerializationError as e:
                raise InvalidArgument(str(e)) from None

        return cls(
            id=str(uuid.uuid4()),
            content=content,
            sender=sender,
            timestamp=datetime.now(),
            type=type,
        )

    def is_urgent(self) -> bool:
        """True for ERROR and WARNING messages."""
        return self.type in URGENT_TYPES

    def age(self, now: Optional[datetime] = None) -> timedelta:
        """Time elapsed since creation."""
        return (now or datetime.now()) - self.timestamp

    def is_older_than(self, age: AgeLike, now: Optional[datetime] = None) -> bool:
        """
        Check whether the message is older than the given age.

        Args:
            age: timedelta, or a number of minutes
            now: Reference time (current time if None)
        """
        return self.age(now) > to_timedelta(age)
