"""Message publisher."""

from messagepipe.producer.publisher import DEFAULT_TOPIC, MessagePublisher

__all__ = ["MessagePublisher", "DEFAULT_TOPIC"]
