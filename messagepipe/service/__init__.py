"""Service facade and demo drivers."""

from messagepipe.service.demo import ConsumerStatus, MultiProducerDemo
from messagepipe.service.facade import MessageService

__all__ = ["MessageService", "MultiProducerDemo", "ConsumerStatus"]
