"""
messagepipe - partitioned publish/subscribe into an indexed message store.

Producers publish messages through a broker transport; a consumer group of
workers delivers them at least once into a key-value store that keeps a
global index and a per-sender secondary index.
"""

__version__ = "0.1.0"

from messagepipe.model.message import Message, MessageType
from messagepipe.service.facade import MessageService

__all__ = [
    "Message",
    "MessageType",
    "MessageService",
]
