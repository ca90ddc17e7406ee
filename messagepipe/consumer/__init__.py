"""Consumer workers and consumer groups."""

from messagepipe.consumer.group import DEFAULT_GROUP_ID, ConsumerGroup
from messagepipe.consumer.worker import (
    ConsumerWorker,
    WorkerConfig,
    WorkerRebalanceListener,
    WorkerState,
)

__all__ = [
    "ConsumerGroup",
    "ConsumerWorker",
    "WorkerConfig",
    "WorkerRebalanceListener",
    "WorkerState",
    "DEFAULT_GROUP_ID",
]
