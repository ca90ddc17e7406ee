"""
Consumer group of parameterized workers.

All workers subscribe to the same topic under one group id; the transport
decides which partitions each owns. Workers share nothing but the store.
"""

import threading
import time
from typing import Iterable, List, Optional

from messagepipe.broker.memory import InMemoryBroker
from messagepipe.broker.transport import BrokerTransport
from messagepipe.consumer.worker import ConsumerWorker, WorkerConfig, WorkerRebalanceListener
from messagepipe.store.indexed_store import IndexedMessageStore
from messagepipe.utils.config import Config
from messagepipe.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_GROUP_ID = "message-consumer-group"


class ConsumerGroup:
    """
    Runs N consumer workers, one thread each.

    Example:
        group = ConsumerGroup(broker, store, "messages", "group",
                              ConsumerGroup.default_workers())
        group.start()
        group.wait_until_drained(timeout=30)
        group.stop()
    """

    def __init__(
        self,
        transport: BrokerTransport,
        store: IndexedMessageStore,
        topic: str,
        group_id: str = DEFAULT_GROUP_ID,
        worker_configs: Optional[Iterable[WorkerConfig]] = None,
    ):
        """
        Initialize consumer group.

        Args:
            transport: Broker transport
            store: Shared destination store
            topic: Topic to consume
            group_id: Consumer group id
            worker_configs: One entry per worker (three default workers if None)
        """
        self._transport = transport
        self._store = store
        self.topic = topic
        self.group_id = group_id
        self.worker_configs = list(worker_configs or self.default_workers())

        names = [c.name for c in self.worker_configs]
        if len(set(names)) != len(names):
            raise ValueError(f"Worker names must be unique: {names}")

        self.workers: List[ConsumerWorker] = []
        self._threads: List[threading.Thread] = []
        self._running = False

    @staticmethod
    def default_workers(poll_timeout_ms: int = 500) -> List[WorkerConfig]:
        """Three workers with different simulated processing delays."""
        return [
            WorkerConfig("consumer-a", processing_delay_ms=1000, poll_timeout_ms=poll_timeout_ms),
            WorkerConfig("consumer-b", processing_delay_ms=1500, poll_timeout_ms=poll_timeout_ms),
            WorkerConfig("consumer-c", processing_delay_ms=800, poll_timeout_ms=poll_timeout_ms),
        ]

    @staticmethod
    def workers_from_config(config: Config) -> List[WorkerConfig]:
        """Worker configs from the consumer section; defaults if none listed."""
        poll_timeout_ms = int(config.get("consumer.poll_timeout_ms", 500))
        entries = config.get("consumer.workers") or []

        if not entries:
            return ConsumerGroup.default_workers(poll_timeout_ms)

        return [
            WorkerConfig(
                name=entry["name"],
                processing_delay_ms=int(entry.get("processing_delay_ms", 0)),
                poll_timeout_ms=int(entry.get("poll_timeout_ms", poll_timeout_ms)),
            )
            for entry in entries
        ]

    def start(self) -> None:
        """Subscribe every worker and start its thread."""
        if self._running:
            return

        for config in self.worker_configs:
            consumer = self._transport.subscribe(
                self.topic,
                self.group_id,
                config.name,
                listener=WorkerRebalanceListener(config.name),
            )
            worker = ConsumerWorker(config, consumer, self._store)
            thread = threading.Thread(
                target=worker.run,
                name=f"worker-{config.name}",
                daemon=True,
            )
            self.workers.append(worker)
            self._threads.append(thread)

        for thread in self._threads:
            thread.start()

        self._running = True

        logger.info(
            "Consumer group started",
            group_id=self.group_id,
            topic=self.topic,
            workers=[w.name for w in self.workers],
        )

    def stop(self, timeout: float = 10.0) -> None:
        """
        Stop all workers and leave the group.

        A stopped group can be started again with fresh workers; committed
        offsets carry over.

        Args:
            timeout: Max seconds to wait for each worker thread
        """
        if not self._running:
            return

        logger.info("Stopping consumer group", group_id=self.group_id)

        for worker in self.workers:
            worker.stop()

        for thread in self._threads:
            thread.join(timeout=timeout)
            if thread.is_alive():
                logger.warning("Worker did not stop in time", thread=thread.name)

        for worker in self.workers:
            worker.close()

        self.workers = []
        self._threads = []
        self._running = False

        logger.info("Consumer group stopped", group_id=self.group_id)

    def wait_until_drained(self, timeout: float = 30.0, interval: float = 0.05) -> bool:
        """
        Block until the group has committed everything on its topic.

        Only available when the transport reports lag.

        Returns:
            True if drained, False on timeout
        """
        if not isinstance(self._transport, InMemoryBroker):
            raise NotImplementedError("Lag is only observable on InMemoryBroker")

        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if self._transport.lag(self.group_id, self.topic) == 0:
                return True
            time.sleep(interval)

        return self._transport.lag(self.group_id, self.topic) == 0

    @property
    def running(self) -> bool:
        return self._running

    def metrics(self) -> dict:
        return {
            "group_id": self.group_id,
            "topic": self.topic,
            "running": self._running,
            "workers": [w.metrics() for w in self.workers],
        }

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
