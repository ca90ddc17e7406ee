"""
Consumer worker.

One worker owns one group membership and runs this loop on its own thread:

    IDLE -> RECEIVING -> PROCESSING -> COMMITTING -> IDLE

- RECEIVING: poll the transport (bounded timeout)
- PROCESSING: optional simulated delay, decode the envelope, save to store
- COMMITTING: commit offset + 1 for the record's partition

Offsets advance only after a successful save, giving at-least-once delivery.
A malformed envelope is dropped (and committed past); any other failure on a
record rewinds that partition to the failed offset so it is redelivered.
Stop requests are honored between batches only.
"""

import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Set

from messagepipe.broker.transport import (
    ConsumerRecord,
    RebalanceListener,
    TopicPartition,
    TransportConsumer,
)
from messagepipe.errors import InterruptedShutdown, InvalidArgument, SerializationError
from messagepipe.model.envelope import decode_envelope
from messagepipe.store.indexed_store import IndexedMessageStore
from messagepipe.utils.logging import get_logger

logger = get_logger(__name__)


class WorkerState(str, Enum):
    IDLE = "idle"
    RECEIVING = "receiving"
    PROCESSING = "processing"
    COMMITTING = "committing"
    STOPPED = "stopped"


@dataclass
class WorkerConfig:
    """
    Configuration for one consumer worker.

    Attributes:
        name: Worker name, used as the group client id
        processing_delay_ms: Simulated per-message processing latency
        poll_timeout_ms: Max time a poll blocks
    """
    name: str
    processing_delay_ms: int = 0
    poll_timeout_ms: int = 500


class WorkerRebalanceListener(RebalanceListener):
    """Logs partition movement for a worker."""

    def __init__(self, worker_name: str):
        self.worker_name = worker_name

    def on_partitions_revoked(self, partitions: Set[TopicPartition]) -> None:
        logger.info(
            "Partitions revoked",
            worker=self.worker_name,
            partitions=sorted(tp.partition for tp in partitions),
        )

    def on_partitions_assigned(self, partitions: Set[TopicPartition]) -> None:
        logger.info(
            "Partitions assigned",
            worker=self.worker_name,
            partitions=sorted(tp.partition for tp in partitions),
        )


class ConsumerWorker:
    """
    Receives records, stores them, commits offsets.

    Example:
        consumer = broker.subscribe("messages", "group", "consumer-a")
        worker = ConsumerWorker(WorkerConfig("consumer-a", 1000), consumer, store)
        thread = threading.Thread(target=worker.run)
        thread.start()
        ...
        worker.stop()
        thread.join()
    """

    def __init__(
        self,
        config: WorkerConfig,
        consumer: TransportConsumer,
        store: IndexedMessageStore,
    ):
        """
        Initialize worker.

        Args:
            config: Worker configuration
            consumer: Group membership handle from the transport
            store: Destination store
        """
        self.config = config
        self._consumer = consumer
        self._store = store

        self._state = WorkerState.IDLE
        self._stop_event = threading.Event()

        self.processed = 0
        self.skipped = 0
        self.failed = 0
        self.batches = 0

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def state(self) -> WorkerState:
        return self._state

    def partitions_owned(self) -> Set[TopicPartition]:
        return self._consumer.assignment()

    def run(self) -> None:
        """Worker loop; returns after stop() or a transport shutdown."""
        logger.info(
            "Worker started",
            worker=self.name,
            processing_delay_ms=self.config.processing_delay_ms,
        )

        try:
            while not self._stop_event.is_set():
                self._state = WorkerState.RECEIVING
                try:
                    records = self._consumer.poll(timeout_ms=self.config.poll_timeout_ms)
                except InterruptedShutdown:
                    logger.info("Worker interrupted, shutting down", worker=self.name)
                    break

                if records:
                    self.batches += 1
                    self.process_batch(records)

                self._state = WorkerState.IDLE
        finally:
            self._state = WorkerState.STOPPED
            logger.info(
                "Worker stopped",
                worker=self.name,
                processed=self.processed,
                skipped=self.skipped,
                failed=self.failed,
            )

    def process_batch(self, records: List[ConsumerRecord]) -> None:
        """
        Handle one polled batch in delivery order.

        After a failure on a partition, the remaining records of that
        partition in this batch are left for redelivery.
        """
        blocked: Set[TopicPartition] = set()

        for record in records:
            tp = record.topic_partition
            if tp in blocked:
                continue

            if not self._handle_record(record):
                blocked.add(tp)
                self._rewind(tp, record.offset)

    def _handle_record(self, record: ConsumerRecord) -> bool:
        """
        Process and commit one record.

        Returns:
            False if the record must be redelivered
        """
        logger.debug(
            "Received message",
            worker=self.name,
            partition=record.partition,
            offset=record.offset,
        )

        try:
            self._simulate_delay()

            self._state = WorkerState.PROCESSING
            try:
                message = decode_envelope(record.value)
            except (SerializationError, InvalidArgument) as e:
                self.skipped += 1
                logger.error(
                    "Failed to deserialize message, dropping",
                    worker=self.name,
                    partition=record.partition,
                    offset=record.offset,
                    error=str(e),
                )
            else:
                self._store.save(message)
                self.processed += 1
                logger.info(
                    "Message processed",
                    worker=self.name,
                    message_id=message.id,
                    sender=message.sender,
                    type=message.type.name,
                    partition=record.partition,
                    offset=record.offset,
                )

            self._state = WorkerState.COMMITTING
            self._consumer.commit(record.topic_partition, record.offset + 1)
            return True

        except Exception as e:
            self.failed += 1
            logger.error(
                "Failed to process message",
                worker=self.name,
                partition=record.partition,
                offset=record.offset,
                error=str(e),
                exc_info=True,
            )
            return False

    def _simulate_delay(self) -> None:
        if self.config.processing_delay_ms > 0:
            time.sleep(self.config.processing_delay_ms / 1000.0)

    def _rewind(self, tp: TopicPartition, offset: int) -> None:
        try:
            self._consumer.seek(tp, offset)
        except ValueError:
            logger.info(
                "Partition revoked before rewind, new owner resumes from commit",
                worker=self.name,
                partition=tp.partition,
            )

    def stop(self) -> None:
        """Request shutdown; the current batch finishes first."""
        self._stop_event.set()
        self._consumer.wakeup()

    def close(self) -> None:
        """Leave the consumer group. Call after the loop has exited."""
        self._consumer.close()

    def metrics(self) -> dict:
        return {
            "name": self.name,
            "state": self._state.value,
            "processed": self.processed,
            "skipped": self.skipped,
            "failed": self.failed,
            "batches": self.batches,
            "partitions": sorted(tp.partition for tp in self.partitions_owned()),
        }
