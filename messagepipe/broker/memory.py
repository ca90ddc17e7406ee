"""
In-process partitioned broker.

Implements BrokerTransport with:
- Topics split into append-only partitions (offset = position in partition)
- Key-based partitioning, so one key always lands in one partition
- Per-partition single-threaded senders, preserving per-key order
- Bounded send retries through RetryManager
- Consumer groups with strategy-based assignment and rebalancing
- Committed offsets per group; uncommitted records are redelivered to the
  next owner of a partition

Consumers and producers may live on any thread; all broker state is guarded
by one condition variable.
"""

import concurrent.futures
import threading
import time
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Dict, List, Optional, Set

from messagepipe.broker.assignment import create_assignment_strategy
from messagepipe.broker.partitioner import create_partitioner
from messagepipe.broker.retry import RetryConfig, RetryManager
from messagepipe.broker.transport import (
    BrokerTransport,
    ConsumerRecord,
    RebalanceListener,
    RecordMetadata,
    TopicPartition,
    TransportConsumer,
)
from messagepipe.errors import InterruptedShutdown
from messagepipe.utils.config import Config
from messagepipe.utils.logging import get_logger

logger = get_logger(__name__)

VALID_ACKS = ("0", "1", "all")


class OffsetResetStrategy(str, Enum):
    """
    Where a group starts reading a partition it has never committed.
    """
    EARLIEST = "earliest"  # Start from beginning (offset 0)
    LATEST = "latest"      # Start from end (current log end)


@dataclass
class BrokerConfig:
    """
    Configuration for the in-process broker.

    Attributes:
        num_partitions: Partitions per topic created on first use
        acks: "all", "1" or "0"; "0" resolves the send future before the append
        max_retries: Send retry attempts
        retry_backoff_ms: Initial retry backoff
        request_timeout_ms: Default wait in flush()
        auto_offset_reset: Start position for partitions without a commit
        assignment_strategy: range, roundrobin or sticky
        partitioner_type: default, key_hash or round_robin
        max_poll_records: Max records returned per poll
    """
    num_partitions: int = 3
    acks: str = "all"
    max_retries: int = 3
    retry_backoff_ms: int = 100
    request_timeout_ms: int = 30000
    auto_offset_reset: str = OffsetResetStrategy.EARLIEST.value
    assignment_strategy: str = "range"
    partitioner_type: str = "default"
    max_poll_records: int = 100

    @classmethod
    def from_config(cls, config: Config) -> "BrokerConfig":
        """Build from the broker section of the application config."""
        known = {f.name for f in fields(cls)}
        section = config.section("broker")
        return cls(**{k: v for k, v in section.items() if k in known})


@dataclass
class _Member:
    member_id: str
    client_id: str
    listener: Optional[RebalanceListener]
    assignment: Set[TopicPartition] = field(default_factory=set)
    positions: Dict[TopicPartition, int] = field(default_factory=dict)
    woken: bool = False


@dataclass
class _Group:
    group_id: str
    topic: str
    members: Dict[str, _Member] = field(default_factory=dict)
    committed: Dict[TopicPartition, int] = field(default_factory=dict)
    generation: int = 0


class InMemoryBroker(BrokerTransport):
    """
    Partitioned log transport living inside the process.

    Example:
        broker = InMemoryBroker(BrokerConfig(num_partitions=3))

        future = broker.send("messages", key=b"id-1", value=b"{...}")
        metadata = future.result()

        consumer = broker.subscribe("messages", "group", "consumer-a")
        for record in consumer.poll(timeout_ms=500):
            ...
            consumer.commit(record.topic_partition, record.offset + 1)
    """

    def __init__(self, config: Optional[BrokerConfig] = None, **kwargs):
        """
        Initialize broker.

        Args:
            config: Broker configuration; never modified, the broker keeps a copy
            **kwargs: Config overrides
        """
        known = {f.name for f in fields(BrokerConfig)}
        overrides = {k: v for k, v in kwargs.items() if k in known}
        self.config = replace(config or BrokerConfig(), **overrides)

        if str(self.config.acks) not in VALID_ACKS:
            raise ValueError(f"Invalid acks: {self.config.acks}")
        self.config.acks = str(self.config.acks)

        self._reset_strategy = OffsetResetStrategy(self.config.auto_offset_reset)
        self._partitioner = create_partitioner(self.config.partitioner_type)
        self._assignor = create_assignment_strategy(self.config.assignment_strategy)
        self._retry_manager = RetryManager(
            RetryConfig(
                max_retries=self.config.max_retries,
                retry_backoff_ms=self.config.retry_backoff_ms,
            )
        )

        self._topics: Dict[str, List[List[ConsumerRecord]]] = {}
        self._groups: Dict[str, _Group] = {}
        self._senders: Dict[TopicPartition, ThreadPoolExecutor] = {}
        self._pending: Set[Future] = set()

        self._cond = threading.Condition(threading.RLock())
        self._closed = False

        logger.info(
            "Broker initialized",
            num_partitions=self.config.num_partitions,
            acks=self.config.acks,
            assignment_strategy=self.config.assignment_strategy,
        )

    # Topics

    def create_topic(self, topic: str, num_partitions: Optional[int] = None) -> int:
        """
        Create a topic if missing.

        Returns:
            Partition count of the topic
        """
        with self._cond:
            if topic not in self._topics:
                count = num_partitions or self.config.num_partitions
                if count <= 0:
                    raise ValueError(f"Invalid num_partitions: {count}")
                self._topics[topic] = [[] for _ in range(count)]
                logger.info("Created topic", topic=topic, partitions=count)
            return len(self._topics[topic])

    def partitions_for(self, topic: str) -> int:
        with self._cond:
            return len(self._topics.get(topic, ()))

    def end_offsets(self, topic: str) -> Dict[TopicPartition, int]:
        """Log end offset of each partition."""
        with self._cond:
            return {
                TopicPartition(topic, p): len(records)
                for p, records in enumerate(self._topics.get(topic, []))
            }

    # Producing

    def send(self, topic: str, key: Optional[bytes], value: bytes) -> "Future[RecordMetadata]":
        if self._closed:
            raise RuntimeError("Broker is closed")

        future: Future = Future()

        try:
            num_partitions = self.create_topic(topic)
            partition = self._partitioner.partition(topic, key, num_partitions)
        except Exception as e:
            logger.error("Send failed", topic=topic, error=str(e))
            future.set_exception(e)
            return future

        tp = TopicPartition(topic, partition)

        if self.config.acks == "0":
            future.set_result(RecordMetadata(topic, partition, -1, _now_ms()))
            delivery: Future = Future()
        else:
            delivery = future

        with self._cond:
            self._pending.add(delivery)
            sender = self._senders.get(tp)
            if sender is None:
                sender = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"sender-{tp}")
                self._senders[tp] = sender

        sender.submit(self._deliver, delivery, tp, key, value)

        return future

    def _deliver(self, future: Future, tp: TopicPartition, key: Optional[bytes], value: bytes) -> None:
        try:
            metadata = self._retry_manager.execute_with_retry(
                lambda: self._append_record(tp, key, value),
                operation_name=f"send_{tp}",
            )
        except Exception as e:
            logger.error("Send failed after retries", topic=tp.topic, partition=tp.partition, error=str(e))
            future.set_exception(e)
        else:
            future.set_result(metadata)
        finally:
            with self._cond:
                self._pending.discard(future)

    def _append_record(self, tp: TopicPartition, key: Optional[bytes], value: bytes) -> RecordMetadata:
        with self._cond:
            log = self._topics[tp.topic][tp.partition]
            record = ConsumerRecord(
                topic=tp.topic,
                partition=tp.partition,
                offset=len(log),
                key=key,
                value=value,
                timestamp=_now_ms(),
            )
            log.append(record)
            self._cond.notify_all()

        logger.debug("Appended record", topic=tp.topic, partition=tp.partition, offset=record.offset)

        return RecordMetadata(tp.topic, tp.partition, record.offset, record.timestamp)

    def flush(self, timeout_ms: Optional[int] = None) -> None:
        """
        Wait until every accepted send has completed.

        Args:
            timeout_ms: Max wait (request_timeout_ms if None)
        """
        with self._cond:
            pending = list(self._pending)

        timeout = (timeout_ms if timeout_ms is not None else self.config.request_timeout_ms) / 1000.0
        done, not_done = concurrent.futures.wait(pending, timeout=timeout)

        if not_done:
            raise TimeoutError(f"{len(not_done)} sends still pending after {timeout}s")

    # Consuming

    def subscribe(
        self,
        topic: str,
        group_id: str,
        client_id: str,
        listener: Optional[RebalanceListener] = None,
    ) -> "InMemoryConsumer":
        if self._closed:
            raise RuntimeError("Broker is closed")

        self.create_topic(topic)

        with self._cond:
            group = self._groups.get(group_id)
            if group is None:
                group = _Group(group_id=group_id, topic=topic)
                self._groups[group_id] = group
            elif group.topic != topic:
                raise ValueError(f"Group {group_id} already consumes {group.topic}")

            member_id = f"{client_id}-{uuid.uuid4().hex[:8]}"
            group.members[member_id] = _Member(
                member_id=member_id,
                client_id=client_id,
                listener=listener,
            )

            logger.info("Member joined group", group_id=group_id, member_id=member_id)

            self._rebalance(group)

        return InMemoryConsumer(self, group_id, member_id)

    def _leave(self, group_id: str, member_id: str) -> None:
        with self._cond:
            group = self._groups.get(group_id)
            if group is None or member_id not in group.members:
                return

            member = group.members.pop(member_id)
            if member.assignment and member.listener:
                member.listener.on_partitions_revoked(set(member.assignment))

            logger.info("Member left group", group_id=group_id, member_id=member_id)

            self._rebalance(group)
            self._cond.notify_all()

    def _rebalance(self, group: _Group) -> None:
        """Reassign partitions among current members. Caller holds the lock."""
        previous = {m.member_id: set(m.assignment) for m in group.members.values()}
        num_partitions = len(self._topics[group.topic])

        new_assignment = self._assignor.assign(
            list(group.members), group.topic, num_partitions, previous
        )

        group.generation += 1

        changes = []
        for member in group.members.values():
            owned = new_assignment.get(member.member_id, set())
            revoked = member.assignment - owned
            added = owned - member.assignment
            changes.append((member, revoked, added))

        for member, revoked, _ in changes:
            for tp in revoked:
                member.positions.pop(tp, None)
            member.assignment -= revoked
            if revoked and member.listener:
                member.listener.on_partitions_revoked(revoked)

        for member, _, added in changes:
            for tp in added:
                member.positions[tp] = self._starting_offset(group, tp)
            member.assignment |= added
            if added and member.listener:
                member.listener.on_partitions_assigned(added)

        logger.info(
            "Rebalanced group",
            group_id=group.group_id,
            generation=group.generation,
            members=len(group.members),
        )

        self._cond.notify_all()

    def _starting_offset(self, group: _Group, tp: TopicPartition) -> int:
        committed = group.committed.get(tp)
        if committed is not None:
            return committed

        if self._reset_strategy == OffsetResetStrategy.LATEST:
            return len(self._topics[tp.topic][tp.partition])

        return 0

    def _member(self, group_id: str, member_id: str) -> _Member:
        group = self._groups.get(group_id)
        if group is None or member_id not in group.members:
            raise RuntimeError(f"Consumer {member_id} is not a member of {group_id}")
        return group.members[member_id]

    def _poll(self, group_id: str, member_id: str, timeout_ms: int) -> List[ConsumerRecord]:
        deadline = time.monotonic() + timeout_ms / 1000.0

        with self._cond:
            while True:
                member = self._member(group_id, member_id)

                if member.woken:
                    member.woken = False
                    raise InterruptedShutdown(f"Consumer {member_id} woken up")

                records = self._collect(member)
                if records:
                    return records

                remaining = deadline - time.monotonic()
                if remaining <= 0 or self._closed:
                    return []

                self._cond.wait(remaining)

    def _collect(self, member: _Member) -> List[ConsumerRecord]:
        records: List[ConsumerRecord] = []
        budget = self.config.max_poll_records

        for tp in sorted(member.assignment, key=lambda t: t.partition):
            if budget <= 0:
                break

            log = self._topics[tp.topic][tp.partition]
            position = member.positions.get(tp, 0)
            batch = log[position:position + budget]

            if batch:
                member.positions[tp] = position + len(batch)
                records.extend(batch)
                budget -= len(batch)

        return records

    def _commit(self, group_id: str, member_id: str, tp: TopicPartition, offset: int) -> bool:
        with self._cond:
            member = self._member(group_id, member_id)
            group = self._groups[group_id]

            if tp not in member.assignment:
                logger.warning(
                    "Commit rejected, partition not owned",
                    group_id=group_id,
                    member_id=member_id,
                    partition=tp.partition,
                    offset=offset,
                )
                return False

            group.committed[tp] = offset
            self._cond.notify_all()

        logger.debug("Committed offset", group_id=group_id, partition=tp.partition, offset=offset)

        return True

    def _seek(self, group_id: str, member_id: str, tp: TopicPartition, offset: int) -> None:
        with self._cond:
            member = self._member(group_id, member_id)
            if tp not in member.assignment:
                raise ValueError(f"Cannot seek unowned partition {tp}")
            member.positions[tp] = offset

    def _assignment(self, group_id: str, member_id: str) -> Set[TopicPartition]:
        with self._cond:
            group = self._groups.get(group_id)
            if group is None or member_id not in group.members:
                return set()
            return set(group.members[member_id].assignment)

    def _wakeup(self, group_id: str, member_id: str) -> None:
        with self._cond:
            group = self._groups.get(group_id)
            if group is not None and member_id in group.members:
                group.members[member_id].woken = True
            self._cond.notify_all()

    # Introspection

    def committed(self, group_id: str, tp: TopicPartition) -> Optional[int]:
        with self._cond:
            group = self._groups.get(group_id)
            return group.committed.get(tp) if group else None

    def lag(self, group_id: str, topic: str) -> int:
        """
        Records not yet committed by the group.

        Partitions without a commit count from offset 0.
        """
        with self._cond:
            group = self._groups.get(group_id)
            committed = group.committed if group else {}
            return sum(
                end - committed.get(tp, 0)
                for tp, end in self.end_offsets(topic).items()
            )

    def members(self, group_id: str) -> Dict[str, Set[TopicPartition]]:
        """Current assignment of every member of a group."""
        with self._cond:
            group = self._groups.get(group_id)
            if group is None:
                return {}
            return {m.member_id: set(m.assignment) for m in group.members.values()}

    def metrics(self) -> dict:
        with self._cond:
            return {
                "topics": {t: [len(p) for p in parts] for t, parts in self._topics.items()},
                "groups": {
                    g.group_id: {"generation": g.generation, "members": len(g.members)}
                    for g in self._groups.values()
                },
                "pending_sends": len(self._pending),
                "closed": self._closed,
            }

    def close(self) -> None:
        """Stop senders and wake up every consumer."""
        if self._closed:
            return

        logger.info("Closing broker")

        with self._cond:
            self._closed = True
            for group in self._groups.values():
                for member in group.members.values():
                    member.woken = True
            self._cond.notify_all()
            senders = list(self._senders.values())

        for sender in senders:
            sender.shutdown(wait=True)

        logger.info("Broker closed")


class InMemoryConsumer(TransportConsumer):
    """Handle for one member of a consumer group on an InMemoryBroker."""

    def __init__(self, broker: InMemoryBroker, group_id: str, member_id: str):
        self._broker = broker
        self.group_id = group_id
        self.member_id = member_id
        self._closed = False

    def poll(self, timeout_ms: int = 1000) -> List[ConsumerRecord]:
        if self._closed:
            raise RuntimeError("Consumer is closed")
        return self._broker._poll(self.group_id, self.member_id, timeout_ms)

    def commit(self, tp: TopicPartition, offset: int) -> bool:
        return self._broker._commit(self.group_id, self.member_id, tp, offset)

    def seek(self, tp: TopicPartition, offset: int) -> None:
        self._broker._seek(self.group_id, self.member_id, tp, offset)

    def assignment(self) -> Set[TopicPartition]:
        return self._broker._assignment(self.group_id, self.member_id)

    def wakeup(self) -> None:
        self._broker._wakeup(self.group_id, self.member_id)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._broker._leave(self.group_id, self.member_id)


def _now_ms() -> int:
    return int(time.time() * 1000)
