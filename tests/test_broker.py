"""Tests for the in-process partitioned broker."""

import threading

import pytest

from helpers import wait_until
from messagepipe.broker.memory import BrokerConfig, InMemoryBroker
from messagepipe.broker.retry import RetryableError
from messagepipe.broker.transport import RebalanceListener, TopicPartition
from messagepipe.errors import InterruptedShutdown


class RecordingListener(RebalanceListener):
    def __init__(self):
        self.assigned = []
        self.revoked = []

    def on_partitions_assigned(self, partitions):
        self.assigned.append(set(partitions))

    def on_partitions_revoked(self, partitions):
        self.revoked.append(set(partitions))


def poll_all(consumer, expected, timeout=5.0):
    """Poll until expected records are collected."""
    records = []
    wait_until(lambda: records.extend(consumer.poll(timeout_ms=50)) or len(records) >= expected, timeout)
    return records


class TestBrokerConfig:
    """Test broker configuration."""

    def test_invalid_acks(self):
        """Test unknown acks values are rejected."""
        with pytest.raises(ValueError):
            InMemoryBroker(BrokerConfig(acks="2"))

    def test_kwargs_override(self):
        """Test keyword overrides apply to the config."""
        broker = InMemoryBroker(num_partitions=5)

        assert broker.config.num_partitions == 5
        broker.close()

    def test_kwargs_override_leaves_caller_config_alone(self):
        """Test overrides apply to the broker's copy of a shared config."""
        config = BrokerConfig()

        first = InMemoryBroker(config, num_partitions=5, max_retries=0)
        second = InMemoryBroker(config)

        assert first.config.num_partitions == 5
        assert first.config.max_retries == 0
        assert config.num_partitions == 3
        assert config.max_retries == 3
        assert second.config.num_partitions == 3
        assert first.config is not config
        first.close()
        second.close()

    def test_acks_normalized_on_copy(self):
        """Test numeric acks are normalized without touching the caller's config."""
        config = BrokerConfig(acks=1)

        broker = InMemoryBroker(config)

        assert broker.config.acks == "1"
        assert config.acks == 1
        broker.close()


class TestProduce:
    """Test sending records."""

    def test_send_returns_metadata(self, broker):
        """Test the future resolves to the record position."""
        metadata = broker.send("messages", b"key", b"value").result(timeout=5)

        assert metadata.topic == "messages"
        assert 0 <= metadata.partition < 3
        assert metadata.offset == 0

    def test_topic_created_on_first_use(self, broker):
        """Test sending creates the topic with the default partition count."""
        broker.send("fresh", b"k", b"v").result(timeout=5)

        assert broker.partitions_for("fresh") == 3

    def test_same_key_same_partition_in_order(self, broker):
        """Test one key keeps order within one partition."""
        futures = [broker.send("messages", b"same-key", f"v{i}".encode()) for i in range(20)]
        results = [f.result(timeout=5) for f in futures]

        assert len({m.partition for m in results}) == 1
        assert [m.offset for m in results] == list(range(20))

    def test_end_offsets(self, broker):
        """Test end offsets count appended records."""
        for i in range(9):
            broker.send("messages", f"k{i}".encode(), b"v")
        broker.flush()

        assert sum(broker.end_offsets("messages").values()) == 9

    def test_acks_zero_resolves_before_append(self):
        """Test fire-and-forget sends report no offset."""
        broker = InMemoryBroker(acks="0")

        metadata = broker.send("messages", b"k", b"v").result(timeout=5)
        broker.flush()

        assert metadata.offset == -1
        assert sum(broker.end_offsets("messages").values()) == 1
        broker.close()

    def test_retry_transient_append_failure(self, broker, monkeypatch):
        """Test a transient append failure is retried."""
        original = broker._append_record
        failures = []

        def flaky(tp, key, value):
            if len(failures) < 2:
                failures.append(1)
                raise RetryableError("leader not available")
            return original(tp, key, value)

        monkeypatch.setattr(broker, "_append_record", flaky)

        metadata = broker.send("messages", b"k", b"v").result(timeout=5)

        assert metadata.offset == 0
        assert len(failures) == 2

    def test_send_fails_after_retries(self, broker, monkeypatch):
        """Test the future fails once retries are exhausted."""
        def broken(tp, key, value):
            raise RetryableError("down")

        monkeypatch.setattr(broker, "_append_record", broken)

        future = broker.send("messages", b"k", b"v")

        with pytest.raises(RetryableError):
            future.result(timeout=5)

    def test_send_after_close(self, broker):
        """Test a closed broker refuses sends."""
        broker.close()

        with pytest.raises(RuntimeError):
            broker.send("messages", b"k", b"v")


class TestConsume:
    """Test consumer groups."""

    def test_poll_and_commit(self, broker):
        """Test records are delivered and commits recorded."""
        consumer = broker.subscribe("messages", "group", "c-1")
        for i in range(6):
            broker.send("messages", f"k{i}".encode(), f"v{i}".encode())
        broker.flush()

        records = poll_all(consumer, 6)

        assert sorted(r.value for r in records) == [f"v{i}".encode() for i in range(6)]

        for record in records:
            assert consumer.commit(record.topic_partition, record.offset + 1)

        assert broker.lag("group", "messages") == 0

    def test_poll_times_out_empty(self, broker):
        """Test poll returns nothing when no data arrives."""
        consumer = broker.subscribe("messages", "group", "c-1")

        assert consumer.poll(timeout_ms=20) == []

    def test_poll_wakes_on_new_data(self, broker):
        """Test a blocked poll returns when a record is appended."""
        consumer = broker.subscribe("messages", "group", "c-1")
        result = []

        thread = threading.Thread(target=lambda: result.extend(consumer.poll(timeout_ms=5000)))
        thread.start()
        broker.send("messages", b"k", b"v")
        thread.join(timeout=5)

        assert len(result) == 1

    def test_max_poll_records(self):
        """Test a poll returns at most max_poll_records."""
        broker = InMemoryBroker(num_partitions=1, max_poll_records=4)
        consumer = broker.subscribe("messages", "group", "c-1")
        for i in range(10):
            broker.send("messages", b"k", f"v{i}".encode())
        broker.flush()

        assert len(consumer.poll(timeout_ms=100)) == 4
        broker.close()

    def test_members_get_disjoint_partitions(self, broker):
        """Test no partition is owned by two members."""
        consumers = [broker.subscribe("messages", "group", f"c-{i}") for i in range(3)]

        owned = [c.assignment() for c in consumers]

        assert all(len(a) == 1 for a in owned)
        assert set().union(*owned) == {TopicPartition("messages", p) for p in range(3)}

    def test_surplus_member_idle(self, broker):
        """Test members beyond the partition count own nothing."""
        consumers = [broker.subscribe("messages", "group", f"c-{i}") for i in range(4)]

        assert sum(1 for c in consumers if not c.assignment()) == 1

    def test_uncommitted_records_redelivered_after_leave(self):
        """Test a partition's new owner resumes from the last commit."""
        broker = InMemoryBroker(num_partitions=1)
        first = broker.subscribe("messages", "group", "c-1")
        for i in range(3):
            broker.send("messages", b"k", f"v{i}".encode())
        broker.flush()

        records = poll_all(first, 3)
        first.commit(records[0].topic_partition, records[0].offset + 1)

        second = broker.subscribe("messages", "group", "c-2")
        first.close()

        redelivered = poll_all(second, 2)

        assert [r.value for r in redelivered] == [b"v1", b"v2"]
        broker.close()

    def test_commit_rejected_when_not_owned(self):
        """Test a revoked member cannot commit."""
        broker = InMemoryBroker(num_partitions=1)
        first = broker.subscribe("messages", "group", "c-1")
        tp = TopicPartition("messages", 0)

        # range gives the only partition to the lowest member id
        broker.subscribe("messages", "group", "c-0")

        assert tp not in first.assignment()
        assert first.commit(tp, 1) is False
        assert broker.committed("group", tp) is None
        broker.close()

    def test_rebalance_listener(self, broker):
        """Test listeners see assignment and revocation."""
        listener = RecordingListener()
        broker.subscribe("messages", "group", "c-1", listener=listener)

        broker.subscribe("messages", "group", "c-2")

        assert listener.assigned[0] == {TopicPartition("messages", p) for p in range(3)}
        assert listener.revoked

    def test_latest_reset_skips_existing(self):
        """Test latest reset starts at the log end."""
        broker = InMemoryBroker(num_partitions=1, auto_offset_reset="latest")
        broker.send("messages", b"k", b"old").result(timeout=5)

        consumer = broker.subscribe("messages", "group", "c-1")
        broker.send("messages", b"k", b"new").result(timeout=5)

        assert [r.value for r in consumer.poll(timeout_ms=100)] == [b"new"]
        broker.close()

    def test_seek_rewinds(self):
        """Test seeking replays records from the given offset."""
        broker = InMemoryBroker(num_partitions=1)
        consumer = broker.subscribe("messages", "group", "c-1")
        for i in range(3):
            broker.send("messages", b"k", f"v{i}".encode())
        broker.flush()

        poll_all(consumer, 3)
        consumer.seek(TopicPartition("messages", 0), 1)

        assert [r.value for r in consumer.poll(timeout_ms=100)] == [b"v1", b"v2"]
        broker.close()

    def test_group_bound_to_topic(self, broker):
        """Test a group cannot span two topics."""
        broker.subscribe("messages", "group", "c-1")

        with pytest.raises(ValueError):
            broker.subscribe("other", "group", "c-2")

    def test_wakeup_interrupts_poll(self, broker):
        """Test wakeup raises out of a blocked poll."""
        consumer = broker.subscribe("messages", "group", "c-1")
        errors = []

        def run():
            try:
                consumer.poll(timeout_ms=5000)
            except InterruptedShutdown as e:
                errors.append(e)

        thread = threading.Thread(target=run)
        thread.start()
        consumer.wakeup()
        thread.join(timeout=5)

        assert len(errors) == 1

    def test_close_wakes_consumers(self, broker):
        """Test closing the broker interrupts blocked polls."""
        consumer = broker.subscribe("messages", "group", "c-1")
        errors = []

        def run():
            try:
                consumer.poll(timeout_ms=5000)
            except InterruptedShutdown as e:
                errors.append(e)

        thread = threading.Thread(target=run)
        thread.start()
        broker.close()
        thread.join(timeout=5)

        assert not thread.is_alive()
        assert len(errors) == 1

    def test_metrics(self, broker):
        """Test broker metrics snapshot."""
        broker.subscribe("messages", "group", "c-1")
        broker.send("messages", b"k", b"v").result(timeout=5)

        metrics = broker.metrics()

        assert sum(metrics["topics"]["messages"]) == 1
        assert metrics["groups"]["group"]["members"] == 1
