"""
Multi-producer / consumer-group demo.

Three named producers send concurrently through the service; the consumer
group spreads the resulting partitions over its workers. consumer_status()
summarizes what has reached the store.
"""

import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Tuple

from messagepipe.model.message import Message, MessageType
from messagepipe.service.facade import MessageService
from messagepipe.utils.logging import get_logger

logger = get_logger(__name__)

PRODUCERS: List[Tuple[str, MessageType]] = [
    ("Producer-A", MessageType.ORDER),
    ("Producer-B", MessageType.NOTIFICATION),
    ("Producer-C", MessageType.EVENT),
]


@dataclass
class ConsumerStatus:
    """
    Snapshot of processed messages.

    Attributes:
        total: Messages in the store
        by_sender: Count per sender
        by_type: Count per message type name
        timestamp: Snapshot time in milliseconds
    """
    total: int
    by_sender: Dict[str, int] = field(default_factory=dict)
    by_type: Dict[str, int] = field(default_factory=dict)
    timestamp: int = 0


class MultiProducerDemo:
    """Drives the pipeline with several concurrent producers."""

    def __init__(self, service: MessageService, send_interval_ms: int = 100, max_workers: int = 10):
        """
        Args:
            service: Message service
            send_interval_ms: Pause between messages of one producer
            max_workers: Thread pool size for concurrent producers
        """
        self._service = service
        self.send_interval_ms = send_interval_ms
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="demo-producer")

    def send_batch(self, count: int = 9) -> int:
        """
        Send count messages split evenly over the three producers.

        The remainder of count / 3 is sent by the first producer.

        Returns:
            Number of messages successfully handed to the publisher
        """
        logger.info("Starting batch send", count=count, producers=len(PRODUCERS))
        start = time.monotonic()

        share = count // len(PRODUCERS)
        jobs = [(name, share, message_type) for name, message_type in PRODUCERS]

        remaining = count % len(PRODUCERS)
        if remaining:
            name, message_type = PRODUCERS[0]
            jobs.append((name, remaining, message_type))

        futures = [self._executor.submit(self._send_from_producer, *job) for job in jobs]
        sent = sum(f.result() for f in futures)

        logger.info(
            "Batch send complete",
            sent=sent,
            duration_ms=int((time.monotonic() - start) * 1000),
        )

        return sent

    def _send_from_producer(self, producer: str, count: int, message_type: MessageType) -> int:
        logger.info("Producer starting", producer=producer, count=count, type=message_type.name)

        sent = 0
        for i in range(count):
            content = (
                f"[{message_type.name}] Message #{i + 1} - {message_type.name.lower()} "
                f"message from {producer} at {datetime.now().isoformat()}"
            )
            try:
                self._service.send_message(Message.create(content, producer, message_type))
                sent += 1
            except Exception as e:
                logger.error("Producer failed to send", producer=producer, index=i + 1, error=str(e))

            if self.send_interval_ms > 0:
                time.sleep(self.send_interval_ms / 1000.0)

        logger.info("Producer completed", producer=producer, sent=sent)
        return sent

    def stress_test(self, duration_s: float = 30, rate_per_second: int = 10) -> int:
        """
        Send at a fixed rate for a bounded duration, rotating producers.

        Returns:
            Number of messages sent
        """
        logger.info("Starting stress test", duration_s=duration_s, rate_per_second=rate_per_second)

        end = time.monotonic() + duration_s
        counter = 0

        while time.monotonic() < end:
            tick = time.monotonic()

            for _ in range(rate_per_second):
                if time.monotonic() >= end:
                    break
                producer, message_type = PRODUCERS[counter % len(PRODUCERS)]
                content = f"[STRESS] Message #{counter + 1} from {producer}"
                try:
                    self._service.send_message(Message.create(content, producer, message_type))
                    counter += 1
                except Exception as e:
                    logger.error("Error during stress test", error=str(e))

            time.sleep(max(0.0, 1.0 - (time.monotonic() - tick)))

        logger.info("Stress test completed", sent=counter)
        return counter

    def consumer_status(self) -> ConsumerStatus:
        """Count stored messages per sender and per type."""
        messages = self._service.get_all()

        status = ConsumerStatus(total=len(messages), timestamp=int(time.time() * 1000))
        for message in messages:
            status.by_sender[message.sender] = status.by_sender.get(message.sender, 0) + 1
            status.by_type[message.type.name] = status.by_type.get(message.type.name, 0) + 1

        return status

    def close(self) -> None:
        self._executor.shutdown(wait=True)
