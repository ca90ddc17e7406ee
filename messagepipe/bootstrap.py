"""
Component wiring.

Builds the broker, store, publisher, service and consumer group from one
Config so that entry points and tests share the same assembly.
"""

from dataclasses import dataclass
from typing import List, Optional

from messagepipe.broker.memory import BrokerConfig, InMemoryBroker
from messagepipe.consumer.group import DEFAULT_GROUP_ID, ConsumerGroup
from messagepipe.consumer.worker import WorkerConfig
from messagepipe.producer.publisher import DEFAULT_TOPIC, MessagePublisher
from messagepipe.service.facade import MessageService
from messagepipe.store.backend import create_backend
from messagepipe.store.indexed_store import IndexedMessageStore
from messagepipe.utils.config import Config
from messagepipe.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class Application:
    """All wired components of one process."""
    config: Config
    broker: InMemoryBroker
    store: IndexedMessageStore
    publisher: MessagePublisher
    service: MessageService
    consumer_group: ConsumerGroup

    def start(self) -> None:
        self.consumer_group.start()

    def stop(self) -> None:
        self.consumer_group.stop()
        self.broker.close()


def build_application(
    config: Optional[Config] = None,
    worker_configs: Optional[List[WorkerConfig]] = None,
) -> Application:
    """
    Assemble the application.

    Args:
        config: Configuration (defaults if None)
        worker_configs: Overrides consumer.workers from the config

    Returns:
        Unstarted application
    """
    config = config or Config()

    topic = config.get("broker.topic", DEFAULT_TOPIC)
    group_id = config.get("consumer.group_id", DEFAULT_GROUP_ID)

    broker = InMemoryBroker(BrokerConfig.from_config(config))
    broker.create_topic(topic)

    backend = create_backend(
        config.get("store.backend", "memory"),
        redis_url=config.get("store.redis_url"),
    )
    store = IndexedMessageStore(backend)

    publisher = MessagePublisher(broker, topic=topic)
    service = MessageService(store, publisher)

    group = ConsumerGroup(
        broker,
        store,
        topic,
        group_id=group_id,
        worker_configs=worker_configs or ConsumerGroup.workers_from_config(config),
    )

    logger.info("Application assembled", topic=topic, group_id=group_id)

    return Application(
        config=config,
        broker=broker,
        store=store,
        publisher=publisher,
        service=service,
        consumer_group=group,
    )
