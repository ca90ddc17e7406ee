"""Shared fixtures for messagepipe tests."""

import pytest

from messagepipe.broker.memory import BrokerConfig, InMemoryBroker
from messagepipe.producer.publisher import MessagePublisher
from messagepipe.service.facade import MessageService
from messagepipe.store.backend import InMemoryBackend
from messagepipe.store.indexed_store import IndexedMessageStore
from messagepipe.utils.config import reset_config


@pytest.fixture(autouse=True)
def clean_config():
    reset_config()
    yield
    reset_config()


@pytest.fixture
def backend():
    return InMemoryBackend()


@pytest.fixture
def store(backend):
    return IndexedMessageStore(backend)


@pytest.fixture
def broker():
    broker = InMemoryBroker(BrokerConfig(num_partitions=3, retry_backoff_ms=1))
    yield broker
    broker.close()


@pytest.fixture
def publisher(broker):
    return MessagePublisher(broker, topic="messages")


@pytest.fixture
def service(store, publisher):
    return MessageService(store, publisher)
