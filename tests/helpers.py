"""Helpers shared by the test modules."""

import fnmatch
import time
from datetime import datetime, timedelta

from redis.exceptions import WatchError

from messagepipe.model.message import Message, MessageType


def wait_until(predicate, timeout=5.0, interval=0.01):
    """Poll predicate until it returns True or the timeout expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


def make_message(sender="Producer-A", type=MessageType.INFO, content="hello", minutes_old=0, id=None):
    """Build a message with a controlled age and optionally a fixed id."""
    message = Message.create(content, sender, type)
    if minutes_old or id:
        message = Message(
            id=id or message.id,
            content=content,
            sender=sender,
            timestamp=datetime.now() - timedelta(minutes=minutes_old),
            type=type,
        )
    return message


class StubRedis:
    """Minimal in-process stand-in for a redis.Redis client (decode_responses=True)."""

    def __init__(self):
        self.strings = {}
        self.sets = {}
        self.pipelines = []
        self.interleave = None

    def get(self, key):
        return self.strings.get(key)

    def mget(self, keys):
        return [self.strings.get(key) for key in keys]

    def set(self, key, value):
        self.strings[key] = value
        return True

    def delete(self, *keys):
        removed = 0
        for key in keys:
            if self.strings.pop(key, None) is not None or self.sets.pop(key, None) is not None:
                removed += 1
        return removed

    def sadd(self, key, *members):
        target = self.sets.setdefault(key, set())
        added = len(set(members) - target)
        target.update(members)
        return added

    def srem(self, key, *members):
        target = self.sets.get(key, set())
        removed = len(target & set(members))
        target.difference_update(members)
        if not target:
            self.sets.pop(key, None)
        return removed

    def smembers(self, key):
        return set(self.sets.get(key, set()))

    def sismember(self, key, member):
        return member in self.sets.get(key, set())

    def scan_iter(self, match=None):
        for key in list(self.strings) + list(self.sets):
            if match is None or fnmatch.fnmatchcase(key, match):
                yield key

    def flushdb(self):
        self.strings.clear()
        self.sets.clear()

    def pipeline(self, transaction=True):
        pipe = StubPipeline(self, transaction)
        self.pipelines.append(pipe)
        return pipe


class StubPipeline:
    """Queues commands and applies them on execute(); supports WATCH/MULTI."""

    def __init__(self, client, transaction):
        self.client = client
        self.transaction = transaction
        self.commands = []
        self.executed = False
        self.watching = False
        self.watched = []

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.reset()

    def watch(self, *keys):
        self.watching = True
        self.watched.extend(keys)

    def multi(self):
        self.watching = False

    def reset(self):
        self.watching = False
        self.commands = []

    def get(self, key):
        if self.watching:
            return self.client.get(key)
        self.commands.append(("get", (key,)))
        return self

    def __getattr__(self, name):
        def queue(*args):
            self.commands.append((name, args))
            return self
        return queue

    def execute(self):
        interleave = self.client.interleave
        if self.watched and interleave is not None:
            self.client.interleave = None
            interleave(self.client)
            raise WatchError("Watched variable changed.")

        self.executed = True
        return [getattr(self.client, name)(*args) for name, args in self.commands]
