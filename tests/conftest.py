from collections import deque
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from types import SimpleNamespace
from typing import Any

import pytest
from pika.exceptions import ChannelClosedByBroker, ChannelWrongStateError

from perilbus.config import BrokerSettings


@dataclass
class StoredMessage:
    exchange: str
    routing_key: str
    body: bytes
    content_type: str | None
    redelivered: bool = False


@dataclass
class StoredQueue:
    durable: bool
    auto_delete: bool
    exclusive: bool
    arguments: dict[str, Any]
    messages: deque[StoredMessage] = field(default_factory=deque)


def topic_matches(binding_key: str, routing_key: str) -> bool:
    def match(pattern: list[str], words: list[str]) -> bool:
        if not pattern:
            return not words
        head, rest = pattern[0], pattern[1:]
        if head == "#":
            return any(match(rest, words[i:]) for i in range(len(words) + 1))
        if not words:
            return False
        return (head == "*" or head == words[0]) and match(rest, words[1:])

    return match(binding_key.split("."), routing_key.split("."))


class InMemoryBroker:
    """Routes, queues, redelivers and dead-letters like a single RabbitMQ node."""

    def __init__(self, exchanges: dict[str, str] | None = None):
        self.exchanges: dict[str, str] = dict(exchanges or {})
        self.queues: dict[str, StoredQueue] = {}
        self.bindings: list[tuple[str, str, str]] = []

    def route(self, message: StoredMessage) -> None:
        exchange_type = self.exchanges.get(message.exchange)
        if exchange_type is None:
            return

        for exchange, queue, key in self.bindings:
            if exchange != message.exchange:
                continue

            matched = (
                exchange_type == "fanout"
                or (exchange_type == "direct" and key == message.routing_key)
                or (exchange_type == "topic" and topic_matches(key, message.routing_key))
            )
            if matched:
                self.queues[queue].messages.append(
                    StoredMessage(
                        message.exchange, message.routing_key, message.body, message.content_type
                    )
                )

    def dead_letter(self, queue_name: str, message: StoredMessage) -> None:
        dead_letter_exchange = self.queues[queue_name].arguments.get("x-dead-letter-exchange")
        if dead_letter_exchange:
            self.route(
                StoredMessage(
                    dead_letter_exchange, message.routing_key, message.body, message.content_type
                )
            )

    def messages(self, queue_name: str) -> list[StoredMessage]:
        return list(self.queues[queue_name].messages)


class InMemoryChannel:
    def __init__(self, broker: InMemoryBroker, max_deliveries: int = 100):
        self.broker = broker
        self.is_open = True
        self.prefetch_count = 0
        self.global_qos = False
        self.unacked: dict[int, tuple[str, StoredMessage]] = {}
        self.max_unacked = 0
        self.acked: list[StoredMessage] = []
        self.requeued: list[StoredMessage] = []
        self.rejected: list[StoredMessage] = []
        self.published: list[SimpleNamespace] = []
        self.cancelled = False
        self.max_deliveries = max_deliveries
        self._next_tag = 1

    def _check_open(self) -> None:
        if not self.is_open:
            raise ChannelWrongStateError("Channel is closed.")

    def exchange_declare(self, exchange: str, exchange_type: str = "direct", durable: bool = False):
        self._check_open()
        self.broker.exchanges[exchange] = exchange_type

    def queue_declare(
        self,
        queue: str,
        durable: bool = False,
        auto_delete: bool = False,
        exclusive: bool = False,
        arguments: dict[str, Any] | None = None,
    ) -> SimpleNamespace:
        self._check_open()
        declared = StoredQueue(durable, auto_delete, exclusive, dict(arguments or {}))
        existing = self.broker.queues.get(queue)
        if existing is None:
            self.broker.queues[queue] = declared
        elif (existing.durable, existing.auto_delete, existing.exclusive, existing.arguments) != (
            declared.durable,
            declared.auto_delete,
            declared.exclusive,
            declared.arguments,
        ):
            self.is_open = False
            raise ChannelClosedByBroker(406, f"PRECONDITION_FAILED - inequivalent arg for '{queue}'")

        return SimpleNamespace(method=SimpleNamespace(queue=queue))

    def queue_bind(self, queue: str, exchange: str, routing_key: str | None = None):
        self._check_open()
        if queue not in self.broker.queues or exchange not in self.broker.exchanges:
            self.is_open = False
            raise ChannelClosedByBroker(404, f"NOT_FOUND - no queue '{queue}' or exchange '{exchange}'")

        binding = (exchange, queue, routing_key or queue)
        if binding not in self.broker.bindings:
            self.broker.bindings.append(binding)

    def basic_qos(self, prefetch_count: int = 0, global_qos: bool = False):
        self._check_open()
        self.prefetch_count = prefetch_count
        self.global_qos = global_qos

    def basic_publish(
        self,
        exchange: str,
        routing_key: str,
        body: bytes,
        properties: Any = None,
        mandatory: bool = False,
    ):
        self._check_open()
        content_type = getattr(properties, "content_type", None)
        self.published.append(
            SimpleNamespace(
                exchange=exchange, routing_key=routing_key, body=body, content_type=content_type
            )
        )
        self.broker.route(StoredMessage(exchange, routing_key, body, content_type))

    def consume(self, queue: str, auto_ack: bool = False) -> Iterator[tuple[Any, Any, bytes]]:
        """Yields deliveries until the queue is drained or the consumer is cancelled."""
        self._check_open()
        stored = self.broker.queues[queue]
        deliveries = 0
        while stored.messages and not self.cancelled and deliveries < self.max_deliveries:
            if self.prefetch_count and len(self.unacked) >= self.prefetch_count:
                return

            message = stored.messages.popleft()
            tag = self._next_tag
            self._next_tag += 1
            self.unacked[tag] = (queue, message)
            self.max_unacked = max(self.max_unacked, len(self.unacked))
            deliveries += 1

            method = SimpleNamespace(
                delivery_tag=tag,
                redelivered=message.redelivered,
                exchange=message.exchange,
                routing_key=message.routing_key,
            )
            yield method, SimpleNamespace(content_type=message.content_type), message.body

    def basic_ack(self, delivery_tag: int):
        self._check_open()
        _, message = self.unacked.pop(delivery_tag)
        self.acked.append(message)

    def basic_nack(self, delivery_tag: int, requeue: bool = True):
        self._check_open()
        queue, message = self.unacked.pop(delivery_tag)
        if requeue:
            message.redelivered = True
            self.requeued.append(message)
            self.broker.queues[queue].messages.append(message)
        else:
            self.rejected.append(message)
            self.broker.dead_letter(queue, message)

    def cancel(self):
        self.cancelled = True

    def close(self):
        self.is_open = False


class InMemoryConnection:
    def __init__(self, broker: InMemoryBroker):
        self.broker = broker
        self.is_open = True
        self.channels: list[InMemoryChannel] = []
        self.pumps = 0
        self.lost: Exception | None = None

    def channel(self) -> InMemoryChannel:
        channel = InMemoryChannel(self.broker)
        self.channels.append(channel)
        return channel

    def add_callback_threadsafe(self, callback: Callable[[], None]):
        callback()

    def process_data_events(self, time_limit: float | None = None):
        if self.lost is not None:
            raise self.lost
        self.pumps += 1

    def close(self):
        self.is_open = False


@pytest.fixture
def settings() -> BrokerSettings:
    return BrokerSettings()


@pytest.fixture
def memory_broker(settings: BrokerSettings) -> InMemoryBroker:
    return InMemoryBroker(
        exchanges={
            settings.topic_exchange: "topic",
            settings.direct_exchange: "direct",
            settings.dead_letter_exchange: "fanout",
        }
    )


@pytest.fixture
def connection(memory_broker: InMemoryBroker) -> InMemoryConnection:
    return InMemoryConnection(memory_broker)


@pytest.fixture
def channel(connection: InMemoryConnection) -> InMemoryChannel:
    return connection.channel()


@pytest.fixture
def dead_letter_queue(channel: InMemoryChannel, settings: BrokerSettings) -> str:
    channel.queue_declare(queue=settings.dead_letter_queue, durable=True)
    channel.queue_bind(queue=settings.dead_letter_queue, exchange=settings.dead_letter_exchange)
    return settings.dead_letter_queue


@pytest.fixture
def open_connection(memory_broker: InMemoryBroker) -> Callable[[], InMemoryConnection]:
    return lambda: InMemoryConnection(memory_broker)
