"""Broker implementation."""

from typing import Any

from pika.adapters.blocking_connection import BlockingConnection
from pydantic import ConfigDict, validate_call

from perilbus.clients import amqp
from perilbus.clients.builder import SubscriptionBuilder
from perilbus.codecs import Codec, JsonCodec, MsgpackCodec
from perilbus.concurrency.manager import TaskManager
from perilbus.config import BrokerSettings
from perilbus.datastructures import Envelope, FlowControlPolicy
from perilbus.exceptions import PerilBusException
from perilbus.logger import logger
from perilbus.pubsub.publisher import Publisher
from perilbus.pubsub.subscriber import Subscriber
from perilbus.topology import QueueType, declare_exchanges
from perilbus.types import AnyHandler


class PerilBroker:
    """Entry point that wires codecs, topology, publishers and subscription tasks.

    The broker connection opened by :meth:`connect` belongs to the calling
    thread and is used for its publishes. Every subscription gets its own
    connection and thread.
    """

    def __init__(self, settings: BrokerSettings | None = None):
        self.settings = settings if settings is not None else BrokerSettings.from_env()
        self.subscribers: dict[str, Subscriber] = {}
        self.publishers: dict[str, Publisher] = {}
        self.task_manager = TaskManager()
        self.subscription_builder = SubscriptionBuilder(self.settings)
        self._connection: BlockingConnection | None = None

    def connect(self) -> None:
        if self._connection is not None and self._connection.is_open:
            return

        self._connection = amqp.connect(self.settings)
        amqp.bind_connection(self._connection, self.settings)
        logger.info("Connected to the broker")

    def declare_exchanges(self) -> None:
        self.connect()
        declare_exchanges(amqp.current_channel(), self.settings)

    def subscribe(
        self,
        exchange: str,
        queue_name: str,
        binding_key: str,
        queue_type: QueueType,
        handler: AnyHandler,
        codec: Codec[Any],
        prefetch_count: int | None = None,
    ) -> Subscriber:
        """Provisions the queue and starts consuming it on a new thread.

        Raises:
            BrokerConnectionError: The subscription connection could not be opened.
            TopologyError: The queue could not be declared, bound or limited.
        """
        if queue_name in self.subscribers:
            raise PerilBusException(
                f"The queue '{queue_name}' already has a subscriber."
                " The queue name must be unique among all subscribers"
            )

        if not isinstance(queue_type, QueueType):
            raise PerilBusException(f"The queue type must be a {QueueType.__name__}.")

        if not isinstance(codec, Codec):
            raise PerilBusException(f"The codec must be a {Codec.__name__}.")

        if prefetch_count is None:
            prefetch_count = self.settings.prefetch_count

        control_flow_policy = FlowControlPolicy(prefetch_count=prefetch_count)
        subscriber = Subscriber(
            func=handler,
            exchange=exchange,
            queue_name=queue_name,
            binding_key=binding_key,
            queue_type=queue_type,
            codec=codec,
            dead_letter_exchange=self.settings.dead_letter_exchange,
            control_flow_policy=control_flow_policy,
        )

        connection, channel = self.subscription_builder.build(subscriber)
        self.task_manager.create_task(subscriber, connection, channel)
        self.task_manager.start()

        self.subscribers[queue_name] = subscriber
        logger.info(f"Subscribed {subscriber.handler_name} to {subscriber!r}")
        return subscriber

    def subscribe_json(
        self,
        exchange: str,
        queue_name: str,
        binding_key: str,
        queue_type: QueueType,
        schema: Any,
        handler: AnyHandler,
        prefetch_count: int | None = None,
    ) -> Subscriber:
        return self.subscribe(
            exchange,
            queue_name,
            binding_key,
            queue_type,
            handler,
            JsonCodec(schema),
            prefetch_count=prefetch_count,
        )

    def subscribe_msgpack(
        self,
        exchange: str,
        queue_name: str,
        binding_key: str,
        queue_type: QueueType,
        schema: Any,
        handler: AnyHandler,
        prefetch_count: int | None = None,
    ) -> Subscriber:
        return self.subscribe(
            exchange,
            queue_name,
            binding_key,
            queue_type,
            handler,
            MsgpackCodec(schema),
            prefetch_count=prefetch_count,
        )

    @validate_call(config=ConfigDict(strict=True))
    def publisher(self, exchange: str) -> Publisher:
        if exchange not in self.publishers:
            self.publishers[exchange] = Publisher(exchange=exchange)

        return self.publishers[exchange]

    def publish(self, exchange: str, routing_key: str, value: Any, codec: Codec[Any]) -> Envelope:
        return self.publisher(exchange).publish(routing_key, value, codec)

    def publish_json(self, exchange: str, routing_key: str, value: Any) -> Envelope:
        return self.publisher(exchange).publish_json(routing_key, value)

    def publish_msgpack(self, exchange: str, routing_key: str, value: Any) -> Envelope:
        return self.publisher(exchange).publish_msgpack(routing_key, value)

    def alive(self) -> bool:
        subscribers = self.task_manager.alive()
        if not subscribers:
            logger.info("There are no active subscribers.")
            return False

        for name, liveness in subscribers.items():
            if not liveness:
                logger.error(f"The {name} subscriber task is not alive")
                return False

        return True

    def ready(self) -> bool:
        subscribers = self.task_manager.ready()
        if not subscribers:
            logger.info("There are no active subscribers.")
            return False

        for name, readiness in subscribers.items():
            if not readiness:
                logger.error(f"The {name} subscriber task is not ready")
                return False

        return True

    def close(self) -> None:
        self.task_manager.shutdown()
        self.subscribers.clear()

        if self._connection is not None:
            bound = amqp.unbind_connection()
            if bound is not None and bound is not self._connection:
                amqp.close_connection(bound)
            amqp.close_connection(self._connection)
            self._connection = None
            logger.info("Disconnected from the broker")

    def __enter__(self) -> "PerilBroker":
        self.connect()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
