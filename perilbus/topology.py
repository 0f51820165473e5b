"""Queue policies and broker topology provisioning."""

from enum import Enum

from pika.adapters.blocking_connection import BlockingChannel
from pika.exceptions import AMQPError

from perilbus.config import BrokerSettings
from perilbus.datastructures import QueuePolicy
from perilbus.exceptions import TopologyError
from perilbus.logger import logger


class QueueType(Enum):
    TRANSIENT = "transient"
    DURABLE = "durable"

    def policy(self, dead_letter_exchange: str) -> QueuePolicy:
        is_durable = self is QueueType.DURABLE
        return QueuePolicy(
            durable=is_durable,
            auto_delete=not is_durable,
            exclusive=not is_durable,
            dead_letter_exchange=dead_letter_exchange,
        )


def declare_and_bind(
    channel: BlockingChannel,
    exchange: str,
    queue_name: str,
    binding_key: str,
    queue_type: QueueType,
    dead_letter_exchange: str,
) -> str:
    """Ensures the queue exists, is dead-lettered and is bound to the exchange.

    Declaring the same queue twice with the same policy is a no-op on the
    broker, and so is repeating a binding.

    Returns:
        The declared queue name.

    Raises:
        TopologyError: The broker refused the declaration or the binding, for
            example because the queue already exists with other attributes.
    """
    if not dead_letter_exchange:
        raise TopologyError(f"The queue '{queue_name}' needs a dead letter exchange.")

    policy = queue_type.policy(dead_letter_exchange)

    try:
        logger.debug(f"Declaring the {queue_type.value} queue '{queue_name}'")
        result = channel.queue_declare(
            queue=queue_name,
            durable=policy.durable,
            auto_delete=policy.auto_delete,
            exclusive=policy.exclusive,
            arguments=policy.arguments,
        )
    except AMQPError as e:
        raise TopologyError(f"The broker rejected the declaration of queue '{queue_name}': {e}") from e

    declared_name = result.method.queue or queue_name

    try:
        logger.debug(f"Binding '{declared_name}' to '{exchange}' with key '{binding_key}'")
        channel.queue_bind(queue=declared_name, exchange=exchange, routing_key=binding_key)
    except AMQPError as e:
        raise TopologyError(
            f"The broker rejected binding queue '{declared_name}' to exchange "
            f"'{exchange}' with key '{binding_key}': {e}"
        ) from e

    logger.info(f"The queue '{declared_name}' is bound to '{exchange}' with '{binding_key}'")
    return declared_name


def declare_exchanges(channel: BlockingChannel, settings: BrokerSettings) -> None:
    """Declares the exchanges the game expects plus the dead letter queue."""
    try:
        channel.exchange_declare(
            exchange=settings.topic_exchange, exchange_type="topic", durable=True
        )
        channel.exchange_declare(
            exchange=settings.direct_exchange, exchange_type="direct", durable=True
        )
        channel.exchange_declare(
            exchange=settings.dead_letter_exchange, exchange_type="fanout", durable=True
        )
        channel.queue_declare(queue=settings.dead_letter_queue, durable=True)
        channel.queue_bind(
            queue=settings.dead_letter_queue, exchange=settings.dead_letter_exchange
        )
    except AMQPError as e:
        raise TopologyError(f"Could not declare the game exchanges: {e}") from e

    logger.info(
        "Declared the exchanges "
        f"'{settings.topic_exchange}', '{settings.direct_exchange}' "
        f"and '{settings.dead_letter_exchange}'"
    )
