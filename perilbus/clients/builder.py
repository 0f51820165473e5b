from pika.adapters.blocking_connection import BlockingChannel, BlockingConnection
from pika.exceptions import AMQPError

from perilbus.clients import amqp
from perilbus.config import BrokerSettings
from perilbus.exceptions import PerilBusException, TopologyError
from perilbus.logger import logger
from perilbus.pubsub.subscriber import Subscriber
from perilbus.topology import declare_and_bind


class SubscriptionBuilder:
    """Provisions the connection, channel and queue a subscriber consumes from."""

    def __init__(self, settings: BrokerSettings):
        """Initializes the SubscriptionBuilder.

        Args:
            settings: The settings every subscription connection is opened with.
        """
        self.settings = settings

    def build(self, subscriber: Subscriber) -> tuple[BlockingConnection, BlockingChannel]:
        """Opens a dedicated connection and readies its channel for consuming.

        The queue is declared and bound and the channel is limited to the
        subscriber's prefetch count. On failure the connection is closed.

        Args:
            subscriber: The subscriber to provision.

        Returns:
            The connection and channel the subscription task will own.

        Raises:
            BrokerConnectionError: The connection or channel could not be opened.
            TopologyError: The queue could not be declared, bound or limited.
        """
        connection = amqp.connect(self.settings)
        try:
            channel = amqp.open_channel(connection)
            self._declare(channel, subscriber)
            self._apply_flow_control(channel, subscriber)
        except PerilBusException:
            amqp.close_connection(connection)
            raise

        return connection, channel

    def _declare(self, channel: BlockingChannel, subscriber: Subscriber) -> None:
        declare_and_bind(
            channel,
            exchange=subscriber.exchange,
            queue_name=subscriber.queue_name,
            binding_key=subscriber.binding_key,
            queue_type=subscriber.queue_type,
            dead_letter_exchange=subscriber.dead_letter_exchange,
        )

    def _apply_flow_control(self, channel: BlockingChannel, subscriber: Subscriber) -> None:
        """Caps the unacknowledged deliveries the broker pushes to the channel."""
        policy = subscriber.control_flow_policy
        try:
            channel.basic_qos(prefetch_count=policy.prefetch_count, global_qos=policy.global_qos)
        except AMQPError as e:
            raise TopologyError(
                f"Could not limit '{subscriber.queue_name}' to "
                f"{policy.prefetch_count} unacknowledged messages: {e}"
            ) from e

        logger.debug(
            f"The channel of '{subscriber.queue_name}' holds at most "
            f"{policy.prefetch_count} unacknowledged messages"
        )
