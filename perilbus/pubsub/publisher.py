"""Publisher logic."""

from typing import Any

from pika.adapters.blocking_connection import BlockingChannel
from pika.exceptions import AMQPError

from perilbus.clients import amqp
from perilbus.codecs import Codec, JsonCodec, MsgpackCodec
from perilbus.datastructures import Envelope
from perilbus.exceptions import BrokerConnectionError, EncodeError, PublishError
from perilbus.logger import logger
from perilbus.pubsub.commands import PublishMessageCommand


def publish(
    channel: BlockingChannel,
    exchange: str,
    routing_key: str,
    value: Any,
    codec: Codec[Any],
) -> Envelope:
    """Encodes the value and hands it to the broker without awaiting a confirm.

    Raises:
        PublishError: The value could not be encoded or the channel refused
            the transmit. Nothing is retried here.
    """
    try:
        payload = codec.encode(value)
    except EncodeError as e:
        raise PublishError(f"Could not encode the message for '{routing_key}': {e}") from e

    command = PublishMessageCommand(channel=channel, exchange=exchange)
    try:
        envelope = command.on_publish(routing_key, payload, codec.content_type)
    except AMQPError as e:
        raise PublishError(
            f"Could not publish to exchange '{exchange}' with key '{routing_key}': {e!r}"
        ) from e

    logger.debug(
        f"Published {len(payload)} bytes of {codec.content_type} "
        f"to '{exchange}' with key '{routing_key}'"
    )
    return envelope


def publish_json(
    channel: BlockingChannel, exchange: str, routing_key: str, value: Any
) -> Envelope:
    return publish(channel, exchange, routing_key, value, JsonCodec(type(value)))


def publish_msgpack(
    channel: BlockingChannel, exchange: str, routing_key: str, value: Any
) -> Envelope:
    return publish(channel, exchange, routing_key, value, MsgpackCodec(type(value)))


class Publisher:
    """Publishes to one exchange on the calling thread's own channel."""

    def __init__(self, exchange: str, channel: BlockingChannel | None = None):
        """Initializes the Publisher.

        Args:
            exchange: The exchange every message is published to.
            channel: A fixed channel. When omitted, each publish uses the
                calling thread's channel.
        """
        self.exchange = exchange
        self.channel = channel

    def publish(self, routing_key: str, value: Any, codec: Codec[Any]) -> Envelope:
        """Publishes the value encoded with the codec.

        Args:
            routing_key: The key the exchange routes on.
            value: The message to publish.
            codec: The codec that encodes the message.

        Returns:
            The envelope handed to the broker.

        Raises:
            PublishError: There is no usable channel, or publishing failed.
        """
        channel = self.channel
        if channel is None:
            try:
                channel = amqp.current_channel()
            except BrokerConnectionError as e:
                raise PublishError(f"Could not publish to '{self.exchange}': {e}") from e

        return publish(channel, self.exchange, routing_key, value, codec)

    def publish_json(self, routing_key: str, value: Any) -> Envelope:
        return self.publish(routing_key, value, JsonCodec(type(value)))

    def publish_msgpack(self, routing_key: str, value: Any) -> Envelope:
        return self.publish(routing_key, value, MsgpackCodec(type(value)))

    def __repr__(self) -> str:
        return f"Publisher(exchange={self.exchange!r})"
