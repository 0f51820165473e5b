from typing import Any

import pika
from pika.adapters.blocking_connection import BlockingChannel

from perilbus.codecs import Codec
from perilbus.datastructures import Delivery, Envelope
from perilbus.types import AnyHandler


class HandleMessageCommand:
    def __init__(self, *, target: AnyHandler, codec: Codec[Any]):
        self.target = target
        self.codec = codec

    def decode(self, delivery: Delivery) -> Any:
        return self.codec.decode(delivery.payload)

    def on_message(self, value: Any) -> Any:
        return self.target(value)


class PublishMessageCommand:
    def __init__(self, *, channel: BlockingChannel, exchange: str):
        self.channel = channel
        self.exchange = exchange

    def on_publish(self, routing_key: str, payload: bytes, content_type: str) -> Envelope:
        envelope = Envelope(
            exchange=self.exchange,
            routing_key=routing_key,
            content_type=content_type,
            payload=payload,
        )
        # No publisher confirms: the broker is not asked to acknowledge.
        self.channel.basic_publish(
            exchange=envelope.exchange,
            routing_key=envelope.routing_key,
            body=envelope.payload,
            properties=pika.BasicProperties(content_type=envelope.content_type),
            mandatory=False,
        )
        return envelope
