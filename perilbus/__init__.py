"""An AMQP publish/subscribe layer with typed codecs and per-queue consumption loops."""

from perilbus.broker import PerilBroker
from perilbus.codecs import Codec, JsonCodec, MsgpackCodec
from perilbus.config import BrokerSettings
from perilbus.datastructures import Delivery, Disposition, Envelope, QueuePolicy
from perilbus.exceptions import Drop, Retry
from perilbus.pubsub.publisher import Publisher, publish, publish_json, publish_msgpack
from perilbus.pubsub.subscriber import Subscriber
from perilbus.topology import QueueType, declare_and_bind

__all__ = [
    "PerilBroker",
    "BrokerSettings",
    "Codec",
    "JsonCodec",
    "MsgpackCodec",
    "Delivery",
    "Disposition",
    "Envelope",
    "QueuePolicy",
    "QueueType",
    "Publisher",
    "Subscriber",
    "Retry",
    "Drop",
    "declare_and_bind",
    "publish",
    "publish_json",
    "publish_msgpack",
]
