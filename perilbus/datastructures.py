from dataclasses import dataclass
from enum import Enum


class Disposition(Enum):
    """The outcome a handler assigns to a delivery."""

    ACK = "ack"
    REQUEUE_LATER = "requeue_later"
    DISCARD_PERMANENTLY = "discard_permanently"


@dataclass(frozen=True)
class Envelope:
    exchange: str
    routing_key: str
    content_type: str
    payload: bytes


@dataclass(frozen=True)
class Delivery:
    payload: bytes
    delivery_tag: int
    redelivered: bool
    exchange: str = ""
    routing_key: str = ""
    content_type: str | None = None

    @property
    def size(self) -> int:
        return len(self.payload)


@dataclass(frozen=True)
class QueuePolicy:
    durable: bool
    auto_delete: bool
    exclusive: bool
    dead_letter_exchange: str

    @property
    def arguments(self) -> dict[str, str]:
        return {"x-dead-letter-exchange": self.dead_letter_exchange}


@dataclass(frozen=True)
class FlowControlPolicy:
    prefetch_count: int
    global_qos: bool = True
