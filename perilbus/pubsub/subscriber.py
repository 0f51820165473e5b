from typing import Any

from perilbus.codecs import Codec
from perilbus.datastructures import FlowControlPolicy, QueuePolicy
from perilbus.exceptions import PerilBusException
from perilbus.pubsub.commands import HandleMessageCommand
from perilbus.topology import QueueType
from perilbus.types import AnyHandler


class Subscriber:
    def __init__(
        self,
        func: AnyHandler,
        exchange: str,
        queue_name: str,
        binding_key: str,
        queue_type: QueueType,
        codec: Codec[Any],
        dead_letter_exchange: str,
        control_flow_policy: FlowControlPolicy,
    ) -> None:
        if not callable(func):
            raise PerilBusException(f"The handler {func!r} must be callable.")

        if not queue_name:
            raise PerilBusException("The queue name must not be empty.")

        if control_flow_policy.prefetch_count < 1:
            raise PerilBusException(
                f"The prefetch count must be positive, got {control_flow_policy.prefetch_count}."
            )

        self.exchange = exchange
        self.queue_name = queue_name
        self.binding_key = binding_key
        self.queue_type = queue_type
        self.codec = codec
        self.dead_letter_exchange = dead_letter_exchange
        self.control_flow_policy = control_flow_policy
        self.handler = HandleMessageCommand(target=func, codec=codec)

    @property
    def name(self) -> str:
        return self.queue_name

    @property
    def handler_name(self) -> str:
        return getattr(self.handler.target, "__name__", repr(self.handler.target))

    @property
    def queue_policy(self) -> QueuePolicy:
        return self.queue_type.policy(self.dead_letter_exchange)

    @property
    def prefetch_count(self) -> int:
        return self.control_flow_policy.prefetch_count

    def __repr__(self) -> str:
        return (
            f"Subscriber(queue_name={self.queue_name!r}, exchange={self.exchange!r}, "
            f"binding_key={self.binding_key!r}, queue_type={self.queue_type.value}, "
            f"codec={self.codec!r})"
        )
