from collections.abc import Iterator
from contextlib import contextmanager, suppress
from threading import Thread
from typing import Any, assert_never

from pika.adapters.blocking_connection import BlockingChannel, BlockingConnection
from pika.exceptions import AMQPError

from perilbus.clients import amqp
from perilbus.datastructures import Delivery, Disposition
from perilbus.exceptions import Drop, Retry
from perilbus.logger import logger
from perilbus.pubsub.subscriber import Subscriber


class SubscriptionTask:
    """Runs the consumption loop of one subscriber on a dedicated thread.

    Deliveries are handled strictly one at a time: decoded, handed to the
    handler, and settled with exactly one ack or nack before the next one is
    pulled from the stream. The task owns its connection and channel and
    closes both when the stream ends.
    """

    def __init__(
        self, subscriber: Subscriber, connection: BlockingConnection, channel: BlockingChannel
    ) -> None:
        self.subscriber = subscriber
        self.connection = connection
        self.channel = channel

        self.ready = False
        self.running = False
        self.in_flight = 0
        self.handled = 0
        self._stopping = False
        self._thread: Thread | None = None

    @property
    def started(self) -> bool:
        return self._thread is not None

    def start(self) -> None:
        """Runs the consumption loop on a daemon thread named after the subscriber."""
        if self._thread is not None:
            return

        self._thread = Thread(
            target=self.run, name=f"perilbus-{self.subscriber.name}", daemon=True
        )
        self._thread.start()

    def run(self) -> None:
        """Consumes the queue until the stream ends or is cancelled.

        Broker errors end the loop and are logged; the connection and channel
        are closed either way.
        """
        logger.debug(f"The consumption loop started for {self.subscriber.name}")
        amqp.bind_connection(self.connection)
        self.running = True
        try:
            deliveries = self.channel.consume(queue=self.subscriber.queue_name, auto_ack=False)
            self.ready = True
            for method, properties, body in deliveries:
                if method is None:
                    continue

                delivery = self._translate_delivery(method, properties, body)
                self._handle(delivery)
        except AMQPError:
            if self._stopping:
                logger.debug(f"The delivery stream of {self.subscriber.name} closed on shutdown")
            else:
                logger.exception(
                    f"The delivery stream of {self.subscriber.name} terminated unexpectedly"
                )
        finally:
            self.ready = False
            self.running = False
            amqp.unbind_connection()
            amqp.close_channel(self.channel)
            amqp.close_connection(self.connection)
            logger.info(f"The consumption loop of {self.subscriber.name} has stopped")

    def _translate_delivery(self, method: Any, properties: Any, body: bytes) -> Delivery:
        return Delivery(
            payload=body,
            delivery_tag=method.delivery_tag,
            redelivered=bool(method.redelivered),
            exchange=method.exchange,
            routing_key=method.routing_key,
            content_type=getattr(properties, "content_type", None),
        )

    def _handle(self, delivery: Delivery) -> Disposition:
        with self._contextualize(delivery):
            self.in_flight += 1
            try:
                disposition = self._resolve(delivery)
                self._settle(delivery, disposition)
                self.handled += 1
                return disposition
            finally:
                self.in_flight -= 1

    def _resolve(self, delivery: Delivery) -> Disposition:
        """Decodes the delivery and runs the handler.

        Args:
            delivery: The delivery to handle.

        Returns:
            The disposition to settle the delivery with.
        """
        logger.debug(f"Received {delivery.size} bytes of {delivery.content_type}")
        command = self.subscriber.handler
        try:
            value = command.decode(delivery)
        except Exception:
            # Any failure to decode, DecodeError or not, makes the delivery a poison message.
            logger.warning(
                "The payload could not be decoded, it will be dead-lettered.", exc_info=True
            )
            return Disposition.DISCARD_PERMANENTLY

        try:
            outcome = command.on_message(value)
        except Retry:
            return Disposition.REQUEUE_LATER
        except Drop:
            return Disposition.DISCARD_PERMANENTLY
        except Exception:
            logger.exception("Unhandled exception on message, it will be dead-lettered.")
            return Disposition.DISCARD_PERMANENTLY

        if not isinstance(outcome, Disposition):
            logger.error(
                f"The handler {self.subscriber.handler_name} returned {outcome!r} "
                "instead of a Disposition, the message will be dead-lettered."
            )
            return Disposition.DISCARD_PERMANENTLY

        return outcome

    def _settle(self, delivery: Delivery, disposition: Disposition) -> None:
        """Acknowledges or rejects the delivery once, as the disposition says."""
        tag = delivery.delivery_tag
        try:
            match disposition:
                case Disposition.ACK:
                    self.channel.basic_ack(delivery_tag=tag)
                    logger.info("Message successfully processed.")
                case Disposition.REQUEUE_LATER:
                    self.channel.basic_nack(delivery_tag=tag, requeue=True)
                    logger.warning("Message processing will be retried later.")
                case Disposition.DISCARD_PERMANENTLY:
                    self.channel.basic_nack(delivery_tag=tag, requeue=False)
                    logger.info("Message will be dead-lettered.")
                case _:
                    assert_never(disposition)
        except AMQPError:
            logger.exception(
                f"We failed to {disposition.value} the message, "
                "the broker will redeliver it once the channel is gone."
            )

    @contextmanager
    def _contextualize(self, delivery: Delivery) -> Iterator[None]:
        context = {
            "name": self.subscriber.name,
            "exchange": delivery.exchange,
            "queue_name": self.subscriber.queue_name,
            "routing_key": delivery.routing_key,
            "delivery_tag": delivery.delivery_tag,
            "redelivered": delivery.redelivered,
        }
        with logger.contextualize(**context):
            yield

    def _cancel(self) -> None:
        with suppress(AMQPError):
            self.channel.cancel()

    def task_ready(self) -> bool:
        return self.ready

    def task_alive(self) -> bool:
        return self.running

    def shutdown(self) -> None:
        """Asks the loop to stop. Safe to call from any thread."""
        self._stopping = True
        if not self.running:
            return

        try:
            self.connection.add_callback_threadsafe(self._cancel)
        except AMQPError:
            logger.debug(f"The connection of {self.subscriber.name} is already closed")

    def join(self, timeout: float | None = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)
