"""AMQP connection and channel handling.

A pika BlockingConnection may only be driven by the thread that uses it, so
every thread that talks to the broker binds its own connection here and
publishes on its own channel.
"""

import threading
from contextlib import suppress

import pika
from pika.adapters.blocking_connection import BlockingChannel, BlockingConnection
from pika.exceptions import AMQPError

from perilbus.config import BrokerSettings
from perilbus.exceptions import BrokerConnectionError
from perilbus.logger import logger

_local = threading.local()


def _connection_parameters(settings: BrokerSettings) -> pika.URLParameters:
    parameters = pika.URLParameters(settings.amqp_url)
    parameters.heartbeat = settings.heartbeat
    parameters.blocked_connection_timeout = settings.blocked_connection_timeout
    return parameters


def connect(settings: BrokerSettings) -> BlockingConnection:
    """Opens a blocking connection to the broker.

    Args:
        settings: The broker URL, heartbeat and blocked-connection timeout.

    Returns:
        The open connection.

    Raises:
        BrokerConnectionError: The broker could not be reached.
    """
    try:
        connection = pika.BlockingConnection(_connection_parameters(settings))
    except AMQPError as e:
        raise BrokerConnectionError(f"Could not connect to the broker: {e}") from e

    logger.debug("Opened a broker connection")
    return connection


def open_channel(connection: BlockingConnection) -> BlockingChannel:
    """Opens a channel on the connection.

    Raises:
        BrokerConnectionError: The channel could not be opened.
    """
    try:
        return connection.channel()
    except AMQPError as e:
        raise BrokerConnectionError(f"Could not open a broker channel: {e}") from e


def bind_connection(connection: BlockingConnection, settings: BrokerSettings | None = None) -> None:
    """Makes the connection the one the calling thread publishes through.

    Args:
        connection: The connection owned by the calling thread.
        settings: When given, a lost connection is replaced by a new one
            opened with these settings.
    """
    _local.connection = connection
    _local.settings = settings
    _local.channel = None


def unbind_connection() -> BlockingConnection | None:
    """Forgets the calling thread's connection and closes its publishing channel.

    Returns:
        The connection that was bound, which the caller still owns.
    """
    connection: BlockingConnection | None = getattr(_local, "connection", None)
    channel: BlockingChannel | None = getattr(_local, "channel", None)
    if channel is not None:
        close_channel(channel)

    _local.connection = None
    _local.settings = None
    _local.channel = None
    return connection


def _live_connection() -> BlockingConnection:
    connection: BlockingConnection | None = getattr(_local, "connection", None)
    settings: BrokerSettings | None = getattr(_local, "settings", None)
    thread_name = threading.current_thread().name

    if connection is not None and connection.is_open:
        try:
            # Heartbeats are only answered while pika processes events.
            connection.process_data_events(time_limit=0)
            return connection
        except AMQPError:
            logger.warning(f"The broker connection of thread {thread_name} was lost", exc_info=True)

    if connection is None or settings is None:
        raise BrokerConnectionError(
            f"There is no open broker connection bound to thread {thread_name}"
        )

    close_connection(connection)
    connection = connect(settings)
    bind_connection(connection, settings)
    logger.info(f"Reconnected thread {thread_name} to the broker")
    return connection


def current_channel() -> BlockingChannel:
    """Returns the publishing channel owned by the calling thread.

    Pending connection events are processed first. A lost connection is
    reopened when the thread bound it together with its settings.

    Raises:
        BrokerConnectionError: No open connection is bound to the thread,
            or it could not be reopened.
    """
    connection = _live_connection()

    channel: BlockingChannel | None = getattr(_local, "channel", None)
    if channel is None or not channel.is_open:
        channel = open_channel(connection)
        _local.channel = channel

    return channel


def close_channel(channel: BlockingChannel) -> None:
    """Closes the channel if it is still open, ignoring broker errors."""
    with suppress(AMQPError):
        if channel.is_open:
            channel.close()


def close_connection(connection: BlockingConnection) -> None:
    """Closes the connection if it is still open, ignoring broker errors."""
    with suppress(AMQPError):
        if connection.is_open:
            connection.close()
            logger.debug("Closed a broker connection")
