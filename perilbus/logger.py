"""Logging configuration for perilbus."""

import json
import logging
import os
import sys
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, cast

LOGGER_NAME = "perilbus"

TEXT_FORMAT = "%(asctime)s | %(levelname)-8s | %(threadName)s | %(name)s:%(lineno)d | %(message)s"

# Attributes every LogRecord carries; anything else on a record came from 'extra'.
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {
    "message",
    "asctime",
    "context",
    "taskName",
}


class ContextStore:
    """Logging context kept per thread.

    Every subscription runner owns a thread, so the context set while a
    delivery is handled never leaks into another runner's records.
    """

    def __init__(self) -> None:
        """Initializes the ContextStore."""
        self._local = threading.local()

    def set(self, data: dict[str, Any]) -> None:
        """Replaces the calling thread's context.

        Args:
            data: The fields to attach to the thread's records.
        """
        self._local.data = data

    def get(self) -> dict[str, Any]:
        """Gets the calling thread's context.

        Returns:
            The fields attached to the thread's records, empty when none were set.
        """
        return getattr(self._local, "data", {})

    def clear(self) -> None:
        """Drops the calling thread's context."""
        self._local.data = {}


_context_store = ContextStore()


class ContextFilter(logging.Filter):
    """Attaches the thread's context, plus any 'extra' fields, as record.context."""

    def filter(self, record: logging.LogRecord) -> bool:
        """Sets record.context, 'extra' fields taking precedence.

        Args:
            record: The record being emitted.

        Returns:
            Always True, no record is dropped.
        """
        context = dict(_context_store.get())
        context.update(
            (key, value) for key, value in vars(record).items() if key not in _RECORD_ATTRS
        )
        record.context = context
        return True


class PerilBusLogger(logging.Logger):
    """Logger whose records carry the fields set with contextualize."""

    @contextmanager
    def contextualize(self, **fields: Any) -> Iterator[None]:
        """Adds fields to every record logged on this thread inside the block.

        Blocks nest; leaving one restores the fields of the enclosing block.

        Example:
            with logger.contextualize(queue_name="war"):
                logger.info("This log will carry the queue name.")
        """
        previous = _context_store.get()
        _context_store.set({**previous, **fields})
        try:
            yield
        finally:
            _context_store.set(previous)


class TextFormatter(logging.Formatter):
    """Human-readable lines, context appended as key=value pairs."""

    def format(self, record: logging.LogRecord) -> str:
        """Formats the record, skipping context fields that are None or empty.

        Args:
            record: The record to format.

        Returns:
            The formatted line.
        """
        line = super().format(record)

        pairs = [
            f"{key}={value}"
            for key, value in getattr(record, "context", {}).items()
            if value is not None and value != ""
        ]
        if pairs:
            line = f"{line} | {' '.join(pairs)}"

        return line


class JsonFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        """Serializes the record and its context fields.

        Args:
            record: The record to format.

        Returns:
            The JSON object, on a single line.
        """
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "location": f"{record.module}:{record.funcName}:{record.lineno}",
            "message": record.getMessage(),
        }
        entry.update(getattr(record, "context", {}))

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, separators=(",", ":"), default=str)


def _parse_level(value: str | int) -> int:
    """Resolves a level name or number, unknown names meaning INFO."""
    if isinstance(value, int):
        return value

    value = value.strip()
    if value.isdigit():
        return int(value)

    return logging.getLevelNamesMapping().get(value.upper(), logging.INFO)


def configure_logger(level: int | str | None = None, serialize: bool | None = None) -> PerilBusLogger:
    """Configures the perilbus logger.

    Args:
        level: The log level. Falls back to PERILBUS_LOG_LEVEL, then INFO.
        serialize: Emit one JSON object per line. Falls back to
            PERILBUS_ENABLE_LOG_SERIALIZE.

    Returns:
        The configured logger.
    """
    if level is None:
        level = os.getenv("PERILBUS_LOG_LEVEL", logging.INFO)
    if serialize is None:
        serialize = os.getenv("PERILBUS_ENABLE_LOG_SERIALIZE", "0") == "1"

    logging.setLoggerClass(PerilBusLogger)
    logger = logging.getLogger(LOGGER_NAME)
    logging.setLoggerClass(logging.Logger)

    logger.handlers.clear()
    logger.setLevel(_parse_level(level))
    logger.propagate = False

    # stdout belongs to the game console.
    handler = logging.StreamHandler(sys.stderr)
    handler.addFilter(ContextFilter())
    handler.setFormatter(JsonFormatter() if serialize else TextFormatter(TEXT_FORMAT))
    logger.addHandler(handler)

    return cast(PerilBusLogger, logger)


logger: PerilBusLogger = configure_logger()
