import logging
from enum import StrEnum

from perilbus.exceptions import PerilBusCLIException


class LogLevels(StrEnum):
    critical = "critical"
    error = "error"
    warning = "warning"
    info = "info"
    debug = "debug"


LOGGING_LEVEL_MAP: dict[str, int] = {
    level.value: logging.getLevelNamesMapping()[level.value.upper()] for level in LogLevels
}


def get_log_level(level: LogLevels | str | int) -> int:
    """Resolves a --log-level value to a logging level number.

    Raises:
        PerilBusCLIException: The name is not one of LogLevels.
    """
    if isinstance(level, int):
        return level

    try:
        return LOGGING_LEVEL_MAP[str(level).lower()]
    except KeyError:
        choices = ", ".join(LogLevels)
        raise PerilBusCLIException(
            f"Invalid value for '--log-level' ({level!r}), it should be one of: {choices}"
        ) from None
