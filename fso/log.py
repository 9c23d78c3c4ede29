"""
Per-instance logging

Components log through the standard logging hierarchy under the
"fso" namespace, but each codec, channel, tracker and simulator
carries its own level. A record below the instance level is dropped
before it reaches the shared logger, so two instances with different
verbosity can coexist in one process.
"""

import logging
import sys
from enum import IntEnum
from typing import Union


class LogLevel(IntEnum):
    """Instance log levels, ordered from silent to most verbose."""
    OFF = 0
    ERROR = 1
    WARN = 2
    INFO = 3
    DEBUG = 4


_TO_LOGGING = {
    LogLevel.ERROR: logging.ERROR,
    LogLevel.WARN: logging.WARNING,
    LogLevel.INFO: logging.INFO,
    LogLevel.DEBUG: logging.DEBUG,
}

DEFAULT_LEVEL = LogLevel.WARN


def parse_level(level: Union[str, int, LogLevel]) -> LogLevel:
    """Accept a LogLevel, its integer value or its (case-insensitive) name."""
    if isinstance(level, LogLevel):
        return level
    if isinstance(level, str):
        name = level.strip().upper()
        if name == "WARNING":
            name = "WARN"
        try:
            return LogLevel[name]
        except KeyError:
            raise ValueError(f"Unknown log level: {level!r}") from None
    return LogLevel(int(level))


class InstanceLogger(logging.LoggerAdapter):
    """
    Logger adapter holding an instance-level threshold.

    Example:
        >>> log = get_logger("ReedSolomon", LogLevel.INFO)
        >>> log.debug("dropped")      # below INFO
        >>> log.info("forwarded")
    """

    def __init__(self, logger: logging.Logger, level: LogLevel = DEFAULT_LEVEL):
        super().__init__(logger, {})
        self.instance_level = parse_level(level)

    def set_level(self, level: Union[str, int, LogLevel]) -> None:
        self.instance_level = parse_level(level)

    def isEnabledFor(self, level: int) -> bool:
        if self.instance_level == LogLevel.OFF:
            return False
        if level < _TO_LOGGING[self.instance_level]:
            return False
        return self.logger.isEnabledFor(level)

    def log(self, level, msg, *args, **kwargs):
        if self.isEnabledFor(level):
            msg, kwargs = self.process(msg, kwargs)
            self.logger.log(level, msg, *args, **kwargs)


def get_logger(name: str, level: Union[str, int, LogLevel] = DEFAULT_LEVEL) -> InstanceLogger:
    """Get an instance logger named fso.<name>."""
    return InstanceLogger(logging.getLogger(f"fso.{name}"), level)


def setup_logging(level: Union[str, int, LogLevel] = DEFAULT_LEVEL) -> None:
    """Configure a console handler for command-line use."""
    level = parse_level(level)
    logging.basicConfig(
        level=_TO_LOGGING.get(level, logging.CRITICAL + 1),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )
