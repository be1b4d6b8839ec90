"""Logging configuration for leadkit.

Components log under the "leadkit" hierarchy (leadkit.crm, leadkit.http,
leadkit.cache, ...). Handlers are attached once, at the root of that
hierarchy, and never propagate to the process root logger.
"""

import logging
import sys
from enum import Enum

LEADKIT_LOGGER = "leadkit"

_RESET = "\033[0m"
_LEVEL_COLORS = {
    logging.DEBUG: "\033[36m",
    logging.INFO: "\033[32m",
    logging.WARNING: "\033[33m",
    logging.ERROR: "\033[31m",
    logging.CRITICAL: "\033[35m",
}


class LogLevel(str, Enum):
    """Log levels for leadkit."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"

    @classmethod
    def coerce(cls, level: "LogLevel | str") -> "LogLevel":
        return cls(level.upper()) if isinstance(level, str) else level

    @property
    def number(self) -> int:
        return logging.getLevelName(self.value)


class LeadkitLogFormatter(logging.Formatter):
    """Formatter for leadkit logs; colors the level name on a terminal."""

    def __init__(self, useColors: bool = True, includeTimestamp: bool = True):
        prefix = "%(asctime)s " if includeTimestamp else ""
        super().__init__(
            fmt=f"{prefix}[%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S" if includeTimestamp else None,
        )
        self._useColors = useColors

    def format(self, record: logging.LogRecord) -> str:
        color = _LEVEL_COLORS.get(record.levelno)
        if color and self._useColors and sys.stdout.isatty():
            # Other handlers share the record, so color a copy
            record = logging.makeLogRecord(record.__dict__)
            record.levelname = f"{color}{record.levelname}{_RESET}"
        return super().format(record)


def configureLogging(
    level: LogLevel | str = LogLevel.INFO,
    useColors: bool = True,
    includeTimestamp: bool = True,
    logFile: str | None = None,
) -> logging.Logger:
    """Configure leadkit logging.

    Calling it again replaces the previous handlers.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        useColors: Whether to color level names on a terminal.
        includeTimestamp: Whether console lines carry a timestamp.
        logFile: Optional file that also receives every record, uncolored.

    Returns:
        The configured leadkit root logger.
    """
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    handlers[0].setFormatter(
        LeadkitLogFormatter(useColors=useColors, includeTimestamp=includeTimestamp)
    )
    if logFile:
        handlers.append(logging.FileHandler(logFile, encoding="utf-8"))
        handlers[-1].setFormatter(LeadkitLogFormatter(useColors=False))

    logger = logging.getLogger(LEADKIT_LOGGER)
    logger.setLevel(LogLevel.coerce(level).number)
    logger.handlers[:] = handlers
    logger.propagate = False
    return logger


def getLogger(name: str) -> logging.Logger:
    """Logger for a component, e.g. getLogger("crm") is "leadkit.crm"."""
    if name != LEADKIT_LOGGER and not name.startswith(f"{LEADKIT_LOGGER}."):
        name = f"{LEADKIT_LOGGER}.{name}"
    return logging.getLogger(name)


def setLogLevel(level: LogLevel | str, loggerName: str | None = None) -> None:
    """Set the level of one logger, or of the leadkit root when none is named."""
    logging.getLogger(loggerName or LEADKIT_LOGGER).setLevel(LogLevel.coerce(level).number)


def setDebugMode(enabled: bool = True, components: list[str] | None = None) -> None:
    """Switch between DEBUG and INFO.

    Args:
        enabled: DEBUG when True, INFO when False.
        components: Components to switch, e.g. ["crm", "http"] (None for all).
    """
    level = LogLevel.DEBUG if enabled else LogLevel.INFO
    for component in components or [LEADKIT_LOGGER]:
        setLogLevel(level, getLogger(component).name)
