"""Logging infrastructure for leadkit."""

from leadkit.logging.config import (
    LEADKIT_LOGGER,
    LeadkitLogFormatter,
    LogLevel,
    configureLogging,
    getLogger,
    setDebugMode,
    setLogLevel,
)

__all__ = [
    "configureLogging",
    "getLogger",
    "setLogLevel",
    "setDebugMode",
    "LogLevel",
    "LeadkitLogFormatter",
    "LEADKIT_LOGGER",
]
