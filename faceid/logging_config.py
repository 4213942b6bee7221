"""Logging configuration for the face identification pipeline.

Handlers live on the package logger ("faceid") only. Module loggers obtained
with get_logger(__name__) are its children and propagate to it, so one call
to configure_logging() changes level and outputs for the whole pipeline.
Console output is colored by level when the console is a terminal; the
optional log file (LOG_FILE) gets the same records uncolored.
"""

from __future__ import annotations

import logging
import sys
from typing import Optional, TextIO

PACKAGE_LOGGER = "faceid"
LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class ColoredFormatter(logging.Formatter):
    """Formatter that colors the level name."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, use_color: bool = True):
        super().__init__(LOG_FORMAT, datefmt=DATE_FORMAT)
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname)
        if not self.use_color or color is None:
            return super().format(record)

        # Copy so other handlers still see the plain level name
        record = logging.makeLogRecord(record.__dict__)
        record.levelname = f"{color}{record.levelname}{self.RESET}"
        return super().format(record)


def _is_terminal(stream: TextIO) -> bool:
    return hasattr(stream, "isatty") and stream.isatty()


def _settings_from_config() -> tuple[str, Optional[str]]:
    try:
        from faceid.config import get_config

        config = get_config()
    except ValueError:
        # Invalid environment; the same error surfaces when the pipeline loads it
        return "INFO", None
    return config.log_level, str(config.log_file) if config.log_file else None


def configure_logging(
    level: Optional[str] = None,
    log_file: Optional[str] = None,
    stream: Optional[TextIO] = None,
) -> logging.Logger:
    """(Re)configure the package logger.

    Existing handlers are replaced, so calling this again (for example from a
    CLI after parsing --verbose) does not duplicate output.

    Args:
        level: Log level name; defaults to LOG_LEVEL from Config
        log_file: Also write to this file; defaults to LOG_FILE from Config
        stream: Console stream (default: stdout)

    Returns:
        The package logger.
    """
    if level is None and log_file is None:
        level, log_file = _settings_from_config()
    elif level is None:
        level, _ = _settings_from_config()

    package = logging.getLogger(PACKAGE_LOGGER)
    for handler in list(package.handlers):
        package.removeHandler(handler)
        handler.close()

    package.setLevel(getattr(logging, level.upper(), logging.INFO))
    package.propagate = False

    stream = stream or sys.stdout
    console = logging.StreamHandler(stream)
    console.setFormatter(ColoredFormatter(use_color=_is_terminal(stream)))
    package.addHandler(console)

    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
        package.addHandler(file_handler)

    return package


def get_logger(name: str) -> logging.Logger:
    """Get a logger that reports through the package handlers.

    Names outside the package (scripts run as __main__) are placed under it.

    Example:
        >>> logger = get_logger(__name__)
        >>> logger.info("Gallery loaded")
    """
    if not logging.getLogger(PACKAGE_LOGGER).handlers:
        configure_logging()

    if name != PACKAGE_LOGGER and not name.startswith(PACKAGE_LOGGER + "."):
        name = f"{PACKAGE_LOGGER}.{name}"
    return logging.getLogger(name)


def setup_logging(
    name: str = PACKAGE_LOGGER,
    level: Optional[str] = None,
    log_file: Optional[str] = None,
) -> logging.Logger:
    """Configure the package logger and return the logger for `name`.

    Entry points call this once; library modules use get_logger().
    """
    configure_logging(level=level, log_file=log_file)
    return get_logger(name)
