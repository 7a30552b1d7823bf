"""Logging setup for the ``mcplink`` logger namespace.

Modules log through ``logging.getLogger(__name__)``. The client applies the
configured level to the package logger; applications that want console output
call :func:`configure_logging` once.

Example:
    configure_logging("debug")
    logging.getLogger("mcplink.client").debug("visible now")
"""

import logging
import sys

PACKAGE_LOGGER_NAME = "mcplink"

_LEVELS: dict[str, int] = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def to_logging_level(level: str | int) -> int:
    """Map a config level name (debug/info/warn/error) to a logging constant."""
    if isinstance(level, int):
        return level
    try:
        return _LEVELS[level.lower()]
    except KeyError:
        raise ValueError(f"Unknown log level: {level!r}") from None


def apply_log_level(level: str | int) -> None:
    """Set the level of the package logger without touching handlers."""
    logging.getLogger(PACKAGE_LOGGER_NAME).setLevel(to_logging_level(level))


def configure_logging(level: str | int = "info") -> logging.Logger:
    """Attach a stderr handler to the package logger and set its level.

    Safe to call repeatedly: existing handlers are replaced, not duplicated.

    Returns:
        The package logger.
    """
    numeric = to_logging_level(level)

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(numeric)
    handler.setFormatter(logging.Formatter(
        "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    ))

    package_logger = logging.getLogger(PACKAGE_LOGGER_NAME)
    package_logger.setLevel(numeric)

    # Remove any existing handlers to avoid duplicates on reconfigure
    package_logger.handlers.clear()
    package_logger.addHandler(handler)
    return package_logger
