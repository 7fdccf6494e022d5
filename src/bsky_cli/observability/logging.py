"""Shared logging utilities for the CLI.

Usage example:
    from bsky_cli.observability.logging import get_logger

    logger = get_logger("bsky_cli.session")
    logger.info("Resumed session for %s", handle)
"""

from __future__ import annotations

import logging
import time

_ROOT_LOGGER_NAME = "bsky_cli"
_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
_LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"
_DEFAULT_LEVEL = logging.WARNING


def get_logger(name: str) -> logging.Logger:
    """Return a standard logger configured for UTC timestamps on stderr.

    Args:
        name: Logger name (use a stable module-qualified name).

    Returns:
        A logger with a single stream handler and a consistent UTC format.
        Loggers start at WARNING so command output stays clean until
        `set_log_level` raises verbosity.
    """
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter(fmt=_LOG_FORMAT, datefmt=_LOG_DATE_FORMAT)
        formatter.converter = time.gmtime
        handler.setFormatter(formatter)
        logger.addHandler(handler)
        logger.setLevel(_DEFAULT_LEVEL)
        logger.propagate = False
    return logger


def set_log_level(*, debug: bool = False, verbose: bool = False) -> int:
    """Apply CLI verbosity to every bsky_cli logger created so far.

    Returns the level that was applied.
    """
    level = logging.DEBUG if debug else logging.INFO if verbose else _DEFAULT_LEVEL
    manager = logging.Logger.manager
    for name in list(manager.loggerDict):
        if name == _ROOT_LOGGER_NAME or name.startswith(f"{_ROOT_LOGGER_NAME}."):
            get_logger(name).setLevel(level)
    get_logger(_ROOT_LOGGER_NAME).setLevel(level)
    return level
