"""Logging setup for cli-harness."""

from __future__ import annotations

import logging
import sys

from .config import Config, get_config

__all__ = ["configure_logging", "LOG_FORMAT"]

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(config: Config | None = None) -> logging.Handler:
    """Install the harness log handler.

    Debug mode writes DEBUG records to ``config.log_file``; otherwise INFO
    records go to stderr. Third-party loggers stay at WARNING.

    Args:
        config: Configuration to use (defaults to the global config)

    Returns:
        The installed handler
    """
    config = config or get_config()

    handler: logging.Handler
    if config.log_debug and config.log_file:
        handler = logging.FileHandler(config.log_file, encoding="utf-8")
        log_level = logging.DEBUG
    else:
        handler = logging.StreamHandler(sys.stderr)
        log_level = logging.INFO
    handler.setFormatter(logging.Formatter(LOG_FORMAT))

    # Root logger (third-party libraries) at WARNING to reduce noise
    logging.basicConfig(level=logging.WARNING, handlers=[handler])
    # Only the cli_harness namespace gets verbose logging
    logging.getLogger("cli_harness").setLevel(log_level)

    return handler
