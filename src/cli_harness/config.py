"""Harness configuration from environment variables.

Environment variables:
    HARNESS_EXIT_TIMEOUT: Default time a command may run (seconds)
        - Default 15.0
        - Limited to 0.1 - 3600

    HARNESS_IO_WAIT_TIMEOUT: Time to keep draining output after exit (seconds)
        - Default 0.1
        - Grandchildren may keep stdout/stderr open after the child exits;
          draining stops after this window

    HARNESS_STOP_TIMEOUT: Grace period after closing stdin during a stop
        - Default 3.0

    HARNESS_TERM_TIMEOUT: Grace period after SIGTERM (CTRL_BREAK on Windows)
        - Default 2.0

    HARNESS_KILL_TIMEOUT: Grace period after SIGKILL
        - Default 1.0

    HARNESS_LOG_DEBUG: Debug logging
        - true/1/yes = on (logs go to a file in the temp directory)
        - false/0/no = off (default, logs go to stderr)
"""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

__all__ = ["Config", "load_config", "get_config", "reload_config"]

DEFAULT_EXIT_TIMEOUT = 15.0
DEFAULT_IO_WAIT_TIMEOUT = 0.1
DEFAULT_STOP_TIMEOUT = 3.0
DEFAULT_TERM_TIMEOUT = 2.0  # seconds to wait after SIGTERM
DEFAULT_KILL_TIMEOUT = 1.0  # seconds to wait after SIGKILL


def _parse_bool(value: str | None, default: bool = False) -> bool:
    """Parse a boolean environment variable."""
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _parse_seconds(
    value: str | None,
    default: float,
    minimum: float = 0.0,
    maximum: float = 3600.0,
) -> float:
    """Parse a duration in seconds, clamped to [minimum, maximum].

    Args:
        value: Raw environment variable value
        default: Value used when unset or not a number
        minimum: Lower bound
        maximum: Upper bound

    Returns:
        Duration in seconds
    """
    if not value:
        return default
    try:
        seconds = float(value)
    except ValueError:
        return default
    return max(minimum, min(seconds, maximum))


@dataclass
class Config:
    """Harness configuration.

    Attributes:
        exit_timeout: Default timeout for running a command to completion
        io_wait_timeout: Post-exit window for draining in-flight output
        stop_timeout: Grace period between closing stdin and terminating
        term_timeout: Grace period between SIGTERM and SIGKILL
        kill_timeout: Grace period after SIGKILL
        log_debug: Debug logging to a temp file
        log_file: Log file path (set when log_debug=True)
    """

    exit_timeout: float = DEFAULT_EXIT_TIMEOUT
    io_wait_timeout: float = DEFAULT_IO_WAIT_TIMEOUT
    stop_timeout: float = DEFAULT_STOP_TIMEOUT
    term_timeout: float = DEFAULT_TERM_TIMEOUT
    kill_timeout: float = DEFAULT_KILL_TIMEOUT
    log_debug: bool = False
    log_file: str | None = None

    def __repr__(self) -> str:
        return (
            f"Config(exit_timeout={self.exit_timeout}, "
            f"io_wait_timeout={self.io_wait_timeout}, "
            f"stop_timeout={self.stop_timeout}, "
            f"term_timeout={self.term_timeout}, "
            f"kill_timeout={self.kill_timeout}, "
            f"log_debug={self.log_debug}, "
            f"log_file={self.log_file})"
        )


def _generate_log_file_path() -> str:
    """Build a timestamped log file path under the system temp directory."""
    log_dir = Path(tempfile.gettempdir()) / "cli-harness"
    log_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = log_dir / f"harness_debug_{timestamp}.log"

    return str(log_file.resolve())


def load_config() -> Config:
    """Load configuration from environment variables."""
    log_debug = _parse_bool(os.environ.get("HARNESS_LOG_DEBUG"), default=False)
    log_file = _generate_log_file_path() if log_debug else None

    return Config(
        exit_timeout=_parse_seconds(
            os.environ.get("HARNESS_EXIT_TIMEOUT"), DEFAULT_EXIT_TIMEOUT, minimum=0.1
        ),
        io_wait_timeout=_parse_seconds(
            os.environ.get("HARNESS_IO_WAIT_TIMEOUT"), DEFAULT_IO_WAIT_TIMEOUT, maximum=60.0
        ),
        stop_timeout=_parse_seconds(
            os.environ.get("HARNESS_STOP_TIMEOUT"), DEFAULT_STOP_TIMEOUT, maximum=60.0
        ),
        term_timeout=_parse_seconds(
            os.environ.get("HARNESS_TERM_TIMEOUT"), DEFAULT_TERM_TIMEOUT, maximum=60.0
        ),
        kill_timeout=_parse_seconds(
            os.environ.get("HARNESS_KILL_TIMEOUT"), DEFAULT_KILL_TIMEOUT, maximum=60.0
        ),
        log_debug=log_debug,
        log_file=log_file,
    )


# Global config instance (lazy)
_config: Config | None = None


def get_config() -> Config:
    """Return the global config instance."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> Config:
    """Reload configuration (used by tests)."""
    global _config
    _config = load_config()
    return _config
