"""Announcer sinks for human-readable diagnostics.

The process core emits events (working directory, command, timeout, captured
output) to whatever object implements ``Announcer``; it never looks at what
the sink does with them.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Protocol, runtime_checkable

__all__ = ["AnnounceEvent", "Announcer", "NullAnnouncer", "LoggingAnnouncer"]


class AnnounceEvent(str, Enum):
    """Events the core announces."""

    DIRECTORY = "directory"
    COMMAND = "command"
    TIMEOUT = "timeout"
    STDOUT = "stdout"
    STDERR = "stderr"


@runtime_checkable
class Announcer(Protocol):
    def announce(self, event: str, *args: Any) -> None:
        ...


class NullAnnouncer:
    """Discards every event."""

    def announce(self, event: str, *args: Any) -> None:
        return None


class LoggingAnnouncer:
    """Writes events to a logger.

    Attributes:
        logger: Destination logger
        level: Level used for every event
    """

    def __init__(self, logger: logging.Logger | None = None, level: int = logging.INFO) -> None:
        self.logger = logger or logging.getLogger(__name__)
        self.level = level

    def announce(self, event: str, *args: Any) -> None:
        name = event.value if isinstance(event, AnnounceEvent) else str(event)
        details = " ".join(str(arg) for arg in args)
        self.logger.log(self.level, f"[{name}] {details}")
