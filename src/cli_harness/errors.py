"""Exception types raised by the process core.

cli-harness v0.1.0
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .runtime.process import ProcessHandle

__all__ = [
    "HarnessError",
    "LaunchError",
    "InputClosedError",
    "NotFoundError",
    "AmbiguousError",
    "TimeoutExceeded",
    "NonZeroExitError",
    "CleanupError",
]


class HarnessError(Exception):
    """Base exception for cli-harness."""
    pass


class LaunchError(HarnessError):
    """Command could not be resolved on the search path.

    Raised before any OS process is created.

    Attributes:
        command: The commandline that was requested
        search_path: The search path that was consulted
    """

    def __init__(self, message: str, command: str = "", search_path: str = "") -> None:
        self.command = command
        self.search_path = search_path
        super().__init__(message)


class InputClosedError(HarnessError, OSError):
    """Write to the input channel of a finished process or after close_input()."""

    def __init__(self, commandline: str, reason: str = "input is closed") -> None:
        self.commandline = commandline
        super().__init__(f'Cannot write to "{commandline}": {reason}')


class NotFoundError(HarnessError, LookupError):
    """No registered process matches the query."""
    pass


class AmbiguousError(HarnessError, LookupError):
    """More than one registered process matches the query.

    Attributes:
        fragment: The substring that was looked up
        matches: Commandlines of every matching process
    """

    def __init__(self, fragment: str, matches: list[str]) -> None:
        self.fragment = fragment
        self.matches = matches
        listed = ", ".join(f'"{m}"' for m in matches)
        super().__init__(
            f'"{fragment}" matches {len(matches)} processes ({listed}); '
            f"use a longer fragment"
        )


class TimeoutExceeded(HarnessError):
    """Process did not finish within its exit timeout."""

    def __init__(self, handle: "ProcessHandle", message: str) -> None:
        self.handle = handle
        super().__init__(message)


class NonZeroExitError(HarnessError):
    """Process exited with a non-zero status."""

    def __init__(self, handle: "ProcessHandle", message: str) -> None:
        self.handle = handle
        self.exit_status = handle.exit_status
        super().__init__(message)


class CleanupError(HarnessError):
    """One or more processes failed to stop or terminate during a sweep.

    Attributes:
        errors: ``(commandline, exception)`` pairs in registration order
    """

    def __init__(self, action: str, errors: list[tuple[str, BaseException]]) -> None:
        self.action = action
        self.errors = errors
        details = "; ".join(f'"{cmd}": {type(exc).__name__}: {exc}' for cmd, exc in errors)
        super().__init__(f"{action} failed for {len(errors)} process(es): {details}")
