"""Process registry for one test run.

Provides:
- ProcessRegistry: ordered (commandline, handle) entries for a run
- Lookup by exact commandline (last registration wins) or unique substring
- Bulk stop / terminate with collect-and-continue error reporting

One registry belongs to one run context; it is never a module-level
singleton, so parallel runs do not see each other's processes.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import datetime

from .errors import AmbiguousError, CleanupError, NotFoundError
from .runtime.process import ProcessHandle

__all__ = ["ProcessRegistry", "RegisteredProcess"]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RegisteredProcess:
    """A registry entry.

    Attributes:
        commandline: The literal commandline used at registration
        handle: The process handle
        registered_at: Registration time
    """

    commandline: str
    handle: ProcessHandle
    registered_at: datetime = field(default_factory=datetime.now)


class ProcessRegistry:
    """Ordered registry of every process started during a run.

    Entries are append-only: handles stay registered after they finish so
    their output remains inspectable. Duplicate commandlines are allowed.

    Thread safety: register() and lookups take a short lock; sweeps snapshot
    the entry list under the lock and work on the snapshot, so a handle
    registered mid-sweep is either fully in or fully out of it.

    Example:
        ```python
        registry = ProcessRegistry()
        registry.register("echo a", handle_a)
        registry.register("echo b", handle_b)

        registry.lookup("echo a")                  # handle_a
        registry.lookup_unique_substring("echo")   # AmbiguousError
        registry.last()                            # handle_b

        await registry.stop_all()
        await registry.terminate_all()
        ```
    """

    def __init__(self) -> None:
        self._entries: list[RegisteredProcess] = []
        self._lock = threading.Lock()

    def register(self, commandline: str, handle: ProcessHandle) -> RegisteredProcess:
        """Append ``(commandline, handle)``.

        Args:
            commandline: The literal commandline used to launch the handle
            handle: The process handle

        Returns:
            The new entry
        """
        entry = RegisteredProcess(commandline=commandline, handle=handle)
        with self._lock:
            self._entries.append(entry)
        logger.debug(f"Registered process: {handle}")
        return entry

    def snapshot(self) -> list[RegisteredProcess]:
        """Return a copy of the entries in registration order."""
        with self._lock:
            return list(self._entries)

    @property
    def handles(self) -> list[ProcessHandle]:
        return [entry.handle for entry in self.snapshot()]

    def lookup(self, commandline: str) -> ProcessHandle:
        """Return the most recently registered handle for ``commandline``.

        Raises:
            NotFoundError: If no entry has exactly this commandline
        """
        for entry in reversed(self.snapshot()):
            if entry.commandline == commandline:
                return entry.handle
        raise NotFoundError(f'No process registered for command "{commandline}"')

    def lookup_unique_substring(self, fragment: str) -> ProcessHandle:
        """Return the single handle whose commandline contains ``fragment``.

        Raises:
            NotFoundError: If nothing matches
            AmbiguousError: If more than one entry matches
        """
        matches = [entry for entry in self.snapshot() if fragment in entry.commandline]
        if not matches:
            raise NotFoundError(f'No process registered matching "{fragment}"')
        if len(matches) > 1:
            raise AmbiguousError(fragment, [entry.commandline for entry in matches])
        return matches[0].handle

    def last(self) -> ProcessHandle:
        """Return the most recently registered handle.

        Raises:
            NotFoundError: If the registry is empty
        """
        with self._lock:
            if not self._entries:
                raise NotFoundError("No process has been started yet")
            return self._entries[-1].handle

    async def stop_all(self) -> list[int | None]:
        """Stop every registered process in registration order.

        Returns:
            Exit statuses in registration order

        Raises:
            CleanupError: After all handles were attempted, if any failed
        """
        statuses: list[int | None] = []
        errors: list[tuple[str, BaseException]] = []

        for entry in self.snapshot():
            try:
                statuses.append(await entry.handle.stop())
            except Exception as e:
                logger.warning(f"Error stopping {entry.commandline!r}: {e}")
                errors.append((entry.commandline, e))
                statuses.append(None)

        if errors:
            raise CleanupError("stop", errors)
        return statuses

    async def terminate_all(self) -> int:
        """Terminate every registered process. Idempotent.

        Returns:
            Number of handles visited

        Raises:
            CleanupError: After all handles were attempted, if any failed
        """
        entries = self.snapshot()
        errors: list[tuple[str, BaseException]] = []

        for entry in entries:
            try:
                await entry.handle.terminate()
            except Exception as e:
                logger.warning(f"Error terminating {entry.commandline!r}: {e}")
                errors.append((entry.commandline, e))

        if errors:
            raise CleanupError("terminate", errors)
        if entries:
            logger.debug(f"Terminated {len(entries)} registered process(es)")
        return len(entries)

    def has_running(self) -> bool:
        return any(entry.handle.is_running for entry in self.snapshot())

    @property
    def running_count(self) -> int:
        return sum(1 for entry in self.snapshot() if entry.handle.is_running)

    def clear(self) -> int:
        """Drop every entry. Does not signal the processes.

        Returns:
            Number of entries removed
        """
        with self._lock:
            count = len(self._entries)
            running = [e.commandline for e in self._entries if e.handle.is_running]
            self._entries.clear()
        if running:
            logger.warning(f"Cleared registry with {len(running)} process(es) still running: {running}")
        return count

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __iter__(self) -> Iterator[RegisteredProcess]:
        return iter(self.snapshot())

    def __contains__(self, commandline: object) -> bool:
        return any(entry.commandline == commandline for entry in self.snapshot())
