"""Read-only output views over a ProcessRegistry.

Run-wide views concatenate per-process output in registration order, not in
real-time order: two processes running side by side still appear one after
the other. No separator is inserted between processes.
"""

from __future__ import annotations

from .registry import ProcessRegistry
from .runtime.process import ProcessHandle

__all__ = ["OutputAggregator"]


class OutputAggregator:
    """Per-process and run-wide stdout/stderr/combined text.

    Every method reads a snapshot of already captured bytes; none blocks.
    """

    def __init__(self, registry: ProcessRegistry) -> None:
        self.registry = registry

    @staticmethod
    def stdout_of(handle: ProcessHandle) -> str:
        return handle.stdout()

    @staticmethod
    def stderr_of(handle: ProcessHandle) -> str:
        return handle.stderr()

    @staticmethod
    def combined_of(handle: ProcessHandle) -> str:
        """stdout and stderr of ``handle`` in arrival order (best effort)."""
        return handle.output()

    def all_stdout(self) -> str:
        return "".join(self.stdout_of(h) for h in self.registry.handles)

    def all_stderr(self) -> str:
        return "".join(self.stderr_of(h) for h in self.registry.handles)

    def all_output(self) -> str:
        return "".join(self.combined_of(h) for h in self.registry.handles)
