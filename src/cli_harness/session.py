"""Per-run command session.

CommandSession is the context object a test run holds: it launches commands,
registers them, feeds them input, exposes their output and tears them all
down at the end of the run. Everything that acts on "the current process"
goes through ``last_command``, i.e. the most recently registered handle.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable, Mapping
from pathlib import Path
from types import TracebackType
from typing import Any

import anyio

from .announcer import AnnounceEvent, Announcer, NullAnnouncer
from .config import Config, get_config
from .errors import NonZeroExitError, TimeoutExceeded
from .output import OutputAggregator
from .registry import ProcessRegistry
from .runtime.process import ProcessHandle
from .runtime.spawner import Spawner

__all__ = ["CommandSession", "BeforeCommandHook", "AfterCommandHook"]

logger = logging.getLogger(__name__)

BeforeCommandHook = Callable[["CommandSession", str], Any]
AfterCommandHook = Callable[["CommandSession", ProcessHandle], Any]


class CommandSession:
    """Launches, tracks and tears down the processes of one test run.

    Example:
        ```python
        async with CommandSession(cwd=tmp_path) as session:
            await session.run("cat")
            await session.type("Hello, world")
            await session.type("")              # close stdin
            await session.last_command.run_to_completion()
            assert "Hello, world" in session.all_stdout()
        # every process is stopped, then terminated, here
        ```

    Attributes:
        config: Timeouts and logging configuration
        announcer: Diagnostics sink
        cwd: Working directory for launched commands
        env: Environment for launched commands (None = inherit)
        spawner: Creates the handles
    """

    def __init__(
        self,
        *,
        config: Config | None = None,
        announcer: Announcer | None = None,
        cwd: str | os.PathLike[str] | None = None,
        env: Mapping[str, str] | None = None,
        spawner: Spawner | None = None,
    ) -> None:
        self.config = config or get_config()
        self.announcer: Announcer = announcer or NullAnnouncer()
        self.cwd = Path(cwd) if cwd is not None else None
        self.env = dict(env) if env is not None else None
        self.spawner = spawner or Spawner(self.config)

        # Created on first command
        self._registry: ProcessRegistry | None = None
        self._aggregator: OutputAggregator | None = None

        self._before_hooks: list[BeforeCommandHook] = []
        self._after_hooks: list[AfterCommandHook] = []

        self.last_exit_status: int | None = None
        self.timed_out: bool = False

    # =========================================================================
    # Registry access
    # =========================================================================

    @property
    def registry(self) -> ProcessRegistry:
        if self._registry is None:
            self._registry = ProcessRegistry()
        return self._registry

    @property
    def output(self) -> OutputAggregator:
        if self._aggregator is None:
            self._aggregator = OutputAggregator(self.registry)
        return self._aggregator

    @property
    def last_command(self) -> ProcessHandle:
        """The most recently started process.

        Raises:
            NotFoundError: If nothing has been run yet
        """
        return self.registry.last()

    def get_process(self, commandline: str) -> ProcessHandle:
        return self.registry.lookup(commandline)

    # =========================================================================
    # Hooks
    # =========================================================================

    def add_before_command_hook(self, hook: BeforeCommandHook) -> None:
        """Call ``hook(session, commandline)`` before each launch."""
        self._before_hooks.append(hook)

    def add_after_command_hook(self, hook: AfterCommandHook) -> None:
        """Call ``hook(session, handle)`` after each launch and registration."""
        self._after_hooks.append(hook)

    # =========================================================================
    # Running commands
    # =========================================================================

    async def run(self, commandline: str, timeout: float | None = None) -> ProcessHandle:
        """Launch ``commandline`` and register it; do not wait for it.

        Args:
            commandline: Command to run
            timeout: Exit timeout stored on the handle (default: config)

        Returns:
            The running handle, also available as ``last_command``

        Raises:
            LaunchError: If the program is not on the search path
        """
        timeout = self.config.exit_timeout if timeout is None else timeout
        directory = self.cwd if self.cwd is not None else Path.cwd()

        self.announcer.announce(AnnounceEvent.DIRECTORY, str(directory))
        self.announcer.announce(AnnounceEvent.COMMAND, commandline)
        self.announcer.announce(AnnounceEvent.TIMEOUT, "exit-timeout", timeout)

        for before in self._before_hooks:
            before(self, commandline)

        handle = await self.spawner.launch(
            commandline,
            exit_timeout=timeout,
            io_wait_timeout=self.config.io_wait_timeout,
            cwd=self.cwd,
            env=self.env,
        )
        self.registry.register(commandline, handle)

        for after in self._after_hooks:
            after(self, handle)

        return handle

    async def run_to_completion(
        self,
        commandline: str,
        timeout: float | None = None,
        *,
        fail_on_nonzero: bool = True,
    ) -> ProcessHandle:
        """Run ``commandline`` and wait for it to finish.

        Args:
            commandline: Command to run
            timeout: Exit timeout (default: config)
            fail_on_nonzero: Raise if the command timed out or exited non-zero

        Returns:
            The finished handle

        Raises:
            LaunchError: If the program is not on the search path
            TimeoutExceeded: If fail_on_nonzero and the command timed out
            NonZeroExitError: If fail_on_nonzero and the exit status is not 0
        """
        handle = await self.run(commandline, timeout)
        self.last_exit_status = await handle.run_to_completion()
        self.timed_out = handle.timed_out

        self.announcer.announce(AnnounceEvent.STDOUT, handle.stdout())
        self.announcer.announce(AnnounceEvent.STDERR, handle.stderr())

        if fail_on_nonzero:
            if handle.timed_out:
                raise TimeoutExceeded(
                    handle,
                    self._append_output_to(
                        f'Command "{commandline}" did not finish within '
                        f"{handle.exit_timeout} seconds."
                    ),
                )
            if handle.exit_status != 0:
                raise NonZeroExitError(
                    handle,
                    self._append_output_to(
                        f'Command "{commandline}" exited with status {handle.exit_status}.'
                    ),
                )

        return handle

    def _append_output_to(self, message: str) -> str:
        return f"{message} Output:\n\n{self.all_output()}\n"

    # =========================================================================
    # Input
    # =========================================================================

    async def type(self, text: str, handle: ProcessHandle | None = None) -> None:
        """Type a line into a process; empty text closes its input.

        Args:
            text: Line to send (a newline is appended)
            handle: Target process (default: last_command)
        """
        if text == "":
            await self.close_input(handle)
            return
        target = handle or self.last_command
        await target.write_line(text)

    async def close_input(self, handle: ProcessHandle | None = None) -> None:
        target = handle or self.last_command
        await target.close_input()

    async def pipe_in_file(
        self,
        file_name: str | os.PathLike[str],
        handle: ProcessHandle | None = None,
    ) -> None:
        """Write a file line by line to a process' input.

        Relative paths are resolved against the session's working directory.
        """
        path = Path(file_name)
        if not path.is_absolute() and self.cwd is not None:
            path = self.cwd / path

        target = handle or self.last_command
        content = await anyio.Path(path).read_text(encoding=target.encoding)
        for line in content.splitlines(keepends=True):
            await target.write(line)

    # =========================================================================
    # Output
    # =========================================================================

    def stdout_from(self, commandline: str) -> str:
        return self.output.stdout_of(self.get_process(commandline))

    def stderr_from(self, commandline: str) -> str:
        return self.output.stderr_of(self.get_process(commandline))

    def output_from(self, commandline: str) -> str:
        return self.output.combined_of(self.get_process(commandline))

    def all_stdout(self) -> str:
        return self.output.all_stdout()

    def all_stderr(self) -> str:
        return self.output.all_stderr()

    def all_output(self) -> str:
        return self.output.all_output()

    # =========================================================================
    # Teardown
    # =========================================================================

    async def stop_processes(self) -> list[int | None]:
        """Stop every process of this run (close stdin, wait, terminate)."""
        if self._registry is None:
            return []
        return await self._registry.stop_all()

    async def terminate_processes(self) -> int:
        """Terminate every process of this run. Safe to call repeatedly."""
        if self._registry is None:
            return 0
        return await self._registry.terminate_all()

    async def reset(self) -> None:
        """Terminate every process and start with an empty registry."""
        await self.terminate_processes()
        if self._registry is not None:
            self._registry.clear()
        self.last_exit_status = None
        self.timed_out = False

    async def __aenter__(self) -> "CommandSession":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        try:
            await self.stop_processes()
        finally:
            await self.terminate_processes()
