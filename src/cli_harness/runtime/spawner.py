"""Spawner: commandline -> started ProcessHandle."""

from __future__ import annotations

import logging
import os
import shlex
from collections.abc import Mapping

from ..config import Config, get_config
from ..errors import LaunchError
from .process import IS_WINDOWS, ProcessHandle
from .pathsearch import which

__all__ = ["Spawner"]

logger = logging.getLogger(__name__)


class Spawner:
    """Creates started ProcessHandles.

    The program is resolved on the search path before anything is launched,
    so an unknown command fails with a LaunchError instead of leaking a half
    created process or surfacing a bare FileNotFoundError.

    The Spawner does not register handles and does not wait for exit.

    Attributes:
        config: Source of default timeouts
        path_exts: Executable extensions to try (None = platform default)
    """

    def __init__(
        self,
        config: Config | None = None,
        path_exts: list[str] | None = None,
    ) -> None:
        self.config = config or get_config()
        self.path_exts = path_exts

    @staticmethod
    def split(commandline: str) -> list[str]:
        """Split a commandline into argv using shell quoting rules."""
        return shlex.split(commandline, posix=not IS_WINDOWS)

    @staticmethod
    def search_path(env: Mapping[str, str] | None = None) -> str:
        """Return the PATH the child will see."""
        if env is not None and env.get("PATH"):
            return env["PATH"]
        return os.environ.get("PATH", "")

    def resolve(
        self,
        commandline: str,
        cwd: str | os.PathLike[str] | None = None,
        env: Mapping[str, str] | None = None,
    ) -> list[str]:
        """Split ``commandline`` and resolve its program to a path.

        Returns:
            argv with argv[0] replaced by the resolved executable

        Raises:
            LaunchError: If the commandline is empty or the program is not found
        """
        try:
            argv = self.split(commandline)
        except ValueError as e:
            raise LaunchError(
                f'Command "{commandline}" cannot be parsed: {e}', command=commandline
            ) from e
        if not argv:
            raise LaunchError("Cannot launch an empty command", command=commandline)

        path = self.search_path(env)
        try:
            resolved = which(argv[0], path, cwd=cwd, path_exts=self.path_exts)
        except ValueError as e:
            raise LaunchError(
                f'Command "{commandline}" cannot be resolved: {e}',
                command=commandline,
                search_path=path,
            ) from e

        if resolved is None:
            raise LaunchError(
                f'Command "{argv[0]}" not found in PATH-variable "{path}".',
                command=commandline,
                search_path=path,
            )

        return [resolved, *argv[1:]]

    async def launch(
        self,
        commandline: str,
        *,
        exit_timeout: float | None = None,
        io_wait_timeout: float | None = None,
        cwd: str | os.PathLike[str] | None = None,
        env: Mapping[str, str] | None = None,
    ) -> ProcessHandle:
        """Resolve and start ``commandline``.

        Args:
            commandline: Command to run, e.g. ``"cat -n"``
            exit_timeout: Default timeout for run_to_completion()
            io_wait_timeout: Post-exit drain window
            cwd: Working directory (default: current directory)
            env: Complete environment for the child (None = inherit)

        Returns:
            A running ProcessHandle (already stopped for instant commands)

        Raises:
            LaunchError: If the program cannot be resolved
        """
        argv = self.resolve(commandline, cwd=cwd, env=env)

        config = self.config
        handle = ProcessHandle(
            commandline,
            argv,
            cwd=cwd,
            env=env,
            exit_timeout=config.exit_timeout if exit_timeout is None else exit_timeout,
            io_wait_timeout=config.io_wait_timeout if io_wait_timeout is None else io_wait_timeout,
            stop_timeout=config.stop_timeout,
            term_timeout=config.term_timeout,
            kill_timeout=config.kill_timeout,
        )
        await handle.start()

        logger.info(f"Launched {commandline!r} pid={handle.pid}")
        return handle
