"""Process handle: one child process, its pipes and its lifecycle.

cli-harness runtime module v0.1.0

This module provides:
- Concurrent stdout/stderr draining into append-only buffers
- Interactive input (write / write_line / close_input)
- Time-bounded waiting for exit
- Two-phase shutdown: stop (close stdin -> wait) then terminate
  (SIGTERM -> timeout -> SIGKILL)

Key design points:
- POSIX: start_new_session=True so terminate reaches the whole process group
- Windows: CREATE_NEW_PROCESS_GROUP for CTRL_BREAK_EVENT delivery
- stdout and stderr are each ordered; the combined view interleaves chunks
  in the order the event loop received them. There is no ordering guarantee
  between the two streams beyond that.
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import subprocess
import sys
from collections.abc import Mapping, Sequence
from enum import Enum
from pathlib import Path
from typing import Any

import anyio

from ..config import (
    DEFAULT_EXIT_TIMEOUT,
    DEFAULT_IO_WAIT_TIMEOUT,
    DEFAULT_KILL_TIMEOUT,
    DEFAULT_STOP_TIMEOUT,
    DEFAULT_TERM_TIMEOUT,
)
from ..errors import InputClosedError

__all__ = [
    "ProcessHandle",
    "ProcessState",
    "IS_WINDOWS",
]

logger = logging.getLogger(__name__)

# Platform detection
IS_WINDOWS = sys.platform == "win32"

READ_CHUNK_SIZE = 4096


class ProcessState(str, Enum):
    """Lifecycle state of a ProcessHandle."""

    NOT_STARTED = "not_started"
    RUNNING = "running"
    STOPPED = "stopped"
    TIMED_OUT = "timed_out"
    TERMINATED = "terminated"


class ProcessHandle:
    """A child process plus its standard streams.

    Output is drained by two background tasks from start() until the
    corresponding pipe closes, so a chatty child never blocks on a full pipe.
    Buffer reads are snapshots and never block.

    Example:
        handle = ProcessHandle("cat", ["/bin/cat"], cwd=Path("/tmp"))
        await handle.start()
        await handle.write_line("Hello, world")
        await handle.close_input()
        await handle.run_to_completion(timeout=5)
        assert "Hello, world" in handle.stdout()

    Attributes:
        commandline: The literal commandline the process was launched with
        argv: Arguments passed to the OS (argv[0] resolved to a path)
        cwd: Working directory
        env: Environment for the child (None = inherit)
        exit_timeout: Default timeout for run_to_completion()
        io_wait_timeout: How long draining may continue after exit
        stop_timeout: Grace period after closing stdin in stop()
        term_timeout: Grace period after SIGTERM
        kill_timeout: Grace period after SIGKILL
        encoding: Encoding for text views and str input
    """

    def __init__(
        self,
        commandline: str,
        argv: Sequence[str],
        *,
        cwd: str | os.PathLike[str] | None = None,
        env: Mapping[str, str] | None = None,
        exit_timeout: float = DEFAULT_EXIT_TIMEOUT,
        io_wait_timeout: float = DEFAULT_IO_WAIT_TIMEOUT,
        stop_timeout: float = DEFAULT_STOP_TIMEOUT,
        term_timeout: float = DEFAULT_TERM_TIMEOUT,
        kill_timeout: float = DEFAULT_KILL_TIMEOUT,
        encoding: str = "utf-8",
    ) -> None:
        self.commandline = commandline
        self.argv = list(argv)
        self.cwd = Path(cwd) if cwd is not None else None
        self.env = dict(env) if env is not None else None
        self.exit_timeout = exit_timeout
        self.io_wait_timeout = io_wait_timeout
        self.stop_timeout = stop_timeout
        self.term_timeout = term_timeout
        self.kill_timeout = kill_timeout
        self.encoding = encoding

        self._process: asyncio.subprocess.Process | None = None
        self._state = ProcessState.NOT_STARTED
        self._exit_status: int | None = None
        self._timed_out = False
        self._input_closed = False

        self._stdout = bytearray()
        self._stderr = bytearray()
        self._combined = bytearray()
        self._drain_tasks: list[asyncio.Task[None]] = []
        self._output_event = asyncio.Event()

        self._write_lock = asyncio.Lock()
        self._lifecycle_lock = asyncio.Lock()

    def __repr__(self) -> str:
        return (
            f"ProcessHandle(commandline={self.commandline!r}, "
            f"pid={self.pid}, "
            f"state={self.state.value}, "
            f"exit_status={self._exit_status})"
        )

    # =========================================================================
    # State
    # =========================================================================

    @property
    def pid(self) -> int | None:
        """OS process id, None before start()."""
        return self._process.pid if self._process else None

    @property
    def state(self) -> ProcessState:
        self._poll()
        return self._state

    @property
    def exit_status(self) -> int | None:
        """Exit code once the process has exited (negative = killed by signal)."""
        self._poll()
        return self._exit_status

    @property
    def timed_out(self) -> bool:
        """Whether run_to_completion() hit its deadline."""
        return self._timed_out

    @property
    def input_closed(self) -> bool:
        return self._input_closed

    @property
    def is_running(self) -> bool:
        return self.state is ProcessState.RUNNING

    def _poll(self) -> None:
        if (
            self._process is not None
            and self._process.returncode is not None
            and self._exit_status is None
        ):
            self._record_exit()

    def _record_exit(self) -> None:
        assert self._process is not None
        self._exit_status = self._process.returncode
        if self._state is ProcessState.RUNNING:
            self._state = ProcessState.STOPPED
        logger.debug(
            f"Subprocess exited pid={self._process.pid} "
            f"returncode={self._exit_status}"
        )

    # =========================================================================
    # Output views
    # =========================================================================

    @property
    def stdout_bytes(self) -> bytes:
        return bytes(self._stdout)

    @property
    def stderr_bytes(self) -> bytes:
        return bytes(self._stderr)

    @property
    def output_bytes(self) -> bytes:
        """stdout and stderr interleaved in arrival order (best effort)."""
        return bytes(self._combined)

    def stdout(self) -> str:
        return self._decode(self._stdout)

    def stderr(self) -> str:
        return self._decode(self._stderr)

    def output(self) -> str:
        return self._decode(self._combined)

    def _decode(self, data: bytearray) -> str:
        return bytes(data).decode(self.encoding, errors="replace")

    # =========================================================================
    # Start
    # =========================================================================

    async def start(self) -> None:
        """Start the child and begin draining its output.

        Raises:
            RuntimeError: If the handle was already started
            OSError: If the OS refuses to create the process
        """
        if self._state is not ProcessState.NOT_STARTED:
            raise RuntimeError(f"Process {self.commandline!r} already started")

        kwargs = self._build_subprocess_kwargs()

        self._process = await asyncio.create_subprocess_exec(
            *self.argv,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=self.cwd,
            **kwargs,
        )
        self._state = ProcessState.RUNNING

        logger.debug(
            f"Started subprocess pid={self._process.pid} "
            f"argv={self.argv[0]} cwd={self.cwd}"
        )

        self._drain_tasks = [
            asyncio.create_task(self._drain(self._process.stdout, self._stdout, "stdout")),
            asyncio.create_task(self._drain(self._process.stderr, self._stderr, "stderr")),
        ]

    def _build_subprocess_kwargs(self) -> dict[str, Any]:
        """Build platform-specific subprocess kwargs.

        Returns:
            Dict of kwargs for asyncio.create_subprocess_exec
        """
        kwargs: dict[str, Any] = {}

        if self.env is not None:
            kwargs["env"] = dict(self.env)

        if IS_WINDOWS:
            kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP
        else:
            # POSIX: start_new_session (equivalent to setsid)
            kwargs["start_new_session"] = True

        return kwargs

    async def _drain(
        self,
        stream: asyncio.StreamReader | None,
        buffer: bytearray,
        name: str,
    ) -> None:
        """Copy ``stream`` into ``buffer`` and the combined view until EOF."""
        if stream is None:
            return
        try:
            while True:
                chunk = await stream.read(READ_CHUNK_SIZE)
                if not chunk:
                    break
                buffer.extend(chunk)
                self._combined.extend(chunk)
                self._output_event.set()
        except OSError as e:
            # Whatever was captured so far is the final output
            logger.debug(f"{name} of pid={self.pid} closed unexpectedly: {e}")
        finally:
            self._output_event.set()

    def _drains_finished(self) -> bool:
        return all(task.done() for task in self._drain_tasks)

    async def _finish_io(self) -> None:
        """Give draining io_wait_timeout to collect in-flight bytes, then freeze."""
        if self._process is None or self._process.returncode is None:
            return
        pending = [task for task in self._drain_tasks if not task.done()]
        if not pending:
            return

        _, still_running = await asyncio.wait(pending, timeout=self.io_wait_timeout)
        for task in still_running:
            task.cancel()
        for task in still_running:
            try:
                await task
            except asyncio.CancelledError:
                pass
        if still_running:
            logger.debug(
                f"Stopped draining pid={self.pid} after io_wait_timeout="
                f"{self.io_wait_timeout}s; output pipes still held open"
            )

    async def wait_for_output(self, fragment: str, timeout: float | None = None) -> bool:
        """Wait until ``fragment`` shows up in the combined output.

        Args:
            fragment: Text to look for
            timeout: Seconds to wait (default: io_wait_timeout)

        Returns:
            Whether the fragment was seen
        """
        timeout = self.io_wait_timeout if timeout is None else timeout
        expected = fragment.encode(self.encoding)

        with anyio.move_on_after(timeout):
            while expected not in self._combined:
                if self._drains_finished():
                    break
                self._output_event.clear()
                await self._output_event.wait()

        return expected in self._combined

    # =========================================================================
    # Input
    # =========================================================================

    async def write(self, data: bytes | str) -> None:
        """Write raw data to the child's stdin.

        Raises:
            InputClosedError: If input was closed or the process is not running
        """
        if isinstance(data, str):
            data = data.encode(self.encoding)

        state = self.state
        if state is not ProcessState.RUNNING:
            raise InputClosedError(self.commandline, f"process is {state.value}")
        if self._input_closed:
            raise InputClosedError(self.commandline)

        assert self._process is not None and self._process.stdin is not None
        stdin = self._process.stdin

        async with self._write_lock:
            try:
                stdin.write(data)
                await stdin.drain()
            except (BrokenPipeError, ConnectionResetError) as e:
                self._input_closed = True
                raise InputClosedError(self.commandline, "process closed its input") from e

    async def write_line(self, text: str) -> None:
        """Write ``text`` followed by a newline."""
        await self.write(text + "\n")

    async def close_input(self) -> None:
        """Close stdin, signalling end-of-input to the child. Idempotent."""
        if self._input_closed:
            return
        self._input_closed = True

        if self._process is None or self._process.stdin is None:
            return

        stdin = self._process.stdin
        stdin.close()
        try:
            await stdin.wait_closed()
        except (BrokenPipeError, ConnectionResetError) as e:
            # Child went away before reading everything
            logger.debug(f"stdin of pid={self.pid} already broken: {e}")

    def send_signal(self, sig: int) -> None:
        """Send ``sig`` to the child.

        Raises:
            RuntimeError: If the process was never started
            ProcessLookupError: If the process already exited
        """
        if self._process is None:
            raise RuntimeError(f"Process {self.commandline!r} not started")
        self._process.send_signal(sig)
        logger.debug(f"Sent signal {sig} to pid={self._process.pid}")

    # =========================================================================
    # Waiting
    # =========================================================================

    async def wait(self, timeout: float | None = None) -> int | None:
        """Wait up to ``timeout`` seconds for the child to exit.

        Args:
            timeout: Deadline in seconds (None = no deadline)

        Returns:
            Exit status, or None if the child is still running
        """
        if self._process is None:
            raise RuntimeError(f"Process {self.commandline!r} not started")

        with anyio.move_on_after(timeout):
            await self._process.wait()

        self._poll()
        return self._exit_status

    async def run_to_completion(self, timeout: float | None = None) -> int | None:
        """Wait for exit; on timeout stop and terminate the child.

        Starts the process if needed. A timeout is recorded as state
        (``timed_out``, ``ProcessState.TIMED_OUT``) rather than raised.

        Args:
            timeout: Deadline in seconds (default: exit_timeout)

        Returns:
            Exit status, or None if the process timed out
        """
        if self._state is ProcessState.NOT_STARTED:
            await self.start()

        timeout = self.exit_timeout if timeout is None else timeout
        status = await self.wait(timeout)

        if status is None:
            async with self._lifecycle_lock:
                assert self._process is not None
                # A concurrent sweep may have ended it in the meantime
                if self._process.returncode is None:
                    self._timed_out = True
                    self._state = ProcessState.TIMED_OUT
                    logger.info(
                        f"Subprocess timed out after {timeout}s pid={self.pid} "
                        f"cmd={self.commandline!r}"
                    )
                    await self._stop_locked()

        await self._finish_io()
        self._poll()
        return None if self._timed_out else self._exit_status

    # =========================================================================
    # Stop / terminate
    # =========================================================================

    async def stop(self) -> int | None:
        """Close stdin, wait stop_timeout for exit, terminate if still running.

        Returns:
            Exit status (negative when ended by a signal), None if never started
        """
        if self._process is None:
            return None

        async with self._lifecycle_lock:
            await self._stop_locked()

        await self._finish_io()
        return self.exit_status

    async def terminate(self) -> None:
        """Forcefully end the child. No-op if it already exited or was terminated."""
        if self._process is None:
            return

        async with self._lifecycle_lock:
            await self._terminate_locked()

        await self._finish_io()

    async def _stop_locked(self) -> None:
        assert self._process is not None
        if self._process.returncode is None:
            await self.close_input()
            status = await self.wait(self.stop_timeout)
            if status is None:
                await self._terminate_locked()
        self._poll()

    async def _terminate_locked(self) -> None:
        """Terminate subprocess gracefully, then forcefully if needed.

        Termination strategy:
        1. Send SIGTERM (or CTRL_BREAK_EVENT on Windows)
        2. Wait up to term_timeout for graceful exit
        3. If still running, send SIGKILL (or kill() on Windows)
        4. Wait up to kill_timeout for forced exit
        """
        assert self._process is not None
        process = self._process

        if self._state is ProcessState.TERMINATED:
            return
        self._poll()
        if process.returncode is not None:
            return

        pid = process.pid
        logger.debug(f"Terminating subprocess pid={pid}")

        try:
            # Step 1: Graceful termination
            if IS_WINDOWS:
                self._windows_terminate(process)
            else:
                self._posix_terminate(process)

            # Step 2: Wait for graceful exit
            if await self.wait(self.term_timeout) is None:
                # Step 3: Force kill
                logger.debug(f"Force killing subprocess pid={pid}")
                if IS_WINDOWS:
                    self._windows_kill(process)
                else:
                    self._posix_kill(process)

                # Step 4: Wait for forced exit
                if await self.wait(self.kill_timeout) is None:
                    logger.warning(f"Subprocess did not exit after kill pid={pid}")

        except ProcessLookupError:
            logger.debug(f"Subprocess already exited pid={pid}")

        self._state = ProcessState.TERMINATED
        logger.debug(f"Subprocess terminated pid={pid} returncode={process.returncode}")
        await self.close_input()

    def _posix_terminate(self, process: asyncio.subprocess.Process) -> None:
        """Send SIGTERM to the process group on POSIX systems."""
        try:
            # Process group id equals pid due to start_new_session
            pgid = os.getpgid(process.pid)
            os.killpg(pgid, signal.SIGTERM)
            logger.debug(f"Sent SIGTERM to process group pgid={pgid}")
        except ProcessLookupError:
            pass
        except PermissionError as e:
            # Fallback to terminating just the process
            logger.debug(f"killpg failed, falling back to terminate: {e}")
            process.terminate()

    def _posix_kill(self, process: asyncio.subprocess.Process) -> None:
        """Send SIGKILL to the process group on POSIX systems."""
        try:
            pgid = os.getpgid(process.pid)
            os.killpg(pgid, signal.SIGKILL)
            logger.debug(f"Sent SIGKILL to process group pgid={pgid}")
        except ProcessLookupError:
            pass
        except PermissionError as e:
            logger.debug(f"killpg failed, falling back to kill: {e}")
            process.kill()

    def _windows_terminate(self, process: asyncio.subprocess.Process) -> None:
        """Send CTRL_BREAK_EVENT on Windows."""
        try:
            # Reaches the group because of CREATE_NEW_PROCESS_GROUP
            os.kill(process.pid, signal.CTRL_BREAK_EVENT)
            logger.debug(f"Sent CTRL_BREAK_EVENT to pid={process.pid}")
        except OSError as e:
            logger.debug(f"CTRL_BREAK_EVENT failed, falling back: {e}")
            process.terminate()

    def _windows_kill(self, process: asyncio.subprocess.Process) -> None:
        """Force kill on Windows."""
        process.kill()
        logger.debug(f"Called kill() on pid={process.pid}")
