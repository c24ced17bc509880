"""CommandSession tests.

End-to-end scenarios for one test run: launching, typing into processes,
reading run-wide output and tearing everything down.
"""

from __future__ import annotations

import logging
import os
import time
from pathlib import Path
from typing import Any

import pytest

from cli_harness.announcer import AnnounceEvent, Announcer, LoggingAnnouncer, NullAnnouncer
from cli_harness.config import Config
from cli_harness.errors import (
    AmbiguousError,
    CleanupError,
    InputClosedError,
    LaunchError,
    NonZeroExitError,
    NotFoundError,
    TimeoutExceeded,
)
from cli_harness.runtime.process import IS_WINDOWS, ProcessState
from cli_harness.session import CommandSession

pytestmark = pytest.mark.skipif(IS_WINDOWS, reason="uses POSIX commands")


class RecordingAnnouncer:
    """Announcer that keeps every event."""

    def __init__(self) -> None:
        self.events: list[tuple[str, tuple[Any, ...]]] = []

    def announce(self, event: str, *args: Any) -> None:
        self.events.append((event, args))

    def names(self) -> list[str]:
        return [AnnounceEvent(event).value for event, _ in self.events]


@pytest.fixture
def announcer() -> RecordingAnnouncer:
    return RecordingAnnouncer()


@pytest.fixture
def session(fast_config: Config, workspace: Path, announcer: RecordingAnnouncer) -> CommandSession:
    return CommandSession(config=fast_config, announcer=announcer, cwd=workspace)


# =============================================================================
# Running commands
# =============================================================================


class TestRun:
    """run / run_to_completion."""

    @pytest.mark.asyncio
    async def test_run_registers_under_literal_commandline(self, session: CommandSession):
        async with session:
            handle = await session.run("cat")
            assert session.last_command is handle
            assert session.get_process("cat") is handle
            assert handle.is_running

    @pytest.mark.asyncio
    async def test_run_announces(self, session: CommandSession, workspace: Path, announcer):
        async with session:
            await session.run("true", timeout=2)

        assert announcer.events[:3] == [
            (AnnounceEvent.DIRECTORY, (str(workspace),)),
            (AnnounceEvent.COMMAND, ("true",)),
            (AnnounceEvent.TIMEOUT, ("exit-timeout", 2)),
        ]

    @pytest.mark.asyncio
    async def test_run_to_completion_announces_output(self, session: CommandSession, announcer):
        await session.run_to_completion("echo hello")
        assert announcer.names() == ["directory", "command", "timeout", "stdout", "stderr"]
        assert announcer.events[3] == (AnnounceEvent.STDOUT, ("hello\n",))

    @pytest.mark.asyncio
    async def test_run_to_completion_success(self, session: CommandSession):
        handle = await session.run_to_completion("echo hello")
        assert handle.state is ProcessState.STOPPED
        assert session.last_exit_status == 0
        assert session.timed_out is False
        assert session.stdout_from("echo hello") == "hello\n"

    @pytest.mark.asyncio
    async def test_nonzero_exit_raises_when_opted_in(self, session: CommandSession):
        with pytest.raises(NonZeroExitError) as exc_info:
            await session.run_to_completion("sh -c 'echo oops >&2; exit 3'")

        assert exc_info.value.exit_status == 3
        assert "status 3" in str(exc_info.value)
        assert "oops" in str(exc_info.value)
        assert session.last_exit_status == 3

    @pytest.mark.asyncio
    async def test_nonzero_exit_recorded_when_not_opted_in(self, session: CommandSession):
        handle = await session.run_to_completion("sh -c 'exit 3'", fail_on_nonzero=False)
        assert handle.exit_status == 3
        assert session.last_exit_status == 3

    @pytest.mark.asyncio
    @pytest.mark.integration
    async def test_timeout_scenario(self, session: CommandSession):
        started = time.monotonic()
        handle = await session.run_to_completion("sleep 10", timeout=1, fail_on_nonzero=False)

        assert time.monotonic() - started < 5.0
        assert handle.timed_out is True
        assert session.timed_out is True
        assert session.last_exit_status is None

        await session.terminate_processes()
        assert session.registry.has_running() is False
        assert handle.state is ProcessState.TERMINATED

    @pytest.mark.asyncio
    @pytest.mark.integration
    async def test_timeout_raises_when_opted_in(self, session: CommandSession):
        with pytest.raises(TimeoutExceeded) as exc_info:
            await session.run_to_completion("sleep 10", timeout=0.5)
        assert "did not finish within 0.5 seconds" in str(exc_info.value)
        assert exc_info.value.handle.timed_out is True

    @pytest.mark.asyncio
    async def test_unknown_command_leaves_registry_empty(self, session: CommandSession):
        with pytest.raises(LaunchError):
            await session.run("definitely-not-a-real-command-xyz")
        assert len(session.registry) == 0
        with pytest.raises(NotFoundError):
            session.last_command

    @pytest.mark.asyncio
    async def test_environment_passed_to_children(self, fast_config: Config, workspace: Path):
        env = {"PATH": os.environ["PATH"], "GREETING": "hi there"}
        session = CommandSession(config=fast_config, cwd=workspace, env=env)
        await session.run_to_completion("sh -c 'echo $GREETING'")
        assert session.all_stdout() == "hi there\n"


# =============================================================================
# Interactive input
# =============================================================================


class TestType:
    """type / close_input / pipe_in_file."""

    @pytest.mark.asyncio
    async def test_cat_scenario(self, session: CommandSession):
        async with session:
            await session.run("cat")
            await session.type("Hello, world")
            await session.type("")
            await session.last_command.run_to_completion()
            assert "Hello, world" in session.last_command.stdout()

    @pytest.mark.asyncio
    async def test_type_after_close_raises(self, session: CommandSession):
        async with session:
            await session.run("cat")
            await session.close_input()
            with pytest.raises(InputClosedError):
                await session.type("ignored")

    @pytest.mark.asyncio
    async def test_type_targets_given_handle(self, session: CommandSession):
        async with session:
            first = await session.run("cat")
            await session.run("cat -n")
            await session.type("to first", first)
            await session.type("", first)
            await first.run_to_completion()
            assert first.stdout() == "to first\n"
            assert session.last_command.stdout() == ""

    @pytest.mark.asyncio
    async def test_type_without_process_raises(self, session: CommandSession):
        with pytest.raises(NotFoundError):
            await session.type("hello")

    @pytest.mark.asyncio
    async def test_pipe_in_file(self, session: CommandSession, workspace: Path):
        (workspace / "input.txt").write_text("one\ntwo\nthree\n")
        async with session:
            await session.run("cat")
            await session.pipe_in_file("input.txt")
            await session.close_input()
            await session.last_command.run_to_completion()
            assert session.all_stdout() == "one\ntwo\nthree\n"

    @pytest.mark.asyncio
    async def test_interactive_prompt(self, session: CommandSession, project_root: Path):
        greeter = project_root / "tests" / "fixtures" / "greeter.sh"
        async with session:
            handle = await session.run(f"sh {greeter}")
            assert await handle.wait_for_output("name? ", timeout=5)
            await session.type("Grace")
            await session.type("")
            await handle.run_to_completion()
            assert handle.stdout() == "name? Hello, Grace\nname? bye\n"


# =============================================================================
# Output and lookup
# =============================================================================


class TestOutput:
    """Run-wide output and lookups."""

    @pytest.mark.asyncio
    async def test_all_output_in_registration_order(self, session: CommandSession):
        await session.run_to_completion("echo a")
        await session.run_to_completion("echo b")
        assert session.all_output() == "a\nb\n"
        assert session.all_stdout() == "a\nb\n"
        assert session.all_stderr() == ""

    @pytest.mark.asyncio
    async def test_unique_substring_lookup(self, session: CommandSession):
        first = await session.run_to_completion("echo a")
        await session.run_to_completion("echo b")

        with pytest.raises(AmbiguousError):
            session.registry.lookup_unique_substring("echo")
        assert session.registry.lookup_unique_substring("echo a") is first

    @pytest.mark.asyncio
    async def test_per_command_output(self, session: CommandSession):
        await session.run_to_completion("sh -c 'echo out; echo err >&2'")
        cmd = "sh -c 'echo out; echo err >&2'"
        assert session.stdout_from(cmd) == "out\n"
        assert session.stderr_from(cmd) == "err\n"
        assert sorted(session.output_from(cmd).splitlines()) == ["err", "out"]

    @pytest.mark.asyncio
    async def test_repeated_command_reads_latest_run(self, session: CommandSession, workspace: Path):
        marker = workspace / "marker"
        cmd = "sh -c 'test -e marker && echo second || echo first; touch marker'"
        await session.run_to_completion(cmd)
        await session.run_to_completion(cmd)
        assert marker.exists()
        assert session.stdout_from(cmd) == "second\n"
        assert session.all_stdout() == "first\nsecond\n"


# =============================================================================
# Hooks
# =============================================================================


class TestHooks:
    """before / after command hooks."""

    @pytest.mark.asyncio
    async def test_hooks_called_around_launch(self, session: CommandSession):
        calls: list[tuple[str, Any]] = []
        session.add_before_command_hook(lambda s, cmd: calls.append(("before", cmd)))
        session.add_after_command_hook(lambda s, handle: calls.append(("after", handle)))

        handle = await session.run_to_completion("true")

        assert calls == [("before", "true"), ("after", handle)]

    @pytest.mark.asyncio
    async def test_before_hook_sees_empty_registry(self, session: CommandSession):
        seen: list[int] = []
        session.add_before_command_hook(lambda s, cmd: seen.append(len(s.registry)))
        await session.run_to_completion("true")
        assert seen == [0]


# =============================================================================
# Teardown
# =============================================================================


class TestTeardown:
    """stop_processes / terminate_processes / context manager."""

    @pytest.mark.asyncio
    async def test_stop_processes_closes_input(self, session: CommandSession):
        await session.run("cat")
        await session.type("pending")
        assert await session.stop_processes() == [0]
        assert session.last_command.stdout() == "pending\n"
        assert session.last_command.state is ProcessState.STOPPED

    @pytest.mark.asyncio
    async def test_terminate_processes_twice(self, session: CommandSession):
        first = await session.run("cat")
        second = await session.run("sleep 10")

        assert await session.terminate_processes() == 2
        states = [first.state, second.state]
        statuses = [first.exit_status, second.exit_status]

        assert await session.terminate_processes() == 2
        assert [first.state, second.state] == states == [ProcessState.TERMINATED] * 2
        assert [first.exit_status, second.exit_status] == statuses

    @pytest.mark.asyncio
    async def test_teardown_without_commands(self, session: CommandSession):
        assert await session.stop_processes() == []
        assert await session.terminate_processes() == 0

    @pytest.mark.asyncio
    async def test_context_manager_cleans_up(self, session: CommandSession):
        async with session:
            cat = await session.run("cat")
            sleeper = await session.run("sleep 10")

        assert cat.state is ProcessState.STOPPED
        assert sleeper.state is ProcessState.TERMINATED
        assert session.registry.has_running() is False
        # Output stays inspectable after teardown
        assert session.all_output() == ""

    @pytest.mark.asyncio
    async def test_context_manager_reports_cleanup_errors(self, session: CommandSession):
        with pytest.raises(CleanupError):
            async with session:
                handle = await session.run("cat")

                async def broken_stop() -> None:
                    raise OSError("wait failed")

                handle.stop = broken_stop  # type: ignore[method-assign]

        # terminate still ran
        assert handle.state is ProcessState.TERMINATED

    @pytest.mark.asyncio
    async def test_reset(self, session: CommandSession):
        handle = await session.run("cat")
        await session.reset()
        assert handle.state is ProcessState.TERMINATED
        assert len(session.registry) == 0
        assert session.last_exit_status is None

    def test_registry_is_per_session(self, fast_config: Config):
        one = CommandSession(config=fast_config)
        two = CommandSession(config=fast_config)
        assert one.registry is not two.registry
        assert one.registry is one.registry


# =============================================================================
# Announcers
# =============================================================================


class TestAnnouncers:
    """Shipped announcer sinks."""

    def test_protocol(self):
        assert isinstance(NullAnnouncer(), Announcer)
        assert isinstance(LoggingAnnouncer(), Announcer)
        assert isinstance(RecordingAnnouncer(), Announcer)

    def test_null_announcer_is_default(self, fast_config: Config):
        assert isinstance(CommandSession(config=fast_config).announcer, NullAnnouncer)

    def test_logging_announcer(self, caplog: pytest.LogCaptureFixture):
        announcer = LoggingAnnouncer()
        with caplog.at_level(logging.INFO, logger="cli_harness.announcer"):
            announcer.announce(AnnounceEvent.TIMEOUT, "exit-timeout", 15)
            announcer.announce("custom", "value")

        assert "[timeout] exit-timeout 15" in caplog.text
        assert "[custom] value" in caplog.text
