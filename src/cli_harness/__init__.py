"""cli-harness - process core for command-line test harnesses.

Launches programs under test, captures their output, feeds them input,
enforces timeouts and tears every process of a run down at the end.

Environment variables:
    HARNESS_EXIT_TIMEOUT: Default command timeout (default 15s)
    HARNESS_IO_WAIT_TIMEOUT: Post-exit output drain window (default 0.1s)
    HARNESS_LOG_DEBUG: Log to a temp file (default false)

Usage:
    async with CommandSession(cwd=workdir) as session:
        await session.run_to_completion("echo hello")
        assert session.all_stdout() == "hello\\n"
"""

__version__ = "0.1.0"

from .announcer import AnnounceEvent, Announcer, LoggingAnnouncer, NullAnnouncer
from .config import Config, get_config, load_config
from .errors import (
    AmbiguousError,
    CleanupError,
    HarnessError,
    InputClosedError,
    LaunchError,
    NonZeroExitError,
    NotFoundError,
    TimeoutExceeded,
)
from .output import OutputAggregator
from .registry import ProcessRegistry, RegisteredProcess
from .runtime import ProcessHandle, ProcessState, Spawner, which
from .session import CommandSession

__all__ = [
    "__version__",
    "AmbiguousError",
    "AnnounceEvent",
    "Announcer",
    "CleanupError",
    "CommandSession",
    "Config",
    "HarnessError",
    "InputClosedError",
    "LaunchError",
    "LoggingAnnouncer",
    "NonZeroExitError",
    "NotFoundError",
    "NullAnnouncer",
    "OutputAggregator",
    "ProcessHandle",
    "ProcessRegistry",
    "ProcessState",
    "RegisteredProcess",
    "Spawner",
    "TimeoutExceeded",
    "get_config",
    "load_config",
    "which",
]
