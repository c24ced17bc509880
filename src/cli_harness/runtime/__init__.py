"""Runtime module for launching and supervising child processes.

This module provides executable resolution, process launch, concurrent
output capture and two-phase shutdown for processes under test.
"""

from __future__ import annotations

from .process import ProcessHandle, ProcessState
from .spawner import Spawner
from .pathsearch import which

__all__ = [
    "ProcessHandle",
    "ProcessState",
    "Spawner",
    "which",
]
