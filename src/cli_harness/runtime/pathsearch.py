"""Executable lookup on a search path.

Resolving the program before launch turns "command not found" into a
LaunchError naming the command and the search path, instead of an opaque
FileNotFoundError from the OS.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

__all__ = ["which", "default_path_exts", "IS_WINDOWS"]

IS_WINDOWS = sys.platform == "win32"

DEFAULT_PATHEXT = ".com;.exe;.bat"


def default_path_exts() -> list[str]:
    """Return executable extensions for this platform.

    Windows reads ``PATHEXT``; everywhere else the list is empty.
    """
    if not IS_WINDOWS:
        return []
    raw = os.environ.get("PATHEXT") or DEFAULT_PATHEXT
    return [ext.lower() for ext in raw.split(";") if ext.strip()]


def _is_executable_file(candidate: Path) -> bool:
    return candidate.is_file() and os.access(candidate, os.X_OK)


def _candidates(file: Path, path_exts: list[str]) -> list[Path]:
    # Extensions are only tried when the program has none of its own
    if not path_exts or file.suffix:
        return [file]
    return [file.with_name(file.name + ext) for ext in path_exts]


def _has_separator(program: str) -> bool:
    if os.sep in program:
        return True
    return bool(os.altsep) and os.altsep in program


def which(
    program: str,
    path: str | None = None,
    *,
    cwd: str | os.PathLike[str] | None = None,
    path_exts: list[str] | None = None,
) -> str | None:
    """Resolve ``program`` to an executable file.

    Args:
        program: Program name, or a path containing a separator
        path: Search path joined with ``os.pathsep`` (default: ``$PATH``)
        cwd: Base for relative search path entries and relative programs
        path_exts: Extensions to try (default: platform specific)

    Returns:
        Path of the first executable regular file found, or None

    Raises:
        ValueError: If the search path is empty
    """
    if path is None:
        path = os.environ.get("PATH", "")
    if not path:
        raise ValueError("search path cannot be empty")

    if path_exts is None:
        path_exts = default_path_exts()

    base = Path(cwd) if cwd is not None else Path.cwd()

    # Explicit paths bypass the search path
    if os.path.isabs(program) or _has_separator(program):
        for candidate in _candidates(base / program, path_exts):
            if _is_executable_file(candidate):
                return str(candidate)
        return None

    for entry in path.split(os.pathsep):
        if not entry:
            continue
        directory = base / os.path.expanduser(entry)
        if not directory.is_dir():
            continue
        for candidate in _candidates(directory / program, path_exts):
            if _is_executable_file(candidate):
                return str(candidate)

    return None
