"""
Helper utilities for invoking the conversion engine as a subprocess.

`run_checked` wraps `subprocess.run` with the defaults every engine call needs:
argv lists only, `shell=False`, stdin closed, both streams captured and an optional
timeout. `stderr_tail` turns the captured diagnostics into a short message.
"""

from __future__ import annotations

import os
import subprocess
from collections.abc import Sequence
from typing import Any

Argv = Sequence[str]


def run_checked(
    argv: Argv,
    *,
    cwd: str | os.PathLike[str] | None = None,
    timeout: float | None = None,
    text: bool = False,
    check: bool = False,
) -> subprocess.CompletedProcess[Any]:
    """
    Run *argv* via `subprocess.run` with consistent safe defaults.

    A non-positive *timeout* means no limit.

    Raises:
        ValueError: if *argv* is empty.
        subprocess.TimeoutExpired: when the child outlives *timeout*.
        subprocess.CalledProcessError: when `check=True` and the child exits non-zero.
    """

    if not argv:
        raise ValueError("run_checked requires at least one argv entry.")
    if isinstance(argv, (str, bytes)):
        raise TypeError("run_checked expects a sequence of arguments, not a string.")

    command = [str(part) for part in argv]
    completed: subprocess.CompletedProcess[Any] = subprocess.run(
        command,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        cwd=cwd,
        timeout=timeout if timeout and timeout > 0 else None,
        text=text,
        shell=False,
        check=False,
    )
    if check and completed.returncode != 0:
        raise subprocess.CalledProcessError(
            completed.returncode,
            command,
            output=completed.stdout,
            stderr=completed.stderr,
        )
    return completed


def stderr_tail(completed: subprocess.CompletedProcess[Any], *, lines: int = 3) -> str:
    """Return the last few non-empty stderr lines, or a generic marker."""
    raw = completed.stderr or ""
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", "ignore")
    kept = [line.strip() for line in raw.splitlines() if line.strip()]
    if not kept:
        return f"exit status {completed.returncode}"
    return " | ".join(kept[-lines:])


__all__ = ["run_checked", "stderr_tail"]
