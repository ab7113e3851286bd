"""Subprocess boundary for the external tools.

All external programs (finished-job tool, squeue, the analysis tool) are
run through :func:`run_command` so that callers, and tests, see one
narrow interface: argv in, completed process out. Calls block until the
program exits; no timeout is applied.
"""

import os
import shutil
import subprocess
import time
from collections.abc import Callable, Sequence
from typing import TypeAlias

import structlog

from .errors import ToolNotFoundError

logger = structlog.get_logger(__name__)

CommandRunner: TypeAlias = Callable[[Sequence[str]], subprocess.CompletedProcess]


def run_command(argv: Sequence[str]) -> subprocess.CompletedProcess:
    """Run a command to completion and capture its output as text.

    Args:
        argv: Program and arguments.

    Returns:
        The completed process; the caller decides what a non-zero exit means.

    Raises:
        ToolNotFoundError: If the program cannot be executed.
    """
    start_time = time.time()
    logger.debug("Running command", argv=" ".join(argv))
    try:
        result = subprocess.run(  # noqa: S603
            list(argv),
            capture_output=True,
            text=True,
            errors="replace",
            check=False,
        )
    except (FileNotFoundError, PermissionError) as exc:
        msg = f"Cannot execute {argv[0]}: {exc}"
        raise ToolNotFoundError(msg) from exc

    logger.debug(
        "Command finished",
        program=argv[0],
        returncode=result.returncode,
        duration_seconds=round(time.time() - start_time, 3),
    )
    return result


def require_tool(program: str) -> str:
    """Resolve an executable by path or on PATH.

    Args:
        program: Absolute/relative path, or a bare name looked up on PATH.

    Returns:
        The resolved path.

    Raises:
        ToolNotFoundError: If no executable is found.
    """
    if os.sep in program:
        if os.path.isfile(program) and os.access(program, os.X_OK):
            return program
    else:
        resolved = shutil.which(program)
        if resolved:
            return resolved
    msg = f"Required tool not found or not executable: {program}"
    raise ToolNotFoundError(msg)
