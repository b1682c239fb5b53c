"""Subprocess runner for external tools (git, docker, gcloud).

This module handles:
- Executing commands given as argument vectors
- Buffered mode (default): capture stdout/stderr for parsing
- Realtime mode: stream child output straight to the terminal
- Translating failures into CommandError with exit code and stderr

There is no timeout handling; a hung child blocks the caller.
"""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from cork_kube.errors import CommandError

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """Result of a finished command.

    Attributes:
        command: The command that was executed, shell-quoted.
        exit_code: Process exit code.
        stdout: Captured stdout (empty in realtime mode).
        stderr: Captured stderr (empty in realtime mode).
    """

    command: str
    exit_code: int
    stdout: str = ""
    stderr: str = ""


def run_command(
    cmd: Sequence[str],
    cwd: Path | str | None = None,
    realtime: bool = False,
    input: str | None = None,
    env_override: dict[str, str] | None = None,
    check: bool = True,
) -> CommandResult:
    """Run an external command.

    Args:
        cmd: Command as list of strings.
        cwd: Working directory.
        realtime: Stream output to the parent's stdout/stderr instead of
            capturing it.
        input: Optional text written to the child's stdin.
        env_override: Optional environment variable overrides.
        check: Raise CommandError on non-zero exit.

    Returns:
        CommandResult with exit code and captured output.

    Raises:
        CommandError: If the command cannot be started, or exits non-zero
            and check is set.
    """
    cmd_str = shlex.join(cmd)
    logger.debug("Running: %s", cmd_str)

    env: dict[str, str] | None = None
    if env_override:
        env = dict(os.environ)
        env.update(env_override)

    try:
        result = subprocess.run(
            list(cmd),
            cwd=cwd,
            input=input,
            capture_output=not realtime,
            text=True,
            env=env,
            check=False,
        )
    except OSError as e:
        raise CommandError(f"Failed to execute {cmd_str}: {e}") from e

    stdout = result.stdout or ""
    stderr = result.stderr or ""

    if check and result.returncode != 0:
        message = f"Command failed with exit code {result.returncode}: {cmd_str}"
        if stderr.strip():
            message += f"\n{stderr.strip()}"
        raise CommandError(message, exit_code=result.returncode, stderr=stderr)

    return CommandResult(
        command=cmd_str,
        exit_code=result.returncode,
        stdout=stdout,
        stderr=stderr,
    )


__all__ = ["CommandResult", "run_command"]
