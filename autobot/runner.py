"""
AUTOBOT Command Runner

Runs one gate command through bash with a timeout. Anything other than
a clean exit comes back as a CommandError carrying whatever output was
captured, so a broken gate can never take the sequencer down with it.
"""

from __future__ import annotations

import os
import shutil
import signal
import subprocess
from dataclasses import dataclass
from pathlib import Path

from loguru import logger

_BASH_CANDIDATES = (
    "/bin/bash",                          # Docker / Debian / Alpine
    "/run/current-system/sw/bin/bash",    # NixOS
)


@dataclass
class CommandResult:
    stdout: str = ""
    stderr: str = ""


class CommandError(Exception):
    """A command exited non-zero, timed out, or could not be spawned."""

    def __init__(
        self,
        message: str,
        stdout: str | None = None,
        stderr: str | None = None,
        exit_code: int | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.stdout = stdout
        self.stderr = stderr
        self.exit_code = exit_code


def bash_path() -> str:
    for candidate in _BASH_CANDIDATES:
        if Path(candidate).exists():
            return candidate
    return shutil.which("bash") or "bash"


def run_command(command: str, cwd: str | Path, timeout_ms: int) -> CommandResult:
    """
    Execute `command` via `bash -c` in `cwd`, inheriting the parent environment.

    Raises:
        CommandError: on non-zero exit, timeout or spawn failure.
    """
    logger.debug(f"[RUNNER] $ {command} (cwd={cwd}, timeout={timeout_ms}ms)")

    try:
        proc = subprocess.Popen(
            [bash_path(), "-c", command],
            cwd=str(cwd),
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            errors="replace",
            start_new_session=True,
        )
    except OSError as e:
        logger.warning(f"[RUNNER] Could not spawn command: {e}")
        raise CommandError(f"Failed to spawn command: {e}") from e

    try:
        stdout, stderr = proc.communicate(timeout=timeout_ms / 1000)
    except subprocess.TimeoutExpired:
        _kill_group(proc)
        stdout, stderr = proc.communicate()
        logger.warning(f"[RUNNER] Command timed out after {timeout_ms}ms: {command}")
        raise CommandError(
            f"Command timed out after {timeout_ms}ms",
            stdout=stdout,
            stderr=stderr,
        )

    if proc.returncode != 0:
        logger.debug(f"[RUNNER] Command failed with exit code {proc.returncode}")
        raise CommandError(
            f"Command failed with exit code {proc.returncode}",
            stdout=stdout,
            stderr=stderr,
            exit_code=proc.returncode,
        )

    logger.debug("[RUNNER] Command succeeded")
    return CommandResult(stdout=stdout, stderr=stderr)


def _kill_group(proc: subprocess.Popen) -> None:
    # bash -c may have forked children still holding the pipes open.
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except (ProcessLookupError, PermissionError):
        proc.kill()
