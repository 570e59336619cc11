# src/aicoder/tasks/shell.py

"""
Shell command execution for `!cmd` input lines.

Runs on a task worker thread. The child process is polled so the abort token
and the deadline are honoured while it runs. The child leads its own process
group, and on abort or deadline the whole group is killed so pipelines and
background jobs started by `sh -c` go with it.
"""

from __future__ import annotations

import logging
import os
import re
import shlex
import signal
import subprocess
import time

from ..errors import ErrorKind
from ..llm.types import CompletionResult
from .task_models import AbortToken

logger = logging.getLogger(__name__)

POLL_SECONDS = 0.05
KILL_WAIT_SECONDS = 1.0

# Rejected outright wherever they appear in the command.
RESTRICTED_COMMANDS = (
    "rm -rf /",
    "rm -rf /*",
    "rm -rf ~",
    "rm -rf ~/",
    "mkfs",
    "> /dev/sda",
    "dd if=/dev/zero of=/dev/sda",
    ":(){ :|:& };:",
    "chmod -R 777 /",
    "> /dev/null; rm",
    "$(rm",
    "`rm",
)

DANGEROUS_PATTERNS = (
    "rm -rf",
    "mkfs",
    "dd if=/dev/zero",
    "chmod -R 777",
    ":(){ ",
    "fork bomb",
    "wget",
    "curl",
)

# `rm -rf` is allowed only for a single relative path inside the working directory.
_SAFE_RM = re.compile(r"rm\s+-rf\s+(?:\./)?[a-zA-Z0-9_\-+.]+(?:/[a-zA-Z0-9_\-+.]+)*\s*$")

_SHELL_SYNTAX = re.compile(r"[*?\[|&;<>$`]")

_POSIX = os.name == "posix"


def is_command_safe(command: str) -> bool:
    for restricted in RESTRICTED_COMMANDS:
        if restricted in command:
            return False

    for pattern in DANGEROUS_PATTERNS:
        if pattern in command:
            return pattern == "rm -rf" and bool(_SAFE_RM.search(command)) and ".." not in command

    return True


def build_argv(command: str) -> list[str]:
    """Plain commands are exec'd directly; anything with shell syntax goes through sh -c."""
    if _SHELL_SYNTAX.search(command):
        return ["sh", "-c", command]
    return shlex.split(command)


def format_command_output(return_code: int, stdout: str, stderr: str, elapsed: float) -> str:
    mark = "✓" if return_code == 0 else "✗"
    parts = [f"[⏱ {elapsed:.2f}s | {mark} | {return_code}]"]

    out = stdout.rstrip()
    err = stderr.rstrip()
    if out:
        parts.append(out)
    if err:
        if out:
            parts.append("")
        parts.append("STDERR:")
        parts.append(err)
    if not out and not err:
        parts.append("(no output)")
    return "\n".join(parts)


def _kill(proc: subprocess.Popen[str]) -> None:
    try:
        if _POSIX:
            os.killpg(proc.pid, signal.SIGKILL)
        else:
            proc.kill()
    except OSError:
        # The group is already gone.
        logger.debug("Killing pid=%s failed", proc.pid, exc_info=True)
    try:
        proc.communicate(timeout=KILL_WAIT_SECONDS)
    except (OSError, subprocess.SubprocessError):
        logger.debug("Reaping pid=%s failed", proc.pid, exc_info=True)


def run_shell_command(
        command: str,
        abort_token: AbortToken,
        deadline: float | None = None,
        *,
        cwd: str | os.PathLike[str] | None = None,
) -> CompletionResult:
    command = (command or "").strip()
    if not command:
        return CompletionResult.failed("Empty command.", ErrorKind.PROVIDER_ERROR)

    if not is_command_safe(command):
        logger.info("Rejected restricted command: %s", command)
        return CompletionResult.failed("This command is restricted for security reasons.", ErrorKind.PROVIDER_ERROR)

    try:
        argv = build_argv(command)
    except ValueError as e:
        return CompletionResult.failed(f"Failed to parse command: {e}", ErrorKind.PROVIDER_ERROR)
    if not argv:
        return CompletionResult.failed("Invalid command format.", ErrorKind.PROVIDER_ERROR)

    if abort_token.is_set():
        return CompletionResult.cancelled()

    started = time.monotonic()
    try:
        proc = subprocess.Popen(
            argv,
            cwd=cwd or os.getcwd(),
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            errors="replace",
            start_new_session=_POSIX,
        )
    except (OSError, ValueError) as e:
        return CompletionResult.failed(f"Failed to execute command: {e}", ErrorKind.PROVIDER_ERROR)

    logger.debug("Shell pid=%s started: %s", proc.pid, argv)

    while True:
        try:
            stdout, stderr = proc.communicate(timeout=POLL_SECONDS)
            break
        except subprocess.TimeoutExpired:
            if abort_token.is_set():
                logger.info("Shell pid=%s aborted", proc.pid)
                _kill(proc)
                return CompletionResult.cancelled()
            if deadline is not None and time.monotonic() >= deadline:
                logger.info("Shell pid=%s hit its deadline", proc.pid)
                _kill(proc)
                return CompletionResult.timed_out()

    elapsed = time.monotonic() - started
    return CompletionResult.success(format_command_output(proc.returncode, stdout or "", stderr or "", elapsed))
