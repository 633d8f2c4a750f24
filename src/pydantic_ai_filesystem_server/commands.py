"""Shell command execution with a timeout.

The working directory is authorized by the caller; this module only spawns
the shell, captures its output and kills the whole process group when the
timeout expires.
"""
from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import signal
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field

from .sandbox import DEFAULT_MAX_COMMAND_OUTPUT_BYTES, CommandFailedError

logger = logging.getLogger(__name__)


class CommandResult(BaseModel):
    """Captured output of a finished command."""

    command: str
    cwd: str
    exit_code: Optional[int] = Field(description="Process exit code (negative if signalled)")
    stdout: str = ""
    stderr: str = ""
    killed: bool = Field(default=False, description="True if killed by the timeout")

    def render(self, include_stderr: bool = True) -> str:
        output = ""
        if self.stdout:
            output += f"STDOUT:\n{self.stdout}"
        if include_stderr and self.stderr:
            if output:
                output += "\n\n"
            output += f"STDERR:\n{self.stderr}"
        return output or "Command executed successfully with no output"


def _decode(data: bytes, limit: int) -> str:
    if len(data) <= limit:
        return data.decode("utf-8", errors="replace")
    text = data[:limit].decode("utf-8", errors="replace")
    return f"{text}\n... (output truncated at {limit:,} bytes)"


def _kill(process: asyncio.subprocess.Process) -> None:
    with contextlib.suppress(ProcessLookupError):
        if os.name == "posix":
            os.killpg(process.pid, signal.SIGKILL)
        else:
            process.kill()


async def run_command(
    command: str,
    cwd: Path,
    timeout_ms: int,
    include_stderr: bool = True,
    max_output_bytes: int = DEFAULT_MAX_COMMAND_OUTPUT_BYTES,
) -> CommandResult:
    """Run a shell command in cwd.

    Args:
        command: Shell command line
        cwd: Authorized working directory
        timeout_ms: Milliseconds before the command is killed
        include_stderr: Include stderr in failure details
        max_output_bytes: Capture limit per stream

    Returns:
        CommandResult for a zero exit status

    Raises:
        CommandFailedError: On non-zero exit, timeout, or spawn failure
    """
    logger.info("Running command %r in %s (timeout %dms)", command, cwd, timeout_ms)
    try:
        process = await asyncio.create_subprocess_shell(
            command,
            cwd=str(cwd),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            start_new_session=os.name == "posix",
        )
    except OSError as e:
        logger.warning("Command %r could not be started: %s", command, e)
        raise CommandFailedError(command, f"Could not start command: {e}") from e

    communicate = asyncio.ensure_future(process.communicate())
    killed = False
    try:
        stdout_bytes, stderr_bytes = await asyncio.wait_for(
            asyncio.shield(communicate), timeout=timeout_ms / 1000
        )
    except asyncio.TimeoutError:
        killed = True
        _kill(process)
        stdout_bytes, stderr_bytes = await communicate

    result = CommandResult(
        command=command,
        cwd=str(cwd),
        exit_code=process.returncode,
        stdout=_decode(stdout_bytes or b"", max_output_bytes),
        stderr=_decode(stderr_bytes or b"", max_output_bytes),
        killed=killed,
    )

    if killed or result.exit_code != 0:
        reason = (
            f"Command timed out after {timeout_ms}ms"
            if killed
            else f"Command exited with code {result.exit_code}"
        )
        logger.warning("Command %r failed: %s", command, reason)
        raise CommandFailedError(
            command,
            reason,
            exit_code=result.exit_code,
            killed=killed,
            stdout=result.stdout,
            stderr=result.stderr if include_stderr else "",
        )

    logger.info("Command %r completed successfully", command)
    return result
