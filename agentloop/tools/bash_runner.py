"""Shell tool with bounded timeout, output cap and optional bubblewrap sandbox."""

from __future__ import annotations

import asyncio
import logging
import os
import re
import shutil
import signal
from pathlib import Path

from agentloop.config import DEFAULT_BASH_TIMEOUT, MAX_OUTPUT_CHARS
from agentloop.errors import CommandBlockedError
from agentloop.schemas import BashResult, ToolResult
from agentloop.tools.common import truncate_output

logger = logging.getLogger(__name__)

# Grace period for pipes to drain after the process group is killed
KILL_GRACE_SECONDS = 5.0

# Captured output bound: bytes kept per stream, relative to the character cap
BYTES_PER_CHAR = 4
MAX_CAPTURE_BYTES = MAX_OUTPUT_CHARS * BYTES_PER_CHAR
READ_CHUNK_BYTES = 65536
CAPTURE_CAP_MARKER = "\n...[output capture limit reached, remainder discarded]"

# Check if bubblewrap is available
BWRAP_PATH = shutil.which("bwrap")


def validate_command(command: str, blocklist: list[str]) -> tuple[bool, str]:
    """Validate command against a blocklist.

    Args:
        command: The command to validate
        blocklist: Regex patterns that deny the command

    Returns:
        Tuple of (allowed, reason)
    """
    command = command.strip()
    if not command:
        return False, "Empty command"

    for pattern in blocklist:
        if re.search(pattern, command, re.IGNORECASE):
            return False, f"Blocked: matches dangerous pattern '{pattern}'"

    return True, "Allowed by policy"


def _build_bwrap_command(command: str, work_dir: str) -> list[str]:
    """Build the bubblewrap command with a read-only root and writable workdir."""
    return [
        BWRAP_PATH or "bwrap",
        "--ro-bind", "/", "/",
        "--bind", work_dir, work_dir,
        "--proc", "/proc",
        "--dev", "/dev",
        "--tmpfs", "/tmp",
        "--chdir", work_dir,
        "--die-with-parent",
        "--",
        "/bin/sh", "-c", command,
    ]


def _kill_group(proc: asyncio.subprocess.Process) -> None:
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except (ProcessLookupError, PermissionError):
        try:
            proc.kill()
        except ProcessLookupError:
            pass


async def _read_capped(stream: asyncio.StreamReader, limit: int) -> tuple[bytes, bool]:
    """Drain a pipe to EOF, keeping at most ``limit`` bytes."""
    kept = bytearray()
    dropped = False
    while True:
        chunk = await stream.read(READ_CHUNK_BYTES)
        if not chunk:
            break
        room = limit - len(kept)
        if room > 0:
            kept += chunk[:room]
        if len(chunk) > max(room, 0):
            dropped = True
    return bytes(kept), dropped


async def _collect(proc: asyncio.subprocess.Process, limit: int) -> tuple[str, str, bool]:
    """Read both pipes concurrently, then reap the process."""
    (stdout, out_dropped), (stderr, err_dropped) = await asyncio.gather(
        _read_capped(proc.stdout, limit),
        _read_capped(proc.stderr, limit),
    )
    await proc.wait()
    return _decode(stdout, out_dropped), _decode(stderr, err_dropped), out_dropped or err_dropped


def _decode(data: bytes, dropped: bool) -> str:
    text = data.decode("utf-8", errors="replace")
    return text + CAPTURE_CAP_MARKER if dropped else text


async def run_bash(
    command: str,
    work_dir: str | None = None,
    timeout_seconds: float = DEFAULT_BASH_TIMEOUT,
    blocklist: list[str] | None = None,
    cancel: asyncio.Event | None = None,
    use_sandbox: bool = False,
    max_output_bytes: int = MAX_CAPTURE_BYTES,
) -> BashResult:
    """Execute a shell command with its own timeout.

    The command is killed when the timeout expires or when ``cancel`` is set,
    whichever comes first. Each pipe is read as it fills; bytes past
    ``max_output_bytes`` are discarded so a chatty command cannot exhaust memory.

    Args:
        command: The command to execute
        work_dir: Working directory (defaults to current directory)
        timeout_seconds: Timeout in seconds
        blocklist: Regex patterns that deny the command
        cancel: Cooperative cancellation signal
        use_sandbox: Whether to run inside bubblewrap
        max_output_bytes: Bytes kept per stream

    Returns:
        BashResult with stdout, stderr, exit code, and metadata

    Raises:
        CommandBlockedError: If the command matches the blocklist
    """
    command = command.strip()
    work_dir = work_dir or str(Path.cwd())

    allowed, reason = validate_command(command, blocklist or [])
    if not allowed:
        logger.warning(f"Command blocked: {command} - {reason}")
        raise CommandBlockedError(reason)

    was_sandboxed = bool(use_sandbox and BWRAP_PATH)
    if use_sandbox and not BWRAP_PATH:
        logger.warning("bubblewrap not available, running without sandbox")
    argv = _build_bwrap_command(command, work_dir) if was_sandboxed else ["/bin/sh", "-c", command]

    logger.info(f"Executing command: {command}")
    proc = await asyncio.create_subprocess_exec(
        *argv,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        cwd=work_dir,
        start_new_session=True,
    )

    collect = asyncio.ensure_future(_collect(proc, max_output_bytes))
    waiters: set[asyncio.Future] = {collect}
    cancel_wait: asyncio.Future | None = None
    if cancel is not None:
        cancel_wait = asyncio.ensure_future(cancel.wait())
        waiters.add(cancel_wait)

    try:
        done, _ = await asyncio.wait(
            waiters,
            timeout=timeout_seconds,
            return_when=asyncio.FIRST_COMPLETED,
        )
    finally:
        if cancel_wait is not None and not cancel_wait.done():
            cancel_wait.cancel()

    if collect in done:
        stdout, stderr, dropped = collect.result()
        return BashResult(
            stdout=stdout,
            stderr=stderr,
            exit_code=proc.returncode if proc.returncode is not None else -1,
            was_sandboxed=was_sandboxed,
            command_executed=command,
            output_truncated=dropped,
        )

    cancelled = cancel_wait is not None and cancel_wait in done
    _kill_group(proc)
    partial_out, stderr_text, dropped = "", "", False
    try:
        partial_out, stderr_text, dropped = await asyncio.wait_for(collect, KILL_GRACE_SECONDS)
    except asyncio.TimeoutError:
        collect.cancel()

    if cancelled:
        logger.warning(f"Command cancelled: {command}")
        message = "Command cancelled"
    else:
        logger.warning(f"Command timed out after {timeout_seconds}s: {command}")
        message = f"Command timed out after {timeout_seconds} seconds"

    return BashResult(
        stdout=partial_out,
        stderr=(stderr_text + "\n" if stderr_text else "") + message,
        exit_code=-1,
        was_sandboxed=was_sandboxed,
        command_executed=command,
        timed_out=not cancelled,
        cancelled=cancelled,
        output_truncated=dropped,
    )


async def bash_tool(
    command: str,
    cwd: str | Path,
    timeout_seconds: float = DEFAULT_BASH_TIMEOUT,
    blocklist: list[str] | None = None,
    cancel: asyncio.Event | None = None,
    use_sandbox: bool = False,
    max_chars: int = MAX_OUTPUT_CHARS,
) -> ToolResult:
    """Run a command and wrap the outcome in a ToolResult.

    A non-zero exit, a timeout or a blocked command is a failure carrying the
    combined output. Never raises.
    """
    try:
        result = await run_bash(
            command=command,
            work_dir=str(cwd),
            timeout_seconds=timeout_seconds,
            blocklist=blocklist,
            cancel=cancel,
            use_sandbox=use_sandbox,
            max_output_bytes=max_chars * BYTES_PER_CHAR,
        )
    except CommandBlockedError as e:
        return ToolResult(tool="bash", success=False, result=f"Command blocked: {e}", command=command)
    except OSError as e:
        logger.error(f"Command execution failed: {e}")
        return ToolResult(tool="bash", success=False, result=f"Error: {e}", command=command)

    combined = result.stdout + result.stderr
    if result.exit_code == 0:
        return ToolResult(
            tool="bash",
            success=True,
            result=truncate_output(combined or "(no output)", max_chars),
            command=command,
        )

    if not combined.strip():
        combined = f"Command exited with code {result.exit_code}"
    return ToolResult(
        tool="bash",
        success=False,
        result=truncate_output(combined, max_chars),
        command=command,
    )


def check_sandbox_available() -> bool:
    """Check if bubblewrap sandbox is available."""
    return BWRAP_PATH is not None
