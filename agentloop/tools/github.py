"""GitHub CLI passthrough tool."""

from __future__ import annotations

import logging
import shlex
import subprocess
from pathlib import Path

from agentloop.schemas import ToolResult
from agentloop.tools.common import truncate_output

logger = logging.getLogger(__name__)

GH_TIMEOUT = 30  # seconds

BLOCKED_SUBCOMMANDS = ["repo delete", "repo archive", "auth logout"]


def gh_cli(args: str, cwd: str | Path, timeout_seconds: int = GH_TIMEOUT) -> ToolResult:
    """Run ``gh ARGS`` in cwd; destructive subcommands are refused."""
    args = args.strip()
    if args.startswith("gh "):
        args = args[3:].lstrip()

    for blocked in BLOCKED_SUBCOMMANDS:
        if args.startswith(blocked):
            return ToolResult(tool="gh", success=False, result=f"Blocked: 'gh {blocked}' is not allowed.")

    try:
        argv = ["gh", *shlex.split(args)]
    except ValueError as e:
        return ToolResult(tool="gh", success=False, result=f"Invalid arguments: {e}")

    try:
        completed = subprocess.run(
            argv,
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=timeout_seconds,
        )
    except FileNotFoundError:
        return ToolResult(
            tool="gh",
            success=False,
            result="GitHub CLI (gh) is not installed. See https://cli.github.com/",
        )
    except subprocess.TimeoutExpired:
        logger.warning(f"gh timed out after {timeout_seconds}s: {args}")
        return ToolResult(tool="gh", success=False, result=f"gh timed out after {timeout_seconds} seconds")

    if completed.returncode != 0:
        message = (completed.stderr or completed.stdout).strip() or f"gh exited with code {completed.returncode}"
        return ToolResult(tool="gh", success=False, result=truncate_output(message), command=f"gh {args}")

    return ToolResult(
        tool="gh",
        success=True,
        result=truncate_output(completed.stdout or "(no output)"),
        command=f"gh {args}",
    )
