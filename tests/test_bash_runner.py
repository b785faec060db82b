"""Tests for the shell tool: blocklists, timeouts and cancellation."""

import asyncio
import time
from pathlib import Path

import pytest

from agentloop.errors import CommandBlockedError
from agentloop.policies import get_policy
from agentloop.schemas import PolicyId
from agentloop.tools import bash_runner
from agentloop.tools.bash_runner import (
    CAPTURE_CAP_MARKER,
    bash_tool,
    check_sandbox_available,
    run_bash,
    validate_command,
)


class TestCommandValidation:
    """Test command validation against policy blocklists."""

    def test_default_allows_ls(self):
        allowed, reason = validate_command("ls -la", get_policy(PolicyId.DEFAULT).bash_blocklist)
        assert allowed is True

    def test_default_blocks_rm_root(self):
        allowed, reason = validate_command("rm -rf /", get_policy(PolicyId.DEFAULT).bash_blocklist)
        assert allowed is False
        assert "Blocked" in reason

    def test_default_blocks_fork_bomb(self):
        allowed, _ = validate_command(":(){ :|:& };:", get_policy(PolicyId.DEFAULT).bash_blocklist)
        assert allowed is False

    def test_build_allows_pytest(self):
        allowed, _ = validate_command("python -m pytest", get_policy(PolicyId.BUILD).bash_blocklist)
        assert allowed is True

    def test_build_blocks_pip_install(self):
        allowed, _ = validate_command("pip install requests", get_policy(PolicyId.BUILD).bash_blocklist)
        assert allowed is False

    def test_build_blocks_curl(self):
        allowed, _ = validate_command("curl http://example.com", get_policy(PolicyId.BUILD).bash_blocklist)
        assert allowed is False

    def test_empty_command(self):
        allowed, reason = validate_command("   ", [])
        assert allowed is False
        assert reason == "Empty command"


class TestRunBash:
    """Test command execution."""

    @pytest.mark.asyncio
    async def test_echo(self, tmp_workspace: Path):
        result = await run_bash("echo hello", work_dir=str(tmp_workspace))

        assert result.exit_code == 0
        assert result.stdout.strip() == "hello"
        assert result.timed_out is False

    @pytest.mark.asyncio
    async def test_runs_in_work_dir(self, tmp_workspace: Path):
        result = await run_bash("pwd", work_dir=str(tmp_workspace))
        assert Path(result.stdout.strip()).resolve() == tmp_workspace.resolve()

    @pytest.mark.asyncio
    async def test_blocked_raises(self, tmp_workspace: Path):
        with pytest.raises(CommandBlockedError):
            await run_bash("rm -rf /", work_dir=str(tmp_workspace), blocklist=[r"rm\s+-rf\s+/(\s|$)"])

    @pytest.mark.asyncio
    async def test_timeout_kills_process(self, tmp_workspace: Path):
        started = time.monotonic()
        result = await run_bash("sleep 30", work_dir=str(tmp_workspace), timeout_seconds=0.5)

        assert result.timed_out is True
        assert result.exit_code == -1
        assert "timed out" in result.stderr
        assert time.monotonic() - started < 10

    @pytest.mark.asyncio
    async def test_cancel_kills_process(self, tmp_workspace: Path):
        cancel = asyncio.Event()
        asyncio.get_running_loop().call_later(0.2, cancel.set)

        started = time.monotonic()
        result = await run_bash("sleep 30", work_dir=str(tmp_workspace), timeout_seconds=20, cancel=cancel)

        assert result.cancelled is True
        assert result.timed_out is False
        assert "cancelled" in result.stderr
        assert time.monotonic() - started < 10

    @pytest.mark.asyncio
    async def test_large_output_is_capped_while_reading(self, tmp_workspace: Path):
        result = await run_bash(
            "head -c 2000000 /dev/zero | tr '\\0' a", work_dir=str(tmp_workspace), max_output_bytes=1000
        )

        assert result.exit_code == 0
        assert result.output_truncated is True
        assert result.stdout.startswith("a" * 1000)
        assert result.stdout.endswith(CAPTURE_CAP_MARKER)
        assert len(result.stdout) == 1000 + len(CAPTURE_CAP_MARKER)

    @pytest.mark.asyncio
    async def test_small_output_not_marked(self, tmp_workspace: Path):
        result = await run_bash("echo short", work_dir=str(tmp_workspace), max_output_bytes=1000)

        assert result.output_truncated is False
        assert CAPTURE_CAP_MARKER not in result.stdout

    @pytest.mark.asyncio
    async def test_stderr_capped_separately(self, tmp_workspace: Path):
        result = await run_bash(
            "echo ok; head -c 5000 /dev/zero | tr '\\0' e >&2", work_dir=str(tmp_workspace), max_output_bytes=100
        )

        assert result.stdout == "ok\n"
        assert result.stderr.endswith(CAPTURE_CAP_MARKER)
        assert result.output_truncated is True


class TestBashTool:
    """Test the ToolResult wrapper."""

    @pytest.mark.asyncio
    async def test_success(self, tmp_workspace: Path):
        result = await bash_tool("echo hi", tmp_workspace)

        assert result.success is True
        assert result.result.strip() == "hi"
        assert result.command == "echo hi"

    @pytest.mark.asyncio
    async def test_no_output(self, tmp_workspace: Path):
        result = await bash_tool("true", tmp_workspace)
        assert result.result == "(no output)"

    @pytest.mark.asyncio
    async def test_nonzero_exit_is_failure_with_output(self, tmp_workspace: Path):
        result = await bash_tool("echo broken >&2; exit 3", tmp_workspace)

        assert result.success is False
        assert "broken" in result.result

    @pytest.mark.asyncio
    async def test_silent_failure_reports_exit_code(self, tmp_workspace: Path):
        result = await bash_tool("exit 4", tmp_workspace)
        assert result.result == "Command exited with code 4"

    @pytest.mark.asyncio
    async def test_blocked_is_soft_failure(self, tmp_workspace: Path):
        result = await bash_tool("sudo ls", tmp_workspace, blocklist=[r"\bsudo\b"])

        assert result.success is False
        assert result.result.startswith("Command blocked:")

    @pytest.mark.asyncio
    async def test_timeout_is_failure(self, tmp_workspace: Path):
        result = await bash_tool("sleep 10", tmp_workspace, timeout_seconds=0.3)

        assert result.success is False
        assert "timed out" in result.result

    @pytest.mark.asyncio
    async def test_output_truncated(self, tmp_workspace: Path):
        result = await bash_tool("yes | head -n 5000", tmp_workspace, max_chars=200)
        assert "...[truncated," in result.result


class TestSandbox:
    """Test sandbox detection."""

    def test_check_returns_bool(self):
        assert isinstance(check_sandbox_available(), bool)

    @pytest.mark.asyncio
    async def test_sandbox_requested_without_bwrap_runs_plain(self, tmp_workspace: Path, monkeypatch):
        monkeypatch.setattr(bash_runner, "BWRAP_PATH", None)

        result = await run_bash("echo plain", work_dir=str(tmp_workspace), use_sandbox=True)

        assert result.exit_code == 0
        assert result.was_sandboxed is False
        assert result.stdout.strip() == "plain"

    @pytest.mark.asyncio
    @pytest.mark.skipif(not check_sandbox_available(), reason="bubblewrap not installed")
    async def test_sandbox_keeps_work_dir_writable(self, tmp_workspace: Path):
        result = await run_bash(
            "echo inside > marker.txt && cat marker.txt", work_dir=str(tmp_workspace), use_sandbox=True
        )

        assert result.was_sandboxed is True
        if result.exit_code == 0:
            assert (tmp_workspace / "marker.txt").read_text() == "inside\n"
