"""Tool executor: runs one structured tool call through a name→handler table.

The executor never raises. Unknown tools, malformed blocks and handler
exceptions all come back as a ``ToolResult`` with ``success=False`` so the model
can read the failure and correct itself.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Awaitable, Callable, Union

from agentloop.changes import ChangeJournal
from agentloop.config import Settings
from agentloop.policies import Policy, get_policy
from agentloop.schemas import ToolCall, ToolName, ToolResult
from agentloop.tools import (
    bash_tool,
    delete_file,
    edit_file,
    fetch_url,
    gh_cli,
    git_status,
    glob_search,
    grep_search,
    list_dir,
    read_file,
    web_search,
    write_file,
)

logger = logging.getLogger(__name__)


@dataclass
class ToolContext:
    """Everything a handler may need besides the call itself."""

    cwd: Path
    journal: ChangeJournal
    settings: Settings
    policy: Policy
    cancel: asyncio.Event | None = None


ToolHandler = Callable[[ToolCall, ToolContext], Union[ToolResult, Awaitable[ToolResult]]]


@dataclass
class ToolStats:
    """Per-executor call counters."""

    calls: int = 0
    by_tool: dict[str, int] = field(default_factory=dict)

    def count(self, tool_name: str) -> None:
        self.calls += 1
        self.by_tool[tool_name] = self.by_tool.get(tool_name, 0) + 1


# --- Built-in handlers ---


def _arg(call: ToolCall, key: str) -> str:
    return call.args.get(key) or ""


def _denied(call: ToolCall, ctx: ToolContext, what: str) -> ToolResult:
    logger.warning(f"Policy {ctx.policy.policy_id.value} denies {what} for {call.name}")
    return ToolResult(
        tool=call.name,
        success=False,
        result=f"Denied by policy {ctx.policy.policy_id.value}: {what} not allowed",
    )


def _handle_read(call: ToolCall, ctx: ToolContext) -> ToolResult:
    return read_file(_arg(call, "path"), ctx.cwd, ctx.settings.max_output_chars)


def _handle_write(call: ToolCall, ctx: ToolContext) -> ToolResult:
    if not ctx.policy.file_write_allowed:
        return _denied(call, ctx, "file writes")
    return write_file(_arg(call, "path"), _arg(call, "content"), ctx.cwd, ctx.journal)


def _handle_edit(call: ToolCall, ctx: ToolContext) -> ToolResult:
    if not ctx.policy.file_write_allowed:
        return _denied(call, ctx, "file writes")
    return edit_file(_arg(call, "path"), _arg(call, "old"), _arg(call, "new"), ctx.cwd, ctx.journal)


def _handle_delete(call: ToolCall, ctx: ToolContext) -> ToolResult:
    if not ctx.policy.file_write_allowed:
        return _denied(call, ctx, "file writes")
    return delete_file(_arg(call, "path"), ctx.cwd, ctx.journal)


async def _handle_bash(call: ToolCall, ctx: ToolContext) -> ToolResult:
    return await bash_tool(
        command=_arg(call, "command"),
        cwd=ctx.cwd,
        timeout_seconds=ctx.settings.bash_timeout,
        blocklist=ctx.policy.bash_blocklist,
        cancel=ctx.cancel,
        use_sandbox=ctx.settings.bash_sandbox,
        max_chars=ctx.settings.max_output_chars,
    )


def _handle_grep(call: ToolCall, ctx: ToolContext) -> ToolResult:
    return grep_search(
        _arg(call, "pattern"),
        ctx.cwd,
        call.args.get("glob"),
        ctx.settings.max_output_chars,
    )


def _handle_glob(call: ToolCall, ctx: ToolContext) -> ToolResult:
    return glob_search(_arg(call, "pattern"), ctx.cwd)


def _handle_ls(call: ToolCall, ctx: ToolContext) -> ToolResult:
    return list_dir(_arg(call, "path"), ctx.cwd)


def _handle_git(call: ToolCall, ctx: ToolContext) -> ToolResult:
    return git_status(ctx.cwd)


def _handle_web(call: ToolCall, ctx: ToolContext) -> ToolResult:
    if not ctx.policy.network_allowed:
        return _denied(call, ctx, "network access")
    return web_search(_arg(call, "query"))


def _handle_fetch(call: ToolCall, ctx: ToolContext) -> ToolResult:
    if not ctx.policy.network_allowed:
        return _denied(call, ctx, "network access")
    return fetch_url(_arg(call, "url"))


def _handle_gh(call: ToolCall, ctx: ToolContext) -> ToolResult:
    if not ctx.policy.network_allowed:
        return _denied(call, ctx, "network access")
    return gh_cli(_arg(call, "args"), ctx.cwd)


BUILTIN_HANDLERS: dict[str, ToolHandler] = {
    ToolName.READ.value: _handle_read,
    ToolName.WRITE.value: _handle_write,
    ToolName.EDIT.value: _handle_edit,
    ToolName.DELETE.value: _handle_delete,
    ToolName.BASH.value: _handle_bash,
    ToolName.GREP.value: _handle_grep,
    ToolName.GLOB.value: _handle_glob,
    ToolName.LS.value: _handle_ls,
    ToolName.GIT.value: _handle_git,
    ToolName.WEB.value: _handle_web,
    ToolName.FETCH.value: _handle_fetch,
    ToolName.GH.value: _handle_gh,
}


def build_default_handlers(policy: Policy) -> dict[str, ToolHandler]:
    """Build the handler table for the tools a policy allows.

    Args:
        policy: Execution policy

    Returns:
        A fresh name→handler dict; callers may add entries for extra tool sources
    """
    return {
        name: handler
        for name, handler in BUILTIN_HANDLERS.items()
        if name in policy.allowed_tools
    }


class ToolExecutor:
    """Runs tool calls against the local system."""

    def __init__(
        self,
        handlers: dict[str, ToolHandler],
        cwd: str | Path,
        settings: Settings | None = None,
        policy: Policy | None = None,
        journal: ChangeJournal | None = None,
    ):
        """Initialize the executor.

        Args:
            handlers: Fixed name→handler table
            cwd: Working directory for relative paths and commands
            settings: Runtime settings (timeouts, output caps)
            policy: Execution policy passed to handlers
            journal: Change journal for reversible file mutations
        """
        self.settings = settings or Settings()
        self.handlers = dict(handlers)
        self.cwd = Path(cwd).resolve()
        self.policy = policy or get_policy(self.settings.policy_id)
        self.journal = journal or ChangeJournal()
        self.stats = ToolStats()

    @property
    def tool_names(self) -> list[str]:
        return list(self.handlers)

    async def execute(self, call: ToolCall, cancel: asyncio.Event | None = None) -> ToolResult:
        """Execute one tool call.

        Args:
            call: The extracted tool call
            cancel: Cooperative cancellation signal for handlers that honor it

        Returns:
            ToolResult; failures are encoded, never raised
        """
        self.stats.count(call.name)

        handler = self.handlers.get(call.name)
        if handler is None:
            logger.warning(f"Unknown tool requested: {call.name}")
            return ToolResult(tool=call.name, success=False, result=f"Unknown tool: {call.name}")

        if call.parse_error:
            return ToolResult(tool=call.name, success=False, result=call.parse_error)

        ctx = ToolContext(
            cwd=self.cwd,
            journal=self.journal,
            settings=self.settings,
            policy=self.policy,
            cancel=cancel,
        )

        try:
            if inspect.iscoroutinefunction(handler):
                result = await handler(call, ctx)
            else:
                result = await asyncio.to_thread(handler, call, ctx)
                if inspect.isawaitable(result):
                    result = await result
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Tool {call.name} raised: {e}", exc_info=True)
            return ToolResult(tool=call.name, success=False, result=f"Error: {e}")

        if not isinstance(result, ToolResult):
            return ToolResult(
                tool=call.name,
                success=False,
                result=f"Error: handler returned {type(result).__name__}, expected ToolResult",
            )
        return result


def create_executor(cwd: str | Path, settings: Settings) -> ToolExecutor:
    """Build an executor with the default handler table for the configured policy."""
    policy = get_policy(settings.policy_id)
    return ToolExecutor(
        handlers=build_default_handlers(policy),
        cwd=cwd,
        settings=settings,
        policy=policy,
    )
