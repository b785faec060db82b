"""Prompt assembly for sub-agent runs and tool feedback serialization."""

from __future__ import annotations

from agentloop.extractor import EDIT_NEW_MARKER, EDIT_OLD_MARKER
from agentloop.schemas import SubAgentResult, TaskStatus, ToolName, ToolResult

SUBAGENT_DIRECTIVE = (
    "You are a sub-agent. Carry out the following task autonomously and report the result."
)

FEEDBACK_HEADER = "Tool results:"
CONTINUE_PROMPT = "Continue with the task."

DIGEST_START = "--- Results from previous agents ---"
DIGEST_END = "--- End ---"
DIGEST_RESULT_CHARS = 500

# One usage line per tool, shown in the system prompt
TOOL_USAGE: dict[str, str] = {
    ToolName.READ.value: "<tool:read>path/to/file</tool>  read a file with line numbers",
    ToolName.WRITE.value: (
        "<tool:write>path/to/file\nCOMPLETE file content</tool>  create or overwrite a file "
        "(always the full content, never placeholders)"
    ),
    ToolName.EDIT.value: (
        f"<tool:edit>path/to/file\n{EDIT_OLD_MARKER}\nexact old text\n{EDIT_NEW_MARKER}\nnew text</tool>  "
        "replace the first occurrence of the old text"
    ),
    ToolName.DELETE.value: "<tool:delete>path/to/file</tool>  delete a file",
    ToolName.BASH.value: "<tool:bash>command</tool>  run a shell command",
    ToolName.GREP.value: "<tool:grep>regex\n*.py</tool>  search file contents (glob line optional)",
    ToolName.GLOB.value: "<tool:glob>**/*.py</tool>  list files matching a pattern",
    ToolName.LS.value: "<tool:ls>path/to/dir</tool>  list a directory",
    ToolName.GIT.value: "<tool:git></tool>  branch, status and recent commits",
    ToolName.WEB.value: "<tool:web>search query</tool>  search the web",
    ToolName.FETCH.value: "<tool:fetch>https://example.com</tool>  fetch a page as text",
    ToolName.GH.value: "<tool:gh>pr list</tool>  run a GitHub CLI command",
}


def build_tool_reference(tool_names: list[str]) -> str:
    """Describe the invocation syntax for the given tools."""
    lines = ["Available tools (one block per call, executed in order):"]
    for name in tool_names:
        lines.append(f"- {TOOL_USAGE.get(name, f'<tool:{name}>input</tool>')}")
    return "\n".join(lines)


def build_system_prompt(persona_prompt: str, tool_names: list[str]) -> str:
    """Assemble the full sub-agent system prompt.

    Args:
        persona_prompt: Persona prompt already combined with the project context
        tool_names: Tools installed in the executor for this run

    Returns:
        System message content
    """
    parts = [persona_prompt.rstrip()]
    if tool_names:
        parts.append(build_tool_reference(tool_names))
    parts.append(SUBAGENT_DIRECTIVE)
    return "\n\n".join(parts)


def format_tool_feedback(results: list[ToolResult]) -> str:
    """Serialize one round's tool results into a single user message."""
    blocks = [
        f"[Tool: {r.tool}] {'SUCCESS' if r.success else 'FAILED'}: {r.result}"
        for r in results
    ]
    return f"{FEEDBACK_HEADER}\n" + "\n\n".join(blocks) + f"\n\n{CONTINUE_PROMPT}"


def build_pipeline_digest(results: list[SubAgentResult]) -> str:
    """Digest of prior completed tasks, or an empty string when there are none."""
    entries = [
        f"[{r.task.agent_id}]: {r.task.result[:DIGEST_RESULT_CHARS] or '(no result)'}"
        for r in results
        if r.task.status == TaskStatus.COMPLETED
    ]
    if not entries:
        return ""
    return f"{DIGEST_START}\n" + "\n\n".join(entries) + f"\n{DIGEST_END}"


def enrich_description(description: str, results: list[SubAgentResult]) -> str:
    digest = build_pipeline_digest(results)
    return f"{description}\n\n{digest}" if digest else description
