"""Tests for prompt assembly and feedback serialization."""

from agentloop.prompt_engine import (
    DIGEST_END,
    DIGEST_START,
    SUBAGENT_DIRECTIVE,
    build_pipeline_digest,
    build_system_prompt,
    enrich_description,
    format_tool_feedback,
)
from agentloop.schemas import SubAgentResult, Task, TaskStatus, ToolResult


def _result(agent_id: str, status: TaskStatus, result: str = "") -> SubAgentResult:
    task = Task(agent_id=agent_id, description="d", status=status, result=result)
    return SubAgentResult(task=task, messages=[], full_response=result)


class TestSystemPrompt:
    """Test sub-agent system prompt assembly."""

    def test_contains_persona_tools_and_directive(self):
        prompt = build_system_prompt("You are the TEST AGENT.", ["read", "edit"])

        assert prompt.startswith("You are the TEST AGENT.")
        assert "<tool:read>" in prompt
        assert "<<<" in prompt
        assert "<tool:bash>" not in prompt
        assert prompt.endswith(SUBAGENT_DIRECTIVE)

    def test_unlisted_tool_gets_generic_usage(self):
        prompt = build_system_prompt("p", ["custom"])
        assert "<tool:custom>input</tool>" in prompt


class TestToolFeedback:
    """Test tool result serialization."""

    def test_format(self):
        feedback = format_tool_feedback([
            ToolResult(tool="read", success=True, result="   1 | x = 1"),
            ToolResult(tool="edit", success=False, result="String not found in a.py. No changes made."),
        ])

        assert "[Tool: read] SUCCESS:    1 | x = 1" in feedback
        assert "[Tool: edit] FAILED: String not found in a.py" in feedback
        assert feedback.endswith("Continue with the task.")

    def test_blocks_separated_by_blank_line(self):
        feedback = format_tool_feedback([
            ToolResult(tool="ls", success=True, result="a"),
            ToolResult(tool="ls", success=True, result="b"),
        ])
        assert "[Tool: ls] SUCCESS: a\n\n[Tool: ls] SUCCESS: b" in feedback


class TestPipelineDigest:
    """Test the digest handed to later pipeline steps."""

    def test_only_completed_tasks(self):
        digest = build_pipeline_digest([
            _result("architect", TaskStatus.COMPLETED, "Use a layered design."),
            _result("code", TaskStatus.FAILED, "half done"),
            _result("review", TaskStatus.CANCELLED, "partial"),
        ])

        assert digest.startswith(DIGEST_START)
        assert digest.endswith(DIGEST_END)
        assert "[architect]: Use a layered design." in digest
        assert "[code]" not in digest
        assert "[review]" not in digest

    def test_result_truncated(self):
        digest = build_pipeline_digest([_result("code", TaskStatus.COMPLETED, "x" * 800)])
        assert "x" * 500 in digest
        assert "x" * 501 not in digest

    def test_empty_when_nothing_completed(self):
        assert build_pipeline_digest([_result("code", TaskStatus.FAILED)]) == ""

    def test_enrich_description(self):
        results = [_result("architect", TaskStatus.COMPLETED, "plan")]
        enriched = enrich_description("Implement it.", results)

        assert enriched.startswith("Implement it.\n\n" + DIGEST_START)
        assert enrich_description("Implement it.", []) == "Implement it."
