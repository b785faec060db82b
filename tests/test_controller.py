"""Tests for the turn controller state machine."""

import asyncio
from pathlib import Path

import pytest

from agentloop.controller import ControllerState, TurnController
from agentloop.errors import ProviderError
from agentloop.executor import ToolExecutor
from agentloop.schemas import (
    ConversationState,
    GenerationConfig,
    Role,
    StreamUnit,
    StreamUnitType,
    Task,
    TaskStatus,
    ToolResult,
)
from agentloop.usage import UsageTracker

CONFIG = GenerationConfig(model="test-model")


def _conversation(task: str = "Do the thing.") -> ConversationState:
    conversation = ConversationState()
    conversation.append(Role.SYSTEM, "You are a test agent.")
    conversation.append(Role.USER, task)
    return conversation


def _controller(provider, executor, **kwargs) -> TurnController:
    return TurnController(provider=provider, executor=executor, config=CONFIG, **kwargs)


class TestScenarios:
    """End-to-end rounds against a scripted model."""

    @pytest.mark.asyncio
    async def test_no_tool_block_completes_in_round_one(self, scripted_provider, executor):
        """Scenario A: plain answer completes immediately."""
        provider = scripted_provider(["The answer is 42."])
        controller = _controller(provider, executor)
        task = Task(agent_id="code", description="question")

        await controller.run(task, _conversation())

        assert task.status == TaskStatus.COMPLETED
        assert task.tools_used == []
        assert task.turns == 1
        assert task.result == "The answer is 42."
        assert controller.state_history == [
            ControllerState.IDLE,
            ControllerState.STREAMING,
            ControllerState.EXTRACTING,
            ControllerState.COMPLETED,
        ]

    @pytest.mark.asyncio
    async def test_failed_edit_feeds_back_into_round_two(self, scripted_provider, executor):
        """Scenario B: a missing old string is reported and the loop continues."""
        provider = scripted_provider([
            "Fixing.\n<tool:edit>main.py\n<<<\nthis text is absent\n>>>\nreplacement\n</tool>",
            "I could not find that text, nothing changed.",
        ])
        controller = _controller(provider, executor)
        task = Task(agent_id="debug", description="fix")
        conversation = _conversation()

        await controller.run(task, conversation)

        assert task.status == TaskStatus.COMPLETED
        assert task.turns == 2
        assert task.tools_used == ["edit"]
        round_two_messages = provider.calls[1]
        assert round_two_messages[-2].role == Role.ASSISTANT
        assert round_two_messages[-2].content == "Fixing."
        assert round_two_messages[-1].role == Role.USER
        assert "[Tool: edit] FAILED: String not found in main.py" in round_two_messages[-1].content
        assert task.result == "I could not find that text, nothing changed."

    @pytest.mark.asyncio
    async def test_repeated_bash_stops_after_round_two(self, scripted_provider, executor):
        """Scenario C: identical consecutive rounds stop the loop."""
        reply = "Checking.\n<tool:bash>echo same</tool>"
        provider = scripted_provider([reply, reply, reply, reply, reply])
        controller = _controller(provider, executor, max_turns=5)
        task = Task(agent_id="debug", description="loop")

        await controller.run(task, _conversation())

        assert task.status == TaskStatus.COMPLETED
        assert task.turns == 2
        assert len(provider.calls) == 2
        assert task.tools_used == ["bash"]

    @pytest.mark.asyncio
    async def test_whitespace_variants_count_as_repeat(self, scripted_provider, executor):
        provider = scripted_provider([
            "<tool:bash>echo   same</tool>",
            "<tool:bash> echo same </tool>",
            "Done.",
        ])
        task = Task(agent_id="debug", description="loop")

        await _controller(provider, executor).run(task, _conversation())

        assert task.turns == 2

    @pytest.mark.asyncio
    async def test_max_turns_one(self, scripted_provider, executor):
        """Scenario D: a single allowed round ends after executing its tools."""
        provider = scripted_provider(["<tool:ls>.</tool>", "<tool:read>main.py</tool>"])
        controller = _controller(provider, executor, max_turns=1)
        task = Task(agent_id="code", description="explore")

        await controller.run(task, _conversation())

        assert task.status == TaskStatus.COMPLETED
        assert task.turns == 1
        assert task.tools_used == ["ls"]
        assert len(provider.calls) == 1

    @pytest.mark.asyncio
    async def test_rounds_never_exceed_max_turns(self, scripted_provider, executor):
        replies = [f"<tool:bash>echo {i}</tool>" for i in range(10)]
        provider = scripted_provider(replies)
        task = Task(agent_id="code", description="busy")

        await _controller(provider, executor, max_turns=3).run(task, _conversation())

        assert task.turns == 3
        assert len(provider.calls) == 3
        assert task.status == TaskStatus.COMPLETED


class TestExecutionOrder:
    """Test tool execution within a round."""

    @pytest.mark.asyncio
    async def test_calls_run_in_document_order(self, scripted_provider, tmp_workspace: Path):
        seen = []

        def record(call, ctx):
            seen.append(call.args["input"])
            return ToolResult(tool=call.name, success=True, result="ok")

        executor = ToolExecutor({"note": record}, tmp_workspace)
        provider = scripted_provider(["<tool:note>1</tool><tool:note>2</tool><tool:note>3</tool>", "Done."])
        task = Task(agent_id="code", description="order")

        await _controller(provider, executor).run(task, _conversation())

        assert seen == ["1", "2", "3"]
        assert task.tools_used == ["note"]

    @pytest.mark.asyncio
    async def test_unknown_tool_does_not_stop_loop(self, scripted_provider, executor):
        provider = scripted_provider(["<tool:teleport>mars</tool>", "Fine, no teleporting."])
        task = Task(agent_id="code", description="x")

        await _controller(provider, executor).run(task, _conversation())

        assert task.status == TaskStatus.COMPLETED
        assert "Unknown tool: teleport" in provider.calls[1][-1].content

    @pytest.mark.asyncio
    async def test_native_tool_call_units(self, scripted_provider, executor):
        units = [
            StreamUnit(type=StreamUnitType.CONTENT, text="Reading."),
            StreamUnit(type=StreamUnitType.TOOL_CALL, tool_name="read", tool_args={"path": "main.py"}),
        ]
        provider = scripted_provider([units, "Done."])
        task = Task(agent_id="code", description="x")

        await _controller(provider, executor).run(task, _conversation())

        assert task.tools_used == ["read"]
        assert "[Tool: read] SUCCESS" in provider.calls[1][-1].content


class TestCancellation:
    """Test cooperative cancellation."""

    @pytest.mark.asyncio
    async def test_cancelled_before_start(self, scripted_provider, executor):
        cancel = asyncio.Event()
        cancel.set()
        provider = scripted_provider(["never streamed"])
        task = Task(agent_id="code", description="x")
        controller = _controller(provider, executor, cancel=cancel)

        await controller.run(task, _conversation())

        assert task.status == TaskStatus.CANCELLED
        assert provider.calls == []
        assert controller.state == ControllerState.CANCELLED

    @pytest.mark.asyncio
    async def test_cancel_during_streaming(self, scripted_provider, executor):
        cancel = asyncio.Event()
        provider = scripted_provider(
            ["<tool:ls>.</tool>", "second round"],
            cancel_after_round=1,
            cancel_event=cancel,
        )
        task = Task(agent_id="code", description="x")
        controller = _controller(provider, executor, cancel=cancel)

        await controller.run(task, _conversation())

        assert task.status == TaskStatus.CANCELLED
        assert len(provider.calls) == 1
        assert task.tools_used == []
        assert ControllerState.EXTRACTING not in controller.state_history

    @pytest.mark.asyncio
    async def test_no_round_after_cancel_during_tools(self, scripted_provider, tmp_workspace: Path):
        cancel = asyncio.Event()

        async def stop(call, ctx):
            cancel.set()
            return ToolResult(tool="stop", success=True, result="stopping")

        executor = ToolExecutor({"stop": stop}, tmp_workspace)
        provider = scripted_provider(["<tool:stop></tool>", "should not stream"])
        task = Task(agent_id="code", description="x")

        await _controller(provider, executor, cancel=cancel).run(task, _conversation())

        assert task.status == TaskStatus.CANCELLED
        assert len(provider.calls) == 1
        assert task.tools_used == ["stop"]


class TestFailures:
    """Test the exception boundary."""

    @pytest.mark.asyncio
    async def test_provider_error_fails_task(self, scripted_provider, executor):
        provider = scripted_provider([ProviderError("API error 500: overloaded")])
        task = Task(agent_id="code", description="x")
        controller = _controller(provider, executor)

        returned = await controller.run(task, _conversation())

        assert returned is task
        assert task.status == TaskStatus.FAILED
        assert task.error == "API error 500: overloaded"
        assert controller.state == ControllerState.FAILED

    @pytest.mark.asyncio
    async def test_failure_keeps_accumulated_fields(self, scripted_provider, executor):
        provider = scripted_provider(["Looking.\n<tool:ls>.</tool>", RuntimeError("connection reset")])
        task = Task(agent_id="code", description="x")

        await _controller(provider, executor).run(task, _conversation())

        assert task.status == TaskStatus.FAILED
        assert task.tools_used == ["ls"]
        assert task.turns == 2
        assert task.result == "Looking."
        assert task.duration >= 0

    @pytest.mark.asyncio
    async def test_task_must_be_pending(self, scripted_provider, executor):
        task = Task(agent_id="code", description="x", status=TaskStatus.COMPLETED)

        await _controller(scripted_provider(["hi"]), executor).run(task, _conversation())

        assert task.status == TaskStatus.COMPLETED
        assert task.turns == 0

    def test_max_turns_must_be_positive(self, scripted_provider, executor):
        with pytest.raises(ValueError):
            _controller(scripted_provider([]), executor, max_turns=0)


class TestAccounting:
    """Test token accounting and progress reporting."""

    @pytest.mark.asyncio
    async def test_tokens_from_usage_units(self, scripted_provider, executor):
        provider = scripted_provider(["<tool:ls>.</tool>", "Done."])
        task = Task(agent_id="code", description="x")

        await _controller(provider, executor).run(task, _conversation())

        # ScriptedProvider reports 15 tokens per round
        assert task.tokens_used == 30

    @pytest.mark.asyncio
    async def test_usage_tracked_per_round(self, scripted_provider, executor):
        usage = UsageTracker()
        provider = scripted_provider(["<tool:ls>.</tool>", "Done."])
        task = Task(agent_id="code", description="x")

        await _controller(provider, executor, usage=usage).run(task, _conversation())

        session = usage.session()
        assert session.messages == 2
        assert "test-model" in session.by_model

    @pytest.mark.asyncio
    async def test_progress_messages(self, scripted_provider, executor):
        messages = []
        provider = scripted_provider(["<tool:ls>.</tool>", "Done."])
        task = Task(agent_id="code", description="x")

        await _controller(provider, executor, on_progress=messages.append, label="Code Agent").run(
            task, _conversation()
        )

        assert messages == ["[Code Agent] Turn 1/5...", "[Code Agent] Turn 2/5..."]
