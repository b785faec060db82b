"""Turn controller: the stream → extract → execute loop for one task.

Each round streams model output, extracts tool blocks, executes them in order
and feeds the results back. The loop ends when a round produces no tool calls,
the turn cap is reached, two consecutive rounds make identical calls, the
cancellation signal fires, or something raises. The caller always gets the Task
back with a terminal status; exceptions never escape ``run``.
"""

from __future__ import annotations

import asyncio
import logging
import time
from enum import Enum
from typing import Callable

from agentloop.config import DEFAULT_MAX_TURNS
from agentloop.errors import InvalidTransitionError
from agentloop.executor import ToolExecutor
from agentloop.extractor import calls_from_units, extract_tool_calls
from agentloop.prompt_engine import format_tool_feedback
from agentloop.provider import StreamProvider
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
from agentloop.signature import RoundSignature, round_signature
from agentloop.usage import UsageTracker

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str], None]


class ControllerState(str, Enum):
    """Turn controller states."""

    IDLE = "idle"
    STREAMING = "streaming"
    EXTRACTING = "extracting"
    EXECUTING = "executing"
    AWAITING_NEXT_ROUND = "awaiting_next_round"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


_ALLOWED: dict[ControllerState, set[ControllerState]] = {
    ControllerState.IDLE: {ControllerState.STREAMING, ControllerState.CANCELLED},
    ControllerState.STREAMING: {ControllerState.EXTRACTING, ControllerState.CANCELLED},
    ControllerState.EXTRACTING: {ControllerState.COMPLETED, ControllerState.EXECUTING},
    ControllerState.EXECUTING: {ControllerState.AWAITING_NEXT_ROUND},
    ControllerState.AWAITING_NEXT_ROUND: {
        ControllerState.STREAMING,
        ControllerState.COMPLETED,
        ControllerState.CANCELLED,
    },
    ControllerState.COMPLETED: set(),
    ControllerState.CANCELLED: set(),
    ControllerState.FAILED: set(),
}

_TASK_STATUS = {
    ControllerState.COMPLETED: TaskStatus.COMPLETED,
    ControllerState.CANCELLED: TaskStatus.CANCELLED,
    ControllerState.FAILED: TaskStatus.FAILED,
}


class TurnController:
    """Drives one task through repeated model rounds."""

    def __init__(
        self,
        provider: StreamProvider,
        executor: ToolExecutor,
        config: GenerationConfig,
        usage: UsageTracker | None = None,
        max_turns: int = DEFAULT_MAX_TURNS,
        cancel: asyncio.Event | None = None,
        on_progress: ProgressCallback | None = None,
        label: str | None = None,
    ):
        """Initialize the controller.

        Args:
            provider: Streaming model provider
            executor: Tool executor owned by this run
            config: Model name and sampling settings
            usage: Tracker receiving one report per completed round
            max_turns: Maximum number of streaming rounds
            cancel: Cooperative cancellation signal shared with the caller
            on_progress: Optional callback for human-readable status lines
            label: Name used in progress messages
        """
        if max_turns < 1:
            raise ValueError("max_turns must be at least 1")
        self.provider = provider
        self.executor = executor
        self.config = config
        self.usage = usage or UsageTracker()
        self.max_turns = max_turns
        self.cancel = cancel or asyncio.Event()
        self.on_progress = on_progress
        self.label = label or "agent"
        self._state = ControllerState.IDLE
        self.state_history: list[ControllerState] = [ControllerState.IDLE]

    @property
    def state(self) -> ControllerState:
        return self._state

    def _enter(self, state: ControllerState) -> None:
        if state is not ControllerState.FAILED and state not in _ALLOWED[self._state]:
            raise InvalidTransitionError(f"Controller cannot move from {self._state.value} to {state.value}")
        self._state = state
        self.state_history.append(state)

    def _progress(self, message: str) -> None:
        if self.on_progress is not None:
            self.on_progress(f"[{self.label}] {message}")

    def _cancelled(self) -> bool:
        return self.cancel.is_set()

    async def run(self, task: Task, conversation: ConversationState) -> Task:
        """Run the loop until a terminal state.

        Args:
            task: Task record to fill in; must be pending
            conversation: Conversation seeded with system and user messages

        Returns:
            The same Task, now in a terminal status
        """
        if task.status.is_terminal:
            logger.warning(f"Task {task.id} is already {task.status.value}, not running it again")
            return task

        started = time.monotonic()
        try:
            task.transition(TaskStatus.RUNNING)
            await self._loop(task, conversation)
        except Exception as e:
            logger.exception(f"Task {task.id} failed: {e}")
            self._enter(ControllerState.FAILED)
            task.error = str(e) or type(e).__name__
        finally:
            task.duration = time.monotonic() - started

        if not task.status.is_terminal:
            task.transition(_TASK_STATUS[self._state])
        logger.info(
            f"Task {task.id} ({task.agent_id}) {task.status.value} after "
            f"{task.turns} turns in {task.duration:.1f}s"
        )
        return task

    async def _loop(self, task: Task, conversation: ConversationState) -> None:
        previous: RoundSignature | None = None
        round_input = conversation.messages[-1].content if len(conversation) else ""

        while True:
            # Guards for starting another round
            if self._cancelled():
                self._enter(ControllerState.CANCELLED)
                return
            if task.turns >= self.max_turns:
                logger.info(f"Task {task.id} reached the turn limit ({self.max_turns})")
                self._enter(ControllerState.COMPLETED)
                return

            self._enter(ControllerState.STREAMING)
            task.turns += 1
            self._progress(f"Turn {task.turns}/{self.max_turns}...")

            text, units, reported_tokens = await self._stream_round(conversation)
            if self._cancelled():
                self._enter(ControllerState.CANCELLED)
                return

            self._enter(ControllerState.EXTRACTING)
            extraction = extract_tool_calls(text)
            calls = extraction.calls + calls_from_units(units)
            if extraction.visible_text:
                task.result = extraction.visible_text

            tracked = self.usage.track(self.config.model, round_input, text)
            task.tokens_used += reported_tokens or (tracked.input_tokens + tracked.output_tokens)

            if not calls:
                self._enter(ControllerState.COMPLETED)
                return

            self._enter(ControllerState.EXECUTING)
            results: list[ToolResult] = []
            for call in calls:
                if self._cancelled():
                    break
                task.record_tool(call.name)
                result = await self.executor.execute(call, self.cancel)
                logger.debug(f"Task {task.id}: {call.name} -> {'ok' if result.success else 'failed'}")
                results.append(result)

            feedback = format_tool_feedback(results)
            conversation.append(Role.ASSISTANT, extraction.visible_text)
            conversation.append(Role.USER, feedback)
            round_input = feedback
            self._enter(ControllerState.AWAITING_NEXT_ROUND)

            if self._cancelled():
                self._enter(ControllerState.CANCELLED)
                return
            signature = round_signature(calls)
            if signature == previous:
                logger.info(f"Task {task.id}: identical tool calls in consecutive rounds, stopping")
                self._enter(ControllerState.COMPLETED)
                return
            previous = signature

    async def _stream_round(self, conversation: ConversationState) -> tuple[str, list[StreamUnit], int]:
        """Consume one stream.

        Returns:
            (content text, native tool_call units, provider-reported tokens)
        """
        parts: list[str] = []
        native: list[StreamUnit] = []
        tokens = 0

        stream = self.provider.stream(conversation.messages, self.config, self.cancel)
        try:
            async for unit in stream:
                if self._cancelled():
                    break
                if unit.type == StreamUnitType.CONTENT:
                    parts.append(unit.text)
                elif unit.type == StreamUnitType.TOOL_CALL:
                    native.append(unit)
                elif unit.type == StreamUnitType.USAGE and unit.usage is not None:
                    tokens += unit.usage.total_tokens
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

        return "".join(parts), native, tokens
