"""Sub-agent orchestration: isolated single runs and sequential pipelines."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Callable

from agentloop.config import Settings
from agentloop.controller import ProgressCallback, TurnController
from agentloop.executor import ToolExecutor, create_executor
from agentloop.personas import PersonaRegistry
from agentloop.prompt_engine import build_system_prompt, enrich_description
from agentloop.provider import StreamProvider
from agentloop.schemas import (
    AgentInfo,
    ConversationState,
    PipelineStep,
    Role,
    SubAgentResult,
    Task,
    TaskStatus,
)
from agentloop.usage import UsageTracker

logger = logging.getLogger(__name__)

ExecutorFactory = Callable[[], ToolExecutor]
PipelineProgress = Callable[[int, str], None]

STATUS_ICONS = {
    TaskStatus.COMPLETED: "✔",
    TaskStatus.FAILED: "✘",
}
DEFAULT_ICON = "○"


def format_duration(seconds: float) -> str:
    if seconds >= 60:
        minutes, rest = divmod(seconds, 60)
        return f"{int(minutes)}m {round(rest)}s"
    return f"{seconds:.1f}s"


class SubAgentOrchestrator:
    """Runs personas as isolated sub-agents against a shared provider."""

    def __init__(
        self,
        provider: StreamProvider,
        personas: PersonaRegistry,
        settings: Settings | None = None,
        executor_factory: ExecutorFactory | None = None,
        usage: UsageTracker | None = None,
        cwd: str | Path = ".",
    ):
        """Initialize the orchestrator.

        Args:
            provider: Streaming model provider shared by all runs
            personas: Persona lookup table
            settings: Runtime settings (model, turn cap, tool limits)
            executor_factory: Builds a fresh executor per run; defaults to the
                policy's built-in tools rooted at cwd
            usage: Usage tracker shared by all runs
            cwd: Working directory for the default executor
        """
        self.provider = provider
        self.personas = personas
        self.settings = settings or Settings()
        self.usage = usage or UsageTracker()
        self.cwd = Path(cwd)
        self.executor_factory = executor_factory or (lambda: create_executor(self.cwd, self.settings))

    def _build_conversation(self, agent_id: str, description: str, base_context: str, executor: ToolExecutor) -> ConversationState:
        persona_prompt = self.personas.build_prompt(agent_id, base_context)
        conversation = ConversationState()
        conversation.append(Role.SYSTEM, build_system_prompt(persona_prompt, executor.tool_names))
        conversation.append(Role.USER, description)
        return conversation

    async def run_subagent(
        self,
        agent_id: str,
        description: str,
        base_context: str = "",
        cancel: asyncio.Event | None = None,
        max_turns: int | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> SubAgentResult:
        """Run one sub-agent task to completion.

        Unknown agent ids run with the base context as their system prompt.
        Never raises: failures come back as a Task with status ``failed``.

        Args:
            agent_id: Persona id
            description: Task given to the sub-agent as its user message
            base_context: Project context appended to the persona prompt
            cancel: Cooperative cancellation signal
            max_turns: Round cap; defaults to the configured value
            on_progress: Optional status-line callback

        Returns:
            SubAgentResult with the finished task and its full conversation
        """
        task = Task(agent_id=agent_id, description=description)
        persona = self.personas.get(agent_id)
        label = persona.name if persona else agent_id
        conversation = ConversationState()

        if on_progress is not None:
            on_progress(f"Sub-agent [{label}] starting...")
        logger.info(f"Starting sub-agent {agent_id} as task {task.id}")

        try:
            executor = self.executor_factory()
            conversation = self._build_conversation(agent_id, description, base_context, executor)
            controller = TurnController(
                provider=self.provider,
                executor=executor,
                config=self.settings.generation_config(),
                usage=self.usage,
                max_turns=max_turns or self.settings.max_turns,
                cancel=cancel,
                on_progress=on_progress,
                label=label,
            )
        except Exception as e:
            logger.exception(f"Could not start sub-agent {agent_id}: {e}")
            task.transition(TaskStatus.FAILED)
            task.error = str(e) or type(e).__name__
            return SubAgentResult(task=task, messages=conversation.messages, full_response="")

        await controller.run(task, conversation)
        return SubAgentResult(task=task, messages=conversation.messages, full_response=task.result)

    async def run_pipeline(
        self,
        steps: list[PipelineStep],
        base_context: str = "",
        cancel: asyncio.Event | None = None,
        max_turns: int | None = None,
        on_progress: PipelineProgress | None = None,
    ) -> list[SubAgentResult]:
        """Run steps one after another.

        Each step after the first sees a digest of the earlier completed
        steps. A set cancellation signal stops the next step from launching;
        failed steps are not retried.

        Args:
            steps: Ordered pipeline steps
            base_context: Project context shared by every step
            cancel: Cancellation signal shared with the in-flight step
            max_turns: Round cap per step
            on_progress: Callback receiving (step index, status line)

        Returns:
            Results for the steps that were launched, in order
        """
        results: list[SubAgentResult] = []

        for index, step in enumerate(steps):
            if cancel is not None and cancel.is_set():
                logger.info(f"Pipeline cancelled before step {index + 1}/{len(steps)}")
                break

            if on_progress is not None:
                on_progress(index, f"Starting task {index + 1}/{len(steps)}...")

            step_progress = None
            if on_progress is not None:
                step_progress = lambda status, i=index: on_progress(i, status)

            result = await self.run_subagent(
                step.agent_id,
                enrich_description(step.description, results),
                base_context=base_context,
                cancel=cancel,
                max_turns=max_turns,
                on_progress=step_progress,
            )
            results.append(result)

        return results

    def format_results(self, results: list[SubAgentResult]) -> str:
        """Human-readable summary of sub-agent results."""
        lines = []
        for r in results:
            task = r.task
            persona = self.personas.get(task.agent_id)
            name = persona.name if persona else task.agent_id
            icon = STATUS_ICONS.get(task.status, DEFAULT_ICON)

            lines.append(f"{icon} [{name}] {task.description[:60]}")
            lines.append(
                f"  Status: {task.status.value} | Duration: {format_duration(task.duration)} | "
                f"Tokens: {task.tokens_used} | Tools: {', '.join(task.tools_used) or 'none'}"
            )
            if task.error:
                lines.append(f"  Error: {task.error}")
            lines.append("")
        return "\n".join(lines)

    def available_agents(self) -> list[AgentInfo]:
        return [AgentInfo(id=p.id, name=p.name, description=p.description) for p in self.personas.list()]
