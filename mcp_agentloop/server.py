"""MCP server exposing AgentLoop sub-agents and pipelines."""

from pathlib import Path

from mcp.server.fastmcp import FastMCP

from agentloop.config import load_settings
from agentloop.orchestrator import SubAgentOrchestrator
from agentloop.personas import create_registry
from agentloop.provider import create_provider
from agentloop.schemas import PipelineStep
from agentloop.usage import UsageTracker

mcp = FastMCP("agentloop")

_orchestrator: SubAgentOrchestrator | None = None


def get_orchestrator() -> SubAgentOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        settings = load_settings()
        _orchestrator = SubAgentOrchestrator(
            provider=create_provider(settings.base_url, settings.api_key),
            personas=create_registry(settings.agents_file),
            settings=settings,
            usage=UsageTracker(),
            cwd=Path.cwd(),
        )
    return _orchestrator


@mcp.tool()
async def run_subagent(agent_id: str, task: str, context: str = "", max_turns: int = 5) -> dict:
    """Run a specialist sub-agent (code, debug, review, refactor, architect, test) on a task.

    The sub-agent reads, edits and runs commands in the server's working
    directory and returns its final answer with the task record.
    """
    result = await get_orchestrator().run_subagent(
        agent_id,
        task,
        base_context=context,
        max_turns=max_turns,
    )
    return {"task": result.task.model_dump(mode="json"), "full_response": result.full_response}


@mcp.tool()
async def run_pipeline(steps: list[dict], context: str = "", max_turns: int = 5) -> dict:
    """Run sub-agents sequentially; each step sees earlier completed results.

    Args:
        steps: List of {"agent_id": ..., "description": ...}
        context: Project context shared by every step
        max_turns: Round cap per step

    Returns:
        Task records and a readable summary
    """
    orchestrator = get_orchestrator()
    results = await orchestrator.run_pipeline(
        [PipelineStep.model_validate(step) for step in steps],
        base_context=context,
        max_turns=max_turns,
    )
    return {
        "tasks": [r.task.model_dump(mode="json") for r in results],
        "summary": orchestrator.format_results(results),
    }


@mcp.tool()
async def list_agents() -> list[dict]:
    """List the available sub-agent personas."""
    return [agent.model_dump() for agent in get_orchestrator().available_agents()]


if __name__ == "__main__":
    mcp.run()
