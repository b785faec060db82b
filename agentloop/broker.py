"""HTTP broker exposing sub-agent runs and pipelines."""

from __future__ import annotations

import logging
from pathlib import Path
from threading import Lock

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from agentloop import __version__
from agentloop.config import load_settings
from agentloop.orchestrator import SubAgentOrchestrator
from agentloop.personas import create_registry
from agentloop.policies import get_policy
from agentloop.provider import create_provider
from agentloop.schemas import (
    AgentInfo,
    ErrorResponse,
    HealthResponse,
    PipelineRequest,
    PipelineResponse,
    SubAgentRequest,
    SubAgentResult,
    TaskResponse,
)
from agentloop.usage import UsageTracker

logger = logging.getLogger(__name__)

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

app = FastAPI(
    title="AgentLoop Broker",
    description="HTTP broker for running tool-using sub-agents",
    version=__version__,
)

_orchestrator: SubAgentOrchestrator | None = None
_orchestrator_lock = Lock()


def get_orchestrator() -> SubAgentOrchestrator:
    """Build the broker's orchestrator on first use from environment settings."""
    global _orchestrator
    with _orchestrator_lock:
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


def _to_response(result: SubAgentResult) -> TaskResponse:
    return TaskResponse(task=result.task, full_response=result.full_response)


@app.post("/subagent", response_model=TaskResponse)
async def run_subagent(request: SubAgentRequest) -> TaskResponse:
    """Run one sub-agent task.

    Args:
        request: SubAgentRequest with persona id and task

    Returns:
        TaskResponse with the finished task
    """
    logger.info(f"Received sub-agent request: agent={request.agent_id}")
    orchestrator = get_orchestrator()

    result = await orchestrator.run_subagent(
        request.agent_id,
        request.description,
        base_context=request.base_context,
        max_turns=request.max_turns,
    )

    logger.info(f"Completed sub-agent task {result.task.id}: status={result.task.status.value}")
    return _to_response(result)


@app.post("/pipeline", response_model=PipelineResponse)
async def run_pipeline(request: PipelineRequest) -> PipelineResponse:
    """Run pipeline steps sequentially."""
    logger.info(f"Received pipeline request with {len(request.steps)} steps")
    orchestrator = get_orchestrator()

    results = await orchestrator.run_pipeline(
        request.steps,
        base_context=request.base_context,
        max_turns=request.max_turns,
    )

    return PipelineResponse(
        tasks=[_to_response(r) for r in results],
        summary=orchestrator.format_results(results),
    )


@app.get("/agents", response_model=list[AgentInfo])
async def list_agents() -> list[AgentInfo]:
    return get_orchestrator().available_agents()


@app.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    """Check broker and model endpoint health."""
    orchestrator = get_orchestrator()
    check = getattr(orchestrator.provider, "check_health", None)
    provider_healthy = await check() if check is not None else True

    return HealthResponse(
        broker="healthy",
        provider="healthy" if provider_healthy else "unhealthy",
        model=orchestrator.settings.model,
        tools=sorted(get_policy(orchestrator.settings.policy_id).allowed_tools),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request, exc: Exception) -> JSONResponse:
    """Handle uncaught exceptions."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            detail=str(exc),
            error_code="INTERNAL_ERROR",
        ).model_dump(),
    )
