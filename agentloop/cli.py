"""CLI for AgentLoop - run tool-using sub-agents from the terminal."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path

import click

from agentloop import __version__
from agentloop.config import Settings, load_settings
from agentloop.errors import PersonaError
from agentloop.executor import create_executor
from agentloop.extractor import parse_tool_call
from agentloop.orchestrator import SubAgentOrchestrator
from agentloop.personas import create_registry
from agentloop.provider import create_provider
from agentloop.schemas import PipelineStep, Persona, PolicyId
from agentloop.usage import UsageTracker


def _build_orchestrator(settings: Settings, cwd: Path) -> SubAgentOrchestrator:
    return SubAgentOrchestrator(
        provider=create_provider(settings.base_url, settings.api_key),
        personas=create_registry(settings.agents_file),
        settings=settings,
        usage=UsageTracker(),
        cwd=cwd,
    )


def _read_context(context_file: str | None) -> str:
    if not context_file:
        return ""
    return Path(context_file).read_text(encoding="utf-8")


@click.group()
@click.version_option(version=__version__, prog_name="agentloop")
@click.option("--model", "-m", default=None, help="Model name (overrides AGENTLOOP_MODEL)")
@click.option("--base-url", default=None, help="OpenAI-compatible API root (overrides AGENTLOOP_BASE_URL)")
@click.option(
    "--policy",
    type=click.Choice([p.value for p in PolicyId]),
    default=None,
    help="Tool policy for sub-agents",
)
@click.option(
    "--dir", "-d",
    "directory",
    default=".",
    type=click.Path(exists=True, file_okay=False, dir_okay=True, resolve_path=True),
    help="Working directory for tools (defaults to current directory)",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def main(
    ctx: click.Context,
    model: str | None,
    base_url: str | None,
    policy: str | None,
    directory: str,
    verbose: bool,
) -> None:
    """AgentLoop - tool-using LLM sub-agents against your local machine.

    A model streams its answer, embeds <tool:NAME> blocks, and the loop runs
    those tools locally and feeds the results back until the task is done.
    """
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        )
    ctx.ensure_object(dict)
    ctx.obj["settings"] = load_settings().with_overrides(
        model=model,
        base_url=base_url,
        policy_id=policy,
    )
    ctx.obj["cwd"] = Path(directory)


@main.command()
@click.argument("agent_id")
@click.argument("task")
@click.option("--max-turns", "-t", default=None, type=click.IntRange(1, 50), help="Maximum model rounds")
@click.option(
    "--context-file", "-c",
    default=None,
    type=click.Path(exists=True, dir_okay=False),
    help="File with project context for the system prompt",
)
@click.option("--raw", is_flag=True, help="Output raw JSON instead of formatted text")
@click.pass_context
def run(ctx: click.Context, agent_id: str, task: str, max_turns: int | None, context_file: str | None, raw: bool) -> None:
    """Run one sub-agent task.

    \b
    Example:
        agentloop run debug "the tests in tests/test_api.py fail"
        agentloop run review "review src/auth.py" --max-turns 3
    """
    settings = ctx.obj["settings"]
    orchestrator = _build_orchestrator(settings, ctx.obj["cwd"])

    result = asyncio.run(
        orchestrator.run_subagent(
            agent_id,
            task,
            base_context=_read_context(context_file),
            max_turns=max_turns,
            on_progress=lambda status: click.echo(status, err=True),
        )
    )

    if raw:
        click.echo(json.dumps(result.model_dump(mode="json"), indent=2))
    else:
        click.echo(result.full_response or "(no response)")
        click.echo()
        click.echo(orchestrator.format_results([result]))

    if result.task.status.value != "completed":
        sys.exit(1)


def _parse_step(value: str) -> PipelineStep:
    agent_id, sep, description = value.partition("=")
    if not sep or not agent_id.strip() or not description.strip():
        raise click.BadParameter(f"expected AGENT=TASK, got {value!r}")
    return PipelineStep(agent_id=agent_id.strip(), description=description.strip())


@main.command()
@click.option("--step", "-s", "steps", multiple=True, required=True, help="Pipeline step as AGENT=TASK (repeatable)")
@click.option("--max-turns", "-t", default=None, type=click.IntRange(1, 50), help="Maximum model rounds per step")
@click.option(
    "--context-file", "-c",
    default=None,
    type=click.Path(exists=True, dir_okay=False),
    help="File with project context for the system prompt",
)
@click.pass_context
def pipeline(ctx: click.Context, steps: tuple[str, ...], max_turns: int | None, context_file: str | None) -> None:
    """Run several sub-agents one after another.

    Each step sees the results of the earlier completed steps.

    \b
    Example:
        agentloop pipeline -s architect="plan a cache layer" -s code="implement the plan"
    """
    parsed = [_parse_step(s) for s in steps]
    settings = ctx.obj["settings"]
    orchestrator = _build_orchestrator(settings, ctx.obj["cwd"])

    results = asyncio.run(
        orchestrator.run_pipeline(
            parsed,
            base_context=_read_context(context_file),
            max_turns=max_turns,
            on_progress=lambda index, status: click.echo(f"[{index + 1}/{len(parsed)}] {status}", err=True),
        )
    )

    click.echo(orchestrator.format_results(results))
    click.echo(orchestrator.usage.format_display())


@main.command()
@click.pass_context
def agents(ctx: click.Context) -> None:
    """List available agent personas."""
    registry = create_registry(ctx.obj["settings"].agents_file)
    for persona in registry.list():
        marker = "" if persona.builtin else " (custom)"
        click.echo(f"  {persona.id:<10} {persona.name} - {persona.description}{marker}")


@main.command("agent-create")
@click.argument("agent_id")
@click.option("--name", "-n", required=True, help="Display name")
@click.option("--prompt", "-p", required=True, help="System prompt for the persona")
@click.option("--description", default="", help="One-line description")
@click.pass_context
def agent_create(ctx: click.Context, agent_id: str, name: str, prompt: str, description: str) -> None:
    """Create a custom agent persona.

    \b
    Example:
        agentloop agent-create docs --name "Docs Agent" --prompt "You write documentation."
    """
    agents_file = ctx.obj["settings"].agents_file
    registry = create_registry(agents_file)
    try:
        registry.add(Persona(id=agent_id, name=name, description=description, system_prompt=prompt))
    except PersonaError as e:
        raise click.ClickException(str(e))
    registry.save_custom(agents_file)
    click.echo(f"Created agent: {agent_id}")


@main.command("agent-delete")
@click.argument("agent_id")
@click.confirmation_option(prompt="Are you sure you want to delete this agent?")
@click.pass_context
def agent_delete(ctx: click.Context, agent_id: str) -> None:
    """Delete a custom agent persona."""
    agents_file = ctx.obj["settings"].agents_file
    registry = create_registry(agents_file)
    try:
        registry.remove(agent_id)
    except PersonaError as e:
        raise click.ClickException(str(e))
    registry.save_custom(agents_file)
    click.echo(f"Deleted agent: {agent_id}")


@main.command()
@click.argument("name")
@click.argument("arg", required=False, default="")
@click.pass_context
def tool(ctx: click.Context, name: str, arg: str) -> None:
    """Run a single tool directly, as a model would.

    ARG is the block body; pass "-" to read it from stdin (needed for
    multi-line write and edit bodies).

    \b
    Example:
        agentloop tool read src/main.py
        agentloop tool grep "def main"
        printf 'notes.txt\\nhello\\n' | agentloop tool write -
    """
    body = sys.stdin.read() if arg == "-" else arg
    executor = create_executor(ctx.obj["cwd"], ctx.obj["settings"])
    result = asyncio.run(executor.execute(parse_tool_call(name, body)))

    click.echo(f"[{'SUCCESS' if result.success else 'FAILED'}] {result.result}")
    if not result.success:
        sys.exit(1)


@main.command()
@click.option("--port", default=8000, help="Port to run the broker on")
@click.option("--host", default="127.0.0.1", help="Host to bind to")
@click.option("--reload", is_flag=True, help="Enable auto-reload for development")
def serve(port: int, host: str, reload: bool) -> None:
    """Start the AgentLoop HTTP broker server."""
    import uvicorn

    click.echo(f"Starting AgentLoop broker on {host}:{port}")
    uvicorn.run(
        "agentloop.broker:app",
        host=host,
        port=port,
        reload=reload,
    )


@main.command()
def mcp() -> None:
    """Run the MCP server exposing sub-agents as tools.

    \b
    Configure in .mcp.json:
        {
            "mcpServers": {
                "agentloop": {
                    "command": "agentloop",
                    "args": ["mcp"]
                }
            }
        }
    """
    from mcp_agentloop.server import mcp as mcp_server
    mcp_server.run()


if __name__ == "__main__":
    main()
