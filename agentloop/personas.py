"""Persona registry: built-in specialist personas plus user-defined ones.

Custom personas live in a JSON file keyed by id::

    {"docs": {"name": "Docs Agent", "description": "...", "systemPrompt": "..."}}

Built-in ids cannot be overwritten or removed.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from agentloop.errors import PersonaError
from agentloop.schemas import Persona

logger = logging.getLogger(__name__)

PROJECT_CONTEXT_HEADER = "--- Project context ---"

BUILTIN_PERSONAS: dict[str, Persona] = {
    "code": Persona(
        id="code",
        name="Code Agent",
        description="Writes new code, implements features, creates files",
        builtin=True,
        system_prompt="""You are the CODE AGENT. Your job is to write code and implement features.

Rules:
- ALWAYS read existing files before changing them
- Write complete, working code
- Follow the existing project architecture and patterns
- Add tests where it makes sense
- Use <tool:write> for new files, <tool:edit> for changes
- Briefly explain what you are doing, then do it""",
    ),
    "debug": Persona(
        id="debug",
        name="Debug Agent",
        description="Finds and fixes bugs, analyzes errors",
        builtin=True,
        system_prompt="""You are the DEBUG AGENT. Your job is to find and fix bugs.

Approach:
1. Read the relevant files with <tool:read>
2. Search for patterns with <tool:grep>
3. Run tests with <tool:bash>
4. Identify the root cause
5. Fix the bug with <tool:edit>
6. Verify the fix

Be thorough and systematic. Explain the root cause.""",
    ),
    "review": Persona(
        id="review",
        name="Review Agent",
        description="Code review, quality analysis, security check",
        builtin=True,
        system_prompt="""You are the REVIEW AGENT. Your job is code review.

Analyze the code for:
- Correctness and logic errors
- Security (OWASP Top 10, injection, XSS)
- Performance (N+1 queries, memory leaks, needless work)
- Maintainability (DRY, SOLID, clean code)
- Language best practices
- Error handling

Use <tool:read> to read files and <tool:grep> to search for patterns.
Give concrete feedback with line references.""",
    ),
    "refactor": Persona(
        id="refactor",
        name="Refactor Agent",
        description="Refactoring, optimization, cleanup",
        builtin=True,
        system_prompt="""You are the REFACTOR AGENT. Your job is refactoring.

Rules:
- Change only what is needed, no over-engineering
- Preserve existing behavior
- Improve readability, performance or structure
- Use <tool:read> to understand, <tool:edit> to change
- Explain the reason for every change
- Run the tests afterwards with <tool:bash>""",
    ),
    "architect": Persona(
        id="architect",
        name="Architect Agent",
        description="System design, architecture planning, tech-stack decisions",
        builtin=True,
        system_prompt="""You are the ARCHITECT AGENT. Your job is architecture and design.

Analyze:
- Project structure with <tool:ls> and <tool:glob>
- Dependencies with <tool:read> (pyproject.toml, package.json)
- Code patterns with <tool:grep>

Then:
- Produce a clear architecture plan
- Describe the trade-offs
- Give concrete recommendations with reasoning
- Draw ASCII diagrams where helpful""",
    ),
    "test": Persona(
        id="test",
        name="Test Agent",
        description="Writes tests, improves coverage, TDD",
        builtin=True,
        system_prompt="""You are the TEST AGENT. Your job is testing.

Approach:
1. Read the code under test with <tool:read>
2. Identify test cases (happy path, edge cases, error cases)
3. Write tests with <tool:write>
4. Run the tests with <tool:bash>
5. Improve coverage

Use the project's existing test framework.""",
    ),
}


class PersonaRegistry:
    """Lookup table of personas by id."""

    def __init__(self, custom: dict[str, Persona] | None = None):
        self._personas: dict[str, Persona] = dict(BUILTIN_PERSONAS)
        for persona in (custom or {}).values():
            self.add(persona)

    def __contains__(self, agent_id: str) -> bool:
        return agent_id in self._personas

    def get(self, agent_id: str) -> Persona | None:
        return self._personas.get(agent_id)

    def list(self) -> list[Persona]:
        return list(self._personas.values())

    def is_builtin(self, agent_id: str) -> bool:
        return agent_id in BUILTIN_PERSONAS

    def build_prompt(self, agent_id: str, base_context: str) -> str:
        """Combine a persona's prompt with the project context.

        Unknown ids get the base context unchanged.
        """
        persona = self.get(agent_id)
        if persona is None:
            return base_context
        return f"{persona.system_prompt}\n\n{PROJECT_CONTEXT_HEADER}\n{base_context}"

    def add(self, persona: Persona) -> None:
        """Register a custom persona.

        Raises:
            PersonaError: If the id is built-in or already registered
        """
        if self.is_builtin(persona.id):
            raise PersonaError(f'"{persona.id}" is a built-in agent and cannot be overwritten.')
        if persona.id in self._personas:
            raise PersonaError(f'Agent "{persona.id}" already exists.')
        self._personas[persona.id] = persona.model_copy(update={"builtin": False})

    def remove(self, agent_id: str) -> None:
        if self.is_builtin(agent_id):
            raise PersonaError(f'"{agent_id}" is a built-in agent and cannot be removed.')
        if agent_id not in self._personas:
            raise PersonaError(f'Agent "{agent_id}" not found.')
        del self._personas[agent_id]

    def custom(self) -> dict[str, Persona]:
        return {pid: p for pid, p in self._personas.items() if not p.builtin}

    def load_custom(self, path: str | Path) -> int:
        """Load custom personas from a JSON agents file.

        Entries without a name or system prompt, and entries shadowing built-in
        ids, are skipped with a warning. A missing file loads nothing.

        Args:
            path: Agents file

        Returns:
            Number of personas loaded
        """
        path = Path(path).expanduser()
        if not path.exists():
            return 0

        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Failed to read agents file {path}: {e}")
            return 0
        if not isinstance(data, dict):
            logger.warning(f"Agents file {path} must contain a JSON object")
            return 0

        loaded = 0
        for agent_id, entry in data.items():
            if not isinstance(entry, dict):
                continue
            name = entry.get("name")
            prompt = entry.get("systemPrompt") or entry.get("system_prompt")
            if not isinstance(name, str) or not isinstance(prompt, str):
                logger.warning(f"Skipping custom agent {agent_id}: name and systemPrompt are required")
                continue
            persona = Persona(
                id=agent_id,
                name=name,
                description=entry.get("description") or "",
                system_prompt=prompt,
            )
            try:
                self.add(persona)
            except PersonaError as e:
                logger.warning(f"Skipping custom agent {agent_id}: {e}")
                continue
            loaded += 1

        logger.info(f"Loaded {loaded} custom agents from {path}")
        return loaded

    def save_custom(self, path: str | Path) -> None:
        """Write all custom personas to a JSON agents file."""
        path = Path(path).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            pid: {"name": p.name, "description": p.description, "systemPrompt": p.system_prompt}
            for pid, p in self.custom().items()
        }
        path.write_text(json.dumps(payload, indent=2), encoding="utf-8")


def create_registry(agents_file: str | Path | None = None) -> PersonaRegistry:
    """Build a registry with the built-ins plus any personas in agents_file."""
    registry = PersonaRegistry()
    if agents_file:
        registry.load_custom(agents_file)
    return registry
