"""Pytest configuration and fixtures for AgentLoop tests."""

import asyncio
from pathlib import Path

import pytest

from agentloop.config import Settings
from agentloop.executor import create_executor
from agentloop.schemas import StreamUnit, StreamUnitType, Usage


class ScriptedProvider:
    """Provider replaying one scripted reply per round.

    Each reply is either a string (streamed as two content units), a list of
    StreamUnits, or an exception instance raised when the round starts.
    Received message lists are kept in ``calls`` for inspection.
    """

    def __init__(self, replies, cancel_after_round=None, cancel_event=None):
        self.replies = list(replies)
        self.calls = []
        self.cancel_after_round = cancel_after_round
        self.cancel_event = cancel_event

    async def stream(self, messages, config, cancel=None):
        self.calls.append(list(messages))
        round_number = len(self.calls)
        reply = self.replies.pop(0) if self.replies else "Done."

        if isinstance(reply, Exception):
            raise reply

        if isinstance(reply, str):
            half = len(reply) // 2
            units = [
                StreamUnit(type=StreamUnitType.CONTENT, text=reply[:half]),
                StreamUnit(type=StreamUnitType.CONTENT, text=reply[half:]),
                StreamUnit(type=StreamUnitType.USAGE, usage=Usage(input_tokens=10, output_tokens=5, total_tokens=15)),
            ]
        else:
            units = reply

        for unit in units:
            await asyncio.sleep(0)
            yield unit

        if self.cancel_after_round == round_number and self.cancel_event is not None:
            self.cancel_event.set()


@pytest.fixture
def tmp_workspace(tmp_path: Path) -> Path:
    """Create a temporary workspace directory for tests."""
    workspace = tmp_path / "workspace"
    workspace.mkdir()
    return workspace


@pytest.fixture
def sample_python_files(tmp_workspace: Path) -> Path:
    """Create a small Python project in the workspace."""
    (tmp_workspace / "main.py").write_text(
        '''"""Main module."""

def main():
    """Entry point."""
    print("Hello, AgentLoop!")

if __name__ == "__main__":
    main()
'''
    )

    utils_dir = tmp_workspace / "utils"
    utils_dir.mkdir()
    (utils_dir / "__init__.py").write_text('"""Utils package."""\n')
    (utils_dir / "helpers.py").write_text(
        '''"""Helper functions."""

def add(a: int, b: int) -> int:
    """Add two numbers."""
    return a + b

def multiply(a: int, b: int) -> int:
    """Multiply two numbers."""
    return a * b
'''
    )

    return tmp_workspace


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings isolated from the user's environment and agents file."""
    return Settings(
        model="test-model",
        base_url="http://model.test/v1",
        bash_timeout=10,
        agents_file=tmp_path / "agents.json",
    )


@pytest.fixture
def executor(sample_python_files: Path, settings: Settings):
    """Executor with the default handler table rooted at the sample project."""
    return create_executor(sample_python_files, settings)


@pytest.fixture
def scripted_provider():
    """Factory for ScriptedProvider instances."""
    return ScriptedProvider
