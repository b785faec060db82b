"""Pydantic schemas for AgentLoop tasks, tool envelopes and stream units."""

from __future__ import annotations

import time
import uuid
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field

from agentloop.errors import InvalidTransitionError


class ToolName(str, Enum):
    """Built-in tools."""

    READ = "read"
    WRITE = "write"
    EDIT = "edit"
    DELETE = "delete"
    BASH = "bash"
    GREP = "grep"
    GLOB = "glob"
    LS = "ls"
    GIT = "git"
    WEB = "web"
    FETCH = "fetch"
    GH = "gh"


class PolicyId(str, Enum):
    """Available execution policies."""

    DEFAULT = "default"
    READONLY = "readonly"
    BUILD = "build"


class Role(str, Enum):
    """Conversation message roles."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class TaskStatus(str, Enum):
    """Sub-agent task status."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATUSES


_TERMINAL_STATUSES = {TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED}

# Allowed forward moves
_TRANSITIONS: dict[TaskStatus, set[TaskStatus]] = {
    TaskStatus.PENDING: {TaskStatus.RUNNING, TaskStatus.FAILED, TaskStatus.CANCELLED},
    TaskStatus.RUNNING: _TERMINAL_STATUSES,
    TaskStatus.COMPLETED: set(),
    TaskStatus.FAILED: set(),
    TaskStatus.CANCELLED: set(),
}


class StreamUnitType(str, Enum):
    """Kinds of units produced by a streaming provider."""

    REASONING = "reasoning"
    CONTENT = "content"
    TOOL_CALL = "tool_call"
    USAGE = "usage"


# --- Conversation ---


class Message(BaseModel):
    """A single role-tagged conversation message."""

    role: Role
    content: str


class ConversationState(BaseModel):
    """Append-only message sequence for one task."""

    history: list[Message] = Field(default_factory=list)

    def append(self, role: Role, content: str) -> None:
        """Append a message to the end of the conversation."""
        self.history.append(Message(role=role, content=content))

    @property
    def messages(self) -> list[Message]:
        """Copy of the messages, safe to hand to a provider."""
        return list(self.history)

    def __len__(self) -> int:
        return len(self.history)


# --- Streaming ---


class Usage(BaseModel):
    """Token counts reported by the provider."""

    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0


class StreamUnit(BaseModel):
    """One unit of streamed model output."""

    type: StreamUnitType
    text: str = ""
    usage: Usage | None = None
    tool_name: str | None = None
    tool_args: dict[str, str] | None = None


class GenerationConfig(BaseModel):
    """Generation parameters sent to the provider."""

    model: str
    max_tokens: int = Field(default=8192, ge=1)
    temperature: float = Field(default=0.2, ge=0.0, le=2.0)


# --- Tool Envelopes ---


class ToolCall(BaseModel):
    """A structured tool invocation extracted from one tool block."""

    name: str
    args: dict[str, str | None] = Field(default_factory=dict)
    raw: str = ""
    parse_error: str | None = None


class FileDiff(BaseModel):
    """Structured diff for an edit."""

    file_path: str
    old_str: str
    new_str: str


class ToolResult(BaseModel):
    """Uniform result envelope. Failure is encoded in ``success``."""

    tool: str
    success: bool
    result: str
    diff: FileDiff | None = None
    file_path: str | None = None
    command: str | None = None
    lines_changed: int | None = None


class BashResult(BaseModel):
    """Raw outcome of one shell command."""

    stdout: str
    stderr: str
    exit_code: int
    was_sandboxed: bool = False
    command_executed: str
    timed_out: bool = False
    cancelled: bool = False
    output_truncated: bool = False


# --- Tasks ---


def new_task_id() -> str:
    """Generate a sub-agent task id."""
    return f"sub-{int(time.time() * 1000)}-{uuid.uuid4().hex[:4]}"


class Task(BaseModel):
    """A sub-agent task record, mutated only by its own turn controller."""

    id: str = Field(default_factory=new_task_id)
    agent_id: str
    description: str
    status: TaskStatus = TaskStatus.PENDING
    result: str = ""
    error: str | None = None
    tools_used: list[str] = Field(default_factory=list)
    tokens_used: int = 0
    duration: float = 0.0
    start_time: float = Field(default_factory=time.time)
    turns: int = 0

    def transition(self, status: TaskStatus) -> None:
        """Move the task forward, rejecting backward or repeated moves."""
        if status not in _TRANSITIONS[self.status]:
            raise InvalidTransitionError(
                f"Task {self.id}: cannot move from {self.status.value} to {status.value}"
            )
        self.status = status

    def record_tool(self, tool_name: str) -> None:
        """Add a tool name, keeping first-seen order without duplicates."""
        if tool_name not in self.tools_used:
            self.tools_used.append(tool_name)


class PipelineStep(BaseModel):
    """One entry of a sub-agent pipeline."""

    agent_id: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)


class SubAgentResult(BaseModel):
    """Finished task plus the conversation it ran on."""

    task: Task
    messages: list[Message]
    full_response: str


class Persona(BaseModel):
    """A named agent role."""

    id: str
    name: str
    description: str = ""
    system_prompt: str
    builtin: bool = False


# --- Usage / Cost ---


class TokenUsage(BaseModel):
    """Token and cost estimate for one completed round."""

    input_tokens: int
    output_tokens: int
    model: str
    cost: float
    timestamp: str


class ModelCosts(BaseModel):
    """Per-model accumulated usage."""

    input: int = 0
    output: int = 0
    cost: float = 0.0
    count: int = 0


class SessionCosts(BaseModel):
    """Accumulated usage across rounds."""

    total_input: int = 0
    total_output: int = 0
    total_cost: float = 0.0
    messages: int = 0
    by_model: dict[str, ModelCosts] = Field(default_factory=dict)


# --- HTTP Request/Response Schemas ---


class SubAgentRequest(BaseModel):
    """Request to run one sub-agent."""

    agent_id: str = Field(..., pattern=r"^[a-zA-Z0-9_-]+$")
    description: str = Field(..., min_length=1)
    base_context: str = ""
    max_turns: int = Field(default=5, ge=1, le=50)


class PipelineRequest(BaseModel):
    """Request to run a sub-agent pipeline."""

    steps: list[PipelineStep] = Field(..., min_length=1)
    base_context: str = ""
    max_turns: int = Field(default=5, ge=1, le=50)


class TaskResponse(BaseModel):
    """Task summary returned over HTTP."""

    task: Task
    full_response: str


class PipelineResponse(BaseModel):
    """Pipeline summary returned over HTTP."""

    tasks: list[TaskResponse]
    summary: str


class AgentInfo(BaseModel):
    """Available agent listing entry."""

    id: str
    name: str
    description: str


class ErrorResponse(BaseModel):
    """Error response for failed requests."""

    detail: str
    error_code: str | None = None


class HealthResponse(BaseModel):
    """Health check response."""

    broker: Literal["healthy", "unhealthy"] = "healthy"
    provider: Literal["healthy", "unhealthy"] = "healthy"
    model: str | None = None
    tools: list[str] = Field(default_factory=list)
