"""Policy definitions controlling which tools a sub-agent may use."""

from __future__ import annotations

from dataclasses import dataclass, field

from agentloop.schemas import PolicyId, ToolName

READONLY_TOOLS = [
    ToolName.READ.value,
    ToolName.GREP.value,
    ToolName.GLOB.value,
    ToolName.LS.value,
    ToolName.GIT.value,
    ToolName.WEB.value,
    ToolName.FETCH.value,
]

ALL_TOOLS = [tool.value for tool in ToolName]


@dataclass
class Policy:
    """Execution policy definition."""

    policy_id: PolicyId
    description: str
    allowed_tools: list[str]
    file_write_allowed: bool = False
    network_allowed: bool = False
    bash_blocklist: list[str] = field(default_factory=list)


# Patterns denied under every policy that allows bash
DANGEROUS_PATTERNS = [
    r"rm\s+-rf\s+/(\s|$)",
    r"rm\s+-rf\s+~",
    r"\bmkfs\b",
    r"\bshutdown\b",
    r"\breboot\b",
    r":\(\)\s*\{",  # Fork bomb
    r"\bdd\s+.*of=/dev/",
    r">\s*/dev/sd",
]

POLICIES: dict[PolicyId, Policy] = {
    PolicyId.DEFAULT: Policy(
        policy_id=PolicyId.DEFAULT,
        description="All tools, destructive shell patterns blocked",
        allowed_tools=ALL_TOOLS,
        file_write_allowed=True,
        network_allowed=True,
        bash_blocklist=DANGEROUS_PATTERNS,
    ),
    PolicyId.READONLY: Policy(
        policy_id=PolicyId.READONLY,
        description="Read-only introspection tools, no shell and no writes",
        allowed_tools=READONLY_TOOLS,
        file_write_allowed=False,
        network_allowed=True,
    ),
    PolicyId.BUILD: Policy(
        policy_id=PolicyId.BUILD,
        description="File tools and shell for builds, no network and no package installs",
        allowed_tools=[
            t for t in ALL_TOOLS
            if t not in (ToolName.WEB.value, ToolName.FETCH.value, ToolName.GH.value)
        ],
        file_write_allowed=True,
        network_allowed=False,
        bash_blocklist=DANGEROUS_PATTERNS + [
            r"npm install",
            r"pip install",
            r"cargo install",
            r"go install",
            r"\bsudo\b",
            r"\bcurl\b",
            r"\bwget\b",
        ],
    ),
}


def get_policy(policy_id: PolicyId | str) -> Policy:
    """Get policy by ID."""
    return POLICIES[PolicyId(policy_id)]


def is_tool_allowed(policy_id: PolicyId | str, tool_name: str) -> bool:
    """Check if a tool is allowed under the given policy."""
    return tool_name in get_policy(policy_id).allowed_tools
