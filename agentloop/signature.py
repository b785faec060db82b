"""Tool-call signatures for loop-stagnation detection.

A round whose calls match the previous round's calls exactly, in order, is a
loop: the model is repeating itself without progress.
"""

from __future__ import annotations

import re

from agentloop.schemas import ToolCall, ToolName

_WHITESPACE_RE = re.compile(r"\s+")

CallSignature = tuple[str, str]
RoundSignature = tuple[CallSignature, ...]

# Argument key identifying what a call acts on
PRIMARY_ARG: dict[str, str] = {
    ToolName.READ.value: "path",
    ToolName.WRITE.value: "path",
    ToolName.EDIT.value: "path",
    ToolName.DELETE.value: "path",
    ToolName.LS.value: "path",
    ToolName.BASH.value: "command",
    ToolName.GH.value: "args",
    ToolName.GLOB.value: "pattern",
    ToolName.WEB.value: "query",
    ToolName.FETCH.value: "url",
    ToolName.GIT.value: "args",
}


def _normalize(value: str | None) -> str:
    return _WHITESPACE_RE.sub(" ", value or "").strip()


def call_signature(call: ToolCall) -> CallSignature:
    """Return (tool name, normalized primary argument) for one call."""
    if call.name == ToolName.GREP.value:
        primary = f"{call.args.get('pattern') or ''} {call.args.get('glob') or ''}"
    elif call.name in PRIMARY_ARG:
        primary = call.args.get(PRIMARY_ARG[call.name])
    else:
        # Unknown tools: every argument value, in key order
        primary = " ".join(str(call.args[key] or "") for key in sorted(call.args))
    return call.name, _normalize(primary)


def round_signature(calls: list[ToolCall]) -> RoundSignature:
    """Return the ordered signature of a whole round."""
    return tuple(call_signature(call) for call in calls)
