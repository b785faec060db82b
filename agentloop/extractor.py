"""Tool-call extraction from model text.

Model output embeds tool invocations as ``<tool:NAME>BODY</tool>`` blocks (the
closing tag may repeat the name). This module is the only place that knows the
syntax: it turns text into ``ToolCall`` objects plus the visible text with
every matched block removed. Swapping in provider-native function calls only
means producing ``ToolCall`` objects some other way.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

from agentloop.schemas import StreamUnit, StreamUnitType, ToolCall, ToolName

logger = logging.getLogger(__name__)

# A body never crosses another opener, so one unclosed block cannot swallow the next
TOOL_BLOCK_RE = re.compile(
    r"<tool:\s*([A-Za-z_][\w-]*)\s*>((?:(?!<tool:).)*?)</tool(?::\s*[\w-]+)?\s*>",
    re.DOTALL,
)
TOOL_OPENER_RE = re.compile(r"<tool:\s*([A-Za-z_][\w-]*)\s*>")

# Recovery patterns for openers left without a closing tag
UNCLOSED_WRITE_RE = re.compile(r"<tool:\s*write\s*>([^\n<]+)\n```[\w+-]*\n(.*?)```", re.DOTALL)
UNCLOSED_BASH_RE = re.compile(r"<tool:\s*bash\s*>([^\n<]+)(?:\n|$)")

BR_RE = re.compile(r"<br\s*/?>", re.IGNORECASE)

EDIT_OLD_MARKER = "<<<"
EDIT_NEW_MARKER = ">>>"

# Single-argument tools and the argument key their body maps to
SINGLE_ARG_TOOLS: dict[str, str] = {
    ToolName.READ.value: "path",
    ToolName.DELETE.value: "path",
    ToolName.LS.value: "path",
    ToolName.GIT.value: "args",
    ToolName.GLOB.value: "pattern",
    ToolName.BASH.value: "command",
    ToolName.WEB.value: "query",
    ToolName.FETCH.value: "url",
    ToolName.GH.value: "args",
}


@dataclass
class Extraction:
    """Result of scanning one round of model text."""

    calls: list[ToolCall] = field(default_factory=list)
    visible_text: str = ""

    @property
    def has_calls(self) -> bool:
        return bool(self.calls)


def _split_first_line(body: str) -> tuple[str, str | None]:
    """Split body into (first line, rest); rest is None when there is no newline."""
    body = body.lstrip("\r\n")
    if "\n" not in body:
        return body.strip(), None
    first, rest = body.split("\n", 1)
    return first.strip(), rest


def _parse_write(body: str) -> tuple[dict[str, str | None], str | None]:
    path, content = _split_first_line(body)
    if not path:
        return {}, "Malformed write block: expected file path on the first line"
    if content is None:
        return {"path": path}, "Malformed write block: expected file path, newline, then the complete file content"
    return {"path": path, "content": content}, None


def _parse_edit(body: str) -> tuple[dict[str, str | None], str | None]:
    usage = f"Malformed edit block: expected path\\n{EDIT_OLD_MARKER}\\nold\\n{EDIT_NEW_MARKER}\\nnew"
    path, rest = _split_first_line(body)
    if not path or rest is None:
        return {"path": path or None}, usage

    lines = rest.split("\n")
    try:
        old_idx = next(i for i, line in enumerate(lines) if line.strip() == EDIT_OLD_MARKER)
        new_idx = next(
            i for i, line in enumerate(lines) if i > old_idx and line.strip() == EDIT_NEW_MARKER
        )
    except StopIteration:
        return {"path": path}, usage

    old = "\n".join(lines[old_idx + 1:new_idx])
    new = "\n".join(lines[new_idx + 1:])
    # The closing tag usually sits on its own line
    if new.endswith("\n"):
        new = new[:-1]
    return {"path": path, "old": old, "new": new}, None


def _parse_grep(body: str) -> tuple[dict[str, str | None], str | None]:
    lines = [line.strip() for line in body.strip().split("\n")]
    pattern = lines[0] if lines else ""
    file_glob = lines[1] if len(lines) > 1 and lines[1] else None
    if not pattern:
        return {}, "Malformed grep block: expected a search pattern"
    return {"pattern": pattern, "glob": file_glob}, None


def parse_tool_call(name: str, body: str, raw: str = "") -> ToolCall:
    """Build a ToolCall from a tool name and its block body.

    Unknown names are passed through with the body as ``input``; the executor
    reports them as unknown tools.
    """
    if name == ToolName.WRITE.value:
        args, error = _parse_write(body)
    elif name == ToolName.EDIT.value:
        args, error = _parse_edit(body)
    elif name == ToolName.GREP.value:
        args, error = _parse_grep(body)
    elif name in SINGLE_ARG_TOOLS:
        args, error = {SINGLE_ARG_TOOLS[name]: body.strip()}, None
    else:
        args, error = {"input": body.strip()}, None

    if error:
        logger.debug(f"Malformed {name} block: {error}")
    return ToolCall(name=name, args=args, raw=raw, parse_error=error)


def _collapse_blank_runs(text: str) -> str:
    return re.sub(r"\n{3,}", "\n\n", text).strip()


def extract_tool_calls(text: str) -> Extraction:
    """Scan text for tool blocks in document order.

    Closed blocks are parsed first; openers left without a closing tag are then
    recovered (write with a fenced body, bash to end of line) or turned into
    calls carrying a parse error. Every block is stripped from the visible text.

    Args:
        text: Full model text accumulated in one round

    Returns:
        Extraction with one ToolCall per block and the text minus the blocks
    """
    text = BR_RE.sub("\n", text or "")
    spans: list[tuple[int, int, ToolCall]] = [
        (m.start(), m.end(), parse_tool_call(m.group(1), m.group(2), raw=m.group(0)))
        for m in TOOL_BLOCK_RE.finditer(text)
    ]
    spans.extend(_unclosed_spans(text, spans))
    spans.sort(key=lambda span: span[0])

    calls: list[ToolCall] = []
    pieces: list[str] = []
    cursor = 0
    for start, end, call in spans:
        calls.append(call)
        pieces.append(text[cursor:start])
        cursor = end
    pieces.append(text[cursor:])

    return Extraction(calls=calls, visible_text=_collapse_blank_runs("".join(pieces)))


def _unclosed_spans(text: str, taken: list[tuple[int, int, ToolCall]]) -> list[tuple[int, int, ToolCall]]:
    """Handle openers outside the closed blocks."""
    spans: list[tuple[int, int, ToolCall]] = []
    openers = list(TOOL_OPENER_RE.finditer(text))

    for index, opener in enumerate(openers):
        if any(start <= opener.start() < end for start, end, _ in taken + spans):
            continue
        name = opener.group(1)
        end = openers[index + 1].start() if index + 1 < len(openers) else len(text)

        if name == ToolName.WRITE.value:
            match = UNCLOSED_WRITE_RE.match(text, opener.start(), end)
            if match and match.group(1).strip():
                call = ToolCall(
                    name=name,
                    args={"path": match.group(1).strip(), "content": match.group(2)},
                    raw=match.group(0),
                )
                spans.append((match.start(), match.end(), call))
                continue
        elif name == ToolName.BASH.value:
            match = UNCLOSED_BASH_RE.match(text, opener.start())
            if match and match.group(1).strip():
                call = ToolCall(name=name, args={"command": match.group(1).strip()}, raw=match.group(0))
                spans.append((match.start(), match.end(), call))
                continue

        call = ToolCall(
            name=name,
            raw=text[opener.start():end],
            parse_error=f"Unclosed {name} block: missing </tool> closing tag",
        )
        spans.append((opener.start(), end, call))

    if spans:
        logger.debug(f"Handled {len(spans)} unclosed tool blocks")
    return spans


def calls_from_units(units: list[StreamUnit]) -> list[ToolCall]:
    """Convert provider-native ``tool_call`` stream units into ToolCalls."""
    calls = []
    for unit in units:
        if unit.type != StreamUnitType.TOOL_CALL or not unit.tool_name:
            continue
        calls.append(ToolCall(name=unit.tool_name, args=dict(unit.tool_args or {}), raw=unit.text))
    return calls
