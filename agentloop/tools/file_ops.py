"""File tools: read, write, edit and delete.

Mutating tools snapshot the previous file state into a ChangeJournal before
touching the disk, so every change can be undone.
"""

from __future__ import annotations

import logging
from pathlib import Path

from agentloop.changes import ChangeJournal, ChangeType, FileChange, capture_before_state
from agentloop.config import MAX_OUTPUT_CHARS
from agentloop.schemas import FileDiff, ToolResult
from agentloop.tools.common import resolve_path, truncate_output

logger = logging.getLogger(__name__)


def _line_count(text: str) -> int:
    return len(text.split("\n"))


def read_file(
    file_path: str,
    cwd: str | Path,
    max_chars: int = MAX_OUTPUT_CHARS,
) -> ToolResult:
    """Read a file and return its line-numbered content.

    Args:
        file_path: Path relative to cwd, or absolute
        cwd: Working directory
        max_chars: Output cap before the truncation marker

    Returns:
        ToolResult with numbered lines, or a soft failure
    """
    if not file_path:
        return ToolResult(tool="read", success=False, result="No file path given")

    path = resolve_path(file_path, cwd)
    if not path.exists():
        return ToolResult(tool="read", success=False, result=f"File not found: {file_path}")
    if path.is_dir():
        return ToolResult(tool="read", success=False, result=f"Is a directory: {file_path}")

    try:
        content = path.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        logger.warning(f"Cannot read {path}: {e}")
        return ToolResult(tool="read", success=False, result=f"Error: {e}")

    lines = content.split("\n")
    numbered = "\n".join(f"{i:4d} | {line}" for i, line in enumerate(lines, 1))
    return ToolResult(
        tool="read",
        success=True,
        result=truncate_output(numbered, max_chars),
        file_path=file_path,
        lines_changed=len(lines),
    )


def write_file(
    file_path: str,
    content: str,
    cwd: str | Path,
    journal: ChangeJournal,
) -> ToolResult:
    """Create or overwrite a file, creating parent directories as needed."""
    if not file_path:
        return ToolResult(tool="write", success=False, result="No file path given")

    path = resolve_path(file_path, cwd)
    try:
        if path.is_dir():
            return ToolResult(tool="write", success=False, result=f"Is a directory: {file_path}")
        path.parent.mkdir(parents=True, exist_ok=True)

        journal.record(FileChange(
            change_type=ChangeType.WRITE,
            file_path=path,
            previous_content=capture_before_state(path),
            new_content=content,
            description=f"write {file_path}",
        ))

        path.write_text(content, encoding="utf-8")
    except OSError as e:
        logger.error(f"Write failed for {path}: {e}")
        return ToolResult(tool="write", success=False, result=f"Error: {e}")

    line_count = _line_count(content)
    logger.info(f"Wrote {line_count} lines to {path}")
    return ToolResult(
        tool="write",
        success=True,
        result=f"Wrote {line_count} lines to {file_path}",
        file_path=file_path,
        lines_changed=line_count,
    )


def edit_file(
    file_path: str,
    old_str: str,
    new_str: str,
    cwd: str | Path,
    journal: ChangeJournal,
) -> ToolResult:
    """Replace the first verbatim occurrence of old_str with new_str."""
    path = resolve_path(file_path, cwd)
    if not path.is_file():
        return ToolResult(tool="edit", success=False, result=f"File not found: {file_path}")

    try:
        content = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        return ToolResult(tool="edit", success=False, result=f"Error: {e}")

    if not old_str or old_str not in content:
        return ToolResult(
            tool="edit",
            success=False,
            result=f"String not found in {file_path}. No changes made.",
            file_path=file_path,
        )

    updated = content.replace(old_str, new_str, 1)
    try:
        journal.record(FileChange(
            change_type=ChangeType.EDIT,
            file_path=path,
            previous_content=capture_before_state(path),
            new_content=updated,
            description=f"edit {file_path}",
        ))
        path.write_text(updated, encoding="utf-8")
    except OSError as e:
        logger.error(f"Edit failed for {path}: {e}")
        return ToolResult(tool="edit", success=False, result=f"Error: {e}")

    added = _line_count(new_str)
    delta = added - _line_count(old_str)
    delta_str = f"+{delta}" if delta >= 0 else str(delta)
    return ToolResult(
        tool="edit",
        success=True,
        result=f"Updated {file_path} ({delta_str} lines)",
        diff=FileDiff(file_path=file_path, old_str=old_str, new_str=new_str),
        file_path=file_path,
        lines_changed=added,
    )


def delete_file(file_path: str, cwd: str | Path, journal: ChangeJournal) -> ToolResult:
    """Delete a file, keeping its prior content in the journal."""
    path = resolve_path(file_path, cwd)
    if not path.is_file():
        return ToolResult(tool="delete", success=False, result=f"File not found: {file_path}")

    try:
        journal.record(FileChange(
            change_type=ChangeType.DELETE,
            file_path=path,
            previous_content=capture_before_state(path),
            new_content=None,
            description=f"delete {file_path}",
        ))
        path.unlink()
    except OSError as e:
        logger.error(f"Delete failed for {path}: {e}")
        return ToolResult(tool="delete", success=False, result=f"Error: {e}")

    logger.info(f"Deleted {path}")
    return ToolResult(tool="delete", success=True, result=f"Deleted {file_path}", file_path=file_path)
