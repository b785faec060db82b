"""Helpers shared by the tool handlers."""

from __future__ import annotations

from pathlib import Path

from agentloop.config import MAX_OUTPUT_CHARS

# Directories never descended into by search tools
DEFAULT_EXCLUDES = {
    ".git",
    ".venv",
    "venv",
    "node_modules",
    "__pycache__",
    ".tox",
    ".mypy_cache",
    ".pytest_cache",
    "dist",
    "build",
    ".next",
}

# Binary file detection: check for null bytes in first 8KB
BINARY_CHECK_SIZE = 8192


def truncate_output(text: str, max_chars: int = MAX_OUTPUT_CHARS) -> str:
    """Truncate text to max_chars with an explicit omission marker."""
    if len(text) <= max_chars:
        return text
    omitted = len(text) - max_chars
    return text[:max_chars] + f"\n...[truncated, {omitted} chars omitted]"


def resolve_path(file_path: str, cwd: str | Path) -> Path:
    """Resolve a tool path argument against the working directory."""
    return (Path(cwd) / Path(file_path).expanduser()).resolve()


def is_binary(content: bytes) -> bool:
    """Check if content appears to be binary (contains null bytes)."""
    return b"\x00" in content[:BINARY_CHECK_SIZE]


def is_excluded(path: Path, root: Path) -> bool:
    """Check if path lies inside an excluded directory."""
    try:
        parts = path.relative_to(root).parts
    except ValueError:
        parts = path.parts
    return any(part in DEFAULT_EXCLUDES for part in parts)


def format_size(size_bytes: int) -> str:
    """Human-readable file size."""
    if size_bytes < 1024:
        return f"{size_bytes}B"
    if size_bytes < 1024 * 1024:
        return f"{size_bytes / 1024:.1f}KB"
    return f"{size_bytes / (1024 * 1024):.1f}MB"
