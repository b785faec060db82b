"""Read-only introspection tools: grep, glob, ls and git.

Finding nothing is a successful outcome here. Only an operation that could not
run at all (missing directory, not a repository) is reported as a failure.
"""

from __future__ import annotations

import fnmatch
import logging
import os
import re
import subprocess
from pathlib import Path

import pathspec

from agentloop.config import MAX_OUTPUT_CHARS
from agentloop.schemas import ToolResult
from agentloop.tools.common import (
    DEFAULT_EXCLUDES,
    format_size,
    is_binary,
    is_excluded,
    resolve_path,
    truncate_output,
)

logger = logging.getLogger(__name__)

MAX_GREP_HITS = 50
MAX_GLOB_RESULTS = 100
MAX_GREP_FILE_SIZE = 1024 * 1024  # 1MB
GIT_TIMEOUT = 5  # seconds

# Files searched by grep when no glob filter is given
DEFAULT_GREP_GLOBS = [
    "*.py", "*.ts", "*.tsx", "*.js", "*.jsx", "*.go", "*.rs",
    "*.java", "*.css", "*.json", "*.md", "*.toml", "*.yaml", "*.yml",
]


def _load_gitignore(root: Path) -> pathspec.PathSpec | None:
    """Load .gitignore patterns if present."""
    gitignore_path = root / ".gitignore"
    if gitignore_path.exists():
        try:
            patterns = gitignore_path.read_text().splitlines()
            return pathspec.PathSpec.from_lines("gitignore", patterns)
        except Exception as e:
            logger.warning(f"Failed to parse .gitignore: {e}")
    return None


def _is_ignored(path: Path, root: Path, gitignore: pathspec.PathSpec | None) -> bool:
    if is_excluded(path, root):
        return True
    if gitignore is None:
        return False
    try:
        rel = path.relative_to(root).as_posix()
    except ValueError:
        return False
    return gitignore.match_file(rel)


def _walk_files(root: Path, gitignore: pathspec.PathSpec | None):
    """Yield files under root in a stable order, pruning excluded directories."""
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if d not in DEFAULT_EXCLUDES)
        for name in sorted(filenames):
            path = Path(dirpath) / name
            if not _is_ignored(path, root, gitignore):
                yield path


def _compile_pattern(pattern: str) -> re.Pattern[str]:
    """Compile a grep pattern, falling back to a literal search if invalid."""
    try:
        return re.compile(pattern)
    except re.error:
        return re.compile(re.escape(pattern))


def grep_search(
    pattern: str,
    cwd: str | Path,
    file_glob: str | None = None,
    max_chars: int = MAX_OUTPUT_CHARS,
) -> ToolResult:
    """Search file contents for a regex pattern.

    Args:
        pattern: Regular expression (invalid expressions are searched literally)
        cwd: Directory to search from
        file_glob: Optional filename filter such as "*.py"
        max_chars: Output cap

    Returns:
        ToolResult listing "path:line: text" hits, capped at MAX_GREP_HITS
    """
    if not pattern:
        return ToolResult(tool="grep", success=False, result="No search pattern given")

    root = Path(cwd).resolve()
    if not root.is_dir():
        return ToolResult(tool="grep", success=False, result=f"Directory not found: {cwd}")

    regex = _compile_pattern(pattern)
    globs = [file_glob.strip()] if file_glob and file_glob.strip() else DEFAULT_GREP_GLOBS
    gitignore = _load_gitignore(root)

    hits: list[str] = []
    for path in _walk_files(root, gitignore):
        if not any(fnmatch.fnmatch(path.name, g) for g in globs):
            continue
        try:
            if path.stat().st_size > MAX_GREP_FILE_SIZE:
                continue
            raw = path.read_bytes()
        except OSError as e:
            logger.debug(f"Skipping unreadable file {path}: {e}")
            continue
        if is_binary(raw):
            continue

        rel = path.relative_to(root).as_posix()
        for lineno, line in enumerate(raw.decode("utf-8", errors="replace").splitlines(), 1):
            if regex.search(line):
                hits.append(f"./{rel}:{lineno}:{line}")
                if len(hits) >= MAX_GREP_HITS:
                    break
        if len(hits) >= MAX_GREP_HITS:
            break

    if not hits:
        return ToolResult(tool="grep", success=True, result="No matches.")
    return ToolResult(tool="grep", success=True, result=truncate_output("\n".join(hits), max_chars))


def glob_search(pattern: str, cwd: str | Path) -> ToolResult:
    """List files matching a glob pattern, sorted and capped."""
    if not pattern:
        return ToolResult(tool="glob", success=False, result="No glob pattern given")

    root = Path(cwd).resolve()
    if not root.is_dir():
        return ToolResult(tool="glob", success=False, result=f"Directory not found: {cwd}")

    gitignore = _load_gitignore(root)
    try:
        files = sorted(
            path.relative_to(root).as_posix()
            for path in root.glob(pattern)
            if path.is_file() and not _is_ignored(path, root, gitignore)
        )
    except (ValueError, NotImplementedError, OSError) as e:
        return ToolResult(tool="glob", success=False, result=f"Error: {e}")

    if not files:
        return ToolResult(tool="glob", success=True, result="No files found.")

    output = "\n".join(files[:MAX_GLOB_RESULTS])
    if len(files) > MAX_GLOB_RESULTS:
        output += f"\n...(+{len(files) - MAX_GLOB_RESULTS} more)"
    return ToolResult(tool="glob", success=True, result=output)


def list_dir(dir_path: str, cwd: str | Path) -> ToolResult:
    """List a directory: subdirectories with a trailing slash, files with sizes."""
    path = resolve_path(dir_path or ".", cwd)
    if not path.exists():
        return ToolResult(tool="ls", success=False, result=f"Directory not found: {dir_path}")
    if not path.is_dir():
        return ToolResult(tool="ls", success=False, result=f"Not a directory: {dir_path}")

    entries = []
    try:
        children = sorted(path.iterdir(), key=lambda p: p.name)
    except OSError as e:
        return ToolResult(tool="ls", success=False, result=f"Error: {e}")

    for child in children:
        try:
            if child.is_dir():
                entries.append(f"  {child.name}/")
            else:
                entries.append(f"  {child.name} ({format_size(child.stat().st_size)})")
        except OSError:
            entries.append(f"  {child.name}")

    return ToolResult(tool="ls", success=True, result="\n".join(entries) or "(empty)")


def _git(args: list[str], cwd: Path) -> str:
    completed = subprocess.run(
        ["git", *args],
        cwd=cwd,
        capture_output=True,
        text=True,
        timeout=GIT_TIMEOUT,
        check=True,
    )
    return completed.stdout


def git_status(cwd: str | Path) -> ToolResult:
    """Report branch, short status and the last five commits."""
    root = Path(cwd)
    try:
        branch = _git(["branch", "--show-current"], root).strip()
        status = _git(["status", "--short"], root)
    except FileNotFoundError:
        return ToolResult(tool="git", success=False, result="git is not installed")
    except subprocess.TimeoutExpired:
        return ToolResult(tool="git", success=False, result=f"git timed out after {GIT_TIMEOUT}s")
    except subprocess.CalledProcessError as e:
        message = (e.stderr or e.stdout or str(e)).strip()
        return ToolResult(tool="git", success=False, result=f"Git error: {message}")

    try:
        log = _git(["log", "--oneline", "-5"], root)
    except (subprocess.CalledProcessError, subprocess.TimeoutExpired):
        # Fresh repository without commits
        log = ""

    return ToolResult(
        tool="git",
        success=True,
        result=(
            f"Branch: {branch or '(detached)'}\n"
            f"{status.rstrip() or '(clean)'}\n"
            f"---\n"
            f"{log.rstrip() or '(no commits)'}"
        ),
    )
