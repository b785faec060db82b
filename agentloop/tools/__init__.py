"""Local tool implementations used by the executor."""

from agentloop.tools.bash_runner import bash_tool, run_bash
from agentloop.tools.file_ops import delete_file, edit_file, read_file, write_file
from agentloop.tools.github import gh_cli
from agentloop.tools.search import git_status, glob_search, grep_search, list_dir
from agentloop.tools.web import fetch_url, web_search

__all__ = [
    "bash_tool",
    "run_bash",
    "read_file",
    "write_file",
    "edit_file",
    "delete_file",
    "grep_search",
    "glob_search",
    "list_dir",
    "git_status",
    "web_search",
    "fetch_url",
    "gh_cli",
]
