"""Reversible file change journal for write, edit and delete tools."""

from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from threading import Lock

logger = logging.getLogger(__name__)

MAX_UNDO_ENTRIES = 50


class ChangeType(str, Enum):
    """Kinds of recorded file changes."""

    WRITE = "write"
    EDIT = "edit"
    DELETE = "delete"


@dataclass
class FileChange:
    """Snapshot taken before a file is mutated.

    ``previous_content`` holds the raw bytes and is None only when the file
    did not exist before a write.
    ``new_content`` is None for deletions.
    """

    change_type: ChangeType
    file_path: Path
    previous_content: bytes | None
    new_content: str | None
    description: str = ""
    recorded_at: float = field(default_factory=time.time)


@dataclass
class UndoOutcome:
    """Result of undoing one change."""

    success: bool
    message: str


def capture_before_state(file_path: Path) -> bytes | None:
    """Snapshot a file's raw bytes, or None if it does not exist.

    Raises:
        OSError: If the file exists but cannot be read; the caller must not
            mutate a file it could not snapshot
    """
    if not file_path.is_file():
        return None
    return file_path.read_bytes()


class ChangeJournal:
    """Bounded undo stack of file changes."""

    def __init__(self, max_entries: int = MAX_UNDO_ENTRIES):
        self._entries: deque[FileChange] = deque(maxlen=max_entries)
        self._lock = Lock()

    def record(self, change: FileChange) -> None:
        """Push a change; the oldest entry is dropped when full."""
        with self._lock:
            self._entries.append(change)
        logger.debug(f"Recorded {change.change_type.value} of {change.file_path}")

    def last(self) -> FileChange | None:
        """Most recent change without removing it."""
        with self._lock:
            return self._entries[-1] if self._entries else None

    def entries(self) -> list[FileChange]:
        """All changes, oldest first."""
        with self._lock:
            return list(self._entries)

    def size(self) -> int:
        with self._lock:
            return len(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def undo_last(self) -> UndoOutcome:
        """Revert the most recent change.

        Returns:
            UndoOutcome describing what was restored
        """
        with self._lock:
            if not self._entries:
                return UndoOutcome(False, "Nothing to undo.")
            change = self._entries.pop()

        path = change.file_path
        try:
            if change.change_type == ChangeType.WRITE and change.previous_content is None:
                if path.exists():
                    path.unlink()
                return UndoOutcome(True, f"Deleted {path} (was newly created)")

            if change.previous_content is None:
                return UndoOutcome(False, f"Cannot undo {change.change_type.value}: no previous content")

            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(change.previous_content)
            return UndoOutcome(True, f"Restored {path}")

        except OSError as e:
            logger.error(f"Undo failed for {path}: {e}")
            return UndoOutcome(False, f"Error: {e}")
