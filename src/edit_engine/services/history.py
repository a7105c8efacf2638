"""Per-path stacks of change records backing single-file undo."""

import os
import threading
from datetime import datetime, timedelta, timezone

from edit_engine.models.change_models import FileChangeRecord

MAX_HISTORY_PER_FILE = 50


def normalize_path_key(path: str) -> str:
    """Key under which a path's history is stored."""
    return os.path.normcase(os.path.abspath(path))


class ChangeHistoryStore:
    """LIFO change records per file, newest last.

    One coarse lock keeps push-and-prune atomic across paths.
    """

    def __init__(self, max_history_per_file: int = MAX_HISTORY_PER_FILE):
        self._max_history = max_history_per_file
        self._stacks: dict[str, list[FileChangeRecord]] = {}
        self._lock = threading.RLock()

    @property
    def max_history_per_file(self) -> int:
        return self._max_history

    def push(self, record: FileChangeRecord) -> None:
        """Add a record on top of its path's stack, dropping the oldest past capacity."""
        key = normalize_path_key(record.file_path)
        with self._lock:
            stack = self._stacks.setdefault(key, [])
            stack.append(record)
            overflow = len(stack) - self._max_history
            if overflow > 0:
                del stack[:overflow]

    def peek(self, path: str) -> FileChangeRecord | None:
        """Most recent record for path, undone or not."""
        with self._lock:
            stack = self._stacks.get(normalize_path_key(path))
            return stack[-1] if stack else None

    def latest_active(self, path: str) -> FileChangeRecord | None:
        """Most recent record for path that has not been undone."""
        with self._lock:
            for record in reversed(self._stacks.get(normalize_path_key(path), [])):
                if not record.is_undone:
                    return record
            return None

    def find(self, change_id: str) -> FileChangeRecord | None:
        with self._lock:
            for stack in self._stacks.values():
                for record in stack:
                    if record.id == change_id:
                        return record
            return None

    def history(self, path: str, max_records: int = 10) -> list[FileChangeRecord]:
        """Records for path, newest first."""
        with self._lock:
            stack = self._stacks.get(normalize_path_key(path), [])
            return list(reversed(stack))[:max_records]

    def pending_undos(
        self, window: timedelta, now: datetime | None = None
    ) -> list[FileChangeRecord]:
        """Every record across all paths that can still be undone, newest first."""
        now = now or datetime.now(timezone.utc)
        with self._lock:
            pending = [
                record
                for stack in self._stacks.values()
                for record in stack
                if record.can_undo(window, now)
            ]
        return sorted(pending, key=lambda r: r.changed_at, reverse=True)

    def prune_expired(self, window: timedelta, now: datetime | None = None) -> int:
        """Drop records older than the undo window.

        The newest record of each path is kept, since it is the baseline
        for conflict detection.

        Returns:
            Number of records removed.
        """
        now = now or datetime.now(timezone.utc)
        removed = 0
        with self._lock:
            for stack in self._stacks.values():
                if len(stack) < 2:
                    continue
                keep = [r for r in stack[:-1] if now - r.changed_at <= window]
                removed += len(stack) - 1 - len(keep)
                stack[:-1] = keep
        return removed

    def paths(self) -> list[str]:
        with self._lock:
            return [key for key, stack in self._stacks.items() if stack]

    def clear(self, path: str | None = None) -> None:
        with self._lock:
            if path is None:
                self._stacks.clear()
            else:
                self._stacks.pop(normalize_path_key(path), None)
