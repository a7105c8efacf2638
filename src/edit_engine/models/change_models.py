"""Models for single-file changes, their history records and apply outcomes."""

import uuid
from datetime import datetime, timedelta, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator

from edit_engine.models.diff_models import DiffResult


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FileChangeType(str, Enum):
    """Kind of mutation recorded for a file."""

    CREATED = "created"
    MODIFIED = "modified"
    DELETED = "deleted"
    RENAMED = "renamed"


class LineEndingStyle(str, Enum):
    """Line terminator convention detected in a text."""

    LF = "lf"
    CRLF = "crlf"
    CR = "cr"
    MIXED = "mixed"
    UNKNOWN = "unknown"


class FileChangeRecord(BaseModel):
    """One successful single-file mutation, kept so it can be undone."""

    model_config = ConfigDict(frozen=False)

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    file_path: str  # Absolute path of the changed file
    relative_path: str = ""
    backup_path: str | None = None  # Never set for CREATED records
    change_type: FileChangeType
    original_content_hash: str | None = None  # None when the file did not exist
    new_content_hash: str | None = None  # Conflict baseline for the next apply
    lines_added: int = 0
    lines_removed: int = 0
    lines_modified: int = 0
    description: str | None = None
    source_block_id: str | None = None
    changed_at: datetime = Field(default_factory=_utcnow)
    is_undone: bool = False
    undone_at: datetime | None = None
    is_redone: bool = False

    @model_validator(mode="after")
    def _created_has_no_backup(self) -> "FileChangeRecord":
        if self.change_type == FileChangeType.CREATED and self.backup_path is not None:
            raise ValueError("a CREATED change record cannot carry a backup path")
        return self

    def can_undo(self, window: timedelta, now: datetime | None = None) -> bool:
        """Check whether this record may still be undone.

        Args:
            window: How long after the change an undo is allowed.
            now: Reference time, defaults to the current UTC time.

        Returns:
            True when the record is not undone, is inside the window, and
            has something to undo with (a created file or a backup).
        """
        if self.is_undone:
            return False
        now = now or _utcnow()
        if now - self.changed_at > window:
            return False
        return self.change_type == FileChangeType.CREATED or self.backup_path is not None

    def time_remaining(self, window: timedelta, now: datetime | None = None) -> timedelta:
        now = now or _utcnow()
        remaining = self.changed_at + window - now
        return max(remaining, timedelta(0))

    def mark_undone(self, when: datetime | None = None) -> None:
        self.is_undone = True
        self.undone_at = when or _utcnow()


class ApplyResultType(str, Enum):
    """Outcome category of a single apply attempt."""

    SUCCESS = "success"
    VALIDATION_FAILED = "validation_failed"
    CONFLICT = "conflict"
    PERMISSION_DENIED = "permission_denied"
    FILE_LOCKED = "file_locked"
    DISK_FULL = "disk_full"
    ERROR = "error"
    CANCELLED = "cancelled"


class ApplyResult(BaseModel):
    """Structured outcome of applying one change to one file."""

    model_config = ConfigDict(frozen=False)

    success: bool
    result_type: ApplyResultType
    file_path: str
    relative_path: str = ""
    change_type: FileChangeType | None = None
    backup_path: str | None = None
    diff: DiffResult | None = None
    error_message: str | None = None
    expected_hash: str | None = None  # Set on CONFLICT
    actual_hash: str | None = None  # Set on CONFLICT
    change_id: str | None = None  # FileChangeRecord.id on success
    source_block_id: str | None = None
    operation_id: str | None = None  # FileOperation.id for batch applies
    previous_path: str | None = None  # Source path of a rename or move
    applied_at: datetime = Field(default_factory=_utcnow)

    @classmethod
    def succeeded(
        cls,
        file_path: str,
        change_type: FileChangeType,
        relative_path: str = "",
        backup_path: str | None = None,
        diff: DiffResult | None = None,
        change_id: str | None = None,
        operation_id: str | None = None,
    ) -> "ApplyResult":
        return cls(
            success=True,
            result_type=ApplyResultType.SUCCESS,
            file_path=file_path,
            relative_path=relative_path,
            change_type=change_type,
            backup_path=backup_path,
            diff=diff,
            change_id=change_id,
            source_block_id=diff.source_block_id if diff else None,
            operation_id=operation_id,
        )

    @classmethod
    def failed(
        cls,
        file_path: str,
        result_type: ApplyResultType,
        error_message: str,
        relative_path: str = "",
        diff: DiffResult | None = None,
        operation_id: str | None = None,
    ) -> "ApplyResult":
        return cls(
            success=False,
            result_type=result_type,
            file_path=file_path,
            relative_path=relative_path,
            error_message=error_message,
            diff=diff,
            source_block_id=diff.source_block_id if diff else None,
            operation_id=operation_id,
        )

    @classmethod
    def conflict(
        cls,
        file_path: str,
        expected_hash: str,
        actual_hash: str,
        relative_path: str = "",
        diff: DiffResult | None = None,
    ) -> "ApplyResult":
        return cls(
            success=False,
            result_type=ApplyResultType.CONFLICT,
            file_path=file_path,
            relative_path=relative_path,
            error_message="File was modified since the last recorded change",
            expected_hash=expected_hash,
            actual_hash=actual_hash,
            diff=diff,
            source_block_id=diff.source_block_id if diff else None,
        )


class ConflictCheckResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    has_conflict: bool
    expected_hash: str | None = None
    actual_hash: str | None = None
    description: str | None = None

    @classmethod
    def none(cls) -> "ConflictCheckResult":
        return cls(has_conflict=False)


class ApplyPreview(BaseModel):
    """What an apply would do, computed without touching the disk."""

    model_config = ConfigDict(frozen=False)

    diff: DiffResult
    file_path: str
    relative_path: str = ""
    target_exists: bool = False
    conflict: ConflictCheckResult = Field(default_factory=ConflictCheckResult.none)
    can_write: bool = True
    write_blocked_reason: str | None = None
    detected_line_endings: LineEndingStyle = LineEndingStyle.UNKNOWN
    current_size_bytes: int = 0
    estimated_new_size_bytes: int = 0

    @property
    def has_conflict(self) -> bool:
        return self.conflict.has_conflict

    @property
    def size_delta_bytes(self) -> int:
        return self.estimated_new_size_bytes - self.current_size_bytes


class FileSystemChangeType(str, Enum):
    """Kind of change reported by a directory watch."""

    CREATED = "created"
    MODIFIED = "modified"
    DELETED = "deleted"
    RENAMED = "renamed"


class FileSystemChangeEvent(BaseModel):
    """One debounced change observed under a watched directory."""

    model_config = ConfigDict(frozen=True)

    change_type: FileSystemChangeType
    path: str
    old_path: str | None = None  # Set for RENAMED
    is_directory: bool = False
    observed_at: datetime = Field(default_factory=_utcnow)
