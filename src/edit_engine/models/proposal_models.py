"""Models for multi-file proposals, their validation and batch apply outcomes."""

import uuid
from datetime import datetime, timedelta, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from edit_engine.models.change_models import ApplyResult


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FileOperationType(str, Enum):
    """Kind of filesystem operation in a proposal."""

    CREATE = "create"
    MODIFY = "modify"
    DELETE = "delete"
    RENAME = "rename"
    MOVE = "move"
    CREATE_DIRECTORY = "create_directory"


class FileOperation(BaseModel):
    """One step of a proposal. Only is_selected is mutated by callers."""

    model_config = ConfigDict(frozen=False)

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    operation_type: FileOperationType
    path: str  # Relative to the workspace root
    content: str | None = None  # For CREATE and MODIFY
    new_path: str | None = None  # For RENAME and MOVE
    order: int = 0  # Execution order, ascending
    is_selected: bool = True
    description: str | None = None

    @property
    def writes_content(self) -> bool:
        return self.operation_type in (FileOperationType.CREATE, FileOperationType.MODIFY)


class ProposalStatus(str, Enum):
    """Lifecycle of a proposal from the caller's point of view."""

    PROPOSED = "proposed"
    PARTIALLY_APPLIED = "partially_applied"
    FULLY_APPLIED = "fully_applied"
    REJECTED = "rejected"


class FileTreeProposal(BaseModel):
    """An ordered set of file operations proposed as one unit."""

    model_config = ConfigDict(frozen=False)

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    operations: list[FileOperation] = Field(default_factory=list)
    status: ProposalStatus = ProposalStatus.PROPOSED
    description: str | None = None
    message_id: str | None = None

    @property
    def selected_operations(self) -> list[FileOperation]:
        """Selected operations, sorted by their order field."""
        return sorted(
            (op for op in self.operations if op.is_selected),
            key=lambda op: op.order,
        )

    @property
    def selected_count(self) -> int:
        return sum(1 for op in self.operations if op.is_selected)


class ValidationSeverity(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class ValidationIssueType(str, Enum):
    DUPLICATE_PATH = "duplicate_path"
    INVALID_PATH = "invalid_path"
    INVALID_CHARACTERS = "invalid_characters"
    PATH_TOO_LONG = "path_too_long"
    OUTSIDE_WORKSPACE = "outside_workspace"
    FILE_EXISTS = "file_exists"
    FILE_NOT_FOUND = "file_not_found"
    EMPTY_CONTENT = "empty_content"
    PARENT_NOT_EXISTS = "parent_not_exists"
    MISSING_NEW_PATH = "missing_new_path"


class ValidationIssue(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str
    issue_type: ValidationIssueType
    severity: ValidationSeverity
    message: str
    operation_id: str | None = None


class ProposalValidationResult(BaseModel):
    """Outcome of validating a proposal before apply."""

    model_config = ConfigDict(frozen=False)

    is_valid: bool = True
    issues: list[ValidationIssue] = Field(default_factory=list)

    @classmethod
    def from_issues(cls, issues: list[ValidationIssue]) -> "ProposalValidationResult":
        has_error = any(i.severity == ValidationSeverity.ERROR for i in issues)
        return cls(is_valid=not has_error, issues=issues)

    @property
    def errors(self) -> list[ValidationIssue]:
        return [i for i in self.issues if i.severity == ValidationSeverity.ERROR]

    @property
    def warnings(self) -> list[ValidationIssue]:
        return [i for i in self.issues if i.severity == ValidationSeverity.WARNING]

    @property
    def error_count(self) -> int:
        return len(self.errors)

    @property
    def warning_count(self) -> int:
        return len(self.warnings)


class BatchApplyPhase(str, Enum):
    """Phases of a batch apply, in the order they are entered."""

    VALIDATING = "validating"
    CREATING_DIRECTORIES = "creating_directories"
    CREATING_BACKUPS = "creating_backups"
    WRITING_FILES = "writing_files"
    ROLLING_BACK = "rolling_back"
    FINALIZING = "finalizing"
    COMPLETED = "completed"


class BatchApplyProgress(BaseModel):
    """Immutable progress snapshot handed to progress sinks."""

    model_config = ConfigDict(frozen=True)

    total_operations: int
    completed_operations: int
    phase: BatchApplyPhase
    current_file: str | None = None
    can_cancel: bool = True
    cancellation_requested: bool = False
    elapsed: timedelta = timedelta(0)

    @property
    def percent_complete(self) -> float:
        if self.total_operations == 0:
            return 100.0
        return self.completed_operations / self.total_operations * 100.0


class BatchApplyResult(BaseModel):
    """Outcome of applying a whole proposal."""

    model_config = ConfigDict(frozen=False)

    all_succeeded: bool = False
    success_count: int = 0
    failed_count: int = 0
    skipped_count: int = 0
    results: list[ApplyResult] = Field(default_factory=list)
    started_at: datetime = Field(default_factory=_utcnow)
    completed_at: datetime = Field(default_factory=_utcnow)
    backup_paths: dict[str, str] = Field(default_factory=dict)  # file path -> backup path
    was_cancelled: bool = False
    was_rolled_back: bool = False
    rollback_succeeded: bool | None = None  # None when no rollback was attempted
    error_message: str | None = None

    @classmethod
    def rolled_back(
        cls,
        error_message: str,
        started_at: datetime | None = None,
        total_operations: int = 0,
    ) -> "BatchApplyResult":
        """Result for a batch that was refused or undone before any write stuck."""
        return cls(
            all_succeeded=False,
            skipped_count=total_operations,
            started_at=started_at or _utcnow(),
            was_rolled_back=True,
            rollback_succeeded=True,
            error_message=error_message,
        )

    @property
    def duration(self) -> timedelta:
        return self.completed_at - self.started_at

    @property
    def total_operations(self) -> int:
        return self.success_count + self.failed_count + self.skipped_count


class RollbackActionType(str, Enum):
    """Compensating action recorded for one filesystem mutation."""

    DELETE_CREATED_FILE = "delete_created_file"
    RESTORE_MODIFIED_FILE = "restore_modified_file"
    DELETE_CREATED_DIRECTORY = "delete_created_directory"
    RESTORE_DELETED_FILE = "restore_deleted_file"
    UNDO_RENAME = "undo_rename"


class RollbackAction(BaseModel):
    model_config = ConfigDict(frozen=True)

    action_type: RollbackActionType
    path: str  # The path as it exists after the mutation
    backup_path: str | None = None  # For RESTORE_* actions
    original_path: str | None = None  # For UNDO_RENAME
    order: int  # Registration sequence; rollback runs highest first
