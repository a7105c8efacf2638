"""Option models with named presets for diffing, single-file apply and batch apply."""

from datetime import timedelta

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_CONTEXT_LINES = 3
DEFAULT_HUNK_SEPARATION_THRESHOLD = 6
DEFAULT_UNDO_WINDOW = timedelta(minutes=30)
DEFAULT_PATH_LENGTH_LIMIT = 260


class DiffOptions(BaseModel):
    """Controls line normalization and hunk grouping."""

    model_config = ConfigDict(frozen=True)

    context_lines: int = Field(default=DEFAULT_CONTEXT_LINES, ge=0)
    hunk_separation_threshold: int = Field(default=DEFAULT_HUNK_SEPARATION_THRESHOLD, ge=1)
    trim_trailing_whitespace: bool = True
    ignore_whitespace: bool = False  # Affects comparison only, never emitted text
    ignore_case: bool = False
    compute_inline_diffs: bool = True
    max_inline_diff_line_length: int = 500
    inline_diff_similarity_threshold: float = Field(default=0.3, ge=0.0, le=1.0)

    @classmethod
    def default(cls) -> "DiffOptions":
        return cls()

    @classmethod
    def compact(cls) -> "DiffOptions":
        return cls(context_lines=1, hunk_separation_threshold=4)

    @classmethod
    def full(cls) -> "DiffOptions":
        return cls(context_lines=10, hunk_separation_threshold=20)

    @classmethod
    def ignore_whitespace_preset(cls) -> "DiffOptions":
        return cls(ignore_whitespace=True)


class ApplyOptions(BaseModel):
    """Policy for a single-file apply."""

    model_config = ConfigDict(frozen=True)

    create_backup: bool = True
    check_for_conflicts: bool = True
    allow_conflict_overwrite: bool = False
    create_parent_directories: bool = True
    preserve_line_endings: bool = True
    undo_window: timedelta = DEFAULT_UNDO_WINDOW
    description: str | None = None  # Copied onto the change record

    @classmethod
    def default(cls) -> "ApplyOptions":
        return cls()

    @classmethod
    def no_backup(cls) -> "ApplyOptions":
        return cls(create_backup=False)

    @classmethod
    def force(cls) -> "ApplyOptions":
        """Overwrite regardless of external edits. A backup is still taken."""
        return cls(allow_conflict_overwrite=True)


class ProposalServiceOptions(BaseModel):
    """Policy for applying a whole proposal."""

    model_config = ConfigDict(frozen=True)

    enable_backups: bool = True
    enable_rollback: bool = True
    rollback_on_partial_failure: bool = False
    validate_before_apply: bool = True
    continue_on_failure: bool = True
    create_parent_directories: bool = True
    path_length_limit: int = DEFAULT_PATH_LENGTH_LIMIT

    @classmethod
    def default(cls) -> "ProposalServiceOptions":
        return cls()

    @classmethod
    def safe(cls) -> "ProposalServiceOptions":
        """All-or-nothing: stop on the first failure and roll everything back."""
        return cls(continue_on_failure=False, rollback_on_partial_failure=True)

    @classmethod
    def fast(cls) -> "ProposalServiceOptions":
        return cls(
            enable_backups=False,
            enable_rollback=False,
            validate_before_apply=False,
        )
