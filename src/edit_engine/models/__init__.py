"""Data models for the edit engine."""

from edit_engine.models.change_models import (
    ApplyPreview,
    ApplyResult,
    ApplyResultType,
    ConflictCheckResult,
    FileChangeRecord,
    FileChangeType,
    FileSystemChangeEvent,
    FileSystemChangeType,
    LineEndingStyle,
)
from edit_engine.models.diff_models import (
    CodeBlock,
    CodeBlockType,
    DiffHunk,
    DiffLine,
    DiffLineType,
    DiffResult,
    DiffStats,
    InlineChange,
    InlineChangeType,
    LineRange,
)
from edit_engine.models.options import ApplyOptions, DiffOptions, ProposalServiceOptions
from edit_engine.models.proposal_models import (
    BatchApplyPhase,
    BatchApplyProgress,
    BatchApplyResult,
    FileOperation,
    FileOperationType,
    FileTreeProposal,
    ProposalStatus,
    ProposalValidationResult,
    RollbackAction,
    RollbackActionType,
    ValidationIssue,
    ValidationIssueType,
    ValidationSeverity,
)

__all__ = [
    "ApplyOptions",
    "ApplyPreview",
    "ApplyResult",
    "ApplyResultType",
    "BatchApplyPhase",
    "BatchApplyProgress",
    "BatchApplyResult",
    "CodeBlock",
    "CodeBlockType",
    "ConflictCheckResult",
    "DiffHunk",
    "DiffLine",
    "DiffLineType",
    "DiffOptions",
    "DiffResult",
    "DiffStats",
    "FileChangeRecord",
    "FileChangeType",
    "FileOperation",
    "FileSystemChangeEvent",
    "FileSystemChangeType",
    "FileOperationType",
    "FileTreeProposal",
    "InlineChange",
    "InlineChangeType",
    "LineEndingStyle",
    "LineRange",
    "ProposalServiceOptions",
    "ProposalStatus",
    "ProposalValidationResult",
    "RollbackAction",
    "RollbackActionType",
    "ValidationIssue",
    "ValidationIssueType",
    "ValidationSeverity",
]
