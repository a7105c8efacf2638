"""Models for representing line-level diffs and the code blocks they come from."""

import uuid
from datetime import datetime, timezone
from enum import Enum
from pathlib import PurePath

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


class DiffLineType(str, Enum):
    """Classification of a single line in a diff.

    DiffService reports a replaced line as REMOVED followed by ADDED, so it
    never emits MODIFIED. The member is kept for diffs built by callers.
    """

    UNCHANGED = "unchanged"
    ADDED = "added"
    REMOVED = "removed"
    MODIFIED = "modified"


class InlineChangeType(str, Enum):
    """Kind of a character-level change inside one line."""

    ADDED = "added"
    REMOVED = "removed"


class InlineChange(BaseModel):
    """A character span that differs between a removed and an added line."""

    model_config = ConfigDict(frozen=True)

    start: int  # Zero-based column in the line content
    length: int
    change_type: InlineChangeType


class DiffLine(BaseModel):
    model_config = ConfigDict(frozen=True)

    line_type: DiffLineType
    content: str
    original_line_number: int | None = None  # 1-based, None for added lines
    proposed_line_number: int | None = None  # 1-based, None for removed lines
    inline_changes: list[InlineChange] = Field(default_factory=list)

    @property
    def prefix(self) -> str:
        """Unified-diff style prefix character for this line."""
        return {
            DiffLineType.ADDED: "+",
            DiffLineType.REMOVED: "-",
            DiffLineType.MODIFIED: "~",
        }.get(self.line_type, " ")

    @property
    def is_change(self) -> bool:
        return self.line_type != DiffLineType.UNCHANGED


class DiffHunk(BaseModel):
    """A contiguous region of changes with surrounding context lines."""

    model_config = ConfigDict(frozen=True)

    index: int  # Zero-based position among the result's hunks
    original_start_line: int
    original_line_count: int
    proposed_start_line: int
    proposed_line_count: int
    lines: list[DiffLine] = Field(default_factory=list)

    @property
    def header(self) -> str:
        return (
            f"@@ -{self.original_start_line},{self.original_line_count} "
            f"+{self.proposed_start_line},{self.proposed_line_count} @@"
        )

    @property
    def added_count(self) -> int:
        return sum(1 for line in self.lines if line.line_type == DiffLineType.ADDED)

    @property
    def removed_count(self) -> int:
        return sum(1 for line in self.lines if line.line_type == DiffLineType.REMOVED)

    @property
    def modified_count(self) -> int:
        return sum(1 for line in self.lines if line.line_type == DiffLineType.MODIFIED)

    @property
    def unchanged_count(self) -> int:
        return sum(1 for line in self.lines if line.line_type == DiffLineType.UNCHANGED)


class DiffStats(BaseModel):
    """Aggregate line counts over the hunks of a diff."""

    model_config = ConfigDict(frozen=True)

    added_lines: int = 0
    removed_lines: int = 0
    modified_lines: int = 0
    unchanged_lines: int = 0

    @classmethod
    def from_hunks(cls, hunks: list[DiffHunk]) -> "DiffStats":
        """Count line types across all hunk lines.

        Args:
            hunks: Hunks of a diff result.

        Returns:
            DiffStats with one count per line type.
        """
        return cls(
            added_lines=sum(h.added_count for h in hunks),
            removed_lines=sum(h.removed_count for h in hunks),
            modified_lines=sum(h.modified_count for h in hunks),
            unchanged_lines=sum(h.unchanged_count for h in hunks),
        )

    @property
    def total_lines(self) -> int:
        return (
            self.added_lines
            + self.removed_lines
            + self.modified_lines
            + self.unchanged_lines
        )

    @property
    def changed_lines(self) -> int:
        return self.added_lines + self.removed_lines + self.modified_lines

    @property
    def net_change(self) -> int:
        return self.added_lines - self.removed_lines

    @property
    def change_percentage(self) -> float:
        if self.total_lines == 0:
            return 0.0
        return self.changed_lines / self.total_lines * 100.0

    @property
    def has_changes(self) -> bool:
        return self.changed_lines > 0

    @property
    def summary(self) -> str:
        """Compact summary such as "+3 -1" or "No changes"."""
        parts = []
        if self.added_lines:
            parts.append(f"+{self.added_lines}")
        if self.removed_lines:
            parts.append(f"-{self.removed_lines}")
        if self.modified_lines:
            parts.append(f"~{self.modified_lines}")
        return " ".join(parts) if parts else "No changes"

    @property
    def verbose_summary(self) -> str:
        if not self.has_changes:
            return "No changes"
        parts = []
        if self.added_lines:
            parts.append(f"{self.added_lines} added")
        if self.removed_lines:
            parts.append(f"{self.removed_lines} removed")
        if self.modified_lines:
            parts.append(f"{self.modified_lines} modified")
        return ", ".join(parts)


class DiffResult(BaseModel):
    """Immutable result of comparing an original text against a proposed text."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    original_file_path: str = ""
    original_content: str = ""
    proposed_content: str = ""
    hunks: list[DiffHunk] = Field(default_factory=list)
    stats: DiffStats = Field(default_factory=DiffStats)
    is_new_file: bool = False
    is_delete_file: bool = False
    is_binary_file: bool = False
    source_block_id: str | None = None  # CodeBlock that produced this diff
    computed_at: datetime = Field(default_factory=_utcnow)

    @classmethod
    def no_changes(cls, path: str, content: str) -> "DiffResult":
        """Build a zero-hunk result for identical texts."""
        return cls(
            original_file_path=path,
            original_content=content,
            proposed_content=content,
        )

    @classmethod
    def binary_file(cls, path: str) -> "DiffResult":
        """Build a result for a file that cannot be diffed as text."""
        return cls(original_file_path=path, is_binary_file=True)

    @property
    def has_changes(self) -> bool:
        return (
            bool(self.hunks)
            or self.is_new_file
            or self.is_delete_file
        )

    @property
    def hunk_count(self) -> int:
        return len(self.hunks)

    @property
    def is_applicable(self) -> bool:
        """True when the diff carries text changes that can be written."""
        return self.has_changes and not self.is_binary_file

    @property
    def file_name(self) -> str:
        return PurePath(self.original_file_path).name if self.original_file_path else ""

    def to_unified_diff(self) -> str:
        """Render the hunks as a git-style unified diff."""
        from edit_engine.utils.diff_generator import render_unified_diff

        return render_unified_diff(self)


class CodeBlockType(str, Enum):
    """How a proposed code block relates to its target file."""

    COMPLETE_FILE = "complete_file"
    SNIPPET = "snippet"
    COMMAND = "command"
    CONFIG = "config"
    OUTPUT = "output"


class LineRange(BaseModel):
    """Inclusive 1-based line range inside a target file."""

    model_config = ConfigDict(frozen=True)

    start_line: int
    end_line: int

    @property
    def is_valid(self) -> bool:
        return self.start_line >= 1 and self.end_line >= self.start_line

    @property
    def line_count(self) -> int:
        return self.end_line - self.start_line + 1 if self.is_valid else 0


class CodeBlock(BaseModel):
    """A piece of proposed content aimed at one file."""

    model_config = ConfigDict(frozen=False)

    id: str = Field(default_factory=_new_id)
    target_path: str | None = None  # Relative to the workspace root
    content: str
    block_type: CodeBlockType = CodeBlockType.SNIPPET
    language: str | None = None
    replacement_range: LineRange | None = None  # Lines to replace, if known
    message_id: str | None = None  # Conversation message that carried the block
