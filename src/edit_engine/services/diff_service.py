"""Line-level diff computation grouped into context hunks."""

import difflib
import os
from collections.abc import Sequence

import structlog

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
)
from edit_engine.models.options import DiffOptions
from edit_engine.services.exceptions import DiffRangeError, InvalidCodeBlockError
from edit_engine.services.filesystem import FileSystem
from edit_engine.utils.diff_generator import normalize_line_endings

logger = structlog.get_logger(__name__)


def split_lines(text: str) -> list[str]:
    """Split LF-normalized text on newlines. Empty text has no lines."""
    if not text:
        return []
    return text.split("\n")


def trim_trailing_whitespace(text: str) -> str:
    return "\n".join(line.rstrip() for line in text.split("\n"))


def replace_lines(content: str, start_line: int, end_line: int, replacement: str) -> str:
    """Splice replacement into content over the inclusive 1-based range.

    Args:
        content: LF-normalized text to splice into.
        start_line: First line to replace, 1-based. len+1 appends.
        end_line: Last line to replace. Clamped to the content length.
        replacement: Text that takes the place of the range.

    Returns:
        The spliced text joined with LF.

    Raises:
        DiffRangeError: If start_line < 1, start_line > len + 1 or
            end_line < start_line.
    """
    lines = content.split("\n") if content else []
    replacement_lines = replacement.split("\n")

    if start_line < 1:
        raise DiffRangeError(f"Start line must be >= 1, got {start_line}")
    if start_line > len(lines) + 1:
        raise DiffRangeError(
            f"Start line {start_line} exceeds file length {len(lines)}"
        )
    if end_line < start_line:
        raise DiffRangeError(
            f"End line {end_line} must be >= start line {start_line}"
        )

    end_line = min(end_line, len(lines))
    spliced = lines[: start_line - 1] + replacement_lines + lines[end_line:]
    return "\n".join(spliced)


def _comparison_key(line: str, options: DiffOptions) -> str:
    if options.ignore_whitespace:
        line = "".join(line.split())
    if options.ignore_case:
        line = line.lower()
    return line


def _inline_changes(
    removed: str, added: str, options: DiffOptions
) -> tuple[list[InlineChange], list[InlineChange]]:
    """Character spans that differ between a paired removed and added line."""
    if (
        len(removed) > options.max_inline_diff_line_length
        or len(added) > options.max_inline_diff_line_length
    ):
        return [], []

    matcher = difflib.SequenceMatcher(None, removed, added, autojunk=False)
    if matcher.ratio() < options.inline_diff_similarity_threshold:
        return [], []

    removed_spans: list[InlineChange] = []
    added_spans: list[InlineChange] = []
    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        if tag == "equal":
            continue
        if i2 > i1:
            removed_spans.append(
                InlineChange(start=i1, length=i2 - i1, change_type=InlineChangeType.REMOVED)
            )
        if j2 > j1:
            added_spans.append(
                InlineChange(start=j1, length=j2 - j1, change_type=InlineChangeType.ADDED)
            )
    return removed_spans, added_spans


class DiffService:
    """Computes diffs between texts and between code blocks and files on disk."""

    def __init__(
        self,
        file_system: FileSystem,
        default_options: DiffOptions | None = None,
    ):
        self._file_system = file_system
        self._default_options = default_options or DiffOptions.default()

    @property
    def default_options(self) -> DiffOptions:
        return self._default_options

    def compute_diff(
        self,
        original: str,
        proposed: str,
        path: str = "",
        options: DiffOptions | None = None,
    ) -> DiffResult:
        """Compute a hunked line diff between two texts.

        Args:
            original: Text before the change.
            proposed: Text after the change.
            path: File path the diff describes, used for display only.
            options: Normalization and hunk settings. Defaults to the
                service's default options.

        Returns:
            A DiffResult. Identical texts (after normalization) give a
            zero-hunk result.
        """
        options = options or self._default_options
        original = normalize_line_endings(original or "")
        proposed = normalize_line_endings(proposed or "")

        if options.trim_trailing_whitespace:
            original = trim_trailing_whitespace(original)
            proposed = trim_trailing_whitespace(proposed)

        if original == proposed:
            logger.debug("diff_identical", path=path or "(unnamed)")
            return DiffResult.no_changes(path, original)

        aligned = self._align(split_lines(original), split_lines(proposed), options)
        hunks = self._build_hunks(aligned, options)
        stats = DiffStats.from_hunks(hunks)

        logger.debug(
            "diff_computed",
            path=path or "(unnamed)",
            summary=stats.summary,
            hunks=len(hunks),
        )
        return DiffResult(
            original_file_path=path,
            original_content=original,
            proposed_content=proposed,
            hunks=hunks,
            stats=stats,
            is_new_file=not original,
            is_delete_file=not proposed,
        )

    def compute_new_file_diff(self, proposed: str, path: str) -> DiffResult:
        """Diff for a file that does not exist yet: one all-added hunk."""
        proposed = normalize_line_endings(proposed or "")
        lines = split_lines(proposed)
        hunk = DiffHunk(
            index=0,
            original_start_line=0,
            original_line_count=0,
            proposed_start_line=1,
            proposed_line_count=len(lines),
            lines=[
                DiffLine(line_type=DiffLineType.ADDED, content=line, proposed_line_number=i + 1)
                for i, line in enumerate(lines)
            ],
        )
        return DiffResult(
            original_file_path=path,
            original_content="",
            proposed_content=proposed,
            hunks=[hunk],
            stats=DiffStats(added_lines=len(lines)),
            is_new_file=True,
        )

    def compute_delete_file_diff(self, original: str, path: str) -> DiffResult:
        """Diff for a file being removed: one all-removed hunk."""
        original = normalize_line_endings(original or "")
        lines = split_lines(original)
        hunk = DiffHunk(
            index=0,
            original_start_line=1,
            original_line_count=len(lines),
            proposed_start_line=0,
            proposed_line_count=0,
            lines=[
                DiffLine(line_type=DiffLineType.REMOVED, content=line, original_line_number=i + 1)
                for i, line in enumerate(lines)
            ],
        )
        return DiffResult(
            original_file_path=path,
            original_content=original,
            proposed_content="",
            hunks=[hunk],
            stats=DiffStats(removed_lines=len(lines)),
            is_delete_file=True,
        )

    async def compute_diff_for_block(
        self,
        block: CodeBlock,
        workspace_path: str,
        options: DiffOptions | None = None,
    ) -> DiffResult:
        """Diff a code block against its target file in the workspace.

        Args:
            block: The proposed block. Must carry a target path.
            workspace_path: Root the block's target path is relative to.
            options: Diff options, defaults to the service defaults.

        Returns:
            DiffResult tagged with the block's id.

        Raises:
            InvalidCodeBlockError: If the block has no target path.
            DiffRangeError: If the block's replacement range starts
                outside the target file.
        """
        if not block.target_path:
            raise InvalidCodeBlockError(f"Code block {block.id} has no target path")

        full_path = os.path.join(workspace_path, block.target_path)

        if not await self._file_system.exists(full_path):
            logger.debug("diff_target_missing", path=block.target_path)
            result = self.compute_new_file_diff(block.content, block.target_path)
            return result.model_copy(update={"source_block_id": block.id})

        if not self._file_system.is_text_file(full_path):
            logger.debug("diff_target_binary", path=block.target_path)
            result = DiffResult.binary_file(block.target_path)
            return result.model_copy(update={"source_block_id": block.id})

        original = await self._file_system.read(full_path)
        proposed = self.resolve_proposed_content(original, block)
        result = self.compute_diff(original, proposed, block.target_path, options)
        return result.model_copy(update={"source_block_id": block.id})

    async def compute_merged_diff(
        self,
        blocks: Sequence[CodeBlock],
        workspace_path: str,
        options: DiffOptions | None = None,
    ) -> DiffResult:
        """Diff several blocks aimed at one file.

        The last complete-file block wins; without one, the first block is
        used. Blocks are not merged hunk by hunk.

        Raises:
            InvalidCodeBlockError: If blocks is empty or the blocks target
                different paths.
        """
        if not blocks:
            raise InvalidCodeBlockError("At least one code block is required")
        if len(blocks) == 1:
            return await self.compute_diff_for_block(blocks[0], workspace_path, options)

        targets = {os.path.normcase(os.path.normpath(b.target_path or "")) for b in blocks}
        if len(targets) > 1:
            raise InvalidCodeBlockError("All code blocks must target the same file")

        complete = [b for b in blocks if b.block_type == CodeBlockType.COMPLETE_FILE]
        chosen = complete[-1] if complete else blocks[0]
        logger.debug(
            "merged_diff_block_chosen",
            path=chosen.target_path,
            block_id=chosen.id,
            candidates=len(blocks),
        )
        return await self.compute_diff_for_block(chosen, workspace_path, options)

    @staticmethod
    def resolve_proposed_content(original: str, block: CodeBlock) -> str:
        """Text the block would leave in a file that currently holds original."""
        if block.block_type == CodeBlockType.COMPLETE_FILE:
            return block.content
        if block.replacement_range is not None and block.replacement_range.is_valid:
            return replace_lines(
                normalize_line_endings(original),
                block.replacement_range.start_line,
                block.replacement_range.end_line,
                normalize_line_endings(block.content),
            )
        return block.content

    def _align(
        self,
        original_lines: list[str],
        proposed_lines: list[str],
        options: DiffOptions,
    ) -> list[DiffLine]:
        """Flatten the line alignment into one ordered sequence of DiffLines."""
        matcher = difflib.SequenceMatcher(
            None,
            [_comparison_key(line, options) for line in original_lines],
            [_comparison_key(line, options) for line in proposed_lines],
            autojunk=False,
        )

        aligned: list[DiffLine] = []
        for tag, i1, i2, j1, j2 in matcher.get_opcodes():
            if tag == "equal":
                for offset in range(i2 - i1):
                    aligned.append(DiffLine(
                        line_type=DiffLineType.UNCHANGED,
                        content=original_lines[i1 + offset],
                        original_line_number=i1 + offset + 1,
                        proposed_line_number=j1 + offset + 1,
                    ))
                continue

            removed_inline: list[list[InlineChange]] = [[] for _ in range(i2 - i1)]
            added_inline: list[list[InlineChange]] = [[] for _ in range(j2 - j1)]
            if tag == "replace" and options.compute_inline_diffs:
                for k in range(min(i2 - i1, j2 - j1)):
                    removed_inline[k], added_inline[k] = _inline_changes(
                        original_lines[i1 + k], proposed_lines[j1 + k], options
                    )

            for k, i in enumerate(range(i1, i2)):
                aligned.append(DiffLine(
                    line_type=DiffLineType.REMOVED,
                    content=original_lines[i],
                    original_line_number=i + 1,
                    inline_changes=removed_inline[k],
                ))
            for k, j in enumerate(range(j1, j2)):
                aligned.append(DiffLine(
                    line_type=DiffLineType.ADDED,
                    content=proposed_lines[j],
                    proposed_line_number=j + 1,
                    inline_changes=added_inline[k],
                ))
        return aligned

    def _build_hunks(self, aligned: list[DiffLine], options: DiffOptions) -> list[DiffHunk]:
        """Group aligned lines into hunks with bounded context.

        A hunk opens at a changed line with up to context_lines of leading
        context that no earlier hunk already shows, and closes once
        hunk_separation_threshold unchanged lines follow the last change.
        Trailing context is trimmed to context_lines on close.
        """
        hunks: list[DiffHunk] = []
        current: list[int] = []
        unchanged_run = 0
        last_emitted = -1

        def close() -> None:
            nonlocal last_emitted
            trailing = 0
            for idx in reversed(current):
                if aligned[idx].is_change:
                    break
                trailing += 1
            excess = max(0, trailing - options.context_lines)
            if excess:
                del current[-excess:]
            hunks.append(self._make_hunk(aligned, current, len(hunks)))
            last_emitted = current[-1]

        for i, line in enumerate(aligned):
            if line.is_change:
                if not current:
                    start = max(last_emitted + 1, i - options.context_lines)
                    current = list(range(start, i))
                current.append(i)
                unchanged_run = 0
            elif current:
                current.append(i)
                unchanged_run += 1
                if unchanged_run >= options.hunk_separation_threshold:
                    close()
                    current = []
                    unchanged_run = 0

        if current:
            close()
        return hunks

    @staticmethod
    def _make_hunk(aligned: list[DiffLine], indexes: list[int], index: int) -> DiffHunk:
        lines = [aligned[i] for i in indexes]
        original_count = sum(1 for line in lines if line.line_type != DiffLineType.ADDED)
        proposed_count = sum(1 for line in lines if line.line_type != DiffLineType.REMOVED)

        # Lines of each side that precede the hunk
        first = indexes[0]
        original_before = sum(
            1 for line in aligned[:first] if line.line_type != DiffLineType.ADDED
        )
        proposed_before = sum(
            1 for line in aligned[:first] if line.line_type != DiffLineType.REMOVED
        )

        return DiffHunk(
            index=index,
            original_start_line=original_before + 1 if original_count else original_before,
            original_line_count=original_count,
            proposed_start_line=proposed_before + 1 if proposed_count else proposed_before,
            proposed_line_count=proposed_count,
            lines=lines,
        )
