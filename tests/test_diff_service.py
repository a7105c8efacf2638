"""Tests for DiffService and line replacement."""

import asyncio

import pytest

from edit_engine.models import (
    CodeBlock,
    CodeBlockType,
    DiffLineType,
    DiffOptions,
    DiffStats,
    InlineChangeType,
    LineRange,
)
from edit_engine.services.diff_service import DiffService, replace_lines
from edit_engine.services.exceptions import DiffRangeError, InvalidCodeBlockError
from edit_engine.services.filesystem import LocalFileSystem


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def make_service() -> DiffService:
    return DiffService(LocalFileSystem())


def numbered(count: int) -> list[str]:
    return [f"line{i}" for i in range(1, count + 1)]


def line_summary(hunk) -> list[tuple[DiffLineType, str]]:
    return [(line.line_type, line.content) for line in hunk.lines]


# ---------------------------------------------------------------------------
# compute_diff
# ---------------------------------------------------------------------------

class TestComputeDiff:
    """Tests for text-to-text diffs."""

    def test_single_line_replacement(self):
        """A replaced middle line becomes one removal and one addition."""
        result = make_service().compute_diff("a\nb\nc", "a\nX\nc", "f.txt")

        assert result.hunk_count == 1
        assert line_summary(result.hunks[0]) == [
            (DiffLineType.UNCHANGED, "a"),
            (DiffLineType.REMOVED, "b"),
            (DiffLineType.ADDED, "X"),
            (DiffLineType.UNCHANGED, "c"),
        ]
        assert result.stats == DiffStats(
            added_lines=1, removed_lines=1, modified_lines=0, unchanged_lines=2
        )
        assert result.hunks[0].header == "@@ -1,3 +1,3 @@"

    def test_line_numbers_follow_each_side(self):
        """Removed lines carry only original numbers, added lines only proposed ones."""
        result = make_service().compute_diff("a\nb\nc", "a\nX\nc")
        removed = result.hunks[0].lines[1]
        added = result.hunks[0].lines[2]

        assert removed.original_line_number == 2
        assert removed.proposed_line_number is None
        assert added.proposed_line_number == 2
        assert added.original_line_number is None

    def test_replaced_region_never_reports_modified(self):
        result = make_service().compute_diff("a\nb\nc\nd", "a\nB\nC\nd")

        types = [line.line_type for hunk in result.hunks for line in hunk.lines]
        assert DiffLineType.MODIFIED not in types
        assert types.count(DiffLineType.REMOVED) == 2
        assert types.count(DiffLineType.ADDED) == 2
        assert result.stats.modified_lines == 0

    def test_identical_text_has_no_hunks(self):
        """Equal texts short-circuit to a no-changes result."""
        result = make_service().compute_diff("same\ntext", "same\ntext", "f.txt")
        assert result.hunks == []
        assert result.has_changes is False
        assert result.stats.summary == "No changes"

    def test_line_endings_are_normalized(self):
        """CRLF and CR compare equal to LF."""
        result = make_service().compute_diff("a\r\nb\rc", "a\nb\nc")
        assert result.has_changes is False
        assert result.original_content == "a\nb\nc"

    def test_trailing_whitespace_trimmed_by_default(self):
        """Trailing spaces are ignored unless trimming is switched off."""
        service = make_service()
        assert service.compute_diff("a  \nb", "a\nb").has_changes is False

        untrimmed = service.compute_diff(
            "a  \nb", "a\nb", options=DiffOptions(trim_trailing_whitespace=False)
        )
        assert untrimmed.has_changes is True

    def test_round_trip_against_proposed_is_empty(self):
        """Re-diffing the proposed content against itself yields no changes."""
        service = make_service()
        original = "\n".join(numbered(12))
        proposed = "line1\nnew\nline3\nline4\nline9\nline10\nextra\nline12"
        first = service.compute_diff(original, proposed)
        second = service.compute_diff(first.proposed_content, proposed)

        assert first.has_changes is True
        assert second.hunks == []

    def test_deterministic_tallies(self):
        """Two runs over identical input give identical stats and line types."""
        service = make_service()
        original = "\n".join(numbered(30))
        proposed = original.replace("line5", "five").replace("line20\n", "")

        first = service.compute_diff(original, proposed)
        second = service.compute_diff(original, proposed)

        assert first.stats == second.stats
        assert [line_summary(h) for h in first.hunks] == [line_summary(h) for h in second.hunks]

    def test_empty_original_is_new_file(self):
        result = make_service().compute_diff("", "x\ny")
        assert result.is_new_file is True
        assert result.hunks[0].header == "@@ -0,0 +1,2 @@"

    def test_empty_proposed_is_delete(self):
        result = make_service().compute_diff("x\ny", "")
        assert result.is_delete_file is True
        assert result.stats.removed_lines == 2


class TestHunkGrouping:
    """Tests for context lines and hunk separation."""

    def test_distant_changes_form_two_hunks(self):
        """A run of unchanged lines at the separation threshold splits hunks."""
        original = numbered(20)
        proposed = list(original)
        proposed[1] = "X"
        proposed[17] = "Y"

        result = make_service().compute_diff("\n".join(original), "\n".join(proposed))

        assert result.hunk_count == 2
        assert [h.index for h in result.hunks] == [0, 1]
        assert result.hunks[0].header == "@@ -1,5 +1,5 @@"
        assert result.hunks[1].header == "@@ -15,6 +15,6 @@"

    def test_trailing_context_trimmed_to_context_lines(self):
        original = numbered(20)
        proposed = list(original)
        proposed[1] = "X"
        proposed[17] = "Y"

        first = make_service().compute_diff("\n".join(original), "\n".join(proposed)).hunks[0]
        trailing = [line.content for line in first.lines[3:]]
        assert trailing == ["line3", "line4", "line5"]

    def test_close_changes_share_a_hunk(self):
        """Changes separated by fewer unchanged lines than the threshold stay together."""
        original = numbered(10)
        proposed = list(original)
        proposed[1] = "X"
        proposed[5] = "Y"

        result = make_service().compute_diff("\n".join(original), "\n".join(proposed))
        assert result.hunk_count == 1
        assert result.stats.added_lines == 2
        assert result.stats.removed_lines == 2

    def test_compact_options_use_one_context_line(self):
        original = numbered(10)
        proposed = list(original)
        proposed[4] = "X"

        result = make_service().compute_diff(
            "\n".join(original), "\n".join(proposed), options=DiffOptions.compact()
        )
        contents = [line.content for line in result.hunks[0].lines]
        assert contents == ["line4", "line5", "X", "line6"]

    def test_context_never_repeats_lines_of_previous_hunk(self):
        """Leading context of a hunk starts after the previous hunk's last line."""
        original = numbered(12)
        proposed = list(original)
        proposed[0] = "X"
        proposed[8] = "Y"

        result = make_service().compute_diff(
            "\n".join(original),
            "\n".join(proposed),
            options=DiffOptions(context_lines=3, hunk_separation_threshold=4),
        )
        first_numbers = {l.original_line_number for l in result.hunks[0].lines} - {None}
        second_numbers = {l.original_line_number for l in result.hunks[1].lines} - {None}
        assert first_numbers.isdisjoint(second_numbers)


class TestComparisonOptions:

    def test_ignore_whitespace_compares_collapsed_lines(self):
        result = make_service().compute_diff(
            "a b\nc", "a   b\nc", options=DiffOptions.ignore_whitespace_preset()
        )
        assert result.hunks == []

    def test_ignore_case(self):
        result = make_service().compute_diff(
            "Hello\nWorld", "hello\nworld", options=DiffOptions(ignore_case=True)
        )
        assert result.hunks == []

    def test_inline_changes_on_paired_lines(self):
        """Similar removed/added pairs carry character spans."""
        result = make_service().compute_diff("value = 1", "value = 2")
        removed, added = result.hunks[0].lines

        assert removed.inline_changes[0].start == 8
        assert removed.inline_changes[0].length == 1
        assert removed.inline_changes[0].change_type == InlineChangeType.REMOVED
        assert added.inline_changes[0].change_type == InlineChangeType.ADDED

    def test_inline_changes_can_be_disabled(self):
        result = make_service().compute_diff(
            "value = 1", "value = 2", options=DiffOptions(compute_inline_diffs=False)
        )
        assert all(not line.inline_changes for line in result.hunks[0].lines)


class TestWholeFileDiffs:

    def test_new_file_diff(self):
        result = make_service().compute_new_file_diff("line1\nline2", "n.txt")
        assert result.is_new_file is True
        assert result.original_content == ""
        assert result.hunks[0].header == "@@ -0,0 +1,2 @@"
        assert [l.line_type for l in result.hunks[0].lines] == [DiffLineType.ADDED] * 2

    def test_delete_file_diff(self):
        result = make_service().compute_delete_file_diff("a\nb\nc", "d.txt")
        assert result.is_delete_file is True
        assert result.proposed_content == ""
        assert result.hunks[0].header == "@@ -1,3 +0,0 @@"
        assert result.stats.removed_lines == 3


# ---------------------------------------------------------------------------
# replace_lines
# ---------------------------------------------------------------------------

class TestReplaceLines:

    def test_replaces_inclusive_range(self):
        assert replace_lines("a\nb\nc\nd", 2, 3, "X") == "a\nX\nd"

    def test_end_is_clamped(self):
        assert replace_lines("a\nb", 2, 10, "X") == "a\nX"

    def test_start_after_last_line_appends(self):
        assert replace_lines("a\nb", 3, 3, "c") == "a\nb\nc"

    @pytest.mark.parametrize("start,end", [(0, 1), (4, 5), (2, 1)])
    def test_invalid_ranges_raise(self, start, end):
        with pytest.raises(DiffRangeError):
            replace_lines("a\nb", start, end, "X")

    def test_range_error_is_value_error(self):
        with pytest.raises(ValueError):
            replace_lines("a", -1, 1, "X")


# ---------------------------------------------------------------------------
# Code blocks
# ---------------------------------------------------------------------------

class TestComputeDiffForBlock:
    """Tests for diffs of code blocks against workspace files."""

    def test_missing_target_path_raises(self, workspace):
        block = CodeBlock(content="x")
        with pytest.raises(InvalidCodeBlockError):
            asyncio.run(make_service().compute_diff_for_block(block, str(workspace)))

    def test_missing_file_gives_new_file_diff(self, workspace):
        """A block for a file that does not exist is an all-added diff."""
        block = CodeBlock(target_path="new.txt", content="line1\nline2")
        result = asyncio.run(make_service().compute_diff_for_block(block, str(workspace)))

        assert result.is_new_file is True
        assert result.original_content == ""
        assert result.hunk_count == 1
        assert [l.line_type for l in result.hunks[0].lines] == [DiffLineType.ADDED] * 2
        assert result.source_block_id == block.id

    def test_binary_target(self, workspace):
        (workspace / "image.dat").write_bytes(b"\x89PNG\r\n\x1a\n\x00\x00")
        block = CodeBlock(target_path="image.dat", content="text")
        result = asyncio.run(make_service().compute_diff_for_block(block, str(workspace)))
        assert result.is_binary_file is True
        assert result.is_applicable is False

    def test_complete_file_replaces_everything(self, workspace):
        (workspace / "f.txt").write_text("a\nb\nc")
        block = CodeBlock(target_path="f.txt", content="x", block_type=CodeBlockType.COMPLETE_FILE)
        result = asyncio.run(make_service().compute_diff_for_block(block, str(workspace)))
        assert result.proposed_content == "x"

    def test_replacement_range_is_spliced(self, workspace):
        (workspace / "f.txt").write_text("a\nb\nc\nd")
        block = CodeBlock(
            target_path="f.txt",
            content="X",
            replacement_range=LineRange(start_line=2, end_line=3),
        )
        result = asyncio.run(make_service().compute_diff_for_block(block, str(workspace)))
        assert result.proposed_content == "a\nX\nd"

    def test_invalid_range_falls_back_to_full_replacement(self, workspace):
        (workspace / "f.txt").write_text("a\nb")
        block = CodeBlock(
            target_path="f.txt",
            content="X",
            replacement_range=LineRange(start_line=3, end_line=1),
        )
        result = asyncio.run(make_service().compute_diff_for_block(block, str(workspace)))
        assert result.proposed_content == "X"

    def test_range_past_end_of_file_raises(self, workspace):
        (workspace / "f.txt").write_text("a\nb")
        block = CodeBlock(
            target_path="f.txt",
            content="X",
            replacement_range=LineRange(start_line=5, end_line=6),
        )
        with pytest.raises(DiffRangeError):
            asyncio.run(make_service().compute_diff_for_block(block, str(workspace)))


class TestComputeMergedDiff:

    def test_empty_list_raises(self, workspace):
        with pytest.raises(InvalidCodeBlockError):
            asyncio.run(make_service().compute_merged_diff([], str(workspace)))

    def test_different_targets_raise(self, workspace):
        blocks = [
            CodeBlock(target_path="a.txt", content="1"),
            CodeBlock(target_path="b.txt", content="2"),
        ]
        with pytest.raises(InvalidCodeBlockError):
            asyncio.run(make_service().compute_merged_diff(blocks, str(workspace)))

    def test_last_complete_file_block_wins(self, workspace):
        (workspace / "m.txt").write_text("orig")
        blocks = [
            CodeBlock(target_path="m.txt", content="s1"),
            CodeBlock(target_path="m.txt", content="c1", block_type=CodeBlockType.COMPLETE_FILE),
            CodeBlock(target_path="m.txt", content="c2", block_type=CodeBlockType.COMPLETE_FILE),
        ]
        result = asyncio.run(make_service().compute_merged_diff(blocks, str(workspace)))
        assert result.proposed_content == "c2"
        assert result.source_block_id == blocks[2].id

    def test_first_block_without_complete_file(self, workspace):
        (workspace / "m.txt").write_text("orig")
        blocks = [
            CodeBlock(target_path="m.txt", content="first"),
            CodeBlock(target_path="m.txt", content="second"),
        ]
        result = asyncio.run(make_service().compute_merged_diff(blocks, str(workspace)))
        assert result.proposed_content == "first"
