"""Utilities for rendering diffs and handling text line endings and hashes."""

import hashlib
from typing import TYPE_CHECKING

from edit_engine.models.change_models import LineEndingStyle

if TYPE_CHECKING:
    from edit_engine.models.diff_models import DiffResult

LINE_ENDING_SEQUENCES = {
    LineEndingStyle.LF: "\n",
    LineEndingStyle.CRLF: "\r\n",
    LineEndingStyle.CR: "\r",
}


def normalize_line_endings(text: str) -> str:
    """Convert CRLF and lone CR terminators to LF."""
    return text.replace("\r\n", "\n").replace("\r", "\n")


def detect_line_endings(text: str) -> LineEndingStyle:
    """Detect the line terminator convention used in a text.

    Args:
        text: The text to inspect.

    Returns:
        LF, CRLF or CR when exactly one convention is used, MIXED when
        several are, UNKNOWN when the text has no line terminators.
    """
    crlf = text.count("\r\n")
    lone_cr = text.count("\r") - crlf
    lone_lf = text.count("\n") - crlf

    found = [
        style
        for style, count in (
            (LineEndingStyle.CRLF, crlf),
            (LineEndingStyle.LF, lone_lf),
            (LineEndingStyle.CR, lone_cr),
        )
        if count > 0
    ]
    if not found:
        return LineEndingStyle.UNKNOWN
    if len(found) > 1:
        return LineEndingStyle.MIXED
    return found[0]


def convert_line_endings(text: str, style: LineEndingStyle) -> str:
    """Rewrite every line terminator in text to the given style.

    MIXED and UNKNOWN leave the text untouched.
    """
    sequence = LINE_ENDING_SEQUENCES.get(style)
    if sequence is None:
        return text
    normalized = normalize_line_endings(text)
    if sequence == "\n":
        return normalized
    return normalized.replace("\n", sequence)


def compute_content_hash(content: str) -> str:
    """SHA-256 hex digest of the UTF-8 encoded content."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def render_unified_diff(result: "DiffResult") -> str:
    """Render a DiffResult as a git-compatible unified diff.

    Args:
        result: Diff produced by the diff service.

    Returns:
        Unified diff string with a/ b/ prefixes. Empty string if the result
        has no hunks. Modified lines are emitted as a removal followed by an
        addition, since unified diffs have no in-place marker.
    """
    if not result.hunks:
        return ""

    path = result.original_file_path.replace("\\", "/")
    from_file = "/dev/null" if result.is_new_file else f"a/{path}"
    to_file = "/dev/null" if result.is_delete_file else f"b/{path}"

    diff_lines = [f"--- {from_file}", f"+++ {to_file}"]
    for hunk in result.hunks:
        diff_lines.append(hunk.header)
        for line in hunk.lines:
            if line.prefix == "~":
                diff_lines.append(f"-{line.content}")
                diff_lines.append(f"+{line.content}")
            else:
                diff_lines.append(f"{line.prefix}{line.content}")

    return "\n".join(diff_lines)
