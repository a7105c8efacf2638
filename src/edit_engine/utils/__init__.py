"""Shared text utilities."""

from edit_engine.utils.diff_generator import (
    compute_content_hash,
    convert_line_endings,
    detect_line_endings,
    normalize_line_endings,
    render_unified_diff,
)

__all__ = [
    "compute_content_hash",
    "convert_line_endings",
    "detect_line_endings",
    "normalize_line_endings",
    "render_unified_diff",
]
