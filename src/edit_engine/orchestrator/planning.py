"""Pure helper functions for planning a batch apply.

All functions are stateless and do not touch the filesystem.
"""

import os
from datetime import timedelta

from edit_engine.models.options import ProposalServiceOptions
from edit_engine.models.proposal_models import (
    BatchApplyResult,
    FileOperation,
    FileOperationType,
    FileTreeProposal,
    ProposalStatus,
)
from edit_engine.services.history import normalize_path_key

INVALID_PATH_CHARACTERS = frozenset('<>"|?*\0') | frozenset(chr(i) for i in range(1, 32))
SMALL_FILE_THRESHOLD_BYTES = 10 * 1024
SMALL_FILE_ESTIMATE = timedelta(milliseconds=10)
LARGE_FILE_ESTIMATE = timedelta(milliseconds=50)
BACKUP_TIME_FACTOR = 1.5
VALIDATION_TIME_FACTOR = 1.2


def resolve_path(workspace_path: str, path: str) -> str:
    return os.path.abspath(os.path.join(workspace_path, path))


def is_within_workspace(full_path: str, workspace_path: str) -> bool:
    """Check that full_path is the workspace root or lies beneath it."""
    workspace = normalize_path_key(workspace_path)
    candidate = normalize_path_key(full_path)
    return candidate == workspace or candidate.startswith(workspace.rstrip(os.sep) + os.sep)


def has_invalid_characters(path: str) -> bool:
    return any(ch in INVALID_PATH_CHARACTERS for ch in path)


def directories_to_create(
    operations: list[FileOperation],
    workspace_path: str,
    create_parent_directories: bool = True,
) -> list[str]:
    """Every directory level the operations need, parents before children.

    Args:
        operations: Selected operations of a proposal.
        workspace_path: Workspace root. Levels at or above it are excluded,
            as are directories of operations that escape it.
        create_parent_directories: Whether parent directories of written or
            moved files are included. CREATE_DIRECTORY targets always are.

    Returns:
        Absolute directory paths, shortest first, without duplicates.
    """
    workspace = os.path.abspath(workspace_path)
    targets: list[str] = []
    for op in operations:
        if not op.path:
            continue
        if op.operation_type == FileOperationType.CREATE_DIRECTORY:
            targets.append(resolve_path(workspace, op.path))
        elif not create_parent_directories:
            continue
        elif op.writes_content:
            targets.append(os.path.dirname(resolve_path(workspace, op.path)))
        elif op.operation_type in (FileOperationType.RENAME, FileOperationType.MOVE) and op.new_path:
            targets.append(os.path.dirname(resolve_path(workspace, op.new_path)))

    levels: dict[str, str] = {}
    for target in targets:
        if not is_within_workspace(target, workspace):
            continue
        current = target
        while normalize_path_key(current) != normalize_path_key(workspace):
            levels.setdefault(normalize_path_key(current), current)
            current = os.path.dirname(current)

    return sorted(levels.values(), key=lambda p: (len(p), p))


def estimate_apply_time(
    proposal: FileTreeProposal,
    options: ProposalServiceOptions,
) -> timedelta:
    """Rough duration of applying a proposal's selected operations."""
    total = timedelta(0)
    for op in proposal.selected_operations:
        size = len((op.content or "").encode("utf-8"))
        total += SMALL_FILE_ESTIMATE if size < SMALL_FILE_THRESHOLD_BYTES else LARGE_FILE_ESTIMATE
    if options.enable_backups:
        total *= BACKUP_TIME_FACTOR
    if options.validate_before_apply:
        total *= VALIDATION_TIME_FACTOR
    return total


def resolve_proposal_status(result: BatchApplyResult) -> ProposalStatus:
    """Proposal status implied by a batch result.

    Args:
        result: Result of applying the proposal.

    Returns:
        FULLY_APPLIED when everything succeeded, PARTIALLY_APPLIED when some
        operations stuck, PROPOSED when the batch was refused or rolled back.
    """
    if result.was_rolled_back and result.rollback_succeeded is not False:
        return ProposalStatus.PROPOSED
    if result.all_succeeded:
        return ProposalStatus.FULLY_APPLIED
    if result.success_count > 0:
        return ProposalStatus.PARTIALLY_APPLIED
    return ProposalStatus.PROPOSED
