"""Single-file apply, conflict detection and undo."""

import asyncio
import errno
import os
from collections.abc import Sequence

import structlog

from edit_engine.events import (
    ChangeFailedEvent,
    ChangeUndoneEvent,
    ConflictDetectedEvent,
    EventChannel,
    FileChangedEvent,
)
from edit_engine.models.change_models import (
    ApplyPreview,
    ApplyResult,
    ApplyResultType,
    ConflictCheckResult,
    FileChangeRecord,
    FileChangeType,
    LineEndingStyle,
)
from edit_engine.models.diff_models import CodeBlock, DiffResult
from edit_engine.models.options import ApplyOptions
from edit_engine.services.backup import BackupStore
from edit_engine.services.diff_service import DiffService
from edit_engine.services.exceptions import DiffRangeError, InvalidCodeBlockError
from edit_engine.services.filesystem import FileSystem
from edit_engine.services.history import ChangeHistoryStore, normalize_path_key
from edit_engine.utils.diff_generator import (
    compute_content_hash,
    convert_line_endings,
    detect_line_endings,
)

logger = structlog.get_logger(__name__)


def _errno_set(*names: str) -> frozenset[int]:
    return frozenset(getattr(errno, name) for name in names if hasattr(errno, name))


PERMISSION_ERRNOS = _errno_set("EACCES", "EPERM", "EROFS")
LOCKED_ERRNOS = _errno_set("EBUSY", "ETXTBSY", "EAGAIN", "EDEADLK")
DISK_FULL_ERRNOS = _errno_set("ENOSPC", "EDQUOT", "EFBIG")
# Windows sharing and lock violations
LOCKED_WINERRORS = frozenset({32, 33})
PRESERVABLE_LINE_ENDINGS = frozenset({LineEndingStyle.LF, LineEndingStyle.CRLF, LineEndingStyle.CR})


def classify_os_error(error: OSError) -> ApplyResultType:
    """Map an OSError to an apply failure category by its error code."""
    if getattr(error, "winerror", None) in LOCKED_WINERRORS:
        return ApplyResultType.FILE_LOCKED
    if isinstance(error, PermissionError) or error.errno in PERMISSION_ERRNOS:
        return ApplyResultType.PERMISSION_DENIED
    if isinstance(error, BlockingIOError) or error.errno in LOCKED_ERRNOS:
        return ApplyResultType.FILE_LOCKED
    if error.errno in DISK_FULL_ERRNOS:
        return ApplyResultType.DISK_FULL
    return ApplyResultType.ERROR


def _not_utf8(path: str, error: UnicodeDecodeError) -> str:
    return f"{path} is not valid UTF-8 text (byte {error.start}: {error.reason})"


class FileChangeService:
    """Applies proposed content to single files and keeps their undo history.

    Every mutation runs under ``apply_lock``. The batch proposal service
    takes the same lock, so all writes made through one engine are
    serialized, across paths as well.
    """

    def __init__(
        self,
        workspace_path: str,
        file_system: FileSystem,
        backup_store: BackupStore,
        diff_service: DiffService,
        history: ChangeHistoryStore | None = None,
        events: EventChannel | None = None,
        apply_lock: asyncio.Lock | None = None,
        default_options: ApplyOptions | None = None,
    ):
        self._workspace_path = os.path.abspath(workspace_path)
        self._file_system = file_system
        self._backup_store = backup_store
        self._diff_service = diff_service
        self._history = history or ChangeHistoryStore()
        self._events = events or EventChannel()
        self._apply_lock = apply_lock or asyncio.Lock()
        self._default_options = default_options or ApplyOptions.default()

    @property
    def workspace_path(self) -> str:
        return self._workspace_path

    @property
    def apply_lock(self) -> asyncio.Lock:
        return self._apply_lock

    @property
    def history(self) -> ChangeHistoryStore:
        return self._history

    @property
    def events(self) -> EventChannel:
        return self._events

    def resolve_path(self, path: str) -> str:
        """Absolute path for a workspace-relative or absolute path."""
        return os.path.abspath(os.path.join(self._workspace_path, path))

    def relative_path(self, full_path: str) -> str:
        return os.path.relpath(full_path, self._workspace_path)

    def is_within_workspace(self, full_path: str) -> bool:
        workspace = normalize_path_key(self._workspace_path)
        candidate = normalize_path_key(full_path)
        return candidate == workspace or candidate.startswith(workspace.rstrip(os.sep) + os.sep)

    async def apply_code_block(
        self,
        block: CodeBlock,
        options: ApplyOptions | None = None,
    ) -> ApplyResult:
        """Diff a code block against its target and write the result.

        Args:
            block: Proposed block with a workspace-relative target path.
            options: Apply policy, defaults to the service defaults.

        Returns:
            ApplyResult. Bad blocks give VALIDATION_FAILED, I/O problems the
            matching failure category. Never raises for I/O errors.
        """
        target = block.target_path or ""
        if target and not self.is_within_workspace(self.resolve_path(target)):
            return self._fail(target, ApplyResultType.VALIDATION_FAILED, "Path resolves outside the workspace")
        try:
            diff = await self._diff_service.compute_diff_for_block(block, self._workspace_path)
        except (InvalidCodeBlockError, DiffRangeError) as e:
            return self._fail(target, ApplyResultType.VALIDATION_FAILED, str(e))
        except UnicodeDecodeError as e:
            return self._fail(target, ApplyResultType.VALIDATION_FAILED, _not_utf8(target, e))
        except OSError as e:
            return self._fail(target, classify_os_error(e), str(e))

        return await self.apply_diff(diff, options)

    async def apply_code_blocks(
        self,
        blocks: Sequence[CodeBlock],
        options: ApplyOptions | None = None,
    ) -> list[ApplyResult]:
        """Apply several blocks, one result per target file.

        Blocks aimed at the same file are reduced with the diff service's
        merge rule before applying.
        """
        groups: dict[str, list[CodeBlock]] = {}
        results: list[ApplyResult] = []
        for block in blocks:
            if not block.target_path:
                results.append(self._fail(
                    "", ApplyResultType.VALIDATION_FAILED,
                    f"Code block {block.id} has no target path",
                ))
                continue
            full_path = self.resolve_path(block.target_path)
            if not self.is_within_workspace(full_path):
                results.append(self._fail(
                    block.target_path, ApplyResultType.VALIDATION_FAILED,
                    "Path resolves outside the workspace",
                ))
                continue
            groups.setdefault(normalize_path_key(full_path), []).append(block)

        for group in groups.values():
            if len(group) == 1:
                results.append(await self.apply_code_block(group[0], options))
                continue
            try:
                diff = await self._diff_service.compute_merged_diff(group, self._workspace_path)
            except (InvalidCodeBlockError, DiffRangeError) as e:
                results.append(self._fail(
                    group[0].target_path or "", ApplyResultType.VALIDATION_FAILED, str(e)
                ))
                continue
            except UnicodeDecodeError as e:
                target = group[0].target_path or ""
                results.append(self._fail(target, ApplyResultType.VALIDATION_FAILED, _not_utf8(target, e)))
                continue
            except OSError as e:
                results.append(self._fail(group[0].target_path or "", classify_os_error(e), str(e)))
                continue
            results.append(await self.apply_diff(diff, options))
        return results

    async def apply_diff(
        self,
        diff: DiffResult,
        options: ApplyOptions | None = None,
    ) -> ApplyResult:
        """Write a diff's proposed content to its file under the apply lock."""
        options = options or self._default_options
        if diff.is_binary_file:
            return self._fail(
                diff.original_file_path, ApplyResultType.VALIDATION_FAILED,
                "Binary files cannot be changed", diff=diff,
            )
        if not diff.original_file_path:
            return self._fail("", ApplyResultType.VALIDATION_FAILED, "Diff has no file path", diff=diff)

        full_path = self.resolve_path(diff.original_file_path)
        if not self.is_within_workspace(full_path):
            return self._fail(
                diff.original_file_path, ApplyResultType.VALIDATION_FAILED,
                "Path resolves outside the workspace", diff=diff,
            )

        async with self._apply_lock:
            return await self._write_change(full_path, diff, options)

    async def preview_apply(
        self,
        block: CodeBlock,
        options: ApplyOptions | None = None,
    ) -> ApplyPreview:
        """Describe what apply_code_block would do without writing anything.

        Raises:
            InvalidCodeBlockError: If the block has no target path, the path
                leaves the workspace or the target is not UTF-8 text.
            DiffRangeError: If the block's range starts outside the file.
        """
        options = options or self._default_options
        full_path = self.resolve_path(block.target_path or "")
        if block.target_path and not self.is_within_workspace(full_path):
            raise InvalidCodeBlockError(f"{block.target_path} resolves outside the workspace")
        try:
            diff = await self._diff_service.compute_diff_for_block(block, self._workspace_path)
        except UnicodeDecodeError as e:
            raise InvalidCodeBlockError(_not_utf8(block.target_path or "", e)) from e
        exists = await self._file_system.exists(full_path)

        conflict = ConflictCheckResult.none()
        line_endings = LineEndingStyle.UNKNOWN
        current_size = 0
        if exists:
            if options.check_for_conflicts and not options.allow_conflict_overwrite:
                conflict = await self.check_for_conflicts(full_path)
            current_size = await self._file_system.file_size(full_path)
            if not diff.is_binary_file:
                line_endings = detect_line_endings(await self._file_system.read(full_path))

        write_target = full_path if exists else self._nearest_existing_parent(full_path)
        can_write = await asyncio.to_thread(os.access, write_target, os.W_OK)

        return ApplyPreview(
            diff=diff,
            file_path=full_path,
            relative_path=self.relative_path(full_path),
            target_exists=exists,
            conflict=conflict,
            can_write=can_write,
            write_blocked_reason=None if can_write else f"{write_target} is read-only",
            detected_line_endings=line_endings,
            current_size_bytes=current_size,
            estimated_new_size_bytes=len(diff.proposed_content.encode("utf-8")),
        )

    async def check_for_conflicts(self, path: str) -> ConflictCheckResult:
        """Compare a file's hash on disk with the last hash this service wrote.

        Args:
            path: Workspace-relative or absolute path.

        Returns:
            A conflict when the file exists, has a recorded change and its
            current content hash differs from that change's new hash.
        """
        full_path = self.resolve_path(path)
        record = self._history.latest_active(full_path)
        if record is None or record.new_content_hash is None:
            return ConflictCheckResult.none()
        if not await self._file_system.exists(full_path):
            return ConflictCheckResult.none()

        actual = compute_content_hash(await self._file_system.read(full_path))
        if actual == record.new_content_hash:
            return ConflictCheckResult.none()
        return ConflictCheckResult(
            has_conflict=True,
            expected_hash=record.new_content_hash,
            actual_hash=actual,
            description="File was modified outside the engine since the last applied change",
        )

    async def undo_last_change(self, path: str) -> bool:
        """Undo the newest not-yet-undone change of a file.

        Returns:
            True if the change was undone. False when there is nothing to
            undo, the undo window has passed, or restoring failed.
        """
        full_path = self.resolve_path(path)
        async with self._apply_lock:
            record = self._history.latest_active(full_path)
            if record is None:
                return False
            return await self._undo(record)

    async def undo_change(self, change_id: str) -> bool:
        """Undo a specific change by record id. Same failure rules as undo_last_change."""
        async with self._apply_lock:
            record = self._history.find(change_id)
            if record is None or record.is_undone:
                return False
            return await self._undo(record)

    def can_undo(self, path: str) -> bool:
        record = self._history.latest_active(self.resolve_path(path))
        return record is not None and record.can_undo(self._default_options.undo_window)

    def get_change_history(self, path: str, max_records: int = 10) -> list[FileChangeRecord]:
        return self._history.history(self.resolve_path(path), max_records)

    def get_pending_undos(self) -> list[FileChangeRecord]:
        return self._history.pending_undos(self._default_options.undo_window)

    def prune_history(self) -> int:
        return self._history.prune_expired(self._default_options.undo_window)

    async def _write_change(
        self,
        full_path: str,
        diff: DiffResult,
        options: ApplyOptions,
    ) -> ApplyResult:
        relative = self.relative_path(full_path)
        try:
            exists = await self._file_system.exists(full_path)

            if exists and options.check_for_conflicts and not options.allow_conflict_overwrite:
                conflict = await self.check_for_conflicts(full_path)
                if conflict.has_conflict:
                    logger.warning(
                        "apply_conflict",
                        path=relative,
                        expected=conflict.expected_hash,
                        actual=conflict.actual_hash,
                    )
                    self._events.publish(ConflictDetectedEvent(
                        file_path=full_path,
                        expected_hash=conflict.expected_hash,
                        actual_hash=conflict.actual_hash,
                    ))
                    return ApplyResult.conflict(
                        full_path,
                        expected_hash=conflict.expected_hash,
                        actual_hash=conflict.actual_hash,
                        relative_path=relative,
                        diff=diff,
                    )

            original_content = await self._file_system.read(full_path) if exists else None
            backup_path = None
            if exists and options.create_backup:
                backup_path = await self._backup_store.create_backup(full_path)

            content = diff.proposed_content
            if original_content is not None and options.preserve_line_endings:
                style = detect_line_endings(original_content)
                if style in PRESERVABLE_LINE_ENDINGS:
                    content = convert_line_endings(content, style)

            parent = os.path.dirname(full_path)
            if not exists and not await self._file_system.directory_exists(parent):
                if not options.create_parent_directories:
                    return self._fail(
                        full_path, ApplyResultType.ERROR,
                        f"Parent directory does not exist: {parent}", diff=diff,
                    )
                await self._file_system.create_directory(parent)

            await self._file_system.write(full_path, content)
        except UnicodeDecodeError as e:
            return self._fail(full_path, ApplyResultType.VALIDATION_FAILED, _not_utf8(relative, e), diff=diff)
        except OSError as e:
            return self._fail(full_path, classify_os_error(e), str(e), diff=diff)

        record = FileChangeRecord(
            file_path=full_path,
            relative_path=relative,
            backup_path=backup_path,
            change_type=FileChangeType.MODIFIED if exists else FileChangeType.CREATED,
            original_content_hash=(
                compute_content_hash(original_content) if original_content is not None else None
            ),
            new_content_hash=compute_content_hash(content),
            lines_added=diff.stats.added_lines,
            lines_removed=diff.stats.removed_lines,
            lines_modified=diff.stats.modified_lines,
            description=options.description,
            source_block_id=diff.source_block_id,
        )
        self._history.push(record)

        result = ApplyResult.succeeded(
            full_path,
            record.change_type,
            relative_path=relative,
            backup_path=backup_path,
            diff=diff,
            change_id=record.id,
        )
        logger.info(
            "change_applied",
            path=relative,
            change_type=record.change_type.value,
            summary=diff.stats.summary,
            backup=backup_path is not None,
        )
        self._events.publish(FileChangedEvent(record=record, result=result))
        return result

    async def _undo(self, record: FileChangeRecord) -> bool:
        if not record.can_undo(self._default_options.undo_window):
            logger.info("undo_unavailable", path=record.relative_path, change_id=record.id)
            return False

        try:
            if record.change_type == FileChangeType.CREATED:
                if await self._file_system.exists(record.file_path):
                    await self._file_system.delete(record.file_path)
            else:
                restored = await self._backup_store.restore_backup(
                    record.backup_path, record.file_path
                )
                if not restored:
                    return False
        except OSError as e:
            logger.error("undo_failed", path=record.relative_path, error=str(e))
            return False

        record.mark_undone()
        logger.info("change_undone", path=record.relative_path, change_id=record.id)
        self._events.publish(ChangeUndoneEvent(record=record))
        return True

    def _fail(
        self,
        path: str,
        result_type: ApplyResultType,
        message: str,
        diff: DiffResult | None = None,
    ) -> ApplyResult:
        full_path = self.resolve_path(path) if path else ""
        result = ApplyResult.failed(
            full_path,
            result_type,
            message,
            relative_path=self.relative_path(full_path) if full_path else "",
            diff=diff,
        )
        logger.warning(
            "change_failed",
            path=result.relative_path or "(none)",
            result_type=result_type.value,
            error=message,
        )
        self._events.publish(ChangeFailedEvent(result=result))
        return result

    @staticmethod
    def _nearest_existing_parent(path: str) -> str:
        parent = os.path.dirname(path)
        while parent and not os.path.isdir(parent):
            next_parent = os.path.dirname(parent)
            if next_parent == parent:
                break
            parent = next_parent
        return parent
