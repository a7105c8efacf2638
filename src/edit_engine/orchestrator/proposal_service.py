"""Validation and transactional apply of multi-file proposals."""

import asyncio
import os
from collections.abc import Awaitable, Callable
from datetime import timedelta

import structlog

from edit_engine.cancellation import CancellationToken
from edit_engine.events import EventChannel, OperationCompletedEvent, ValidationCompletedEvent
from edit_engine.models.change_models import ApplyResult, ApplyResultType, FileChangeType
from edit_engine.models.diff_models import DiffResult
from edit_engine.models.options import ProposalServiceOptions
from edit_engine.models.proposal_models import (
    BatchApplyPhase,
    BatchApplyResult,
    FileOperation,
    FileOperationType,
    FileTreeProposal,
    ProposalValidationResult,
    ValidationIssue,
    ValidationIssueType,
    ValidationSeverity,
)
from edit_engine.orchestrator import planning
from edit_engine.orchestrator.exceptions import UnsupportedOperationError
from edit_engine.orchestrator.recovery import RollbackManager
from edit_engine.orchestrator.state import ApplyContext, ProgressSink
from edit_engine.services.backup import BackupStore
from edit_engine.services.diff_service import DiffService
from edit_engine.services.exceptions import OperationCancelledError
from edit_engine.services.file_change_service import FileChangeService, classify_os_error
from edit_engine.services.filesystem import FileSystem

logger = structlog.get_logger(__name__)

OperationHandler = Callable[[ApplyContext, FileOperation], Awaitable[ApplyResult]]


class ProposalService:
    """Applies proposals as one unit with compensating rollback.

    Every filesystem mutation takes the FileChangeService apply lock, so
    batch writes never interleave with single-file applies. A separate
    lock admits one apply_proposal call at a time.
    """

    def __init__(
        self,
        workspace_path: str,
        file_system: FileSystem,
        backup_store: BackupStore,
        diff_service: DiffService,
        file_change_service: FileChangeService,
        events: EventChannel | None = None,
        options: ProposalServiceOptions | None = None,
    ):
        self._workspace_path = os.path.abspath(workspace_path)
        self._file_system = file_system
        self._backup_store = backup_store
        self._diff_service = diff_service
        self._file_changes = file_change_service
        self._events = events or file_change_service.events
        self._options = options or ProposalServiceOptions.default()
        self._orchestration_lock = asyncio.Lock()
        self._handlers: dict[FileOperationType, OperationHandler] = {
            FileOperationType.CREATE: self._handle_write,
            FileOperationType.MODIFY: self._handle_write,
            FileOperationType.DELETE: self._handle_delete,
            FileOperationType.RENAME: self._handle_move,
            FileOperationType.MOVE: self._handle_move,
            FileOperationType.CREATE_DIRECTORY: self._handle_create_directory,
        }

    @property
    def options(self) -> ProposalServiceOptions:
        return self._options

    @property
    def workspace_path(self) -> str:
        return self._workspace_path

    def is_within_workspace(self, path: str) -> bool:
        return planning.is_within_workspace(self._resolve(path), self._workspace_path)

    def estimate_apply_time(self, proposal: FileTreeProposal) -> timedelta:
        return planning.estimate_apply_time(proposal, self._options)

    async def check_existing_files(self, proposal: FileTreeProposal) -> dict[str, bool]:
        """Map each selected operation's path to whether it exists on disk."""
        existing: dict[str, bool] = {}
        for op in proposal.selected_operations:
            full_path = self._resolve(op.path)
            if op.operation_type == FileOperationType.CREATE_DIRECTORY:
                existing[op.path] = await self._file_system.directory_exists(full_path)
            else:
                existing[op.path] = await self._file_system.exists(full_path)
        return existing

    async def validate_proposal(
        self,
        proposal: FileTreeProposal,
        cancellation_token: CancellationToken = CancellationToken.NONE,
    ) -> ProposalValidationResult:
        """Check every selected operation before anything is written.

        Only ERROR issues make the result invalid; warnings never block.

        Raises:
            OperationCancelledError: If the token is cancelled between operations.
        """
        issues: list[ValidationIssue] = []
        seen: set[str] = set()

        for op in proposal.selected_operations:
            cancellation_token.raise_if_cancelled()
            if op.path:
                key = os.path.normpath(op.path).lower()
                if key in seen:
                    issues.append(ValidationIssue(
                        path=op.path,
                        issue_type=ValidationIssueType.DUPLICATE_PATH,
                        severity=ValidationSeverity.ERROR,
                        message=f"Path appears more than once: {op.path}",
                        operation_id=op.id,
                    ))
                seen.add(key)
            issues.extend(await self.validate_operation(op))

        validation = ProposalValidationResult.from_issues(issues)
        logger.info(
            "proposal_validated",
            proposal_id=proposal.id,
            valid=validation.is_valid,
            errors=validation.error_count,
            warnings=validation.warning_count,
        )
        self._events.publish(ValidationCompletedEvent(proposal=proposal, validation=validation))
        return validation

    async def validate_operation(self, op: FileOperation) -> list[ValidationIssue]:
        """Issues for a single operation, not counting duplicates."""
        issues: list[ValidationIssue] = []

        def add(issue_type: ValidationIssueType, severity: ValidationSeverity, message: str) -> None:
            issues.append(ValidationIssue(
                path=op.path,
                issue_type=issue_type,
                severity=severity,
                message=message,
                operation_id=op.id,
            ))

        if not op.path or not op.path.strip():
            add(ValidationIssueType.INVALID_PATH, ValidationSeverity.ERROR, "Path is empty")
            return issues

        if planning.has_invalid_characters(op.path):
            add(
                ValidationIssueType.INVALID_CHARACTERS,
                ValidationSeverity.ERROR,
                f"Path contains invalid characters: {op.path}",
            )
            return issues

        full_path = self._resolve(op.path)
        if len(full_path) > self._options.path_length_limit:
            add(
                ValidationIssueType.PATH_TOO_LONG,
                ValidationSeverity.ERROR,
                f"Path exceeds {self._options.path_length_limit} characters",
            )

        if not planning.is_within_workspace(full_path, self._workspace_path):
            add(
                ValidationIssueType.OUTSIDE_WORKSPACE,
                ValidationSeverity.ERROR,
                f"Path resolves outside the workspace: {op.path}",
            )
            return issues

        exists = await self._file_system.exists(full_path)
        op_type = op.operation_type

        if op_type == FileOperationType.CREATE and exists:
            add(
                ValidationIssueType.FILE_EXISTS,
                ValidationSeverity.WARNING,
                f"File already exists and will be overwritten: {op.path}",
            )
        elif op_type in (
            FileOperationType.MODIFY,
            FileOperationType.DELETE,
            FileOperationType.RENAME,
            FileOperationType.MOVE,
        ) and not exists:
            add(
                ValidationIssueType.FILE_NOT_FOUND,
                ValidationSeverity.WARNING,
                f"File does not exist: {op.path}",
            )

        if op.writes_content and not op.content:
            add(ValidationIssueType.EMPTY_CONTENT, ValidationSeverity.WARNING, "Content is empty")

        if op_type in (FileOperationType.RENAME, FileOperationType.MOVE):
            if not op.new_path:
                add(
                    ValidationIssueType.MISSING_NEW_PATH,
                    ValidationSeverity.ERROR,
                    f"{op_type.value} requires a new path",
                )
            elif not planning.is_within_workspace(self._resolve(op.new_path), self._workspace_path):
                add(
                    ValidationIssueType.OUTSIDE_WORKSPACE,
                    ValidationSeverity.ERROR,
                    f"New path resolves outside the workspace: {op.new_path}",
                )

        if not self._options.create_parent_directories and op_type != FileOperationType.CREATE_DIRECTORY:
            target = op.new_path if op_type in (FileOperationType.RENAME, FileOperationType.MOVE) else op.path
            if target:
                parent = os.path.dirname(self._resolve(target))
                if not await self._file_system.directory_exists(parent):
                    add(
                        ValidationIssueType.PARENT_NOT_EXISTS,
                        ValidationSeverity.ERROR,
                        f"Parent directory does not exist: {parent}",
                    )

        return issues

    async def apply_proposal(
        self,
        proposal: FileTreeProposal,
        progress_sink: ProgressSink | None = None,
        cancellation_token: CancellationToken | None = None,
    ) -> BatchApplyResult:
        """Apply a proposal's selected operations in their explicit order.

        Args:
            proposal: The proposal. Only is_selected operations are applied.
                Its status is not changed, see planning.resolve_proposal_status.
            progress_sink: Receives a BatchApplyProgress after every phase
                transition and every completed operation.
            cancellation_token: Checked between operations. Once observed,
                the batch is rolled back and the rollback itself cannot be
                cancelled.

        Returns:
            BatchApplyResult with counts and cancellation/rollback flags.

        Raises:
            Exception: Anything unexpected is re-raised after a best-effort
                rollback. asyncio.CancelledError is re-raised after a shielded
                rollback.
        """
        token = cancellation_token or CancellationToken()
        async with self._orchestration_lock:
            context = ApplyContext(
                proposal=proposal,
                workspace_path=self._workspace_path,
                options=self._options,
                rollback_manager=RollbackManager(self._file_system, self._backup_store),
                cancellation_token=token,
                progress_sink=progress_sink,
            )
            logger.info(
                "batch_apply_started",
                proposal_id=proposal.id,
                operations=context.total_operations,
            )
            try:
                return await self._run(context)
            except OperationCancelledError:
                context.is_cancelled = True
                logger.info(
                    "batch_apply_cancelled",
                    proposal_id=proposal.id,
                    completed=context.completed_operations,
                )
                rolled_back, rollback_ok = False, None
                if self._options.enable_rollback:
                    rolled_back, rollback_ok = True, await self._rollback(context)
                else:
                    context.rollback_manager.commit()
                context.set_phase(BatchApplyPhase.COMPLETED)
                return context.build_result(
                    was_rolled_back=rolled_back,
                    rollback_succeeded=rollback_ok,
                    error_message="Apply was cancelled",
                )
            except asyncio.CancelledError:
                context.is_cancelled = True
                if self._options.enable_rollback:
                    await asyncio.shield(self._rollback(context))
                raise
            except Exception:
                logger.exception("batch_apply_crashed", proposal_id=proposal.id)
                if self._options.enable_rollback:
                    await self._rollback(context)
                raise

    async def apply_operation(self, op: FileOperation) -> ApplyResult:
        """Apply one operation outside any proposal. It is committed immediately."""
        proposal = FileTreeProposal(operations=[op])
        context = ApplyContext(
            proposal=proposal,
            workspace_path=self._workspace_path,
            options=self._options,
            rollback_manager=RollbackManager(self._file_system, self._backup_store),
            cancellation_token=CancellationToken.NONE,
        )
        for directory in planning.directories_to_create(
            [op], self._workspace_path, self._options.create_parent_directories
        ):
            await self._ensure_directory(context, directory)
        result = await self._dispatch(context, op)
        context.rollback_manager.commit()
        return result

    async def preview_proposal(self, proposal: FileTreeProposal) -> dict[str, DiffResult]:
        """Diffs of every selected operation that changes file content, keyed by operation id."""
        previews: dict[str, DiffResult] = {}
        for op in proposal.selected_operations:
            diff = await self.preview_operation(op)
            if diff is not None:
                previews[op.id] = diff
        return previews

    async def preview_operation(self, op: FileOperation) -> DiffResult | None:
        """Diff an operation would produce, or None if it changes no file content."""
        if op.operation_type not in (
            FileOperationType.CREATE,
            FileOperationType.MODIFY,
            FileOperationType.DELETE,
        ):
            return None

        full_path = self._resolve(op.path)
        exists = await self._file_system.exists(full_path)
        if exists and not self._file_system.is_text_file(full_path):
            return DiffResult.binary_file(op.path)

        if op.operation_type == FileOperationType.DELETE:
            if not exists:
                return None
            original = await self._file_system.read(full_path)
            return self._diff_service.compute_delete_file_diff(original, op.path)

        if not exists:
            return self._diff_service.compute_new_file_diff(op.content or "", op.path)
        original = await self._file_system.read(full_path)
        return self._diff_service.compute_diff(original, op.content or "", op.path)

    async def undo_batch_apply(self, result: BatchApplyResult) -> bool:
        """Undo the successful operations of a committed batch, newest first.

        Returns:
            True if every successful operation was undone.
        """
        if result.was_rolled_back:
            return False
        all_undone = True
        for apply_result in reversed(result.results):
            if apply_result.success and not await self.undo_apply_result(apply_result):
                all_undone = False
        logger.info("batch_undone", succeeded=all_undone, operations=len(result.results))
        return all_undone

    async def undo_apply_result(self, result: ApplyResult) -> bool:
        """Reverse one successful batch operation using its change type and backup."""
        if not result.success or result.change_type is None:
            return False

        fs = self._file_system
        async with self._file_changes.apply_lock:
            try:
                if result.change_type == FileChangeType.CREATED:
                    if await fs.directory_exists(result.file_path):
                        return await fs.delete_empty_directory(result.file_path)
                    if await fs.exists(result.file_path):
                        await fs.delete(result.file_path)
                    return True
                if result.change_type == FileChangeType.RENAMED:
                    if result.previous_path is None or await fs.exists(result.previous_path):
                        return False
                    if not await fs.exists(result.file_path):
                        return False
                    await fs.move(result.file_path, result.previous_path)
                    return True
                if result.backup_path is None:
                    return False
                return await self._backup_store.restore_backup(result.backup_path, result.file_path)
            except OSError as e:
                logger.error("undo_operation_failed", path=result.relative_path, error=str(e))
                return False

    async def _run(self, context: ApplyContext) -> BatchApplyResult:
        options = self._options
        token = context.cancellation_token
        operations = context.proposal.selected_operations

        context.set_phase(BatchApplyPhase.VALIDATING)
        if options.validate_before_apply:
            validation = await self.validate_proposal(context.proposal, token)
            if not validation.is_valid and not options.continue_on_failure:
                messages = "; ".join(issue.message for issue in validation.errors)
                context.rollback_manager.commit()
                context.set_phase(BatchApplyPhase.COMPLETED)
                logger.warning("batch_apply_refused", proposal_id=context.proposal.id, errors=messages)
                return BatchApplyResult.rolled_back(
                    f"Validation failed: {messages}",
                    started_at=context.started_at,
                    total_operations=context.total_operations,
                )

        token.raise_if_cancelled()
        context.set_phase(BatchApplyPhase.CREATING_DIRECTORIES)
        for directory in planning.directories_to_create(
            operations, self._workspace_path, options.create_parent_directories
        ):
            await self._ensure_directory(context, directory)

        token.raise_if_cancelled()
        context.set_phase(BatchApplyPhase.CREATING_BACKUPS)
        if options.enable_backups:
            await self._create_backups(context, operations)

        context.set_phase(BatchApplyPhase.WRITING_FILES)
        for op in operations:
            token.raise_if_cancelled()
            context.current_file = op.path
            result = await self._dispatch(context, op)
            context.record_result(result)
            self._events.publish(OperationCompletedEvent(
                proposal_id=context.proposal.id,
                operation=op,
                result=result,
            ))
            if not result.success and not options.continue_on_failure:
                logger.warning("batch_apply_stopped", path=op.path, error=result.error_message)
                break
        context.current_file = None

        if (
            context.failed_count
            and options.rollback_on_partial_failure
            and options.enable_rollback
        ):
            rollback_ok = await self._rollback(context)
            context.set_phase(BatchApplyPhase.COMPLETED)
            return context.build_result(
                was_rolled_back=True,
                rollback_succeeded=rollback_ok,
                error_message=f"{context.failed_count} operation(s) failed, changes were rolled back",
            )

        context.set_phase(BatchApplyPhase.FINALIZING)
        context.rollback_manager.commit()
        context.set_phase(BatchApplyPhase.COMPLETED)
        result = context.build_result()
        logger.info(
            "batch_apply_finished",
            proposal_id=context.proposal.id,
            succeeded=result.success_count,
            failed=result.failed_count,
            skipped=result.skipped_count,
        )
        return result

    async def _rollback(self, context: ApplyContext) -> bool:
        context.set_phase(BatchApplyPhase.ROLLING_BACK)
        async with self._file_changes.apply_lock:
            return await context.rollback_manager.rollback(CancellationToken.NONE)

    async def _dispatch(self, context: ApplyContext, op: FileOperation) -> ApplyResult:
        handler = self._handlers.get(op.operation_type)
        if handler is None:
            raise UnsupportedOperationError(f"No handler for {op.operation_type}")

        full_path = self._resolve(op.path) if op.path else ""
        if not op.path or not planning.is_within_workspace(full_path, self._workspace_path):
            return self._failed(op, ApplyResultType.VALIDATION_FAILED, "Path is empty or outside the workspace")

        async with self._file_changes.apply_lock:
            try:
                result = await handler(context, op)
            except OSError as e:
                result = self._failed(op, classify_os_error(e), str(e))

        log = logger.info if result.success else logger.warning
        log(
            "operation_applied",
            operation=op.operation_type.value,
            path=op.path,
            result_type=result.result_type.value,
        )
        return result

    async def _ensure_directory(self, context: ApplyContext, directory: str) -> None:
        """Create directory and any missing parents, registering each created level."""
        missing: list[str] = []
        current = directory
        while not await self._file_system.directory_exists(current):
            missing.append(current)
            parent = os.path.dirname(current)
            if parent == current:
                break
            current = parent

        async with self._file_changes.apply_lock:
            for level in reversed(missing):
                try:
                    await self._file_system.create_directory(level)
                except OSError as e:
                    logger.warning("directory_create_failed", path=level, error=str(e))
                    return
                context.rollback_manager.register_created_directory(level)
                context.created_directories.append(level)

    async def _create_backups(self, context: ApplyContext, operations: list[FileOperation]) -> None:
        for op in operations:
            if op.operation_type not in (FileOperationType.MODIFY, FileOperationType.DELETE):
                continue
            full_path = self._resolve(op.path)
            if full_path in context.modified_files or not await self._file_system.exists(full_path):
                continue
            try:
                backup_path = await self._backup_store.create_backup(full_path)
            except OSError as e:
                logger.warning("backup_failed", path=op.path, error=str(e))
                continue
            context.modified_files[full_path] = backup_path
            context.backup_paths[full_path] = backup_path

    async def _backup_for(self, context: ApplyContext, full_path: str) -> str | None:
        """Backup taken during the backup phase, or a fresh one if none exists."""
        if full_path in context.modified_files:
            return context.modified_files[full_path]
        if not self._options.enable_backups:
            return None
        backup_path = await self._backup_store.create_backup(full_path)
        context.modified_files[full_path] = backup_path
        context.backup_paths[full_path] = backup_path
        return backup_path

    async def _handle_write(self, context: ApplyContext, op: FileOperation) -> ApplyResult:
        full_path = self._resolve(op.path)
        fs = self._file_system

        if not self._options.create_parent_directories and not await fs.directory_exists(
            os.path.dirname(full_path)
        ):
            return self._failed(op, ApplyResultType.ERROR, "Parent directory does not exist")

        if await fs.exists(full_path):
            backup_path = await self._backup_for(context, full_path)
            await fs.write(full_path, op.content or "")
            if backup_path is not None:
                context.rollback_manager.register_modified_file(full_path, backup_path)
            return self._succeeded(op, FileChangeType.MODIFIED, backup_path=backup_path)

        await fs.write(full_path, op.content or "")
        context.rollback_manager.register_created_file(full_path)
        context.created_files.append(full_path)
        return self._succeeded(op, FileChangeType.CREATED)

    async def _handle_delete(self, context: ApplyContext, op: FileOperation) -> ApplyResult:
        full_path = self._resolve(op.path)
        if not await self._file_system.exists(full_path):
            return self._succeeded(op, FileChangeType.DELETED)

        backup_path = await self._backup_for(context, full_path)
        await self._file_system.delete(full_path)
        if backup_path is not None:
            context.rollback_manager.register_deleted_file(full_path, backup_path)
        return self._succeeded(op, FileChangeType.DELETED, backup_path=backup_path)

    async def _handle_move(self, context: ApplyContext, op: FileOperation) -> ApplyResult:
        if not op.new_path:
            return self._failed(
                op, ApplyResultType.VALIDATION_FAILED, f"{op.operation_type.value} requires a new path"
            )
        source = self._resolve(op.path)
        destination = self._resolve(op.new_path)
        if not planning.is_within_workspace(destination, self._workspace_path):
            return self._failed(op, ApplyResultType.VALIDATION_FAILED, "New path is outside the workspace")
        if not await self._file_system.exists(source):
            return self._failed(op, ApplyResultType.ERROR, f"Source file not found: {op.path}")
        if await self._file_system.exists(destination):
            return self._failed(op, ApplyResultType.ERROR, f"Destination already exists: {op.new_path}")

        await self._file_system.move(source, destination)
        context.rollback_manager.register_renamed_file(source, destination)
        result = self._succeeded(op, FileChangeType.RENAMED, full_path=destination)
        result.previous_path = source
        return result

    async def _handle_create_directory(self, context: ApplyContext, op: FileOperation) -> ApplyResult:
        full_path = self._resolve(op.path)
        if not await self._file_system.directory_exists(full_path):
            await self._file_system.create_directory(full_path)
            context.rollback_manager.register_created_directory(full_path)
            context.created_directories.append(full_path)
        return self._succeeded(op, FileChangeType.CREATED)

    def _resolve(self, path: str) -> str:
        return planning.resolve_path(self._workspace_path, path)

    def _succeeded(
        self,
        op: FileOperation,
        change_type: FileChangeType,
        backup_path: str | None = None,
        full_path: str | None = None,
    ) -> ApplyResult:
        full_path = full_path or self._resolve(op.path)
        return ApplyResult.succeeded(
            full_path,
            change_type,
            relative_path=os.path.relpath(full_path, self._workspace_path),
            backup_path=backup_path,
            operation_id=op.id,
        )

    def _failed(self, op: FileOperation, result_type: ApplyResultType, message: str) -> ApplyResult:
        full_path = self._resolve(op.path) if op.path else ""
        return ApplyResult.failed(
            full_path,
            result_type,
            message,
            relative_path=op.path,
            operation_id=op.id,
        )
