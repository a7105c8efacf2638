"""Compensating actions that undo the filesystem effects of one batch."""

import structlog

from edit_engine.cancellation import CancellationToken
from edit_engine.models.proposal_models import RollbackAction, RollbackActionType
from edit_engine.services.backup import BackupStore
from edit_engine.services.filesystem import FileSystem

logger = structlog.get_logger(__name__)


class RollbackManager:
    """Records one compensating action per mutation and replays them in reverse.

    A manager serves exactly one batch. It ends either with rollback() or
    with commit(); after either, further registrations are ignored and
    rollback() returns False.
    """

    def __init__(self, file_system: FileSystem, backup_store: BackupStore):
        self._file_system = file_system
        self._backup_store = backup_store
        self._actions: list[RollbackAction] = []
        self._next_order = 0
        self._is_committed = False
        self._is_rolled_back = False

    @property
    def action_count(self) -> int:
        return len(self._actions)

    @property
    def actions(self) -> tuple[RollbackAction, ...]:
        return tuple(self._actions)

    @property
    def is_committed(self) -> bool:
        return self._is_committed

    @property
    def is_rolled_back(self) -> bool:
        return self._is_rolled_back

    @property
    def is_closed(self) -> bool:
        return self._is_committed or self._is_rolled_back

    def register_created_file(self, path: str) -> None:
        self._register(RollbackActionType.DELETE_CREATED_FILE, path)

    def register_created_directory(self, path: str) -> None:
        self._register(RollbackActionType.DELETE_CREATED_DIRECTORY, path)

    def register_modified_file(self, path: str, backup_path: str) -> None:
        self._register(RollbackActionType.RESTORE_MODIFIED_FILE, path, backup_path=backup_path)

    def register_deleted_file(self, path: str, backup_path: str) -> None:
        self._register(RollbackActionType.RESTORE_DELETED_FILE, path, backup_path=backup_path)

    def register_renamed_file(self, original_path: str, new_path: str) -> None:
        self._register(RollbackActionType.UNDO_RENAME, new_path, original_path=original_path)

    async def rollback(
        self,
        cancellation_token: CancellationToken = CancellationToken.NONE,
    ) -> bool:
        """Run every registered compensation, newest first.

        A failing action is logged and counted, and the remaining actions
        still run.

        Args:
            cancellation_token: Checked between actions. Batch rollback
                passes CancellationToken.NONE so it always completes.

        Returns:
            True if every action succeeded. False if any failed or if the
            manager was already committed or rolled back.

        Raises:
            OperationCancelledError: If a cancellable token is cancelled
                between actions.
        """
        if self.is_closed:
            logger.debug("rollback_skipped", committed=self._is_committed)
            return False

        self._is_rolled_back = True
        pending = sorted(self._actions, key=lambda a: a.order, reverse=True)
        self._actions = []
        logger.info("rollback_started", actions=len(pending))

        all_succeeded = True
        for action in pending:
            cancellation_token.raise_if_cancelled()
            try:
                succeeded = await self._execute_action(action)
            except Exception as e:
                logger.error(
                    "rollback_action_failed",
                    action=action.action_type.value,
                    path=action.path,
                    error=str(e),
                )
                succeeded = False
            if not succeeded:
                all_succeeded = False

        logger.info("rollback_finished", succeeded=all_succeeded)
        return all_succeeded

    def commit(self) -> None:
        """Close the transaction. No rollback is possible afterwards."""
        self._is_committed = True
        self._actions = []
        logger.debug("rollback_committed")

    def clear(self) -> None:
        """Forget registered actions without closing the transaction."""
        self._actions = []

    def _register(
        self,
        action_type: RollbackActionType,
        path: str,
        backup_path: str | None = None,
        original_path: str | None = None,
    ) -> None:
        if self.is_closed:
            return
        self._actions.append(RollbackAction(
            action_type=action_type,
            path=path,
            backup_path=backup_path,
            original_path=original_path,
            order=self._next_order,
        ))
        self._next_order += 1

    async def _execute_action(self, action: RollbackAction) -> bool:
        fs = self._file_system

        if action.action_type == RollbackActionType.DELETE_CREATED_FILE:
            if await fs.exists(action.path):
                await fs.delete(action.path)
                logger.info("deleted_created_file", path=action.path)
            return True

        if action.action_type in (
            RollbackActionType.RESTORE_MODIFIED_FILE,
            RollbackActionType.RESTORE_DELETED_FILE,
        ):
            if action.backup_path is None:
                logger.warning("rollback_missing_backup", path=action.path)
                return False
            restored = await self._backup_store.restore_backup(action.backup_path, action.path)
            if restored:
                logger.info("restored_file", path=action.path, action=action.action_type.value)
            return restored

        if action.action_type == RollbackActionType.DELETE_CREATED_DIRECTORY:
            # Directories that gained content are left in place
            if await fs.delete_empty_directory(action.path):
                logger.info("deleted_created_directory", path=action.path)
            else:
                logger.debug("kept_created_directory", path=action.path)
            return True

        if action.action_type == RollbackActionType.UNDO_RENAME:
            if action.original_path is None:
                return False
            if not await fs.exists(action.path) or await fs.exists(action.original_path):
                logger.warning(
                    "rename_not_reversible",
                    path=action.path,
                    original_path=action.original_path,
                )
                return False
            await fs.move(action.path, action.original_path)
            logger.info("reverted_rename", path=action.path, original_path=action.original_path)
            return True

        return False
