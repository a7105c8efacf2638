"""Local backup store used to snapshot files before they are mutated."""

import asyncio
import os
import shutil
import time
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Protocol

import structlog

logger = structlog.get_logger(__name__)

BACKUP_TIMESTAMP_FORMAT = "%Y%m%d%H%M%S%f"


class BackupStore(Protocol):
    """Backup operations the engine depends on."""

    async def create_backup(self, path: str) -> str: ...

    async def restore_backup(self, backup_path: str, target_path: str) -> bool: ...

    async def delete_backup(self, backup_path: str) -> bool: ...

    async def backup_exists(self, backup_path: str) -> bool: ...

    async def cleanup_expired_backups(self, max_age: timedelta) -> int: ...


class LocalBackupStore:
    """Keeps full-file copies under one backup directory.

    Backup names are ``{timestamp}_{id}_{file name}`` so two backups of the
    same file never collide.
    """

    def __init__(self, backup_dir: str):
        self._backup_dir = Path(backup_dir)

    @property
    def backup_dir(self) -> str:
        return str(self._backup_dir)

    async def create_backup(self, path: str) -> str:
        """Copy path into the backup directory and return the copy's path."""
        return await asyncio.to_thread(self._create_backup, path)

    async def restore_backup(self, backup_path: str, target_path: str) -> bool:
        """Copy a backup over target_path.

        Returns:
            False if the backup does not exist, True once restored.
        """
        restored = await asyncio.to_thread(self._restore_backup, backup_path, target_path)
        if not restored:
            logger.warning("backup_missing", backup_path=backup_path, target=target_path)
        return restored

    async def delete_backup(self, backup_path: str) -> bool:
        return await asyncio.to_thread(self._delete_backup, backup_path)

    async def backup_exists(self, backup_path: str) -> bool:
        return await asyncio.to_thread(os.path.isfile, backup_path)

    async def cleanup_expired_backups(self, max_age: timedelta) -> int:
        """Delete backups older than max_age.

        Returns:
            Number of backups deleted.
        """
        removed = await asyncio.to_thread(self._cleanup_expired, max_age)
        if removed:
            logger.info("backups_cleaned", removed=removed, backup_dir=self.backup_dir)
        return removed

    def _create_backup(self, path: str) -> str:
        self._backup_dir.mkdir(parents=True, exist_ok=True)
        stamp = datetime.now(timezone.utc).strftime(BACKUP_TIMESTAMP_FORMAT)
        name = f"{stamp}_{uuid.uuid4().hex[:8]}_{Path(path).name}"
        destination = self._backup_dir / name
        shutil.copyfile(path, destination)
        logger.debug("backup_created", source=path, backup_path=str(destination))
        return str(destination)

    @staticmethod
    def _restore_backup(backup_path: str, target_path: str) -> bool:
        if not os.path.isfile(backup_path):
            return False
        parent = os.path.dirname(target_path)
        if parent:
            os.makedirs(parent, exist_ok=True)
        shutil.copy2(backup_path, target_path)
        return True

    @staticmethod
    def _delete_backup(backup_path: str) -> bool:
        if not os.path.isfile(backup_path):
            return False
        os.remove(backup_path)
        return True

    def _cleanup_expired(self, max_age: timedelta) -> int:
        if not self._backup_dir.is_dir():
            return 0
        cutoff = time.time() - max_age.total_seconds()
        removed = 0
        for entry in self._backup_dir.iterdir():
            if entry.is_file() and entry.stat().st_mtime < cutoff:
                entry.unlink()
                removed += 1
        return removed
