"""Diff, filesystem, backup and single-file apply services."""

from edit_engine.services.backup import BackupStore, LocalBackupStore
from edit_engine.services.diff_service import DiffService, replace_lines
from edit_engine.services.exceptions import (
    ConfigurationError,
    DiffRangeError,
    EngineError,
    InvalidCodeBlockError,
    OperationCancelledError,
)
from edit_engine.services.file_change_service import FileChangeService, classify_os_error
from edit_engine.services.filesystem import (
    DirectoryWatch,
    FileSystem,
    LocalFileSystem,
    load_ignore_patterns,
    should_ignore,
    watch_directory,
)
from edit_engine.services.history import ChangeHistoryStore

__all__ = [
    "BackupStore",
    "ChangeHistoryStore",
    "ConfigurationError",
    "DiffRangeError",
    "DiffService",
    "DirectoryWatch",
    "EngineError",
    "FileChangeService",
    "FileSystem",
    "InvalidCodeBlockError",
    "LocalBackupStore",
    "LocalFileSystem",
    "OperationCancelledError",
    "classify_os_error",
    "load_ignore_patterns",
    "replace_lines",
    "should_ignore",
    "watch_directory",
]
