import errno
from pathlib import Path

import pytest

from edit_engine.events import EventChannel
from edit_engine.models.options import ProposalServiceOptions
from edit_engine.orchestrator.proposal_service import ProposalService
from edit_engine.services.backup import LocalBackupStore
from edit_engine.services.diff_service import DiffService
from edit_engine.services.file_change_service import FileChangeService
from edit_engine.services.filesystem import LocalFileSystem


class FailingFileSystem(LocalFileSystem):
    """LocalFileSystem whose writes fail for paths ending with a given suffix."""

    def __init__(self, failing_suffix: str, error: BaseException | None = None):
        super().__init__()
        self.failing_suffix = failing_suffix
        self.error = error or PermissionError(errno.EACCES, "Permission denied")

    async def write(self, path: str, content: str) -> None:
        if path.endswith(self.failing_suffix):
            raise self.error
        await super().write(path, content)


@pytest.fixture
def make_failing_file_system():
    """Factory for filesystems that fail writes to one file."""

    def factory(failing_suffix: str, error: BaseException | None = None) -> FailingFileSystem:
        return FailingFileSystem(failing_suffix, error)

    return factory


@pytest.fixture
def workspace(tmp_path) -> Path:
    path = tmp_path / "workspace"
    path.mkdir()
    return path


@pytest.fixture
def backup_dir(tmp_path) -> Path:
    return tmp_path / "backups"


@pytest.fixture
def file_system():
    return LocalFileSystem()


@pytest.fixture
def backup_store(backup_dir):
    return LocalBackupStore(str(backup_dir))


@pytest.fixture
def diff_service(file_system):
    return DiffService(file_system)


@pytest.fixture
def events():
    return EventChannel()


@pytest.fixture
def file_change_service(workspace, file_system, backup_store, diff_service, events):
    return FileChangeService(
        str(workspace),
        file_system,
        backup_store,
        diff_service,
        events=events,
    )


@pytest.fixture
def make_proposal_service(workspace, backup_store, events):
    """Factory building a ProposalService over an optional custom filesystem."""

    def factory(
        options: ProposalServiceOptions | None = None,
        file_system: LocalFileSystem | None = None,
    ) -> ProposalService:
        fs = file_system or LocalFileSystem()
        diff_service = DiffService(fs)
        file_changes = FileChangeService(
            str(workspace), fs, backup_store, diff_service, events=events
        )
        return ProposalService(
            str(workspace),
            fs,
            backup_store,
            diff_service,
            file_changes,
            events=events,
            options=options,
        )

    return factory
