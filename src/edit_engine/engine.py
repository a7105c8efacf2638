"""One object wiring every engine service around a workspace."""

from edit_engine.config import EngineSettings, load_settings
from edit_engine.events import EventChannel
from edit_engine.logging_setup import configure_logging
from edit_engine.orchestrator.proposal_service import ProposalService
from edit_engine.services.backup import LocalBackupStore
from edit_engine.services.diff_service import DiffService
from edit_engine.services.file_change_service import FileChangeService
from edit_engine.services.filesystem import LocalFileSystem
from edit_engine.services.history import ChangeHistoryStore


class EditEngine:
    """Services sharing one filesystem, backup store, history and event channel."""

    def __init__(
        self,
        workspace_path: str,
        settings: EngineSettings,
        file_system: LocalFileSystem,
        backup_store: LocalBackupStore,
        events: EventChannel,
        diff_service: DiffService,
        file_changes: FileChangeService,
        proposals: ProposalService,
    ):
        self.workspace_path = workspace_path
        self.settings = settings
        self.file_system = file_system
        self.backup_store = backup_store
        self.events = events
        self.diff_service = diff_service
        self.file_changes = file_changes
        self.proposals = proposals

    @classmethod
    def from_settings(
        cls,
        workspace_path: str,
        settings: EngineSettings | None = None,
        configure_logs: bool = False,
    ) -> "EditEngine":
        """Build an engine for a workspace.

        Args:
            workspace_path: Root that relative paths resolve against.
            settings: Engine settings. Loaded from the environment when None.
            configure_logs: Also configure structlog from the settings.

        Returns:
            A ready EditEngine. Nothing is written until an apply is requested.
        """
        settings = settings or load_settings()
        if configure_logs:
            configure_logging(settings.log_level, settings.json_logs)

        file_system = LocalFileSystem()
        backup_store = LocalBackupStore(settings.backup_dir)
        events = EventChannel()
        diff_service = DiffService(file_system, settings.diff_options)
        file_changes = FileChangeService(
            workspace_path,
            file_system,
            backup_store,
            diff_service,
            history=ChangeHistoryStore(),
            events=events,
            default_options=settings.apply_options,
        )
        proposals = ProposalService(
            workspace_path,
            file_system,
            backup_store,
            diff_service,
            file_changes,
            events=events,
            options=settings.proposal_options,
        )
        return cls(
            workspace_path=file_changes.workspace_path,
            settings=settings,
            file_system=file_system,
            backup_store=backup_store,
            events=events,
            diff_service=diff_service,
            file_changes=file_changes,
            proposals=proposals,
        )
