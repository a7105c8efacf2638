"""Mutable accumulator for one batch apply."""

import time
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

import structlog

from edit_engine.cancellation import CancellationToken
from edit_engine.models.change_models import ApplyResult
from edit_engine.models.options import ProposalServiceOptions
from edit_engine.models.proposal_models import (
    BatchApplyPhase,
    BatchApplyProgress,
    BatchApplyResult,
    FileTreeProposal,
)
from edit_engine.orchestrator.recovery import RollbackManager

logger = structlog.get_logger(__name__)

ProgressSink = Callable[[BatchApplyProgress], None]


class ApplyContext:
    """State of one apply_proposal call.

    Owned by that call alone. Observers only ever see the immutable
    BatchApplyProgress snapshots it emits.
    """

    def __init__(
        self,
        proposal: FileTreeProposal,
        workspace_path: str,
        options: ProposalServiceOptions,
        rollback_manager: RollbackManager,
        cancellation_token: CancellationToken,
        progress_sink: ProgressSink | None = None,
    ):
        self.proposal = proposal
        self.workspace_path = workspace_path
        self.options = options
        self.rollback_manager = rollback_manager
        self.cancellation_token = cancellation_token
        self.progress_sink = progress_sink

        self.started_at = datetime.now(timezone.utc)
        self._started_monotonic = time.monotonic()

        self.phase = BatchApplyPhase.VALIDATING
        self.phase_history: list[BatchApplyPhase] = []
        self.total_operations = len(proposal.selected_operations)
        self.completed_operations = 0
        self.current_file: str | None = None

        self.results: list[ApplyResult] = []
        self.backup_paths: dict[str, str] = {}  # full path -> backup path
        self.created_directories: list[str] = []
        self.created_files: list[str] = []
        self.modified_files: dict[str, str] = {}  # full path -> pre-batch backup

        self.is_cancelled = False
        self.is_rolling_back = False

    @property
    def elapsed(self) -> timedelta:
        return timedelta(seconds=time.monotonic() - self._started_monotonic)

    @property
    def success_count(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed_count(self) -> int:
        return sum(1 for r in self.results if not r.success)

    def set_phase(self, phase: BatchApplyPhase) -> None:
        """Enter a phase and report progress."""
        self.phase = phase
        self.phase_history.append(phase)
        if phase == BatchApplyPhase.ROLLING_BACK:
            self.is_rolling_back = True
        logger.debug("batch_phase", proposal_id=self.proposal.id, phase=phase.value)
        self.report_progress()

    def record_result(self, result: ApplyResult) -> None:
        """Store an operation's result and report progress."""
        self.results.append(result)
        self.completed_operations += 1
        self.report_progress()

    def snapshot(self) -> BatchApplyProgress:
        return BatchApplyProgress(
            total_operations=self.total_operations,
            completed_operations=self.completed_operations,
            phase=self.phase,
            current_file=self.current_file,
            can_cancel=not self.is_rolling_back,
            cancellation_requested=self.cancellation_token.is_cancelled,
            elapsed=self.elapsed,
        )

    def report_progress(self) -> None:
        if self.progress_sink is None:
            return
        try:
            self.progress_sink(self.snapshot())
        except Exception:
            logger.exception("progress_sink_failed", proposal_id=self.proposal.id)

    def build_result(
        self,
        was_rolled_back: bool = False,
        rollback_succeeded: bool | None = None,
        error_message: str | None = None,
    ) -> BatchApplyResult:
        success = self.success_count
        failed = self.failed_count
        return BatchApplyResult(
            all_succeeded=(
                failed == 0
                and success == self.total_operations
                and not was_rolled_back
                and not self.is_cancelled
            ),
            success_count=success,
            failed_count=failed,
            skipped_count=self.total_operations - success - failed,
            results=list(self.results),
            started_at=self.started_at,
            completed_at=datetime.now(timezone.utc),
            backup_paths=dict(self.backup_paths),
            was_cancelled=self.is_cancelled,
            was_rolled_back=was_rolled_back,
            rollback_succeeded=rollback_succeeded,
            error_message=error_message,
        )
