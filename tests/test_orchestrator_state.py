"""Tests for the per-batch apply context."""

from unittest.mock import MagicMock

from edit_engine.cancellation import CancellationToken
from edit_engine.models import (
    ApplyResult,
    ApplyResultType,
    BatchApplyPhase,
    FileChangeType,
    FileOperation,
    FileOperationType,
    FileTreeProposal,
    ProposalServiceOptions,
)
from edit_engine.orchestrator.state import ApplyContext


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def make_proposal(count: int = 3) -> FileTreeProposal:
    return FileTreeProposal(operations=[
        FileOperation(operation_type=FileOperationType.CREATE, path=f"f{i}.txt", content="x", order=i)
        for i in range(count)
    ])


def make_context(proposal: FileTreeProposal | None = None, sink=None, token=None) -> ApplyContext:
    return ApplyContext(
        proposal=proposal or make_proposal(),
        workspace_path="/ws",
        options=ProposalServiceOptions.default(),
        rollback_manager=MagicMock(),
        cancellation_token=token or CancellationToken(),
        progress_sink=sink,
    )


def make_success(path: str = "/ws/f.txt") -> ApplyResult:
    return ApplyResult.succeeded(path, FileChangeType.CREATED)


def make_failure(path: str = "/ws/f.txt") -> ApplyResult:
    return ApplyResult.failed(path, ApplyResultType.ERROR, "boom")


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------

class TestApplyContext:
    """Tests for ApplyContext bookkeeping."""

    def test_initial_state(self):
        context = make_context()
        assert context.phase == BatchApplyPhase.VALIDATING
        assert context.total_operations == 3
        assert context.completed_operations == 0
        assert context.phase_history == []

    def test_total_counts_only_selected_operations(self):
        proposal = make_proposal()
        proposal.operations[0].is_selected = False
        assert make_context(proposal).total_operations == 2

    def test_set_phase_reports_progress(self):
        snapshots = []
        context = make_context(sink=snapshots.append)

        context.set_phase(BatchApplyPhase.CREATING_DIRECTORIES)

        assert context.phase_history == [BatchApplyPhase.CREATING_DIRECTORIES]
        assert snapshots[-1].phase == BatchApplyPhase.CREATING_DIRECTORIES
        assert snapshots[-1].can_cancel is True

    def test_rolling_back_cannot_be_cancelled(self):
        snapshots = []
        context = make_context(sink=snapshots.append)
        context.set_phase(BatchApplyPhase.ROLLING_BACK)
        assert context.is_rolling_back is True
        assert snapshots[-1].can_cancel is False

    def test_record_result_counts(self):
        snapshots = []
        context = make_context(sink=snapshots.append)
        context.record_result(make_success())
        context.record_result(make_failure())

        assert context.completed_operations == 2
        assert (context.success_count, context.failed_count) == (1, 1)
        assert snapshots[-1].completed_operations == 2
        assert snapshots[-1].percent_complete == 2 / 3 * 100.0

    def test_sink_exception_is_contained(self):
        sink = MagicMock(side_effect=RuntimeError("sink broke"))
        context = make_context(sink=sink)
        context.set_phase(BatchApplyPhase.WRITING_FILES)
        assert sink.called

    def test_snapshot_reflects_cancellation_request(self):
        token = CancellationToken()
        context = make_context(token=token)
        token.cancel()
        assert context.snapshot().cancellation_requested is True

    def test_build_result_all_succeeded(self):
        context = make_context(make_proposal(2))
        context.record_result(make_success())
        context.record_result(make_success())
        context.backup_paths["/ws/a"] = "/backups/a"

        result = context.build_result()

        assert result.all_succeeded is True
        assert result.success_count == 2
        assert result.skipped_count == 0
        assert result.backup_paths == {"/ws/a": "/backups/a"}
        assert result.rollback_succeeded is None

    def test_build_result_counts_skipped(self):
        context = make_context()
        context.record_result(make_success())
        context.record_result(make_failure())

        result = context.build_result()

        assert result.all_succeeded is False
        assert (result.success_count, result.failed_count, result.skipped_count) == (1, 1, 1)
        assert result.total_operations == 3

    def test_cancelled_batch_never_all_succeeded(self):
        context = make_context(make_proposal(1))
        context.record_result(make_success())
        context.is_cancelled = True
        result = context.build_result()
        assert result.all_succeeded is False
        assert result.was_cancelled is True
