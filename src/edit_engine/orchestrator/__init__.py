"""Batch orchestration of multi-file proposals."""

from edit_engine.orchestrator.exceptions import OrchestratorError, UnsupportedOperationError
from edit_engine.orchestrator.planning import resolve_proposal_status
from edit_engine.orchestrator.proposal_service import ProposalService
from edit_engine.orchestrator.recovery import RollbackManager
from edit_engine.orchestrator.state import ApplyContext

__all__ = [
    "ApplyContext",
    "OrchestratorError",
    "ProposalService",
    "RollbackManager",
    "UnsupportedOperationError",
    "resolve_proposal_status",
]
