"""Exceptions for batch orchestration.

Note: Names chosen to avoid collisions with stdlib and framework exceptions.
"""

from edit_engine.services.exceptions import EngineError


class OrchestratorError(EngineError):
    """Base exception for all batch orchestration operations."""


class UnsupportedOperationError(OrchestratorError):
    """Raised when a file operation type has no handler."""
