"""Exceptions for diff and apply services."""


class EngineError(Exception):
    """Base exception for all edit engine operations."""


class DiffRangeError(EngineError, ValueError):
    """Raised when a line-replacement range falls outside the target text."""


class InvalidCodeBlockError(EngineError, ValueError):
    """Raised when a code block cannot be turned into a diff."""


class OperationCancelledError(EngineError):
    """Raised when a cancellation token is observed between operations."""


class ConfigurationError(EngineError):
    """Raised when engine settings cannot be parsed."""
