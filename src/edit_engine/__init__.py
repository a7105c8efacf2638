"""Diff computation, transactional apply and rollback for proposed file edits."""

from edit_engine.cancellation import CancellationToken
from edit_engine.config import EngineSettings, load_settings
from edit_engine.engine import EditEngine
from edit_engine.events import (
    ChangeFailedEvent,
    ChangeUndoneEvent,
    ConflictDetectedEvent,
    EngineEvent,
    EventChannel,
    FileChangedEvent,
    OperationCompletedEvent,
    ValidationCompletedEvent,
)
from edit_engine.logging_setup import configure_logging

__all__ = [
    "CancellationToken",
    "ChangeFailedEvent",
    "ChangeUndoneEvent",
    "ConflictDetectedEvent",
    "EditEngine",
    "EngineEvent",
    "EngineSettings",
    "EventChannel",
    "FileChangedEvent",
    "OperationCompletedEvent",
    "ValidationCompletedEvent",
    "configure_logging",
    "load_settings",
]
