"""Typed change notifications and the channel they are published on."""

import threading
from collections.abc import Callable
from datetime import datetime, timezone

import structlog
from pydantic import BaseModel, ConfigDict, Field

from edit_engine.models.change_models import ApplyResult, FileChangeRecord
from edit_engine.models.proposal_models import (
    FileOperation,
    FileTreeProposal,
    ProposalValidationResult,
)

logger = structlog.get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EngineEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    occurred_at: datetime = Field(default_factory=_utcnow)


class FileChangedEvent(EngineEvent):
    record: FileChangeRecord
    result: ApplyResult


class ChangeFailedEvent(EngineEvent):
    result: ApplyResult


class ChangeUndoneEvent(EngineEvent):
    record: FileChangeRecord


class ConflictDetectedEvent(EngineEvent):
    file_path: str
    expected_hash: str
    actual_hash: str


class OperationCompletedEvent(EngineEvent):
    proposal_id: str
    operation: FileOperation
    result: ApplyResult


class ValidationCompletedEvent(EngineEvent):
    proposal: FileTreeProposal
    validation: ProposalValidationResult


EventHandler = Callable[[EngineEvent], None]


class EventChannel:
    """Synchronous publish/subscribe channel for engine events.

    Handlers run on the publishing task. An exception in a handler is
    logged and does not reach the publisher.
    """

    def __init__(self):
        self._subscriptions: list[tuple[type[EngineEvent], EventHandler]] = []
        self._lock = threading.Lock()

    def subscribe(
        self,
        handler: EventHandler,
        event_type: type[EngineEvent] = EngineEvent,
    ) -> Callable[[], None]:
        """Register handler for events of event_type and its subclasses.

        Args:
            handler: Callable receiving each matching event.
            event_type: Event class to filter on. Defaults to all events.

        Returns:
            A callable that removes this subscription.
        """
        subscription = (event_type, handler)
        with self._lock:
            self._subscriptions.append(subscription)

        def unsubscribe() -> None:
            with self._lock:
                if subscription in self._subscriptions:
                    self._subscriptions.remove(subscription)

        return unsubscribe

    def publish(self, event: EngineEvent) -> None:
        with self._lock:
            handlers = [h for t, h in self._subscriptions if isinstance(event, t)]
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception("event_handler_failed", event_type=type(event).__name__)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)
