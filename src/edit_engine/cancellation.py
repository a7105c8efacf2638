"""Cooperative cancellation shared between a caller and a running batch."""

import threading

from edit_engine.services.exceptions import OperationCancelledError


class CancellationToken:
    """Thread-safe flag checked between operations.

    ``CancellationToken.NONE`` can never be cancelled and is used for work
    that must run to completion, such as rollback.
    """

    NONE: "CancellationToken"

    def __init__(self, can_be_cancelled: bool = True):
        self._event = threading.Event()
        self._can_be_cancelled = can_be_cancelled

    @property
    def can_be_cancelled(self) -> bool:
        return self._can_be_cancelled

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        if self._can_be_cancelled:
            self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelledError("Operation was cancelled")


CancellationToken.NONE = CancellationToken(can_be_cancelled=False)
