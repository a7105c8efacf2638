"""Tests for cooperative cancellation tokens."""

import pytest

from edit_engine.cancellation import CancellationToken
from edit_engine.services.exceptions import OperationCancelledError


class TestCancellationToken:

    def test_new_token_is_not_cancelled(self):
        token = CancellationToken()
        assert token.is_cancelled is False
        assert token.can_be_cancelled is True
        token.raise_if_cancelled()

    def test_cancel(self):
        token = CancellationToken()
        token.cancel()
        assert token.is_cancelled is True
        with pytest.raises(OperationCancelledError):
            token.raise_if_cancelled()

    def test_none_token_ignores_cancel(self):
        """The shared NONE token can never be cancelled."""
        CancellationToken.NONE.cancel()
        assert CancellationToken.NONE.is_cancelled is False
        assert CancellationToken.NONE.can_be_cancelled is False
        CancellationToken.NONE.raise_if_cancelled()
