import pytest

from qdev.cancellation import CancellationToken
from qdev.errors import OperationCancelledError, RetrievalTimeoutError


def test_token_without_deadline_never_expires() -> None:
    token = CancellationToken()

    token.raise_if_cancelled()
    assert not token.cancelled
    assert not token.expired
    assert token.remaining() is None


def test_cancel_raises_at_next_check() -> None:
    token = CancellationToken(timeout_seconds=60)
    token.cancel()

    assert token.cancelled
    with pytest.raises(OperationCancelledError):
        token.raise_if_cancelled()


def test_expired_deadline_raises_timeout() -> None:
    token = CancellationToken(timeout_seconds=0)

    assert token.expired
    assert token.remaining() == 0.0
    with pytest.raises(TimeoutError):
        token.raise_if_cancelled()
    with pytest.raises(RetrievalTimeoutError):
        token.raise_if_cancelled()
