"""Cooperative cancellation tokens checked at explicit yield points."""

from __future__ import annotations

import threading
import time

from qdev.errors import OperationCancelledError, RetrievalTimeoutError


class CancellationToken:
    """Cancellation flag plus an optional monotonic deadline.

    Long scans call `raise_if_cancelled` at the start of each unit of work
    (producer, file, remote call). Nothing is rolled back when it raises;
    callers only ever append to their partial state.
    """

    def __init__(self, timeout_seconds: float | None = None) -> None:
        self._event = threading.Event()
        self._deadline = (
            time.monotonic() + timeout_seconds if timeout_seconds is not None else None
        )

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def expired(self) -> bool:
        return self._deadline is not None and time.monotonic() >= self._deadline

    def remaining(self) -> float | None:
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelledError("operation was cancelled")
        if self.expired:
            raise RetrievalTimeoutError("operation timed out")

