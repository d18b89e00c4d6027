"""Cooperative cancellation for calculation runs.

A run checks its token before evaluation starts, between executor chunks,
and between result flush batches. Rows already flushed stay in place.
"""

import threading


class RunCancelledError(RuntimeError):
    """Raised at a cancellation checkpoint after ``cancel()`` was called."""


class CancellationToken:
    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, stage: str) -> None:
        if self._event.is_set():
            raise RunCancelledError(f"run cancelled during {stage}")
