"""Batched write buffer for result and trace rows.

Rows are appended one at a time and handed to the sink in fixed-size
batches, so a run of N entities issues ceil(N / batch_size) writes instead
of N.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Generic, TypeVar

from incentiveos.engine.cancellation import CancellationToken

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TraceBuffer(Generic[T]):
    """Append-then-flush buffer.

    Parameters
    ----------
    sink:
        Async callable receiving each full batch.
    batch_size:
        Rows per sink call.
    cancellation:
        Checked before every flush after the first.
    """

    def __init__(
        self,
        sink: Callable[[list[T]], Awaitable[None]],
        batch_size: int,
        cancellation: CancellationToken | None = None,
    ) -> None:
        if batch_size < 1:
            msg = f"batch_size must be >= 1, got {batch_size}."
            raise ValueError(msg)
        self._sink = sink
        self._batch_size = batch_size
        self._cancellation = cancellation
        self._pending: list[T] = []
        self.flushed_count = 0
        self.batch_count = 0

    async def append(self, item: T) -> None:
        self._pending.append(item)
        if len(self._pending) >= self._batch_size:
            await self.flush()

    async def flush(self) -> None:
        if not self._pending:
            return
        if self._cancellation is not None and self.batch_count > 0:
            self._cancellation.raise_if_cancelled("result flush")
        batch, self._pending = self._pending, []
        await self._sink(batch)
        self.flushed_count += len(batch)
        self.batch_count += 1
        logger.debug("Flushed batch %d (%d rows)", self.batch_count, len(batch))
