from __future__ import annotations

import asyncio

from .errors import RunCancelled


class CancellationToken:
    """Cancels every task attached to one generation run."""

    def __init__(self) -> None:
        self._cancelled = False
        self._tasks: set[asyncio.Future[object]] = set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def attach(self, task: asyncio.Future[object]) -> None:
        if self._cancelled:
            task.cancel()
            return
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise RunCancelled()
