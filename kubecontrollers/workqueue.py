"""A thread-safe, de-duplicating work queue of keys."""

from __future__ import annotations

import threading
from collections import deque
from collections.abc import Hashable

__all__ = ["WorkQueue", "QueueShutDown"]


class QueueShutDown(Exception):
    """Raised by WorkQueue.get once the queue is shut down and drained."""


class WorkQueue:
    """A FIFO queue that holds each item at most once.

    An item that is added while it is being processed (taken with ``get`` but
    not yet marked ``done``) is queued again when ``done`` is called.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._queue: deque[Hashable] = deque()
        self._dirty: set[Hashable] = set()
        self._processing: set[Hashable] = set()
        self._shutting_down = False

    def add(self, item: Hashable) -> None:
        """Queue an item unless it is already waiting or the queue is shut down."""
        with self._cond:
            if self._shutting_down or item in self._dirty:
                return
            self._dirty.add(item)
            if item in self._processing:
                return
            self._queue.append(item)
            self._cond.notify()

    def get(self, timeout: float | None = None) -> Hashable:
        """Take the next item, blocking until one is available.

        Raises TimeoutError if nothing arrives within ``timeout`` seconds and
        QueueShutDown if the queue has been shut down and is empty.
        """
        with self._cond:
            ready = self._cond.wait_for(
                lambda: bool(self._queue) or self._shutting_down, timeout
            )
            if not ready:
                raise TimeoutError("no item arrived on the work queue")
            if not self._queue:
                raise QueueShutDown()
            item = self._queue.popleft()
            self._processing.add(item)
            self._dirty.discard(item)
            return item

    def done(self, item: Hashable) -> None:
        """Mark an item as processed, re-queueing it if it was added meanwhile."""
        with self._cond:
            self._processing.discard(item)
            if item in self._dirty:
                self._queue.append(item)
                self._cond.notify()

    def shut_down(self) -> None:
        """Stop accepting items and wake every waiting consumer."""
        with self._cond:
            self._shutting_down = True
            self._cond.notify_all()

    def __len__(self) -> int:
        with self._cond:
            return len(self._queue)