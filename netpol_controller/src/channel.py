from __future__ import annotations

import queue

from netpol_controller.src.metrics import METRICS
from netpol_controller.src.models import Namespace

DEFAULT_CAPACITY = 128


class EventChannel:
    """Bounded FIFO hand-off of added namespaces from the watcher to the reconciler.

    There is exactly one producer and one consumer.  ``push`` blocks while
    the channel is full and ``pop`` blocks while it is empty, so a slow
    reconciler stalls the watch loop instead of buffering without limit.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got: {capacity}")
        self.capacity = capacity
        self._queue: queue.Queue[Namespace] = queue.Queue(maxsize=capacity)

    def push(self, namespace: Namespace) -> None:
        if not isinstance(namespace, Namespace):
            raise TypeError(f"EventChannel only carries Namespace values, got {type(namespace)!r}")
        self._queue.put(namespace)
        METRICS.channel_depth.set(self._queue.qsize())

    def pop(self, timeout: float | None = None) -> Namespace:
        """Remove and return the oldest namespace.

        Blocks until one is available.  With a *timeout*, raises
        :class:`queue.Empty` when nothing arrived in time.
        """
        namespace = self._queue.get(timeout=timeout)
        METRICS.channel_depth.set(self._queue.qsize())
        return namespace

    def qsize(self) -> int:
        return self._queue.qsize()
