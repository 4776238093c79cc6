"""Rate-limited, coalescing work queue.

Items are de-duplicated while they wait: adding an item that is already
pending is a no-op.  An item added again while a worker holds it is parked
and re-queued when the worker calls :meth:`RateLimitingQueue.done`, so one
item is never processed concurrently with itself.

Retries go through :meth:`RateLimitingQueue.add_rate_limited`, which delays
the item by ``base_delay * 2**failures`` (capped at ``max_delay``) until
:meth:`RateLimitingQueue.forget` resets its failure count.
"""

from __future__ import annotations

import heapq
import itertools
import time
from collections import deque
from threading import Condition
from typing import Any, Callable, Deque, Dict, Hashable, List, Optional, Set, Tuple

DEFAULT_BASE_DELAY = 0.005
DEFAULT_MAX_DELAY = 1000.0

# 2**62 already exceeds any sane max_delay
_MAX_EXPONENT = 62


class RateLimitingQueue:
    def __init__(
        self,
        base_delay: float = DEFAULT_BASE_DELAY,
        max_delay: float = DEFAULT_MAX_DELAY,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._clock = clock
        self._cond = Condition()
        self._queue: Deque[Hashable] = deque()
        self._dirty: Set[Hashable] = set()
        self._processing: Set[Hashable] = set()
        self._waiting: List[Tuple[float, int, Hashable]] = []
        self._seq = itertools.count()
        self._failures: Dict[Hashable, int] = {}
        self._shutdown = False

    # ------------------------------------------------------------------
    # Producers
    # ------------------------------------------------------------------
    def add(self, item: Hashable) -> None:
        with self._cond:
            self._add(item)

    def _add(self, item: Hashable) -> None:
        if self._shutdown or item in self._dirty:
            return
        self._dirty.add(item)
        if item in self._processing:
            return
        self._queue.append(item)
        self._cond.notify()

    def add_after(self, item: Hashable, delay: float) -> None:
        if delay <= 0:
            self.add(item)
            return
        with self._cond:
            if self._shutdown:
                return
            heapq.heappush(self._waiting, (self._clock() + delay, next(self._seq), item))
            self._cond.notify()

    def when(self, item: Hashable) -> float:
        """Record a failure for ``item`` and return its next backoff."""

        with self._cond:
            failures = self._failures.get(item, 0)
            self._failures[item] = failures + 1
        return min(self.base_delay * 2 ** min(failures, _MAX_EXPONENT), self.max_delay)

    def add_rate_limited(self, item: Hashable) -> None:
        self.add_after(item, self.when(item))

    def forget(self, item: Hashable) -> None:
        with self._cond:
            self._failures.pop(item, None)

    def num_requeues(self, item: Hashable) -> int:
        with self._cond:
            return self._failures.get(item, 0)

    # ------------------------------------------------------------------
    # Consumers
    # ------------------------------------------------------------------
    def _promote_ready(self) -> Optional[float]:
        """Move due delayed items to the queue; return the next due time."""

        now = self._clock()
        while self._waiting and self._waiting[0][0] <= now:
            _, _, item = heapq.heappop(self._waiting)
            self._add(item)
        return self._waiting[0][0] if self._waiting else None

    def get(self, timeout: Optional[float] = None) -> Tuple[Any, bool]:
        """Block for the next item.

        Returns ``(item, False)``, ``(None, True)`` once the queue is shut
        down and drained, or ``(None, False)`` when ``timeout`` expires.
        """

        deadline = None if timeout is None else self._clock() + timeout
        with self._cond:
            while True:
                next_due = self._promote_ready()
                if self._queue:
                    item = self._queue.popleft()
                    self._processing.add(item)
                    self._dirty.discard(item)
                    return item, False
                if self._shutdown:
                    return None, True
                now = self._clock()
                if deadline is not None and now >= deadline:
                    return None, False
                waits = [t - now for t in (next_due, deadline) if t is not None]
                self._cond.wait(max(min(waits), 0.0) if waits else None)

    def done(self, item: Hashable) -> None:
        with self._cond:
            self._processing.discard(item)
            if item in self._dirty:
                self._queue.append(item)
                self._cond.notify()

    def __len__(self) -> int:
        with self._cond:
            return len(self._queue)

    def delayed(self) -> int:
        with self._cond:
            return len(self._waiting)

    def shut_down(self) -> None:
        with self._cond:
            self._shutdown = True
            self._cond.notify_all()

    @property
    def is_shut_down(self) -> bool:
        return self._shutdown
