from __future__ import annotations

import heapq
import itertools
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Protocol, Tuple

from ..domain.models import StoredRecord
from ..logging import get_logger


LOG = get_logger("checklist-cache")


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def schedule(self, delay_seconds: float, callback: Callable[[], None]) -> TimerHandle: ...


class _PendingRemoval:
    __slots__ = ("callback", "cancelled")

    def __init__(self, callback: Callable[[], None]) -> None:
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class HeapTimerScheduler:
    """Serve every pending callback from one daemon thread.

    Deadlines live in a heap; the worker sleeps until the earliest one (or
    until a sooner deadline is pushed). Cancelled entries are dropped when
    they reach the top of the heap.
    """

    def __init__(self, *, monotonic: Callable[[], float] = time.monotonic) -> None:
        self._monotonic = monotonic
        self._heap: List[Tuple[float, int, _PendingRemoval]] = []
        self._seq = itertools.count()
        self._cond = threading.Condition()
        self._worker: Optional[threading.Thread] = None

    def schedule(self, delay_seconds: float, callback: Callable[[], None]) -> TimerHandle:
        pending = _PendingRemoval(callback)
        deadline = self._monotonic() + max(0.0, delay_seconds)
        with self._cond:
            heapq.heappush(self._heap, (deadline, next(self._seq), pending))
            if self._worker is None:
                self._worker = threading.Thread(target=self._run, name="ttl-cache-expiry", daemon=True)
                self._worker.start()
            self._cond.notify()
        return pending

    def __len__(self) -> int:
        with self._cond:
            return len(self._heap)

    def _next_due(self) -> _PendingRemoval:
        with self._cond:
            while True:
                if not self._heap:
                    self._cond.wait()
                    continue
                deadline = self._heap[0][0]
                remaining = deadline - self._monotonic()
                if remaining > 0:
                    self._cond.wait(remaining)
                    continue
                return heapq.heappop(self._heap)[2]

    def _run(self) -> None:
        while True:
            pending = self._next_due()
            if pending.cancelled:
                continue
            # Callbacks run outside the condition; they take the cache lock.
            try:
                pending.callback()
            except Exception:
                LOG.exception("Scheduled cache removal failed")


@dataclass
class _Entry:
    value: StoredRecord
    expires_at: float
    timer: Optional[TimerHandle]


class TTLCache:
    """In-process key/value map with a time-to-live per entry.

    Each `set` schedules a removal callback; `get` also compares the stored
    expiry against the clock, so a timer that fires late never serves an
    expired value. There is no capacity bound.
    """

    def __init__(
        self,
        *,
        clock: Callable[[], float] = time.time,
        scheduler: Optional[Scheduler] = None,
    ) -> None:
        self._clock = clock
        self._scheduler = scheduler if scheduler is not None else HeapTimerScheduler()
        self._entries: Dict[str, _Entry] = {}
        self._lock = threading.Lock()

    def set(self, key: str, value: StoredRecord, ttl_seconds: float) -> None:
        expires_at = self._clock() + ttl_seconds
        timer = self._scheduler.schedule(ttl_seconds, lambda: self._expire(key, expires_at))
        with self._lock:
            previous = self._entries.get(key)
            self._entries[key] = _Entry(value=value, expires_at=expires_at, timer=timer)
        if previous is not None and previous.timer is not None:
            previous.timer.cancel()
        LOG.debug("Cached %s entry %s (ttl=%.0fs)", value.kind.value, key, ttl_seconds)

    def get(self, key: str) -> Optional[StoredRecord]:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if now < entry.expires_at:
                return entry.value
            del self._entries[key]
        if entry.timer is not None:
            entry.timer.cancel()
        LOG.debug("Evicted expired cache entry %s on read", key)
        return None

    def delete(self, key: str) -> None:
        with self._lock:
            entry = self._entries.pop(key, None)
        if entry is not None and entry.timer is not None:
            entry.timer.cancel()

    def _expire(self, key: str, expires_at: float) -> None:
        # A newer set() for the same key carries a different expiry; leave it alone.
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and entry.expires_at == expires_at:
                del self._entries[key]

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries


__all__ = ["TTLCache", "Scheduler", "HeapTimerScheduler", "TimerHandle"]
