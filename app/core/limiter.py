import threading
from collections import deque
from datetime import datetime, timedelta
from typing import Deque, Iterable, List, Optional

from app.core.interfaces import TransitionRecord


class FleetTransitionLimiter:
    """Sliding-window limit on committed size transitions across the fleet.

    The ledger holds one record per committed transition. A record counts
    against ``limit`` while ``committed_at > now - window``; anything older is
    expired and pruned lazily on the next call.
    """

    def __init__(self, limit: int, window: timedelta, ledger: Iterable[TransitionRecord] = ()):
        if limit < 1:
            raise ValueError(f"limit must be positive, got {limit}")
        self._limit = limit
        self._window = window
        self._ledger: Deque[TransitionRecord] = deque(sorted(ledger, key=lambda r: r.committed_at))
        self._lock = threading.Lock()

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def window(self) -> timedelta:
        return self._window

    def reconfigure(self, limit: int, window: timedelta) -> None:
        if limit < 1:
            raise ValueError(f"limit must be positive, got {limit}")
        with self._lock:
            self._limit = limit
            self._window = window

    def _expire(self, now: datetime) -> None:
        cutoff = now - self._window
        while self._ledger and self._ledger[0].committed_at <= cutoff:
            self._ledger.popleft()

    def _count(self, now: datetime) -> int:
        cutoff = now - self._window
        return sum(1 for r in self._ledger if r.committed_at > cutoff)

    def admit(self, cluster_id: str, now: datetime) -> bool:
        """Record a transition for cluster_id if the window has room. Deferrals leave no trace."""
        with self._lock:
            self._expire(now)
            if self._count(now) >= self._limit:
                return False
            self._ledger.append(TransitionRecord(cluster_id=cluster_id, committed_at=now))
            return True

    def in_window(self, now: datetime) -> int:
        with self._lock:
            return self._count(now)

    def remaining(self, now: datetime) -> int:
        with self._lock:
            return max(0, self._limit - self._count(now))

    def next_slot_at(self, now: datetime) -> Optional[datetime]:
        """When the next slot frees up, or None if one is free now."""
        with self._lock:
            cutoff = now - self._window
            live = sorted(r.committed_at for r in self._ledger if r.committed_at > cutoff)
            if len(live) < self._limit:
                return None
            return live[len(live) - self._limit] + self._window

    def records(self) -> List[TransitionRecord]:
        with self._lock:
            return list(self._ledger)
