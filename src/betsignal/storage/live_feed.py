"""
Live signal feed.

Bounded, newest-first buffer of recently generated signals. Transient by
nature: it starts empty on every process start.
"""

import threading
from typing import Iterable, Optional

import structlog

from src.betsignal.models.schemas import Signal, SignalFilter

logger = structlog.get_logger()

DEFAULT_CAPACITY = 30


class LiveSignalFeed:
    """
    Capacity-bounded feed of signals, most recent first.

    The backing sequence is an immutable tuple that is swapped whole on
    every prepend, so a concurrent reader sees either the old or the new
    feed. No deduplication: provider repeats show up twice.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = capacity
        self.logger = logger.bind(component="live_feed")

        self._signals: tuple[Signal, ...] = ()
        self._lock = threading.Lock()
        self._evicted_total = 0

    def __len__(self) -> int:
        return len(self._signals)

    def prepend(self, signals: Iterable[Signal]) -> int:
        """
        Insert a batch at the head, keeping its order, then cap.

        Returns:
            Number of signals evicted from the tail
        """
        batch = tuple(signals)
        if not batch:
            return 0

        with self._lock:
            combined = batch + self._signals
            evicted = max(0, len(combined) - self.capacity)
            self._signals = combined[:self.capacity]
            self._evicted_total += evicted

        if evicted:
            self.logger.debug("Feed capped", evicted=evicted, size=len(self._signals))
        return evicted

    def leagues(self) -> list[str]:
        """Distinct league names present in the feed, sorted."""
        return sorted({s.league_name for s in self._signals if s.league_name})

    def clear(self) -> None:
        with self._lock:
            self._signals = ()

    def get_metrics(self) -> dict:
        return {
            "size": len(self._signals),
            "capacity": self.capacity,
            "evicted_total": self._evicted_total,
        }

    def list(self, signal_filter: Optional[SignalFilter] = None) -> list[Signal]:
        """Current feed contents, optionally filtered. Never mutates the feed."""
        snapshot = self._signals
        if signal_filter is None:
            return list(snapshot)
        return [s for s in snapshot if signal_filter.matches(s)]
