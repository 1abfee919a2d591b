"""
Match snapshot store.

Holds the current state of every tracked match. An external telemetry
updater writes full-state replacements; the scheduler and resolution
tracker read. Each match is one immutable record swapped atomically, so a
reader never sees half of an update.
"""

import threading
from typing import Callable, Iterable, Optional

import structlog

from src.betsignal.models.schemas import MatchSnapshot, MatchStatus

logger = structlog.get_logger()


def _went_down(before: tuple[int, ...], after: tuple[int, ...]) -> bool:
    return any(b > a for b, a in zip(before, after))


class MatchSnapshotStore:
    """
    Tracked matches keyed by match id.

    Updates that would move a match backwards (status regression, the
    minute going down while LIVE, or any counter going down once play has
    started) are rejected and logged; the previous record stays in place.
    A SCHEDULED match must show no activity at all, possession included.
    """

    def __init__(self, snapshots: Optional[Iterable[MatchSnapshot]] = None):
        self.logger = logger.bind(component="match_store")

        self._matches: dict[str, MatchSnapshot] = {}
        self._lock = threading.Lock()

        # Callbacks
        self._callbacks: list[Callable[[MatchSnapshot], None]] = []

        # Stats
        self._updates_applied = 0
        self._updates_rejected = 0

        for snapshot in snapshots or ():
            self.apply(snapshot)

    # =========================================================================
    # Writes
    # =========================================================================

    def apply(self, snapshot: MatchSnapshot) -> bool:
        """
        Replace the stored state of snapshot.match_id.

        Returns:
            True if the update was applied
        """
        with self._lock:
            current = self._matches.get(snapshot.match_id)
            reason = self._rejection_reason(current, snapshot)
            if reason:
                self._updates_rejected += 1
            else:
                self._matches[snapshot.match_id] = snapshot
                self._updates_applied += 1

        if reason:
            self.logger.warning(
                "Telemetry update rejected",
                match_id=snapshot.match_id,
                reason=reason,
            )
            return False

        self._notify_callbacks(snapshot)
        return True

    def apply_many(self, snapshots: Iterable[MatchSnapshot]) -> int:
        return sum(1 for s in snapshots if self.apply(s))

    def remove(self, match_id: str) -> bool:
        """Stop tracking a match. Signals keep their denormalized names."""
        with self._lock:
            return self._matches.pop(match_id, None) is not None

    @staticmethod
    def _rejection_reason(current: Optional[MatchSnapshot], new: MatchSnapshot) -> Optional[str]:
        if new.status == MatchStatus.SCHEDULED:
            if new.minute != 0 or not (new.home.is_idle() and new.away.is_idle()):
                return "scheduled_match_has_activity"

        if current is None:
            return None

        if new.status.rank < current.status.rank:
            return "status_regression"

        if (
            current.status == MatchStatus.LIVE
            and new.status == MatchStatus.LIVE
            and new.minute < current.minute
        ):
            return "minute_regression"

        if current.status != MatchStatus.SCHEDULED and (
            _went_down(current.home.counters(), new.home.counters())
            or _went_down(current.away.counters(), new.away.counters())
        ):
            return "counter_regression"

        return None

    # =========================================================================
    # Reads
    # =========================================================================

    def get(self, match_id: str) -> Optional[MatchSnapshot]:
        return self._matches.get(match_id)

    def all(self) -> list[MatchSnapshot]:
        """Point-in-time copy of all tracked matches."""
        with self._lock:
            return list(self._matches.values())

    def live(self) -> list[MatchSnapshot]:
        return [m for m in self.all() if m.status == MatchStatus.LIVE]

    def scheduled(self) -> list[MatchSnapshot]:
        return [m for m in self.all() if m.status == MatchStatus.SCHEDULED]

    def __len__(self) -> int:
        return len(self._matches)

    def __contains__(self, match_id: str) -> bool:
        return match_id in self._matches

    # =========================================================================
    # Callbacks
    # =========================================================================

    def add_callback(self, callback: Callable[[MatchSnapshot], None]) -> None:
        """Register callback for applied updates."""
        self._callbacks.append(callback)

    def _notify_callbacks(self, snapshot: MatchSnapshot) -> None:
        for callback in self._callbacks:
            try:
                callback(snapshot)
            except Exception as e:
                self.logger.error("Callback error", error=str(e))

    def get_metrics(self) -> dict:
        return {
            "matches_tracked": len(self._matches),
            "live": len(self.live()),
            "updates_applied": self._updates_applied,
            "updates_rejected": self._updates_rejected,
        }
