"""
Resolution tracker.

Settles PENDING signals against later match state:

- GOAL / CORNER / CARDS: WIN once the match total for that counter goes
  above the total recorded when the signal was generated; LOSS if the
  match finishes without it.
- RESULT: settled at full time. WIN if the final outcome (home win, draw,
  away win) is the one that stood when the signal was generated.

A signal with no baseline, or whose match is no longer tracked, stays
PENDING. Resolved signals are never re-evaluated.
"""

import threading
from typing import Optional

import structlog

from src.betsignal.feeds.match_store import MatchSnapshotStore
from src.betsignal.models.identity import identity_of
from src.betsignal.models.schemas import MatchSnapshot, MatchStatus, Signal, SignalStatus, SignalType
from src.betsignal.storage.ledger import SignalHistoryLedger

logger = structlog.get_logger()


def _outcome(home_score: int, away_score: int) -> str:
    if home_score > away_score:
        return "HOME"
    if home_score < away_score:
        return "AWAY"
    return "DRAW"


class ResolutionTracker:
    """Deterministic WIN / LOSS / PENDING decisions plus a ledger sweep."""

    def __init__(self, writer_lock: Optional[threading.RLock] = None):
        self.writer_lock = writer_lock or threading.RLock()
        self.logger = logger.bind(component="resolution_tracker")

        # Stats
        self._sweeps = 0
        self._resolved = {SignalStatus.WIN: 0, SignalStatus.LOSS: 0}

    def resolve(self, signal: Signal, snapshot: Optional[MatchSnapshot]) -> SignalStatus:
        """
        Decide the status of a signal given the latest match state.

        Returns:
            WIN or LOSS when settled, PENDING when still undetermined.
            An already resolved signal returns its current status.
        """
        if signal.is_resolved:
            return signal.status

        baseline = signal.baseline
        if snapshot is None or baseline is None or snapshot.match_id != signal.match_id:
            return SignalStatus.PENDING

        finished = snapshot.status == MatchStatus.FINISHED

        if signal.type == SignalType.RESULT:
            if not finished:
                return SignalStatus.PENDING
            final = _outcome(snapshot.home.score, snapshot.away.score)
            at_signal = _outcome(baseline.home_score, baseline.away_score)
            return SignalStatus.WIN if final == at_signal else SignalStatus.LOSS

        if signal.type == SignalType.GOAL:
            current, base = snapshot.total_goals, baseline.goals
        elif signal.type == SignalType.CORNER:
            current, base = snapshot.total_corners, baseline.corners
        else:
            current, base = snapshot.total_cards, baseline.cards

        if current > base:
            return SignalStatus.WIN
        if finished:
            return SignalStatus.LOSS
        return SignalStatus.PENDING

    def sweep(self, ledger: SignalHistoryLedger, store: MatchSnapshotStore) -> int:
        """
        Resolve every PENDING ledger entry that can be settled now.

        Returns:
            Number of entries whose status changed
        """
        self._sweeps += 1
        changed = 0

        for signal in ledger.pending():
            status = self.resolve(signal, store.get(signal.match_id))
            if status == SignalStatus.PENDING:
                continue
            with self.writer_lock:
                if ledger.update_status(identity_of(signal), status):
                    changed += 1
                    self._resolved[status] += 1

        if changed:
            self.logger.info("Resolution sweep", resolved=changed)
        return changed

    def get_metrics(self) -> dict:
        return {
            "sweeps": self._sweeps,
            "wins": self._resolved[SignalStatus.WIN],
            "losses": self._resolved[SignalStatus.LOSS],
        }
