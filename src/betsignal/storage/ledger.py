"""
Signal history ledger.

Append-only, persisted record of every signal ever produced. The only
mutation allowed after append is a single PENDING -> WIN/LOSS transition.
"""

import threading
from typing import Iterable, Optional

import structlog
from pydantic import ValidationError

from src.betsignal.models.identity import identity_of
from src.betsignal.models.schemas import Signal, SignalStatus
from src.betsignal.storage.kv import KeyValueStore

logger = structlog.get_logger()

DEFAULT_HISTORY_KEY = "betsignal_history"


class SignalHistoryLedger:
    """
    Persisted history of signals, newest first.

    Usage:
        ledger = SignalHistoryLedger(JsonFileStore("data"))
        ledger.append(signals)

        today = ledger.query(start_of_day_ms)
        ledger.update_status(identity, SignalStatus.WIN)

    Loading tolerates a missing or corrupt blob (the ledger starts empty)
    and skips individual entries that fail validation.
    """

    def __init__(self, store: KeyValueStore, key: str = DEFAULT_HISTORY_KEY):
        self.store = store
        self.key = key
        self.logger = logger.bind(component="history_ledger", key=key)

        # Stats
        self._persist_failures = 0

        self._lock = threading.RLock()
        self._entries: list[Signal] = self._load()

    # =========================================================================
    # Persistence
    # =========================================================================

    def _load(self) -> list[Signal]:
        raw = self.store.load(self.key)
        if raw is None:
            return []

        if not isinstance(raw, list):
            self.logger.warning("History blob is not a list, starting empty", kind=type(raw).__name__)
            return []

        entries = []
        skipped = 0
        for item in raw:
            try:
                entries.append(Signal.model_validate(item))
            except ValidationError:
                skipped += 1

        if skipped:
            self.logger.warning("Skipped invalid history entries", skipped=skipped)
        self.logger.info("History loaded", entries=len(entries))
        return entries

    def _persist(self) -> None:
        try:
            self.store.save(self.key, [s.to_wire() for s in self._entries])
        except (OSError, TypeError) as e:
            self._persist_failures += 1
            self.logger.error("Failed to persist history", error=str(e))

    # =========================================================================
    # Writes
    # =========================================================================

    def append(self, signals: Iterable[Signal]) -> int:
        """Add a batch at the front, keeping its relative order."""
        batch = list(signals)
        if not batch:
            return 0

        with self._lock:
            self._entries = batch + self._entries
            self._persist()
        return len(batch)

    def update_status(self, identity: str, status: SignalStatus) -> bool:
        """
        Resolve the first entry with this identity.

        Only PENDING -> WIN/LOSS is applied. Wire strings such as "WIN" are
        accepted. Unknown identities, unknown statuses and entries that are
        already resolved are left alone.

        Returns:
            True if a status changed
        """
        try:
            status = SignalStatus(status)
        except ValueError:
            self.logger.warning("Resolve with unknown status ignored", identity=identity, status=status)
            return False

        if status == SignalStatus.PENDING:
            return False

        with self._lock:
            entry = self._find(identity)
            if entry is None:
                self.logger.debug("Resolve for unknown signal ignored", identity=identity)
                return False
            if entry.status != SignalStatus.PENDING:
                return False

            entry.status = status
            self._persist()

        self.logger.info(
            "Signal resolved",
            identity=identity,
            status=status.value,
            match=entry.match_name,
        )
        return True

    # =========================================================================
    # Reads
    # =========================================================================

    def _find(self, identity: str) -> Optional[Signal]:
        for entry in self._entries:
            if identity_of(entry) == identity:
                return entry
        return None

    def get(self, identity: str) -> Optional[Signal]:
        with self._lock:
            return self._find(identity)

    def query(self, since_ms: int = 0) -> list[Signal]:
        """Entries with full_timestamp >= since_ms, newest first."""
        with self._lock:
            selected = [s for s in self._entries if s.full_timestamp >= since_ms]
        # Stable: ties keep insertion order
        return sorted(selected, key=lambda s: s.full_timestamp, reverse=True)

    def all(self) -> list[Signal]:
        return self.query(0)

    def pending(self) -> list[Signal]:
        with self._lock:
            return [s for s in self._entries if s.status == SignalStatus.PENDING]

    def __len__(self) -> int:
        return len(self._entries)

    def get_metrics(self) -> dict:
        with self._lock:
            pending = sum(1 for s in self._entries if s.status == SignalStatus.PENDING)
            return {
                "entries": len(self._entries),
                "pending": pending,
                "persist_failures": self._persist_failures,
            }
