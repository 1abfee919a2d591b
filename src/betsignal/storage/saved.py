"""
Saved signals store.

User-curated subset of signals, keyed by signal identity. Entries are
independent copies: removing a saved entry never touches the ledger and
resolving a ledger entry never touches the saved copy.
"""

import threading
from typing import Optional

import structlog
from pydantic import ValidationError

from src.betsignal.models.identity import identity_of
from src.betsignal.models.schemas import SavedSignalEntry, Signal
from src.betsignal.storage.kv import KeyValueStore

logger = structlog.get_logger()

DEFAULT_SAVED_KEY = "saved_bet_signals"


def _split_match_name(match_name: str) -> tuple[str, str]:
    home, sep, away = match_name.partition(" vs ")
    if not sep:
        return match_name, ""
    return home, away


class SavedSignalsStore:
    """Persisted saved-signal set with toggle semantics."""

    def __init__(self, store: KeyValueStore, key: str = DEFAULT_SAVED_KEY):
        self.store = store
        self.key = key
        self.logger = logger.bind(component="saved_signals", key=key)

        self._lock = threading.Lock()
        self._entries: list[SavedSignalEntry] = self._load()

    def _load(self) -> list[SavedSignalEntry]:
        raw = self.store.load(self.key)
        if raw is None:
            return []
        if not isinstance(raw, list):
            self.logger.warning("Saved blob is not a list, starting empty", kind=type(raw).__name__)
            return []

        entries = []
        for item in raw:
            try:
                entries.append(SavedSignalEntry.model_validate(item))
            except ValidationError:
                self.logger.warning("Skipped invalid saved entry")
        return entries

    def _persist(self) -> None:
        try:
            self.store.save(self.key, [e.to_wire() for e in self._entries])
        except (OSError, TypeError) as e:
            self.logger.error("Failed to persist saved signals", error=str(e))

    def toggle(
        self,
        signal: Signal,
        home_team_name: Optional[str] = None,
        away_team_name: Optional[str] = None,
        league: Optional[str] = None,
    ) -> bool:
        """
        Save the signal, or un-save it if its identity is already saved.

        Args:
            signal: Signal from the feed or the ledger
            home_team_name: Display name; derived from match_name when omitted
            away_team_name: Display name; derived from match_name when omitted
            league: League name; defaults to the signal's league_name

        Returns:
            True if the signal is saved after the call
        """
        identity = identity_of(signal)

        with self._lock:
            remaining = [e for e in self._entries if identity_of(e) != identity]
            if len(remaining) != len(self._entries):
                self._entries = remaining
                saved = False
            else:
                derived_home, derived_away = _split_match_name(signal.match_name)
                entry = SavedSignalEntry.model_validate({
                    **signal.model_dump(),
                    "home_team_name": home_team_name or derived_home,
                    "away_team_name": away_team_name or derived_away,
                    "league": league or signal.league_name,
                })
                self._entries = [entry] + self._entries
                saved = True
            self._persist()

        self.logger.info("Saved signal toggled", identity=identity, saved=saved)
        return saved

    def remove(self, identity: str) -> bool:
        """Remove a saved entry. Returns False when it was not saved."""
        with self._lock:
            remaining = [e for e in self._entries if identity_of(e) != identity]
            if len(remaining) == len(self._entries):
                return False
            self._entries = remaining
            self._persist()
        return True

    def is_saved(self, identity: str) -> bool:
        return any(identity_of(e) == identity for e in self._entries)

    def identities(self) -> list[str]:
        return [identity_of(e) for e in self._entries]

    def list(self) -> list[SavedSignalEntry]:
        return [e.model_copy(deep=True) for e in self._entries]

    def __len__(self) -> int:
        return len(self._entries)
