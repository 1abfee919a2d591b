"""Signal containers and their persistence."""

from src.betsignal.storage.kv import KeyValueStore, InMemoryStore, JsonFileStore
from src.betsignal.storage.live_feed import LiveSignalFeed
from src.betsignal.storage.ledger import SignalHistoryLedger
from src.betsignal.storage.saved import SavedSignalsStore

__all__ = [
    "KeyValueStore",
    "InMemoryStore",
    "JsonFileStore",
    "LiveSignalFeed",
    "SignalHistoryLedger",
    "SavedSignalsStore",
]
