"""Tests for the live feed, history ledger, saved signals and key-value stores."""

import pytest

from src.betsignal.models.identity import identity_of
from src.betsignal.models.schemas import SavedSignalEntry, SignalFilter, SignalStatus, SignalType
from src.betsignal.storage.kv import InMemoryStore, JsonFileStore
from src.betsignal.storage.ledger import SignalHistoryLedger
from src.betsignal.storage.live_feed import LiveSignalFeed
from src.betsignal.storage.saved import SavedSignalsStore

from conftest import RawBlobStore


class TestLiveSignalFeed:
    """Capped newest-first feed."""

    def test_prepend_keeps_batch_order_newest_first(self, make_signal):
        feed = LiveSignalFeed(capacity=10)
        feed.prepend([make_signal("a"), make_signal("b")])
        feed.prepend([make_signal("c")])
        assert [s.match_id for s in feed.list()] == ["c", "a", "b"]

    def test_capacity_keeps_most_recent(self, make_signal):
        feed = LiveSignalFeed(capacity=5)
        inserted = []
        for i in range(12):
            batch = [make_signal(f"m{i}-{j}") for j in range(i % 3 + 1)]
            inserted = batch + inserted
            evicted = feed.prepend(batch)
            assert len(feed.list()) <= 5
            assert evicted >= 0
        assert [s.match_id for s in feed.list()] == [s.match_id for s in inserted[:5]]

    def test_duplicates_are_kept(self, make_signal):
        feed = LiveSignalFeed()
        signal = make_signal()
        feed.prepend([signal])
        feed.prepend([signal.model_copy()])
        assert len(feed) == 2

    def test_filter_does_not_mutate(self, make_signal):
        feed = LiveSignalFeed()
        feed.prepend([
            make_signal("a", SignalType.GOAL, confidence=0.9),
            make_signal("b", SignalType.CORNER, confidence=0.6, league="La Liga"),
        ])
        goals = feed.list(SignalFilter(type=SignalType.GOAL))
        assert [s.match_id for s in goals] == ["a"]
        assert len(feed.list()) == 2
        assert feed.leagues() == ["La Liga", "Premier League"]

    def test_default_capacity(self):
        assert LiveSignalFeed().capacity == 30

    def test_invalid_capacity(self):
        with pytest.raises(ValueError):
            LiveSignalFeed(capacity=0)


class TestSignalHistoryLedger:
    """Persisted, append-only history."""

    def test_append_and_query_newest_first(self, kv, make_signal):
        ledger = SignalHistoryLedger(kv)
        ledger.append([make_signal("old", full_timestamp=1_000)])
        ledger.append([make_signal("new", full_timestamp=3_000), make_signal("mid", full_timestamp=2_000)])

        assert [s.match_id for s in ledger.query(0)] == ["new", "mid", "old"]
        assert [s.match_id for s in ledger.query(2_000)] == ["new", "mid"]

    def test_survives_restart(self, kv, make_signal):
        SignalHistoryLedger(kv).append([make_signal("m1"), make_signal("m2")])
        reloaded = SignalHistoryLedger(kv)
        assert [s.match_id for s in reloaded.all()] == ["m1", "m2"]

    def test_first_transition_wins(self, kv, make_signal):
        ledger = SignalHistoryLedger(kv)
        signal = make_signal()
        ledger.append([signal])
        key = identity_of(signal)

        assert ledger.update_status(key, SignalStatus.WIN) is True
        assert ledger.update_status(key, SignalStatus.LOSS) is False
        assert ledger.get(key).status == SignalStatus.WIN
        assert SignalHistoryLedger(kv).get(key).status == SignalStatus.WIN

    def test_wire_string_status_is_accepted(self, kv, make_signal):
        ledger = SignalHistoryLedger(kv)
        signal = make_signal()
        ledger.append([signal])
        key = identity_of(signal)

        assert ledger.update_status(key, "WIN") is True
        assert ledger.get(key).status is SignalStatus.WIN
        assert SignalHistoryLedger(kv).get(key).status is SignalStatus.WIN
        assert ledger.update_status(key, "WIN") is False

    def test_unknown_status_is_noop(self, kv, make_signal):
        ledger = SignalHistoryLedger(kv)
        signal = make_signal()
        ledger.append([signal])

        assert ledger.update_status(identity_of(signal), "VOID") is False
        assert ledger.get(identity_of(signal)).status is SignalStatus.PENDING

    def test_unknown_identity_is_noop(self, kv):
        ledger = SignalHistoryLedger(kv)
        assert ledger.update_status("nope|GOAL|00:00:00", SignalStatus.WIN) is False

    def test_back_to_pending_is_rejected(self, kv, make_signal):
        ledger = SignalHistoryLedger(kv)
        signal = make_signal()
        ledger.append([signal])
        assert ledger.update_status(identity_of(signal), SignalStatus.PENDING) is False

    def test_duplicates_resolve_first_match(self, kv, make_signal):
        ledger = SignalHistoryLedger(kv)
        ledger.append([make_signal(), make_signal()])
        ledger.update_status(identity_of(make_signal()), SignalStatus.LOSS)
        statuses = [s.status for s in ledger.all()]
        assert statuses.count(SignalStatus.LOSS) == 1
        assert len(ledger.pending()) == 1

    def test_corrupt_blob_starts_empty(self):
        store = RawBlobStore()
        store.put_raw("betsignal_history", b"{not json")
        assert len(SignalHistoryLedger(store)) == 0

    def test_non_list_blob_starts_empty(self):
        store = InMemoryStore()
        store.save("betsignal_history", {"matchId": "m1"})
        assert len(SignalHistoryLedger(store)) == 0

    def test_invalid_entries_skipped(self, make_signal):
        store = InMemoryStore()
        store.save("betsignal_history", [make_signal("ok").to_wire(), {"matchId": "broken"}])
        ledger = SignalHistoryLedger(store)
        assert [s.match_id for s in ledger.all()] == ["ok"]


class TestSavedSignalsStore:
    """Toggle-based saved set."""

    def test_toggle_twice_restores_state(self, kv, make_signal):
        saved = SavedSignalsStore(kv)
        saved.toggle(make_signal("keep"))
        before = saved.identities()

        signal = make_signal("m1")
        assert saved.toggle(signal) is True
        assert saved.is_saved(identity_of(signal))
        assert saved.toggle(signal) is False
        assert saved.identities() == before

    def test_entry_is_independent_copy(self, kv, make_signal):
        saved = SavedSignalsStore(kv)
        signal = make_signal()
        saved.toggle(signal)
        signal.status = SignalStatus.WIN
        assert saved.list()[0].status == SignalStatus.PENDING

    def test_denormalized_names(self, kv, make_signal):
        saved = SavedSignalsStore(kv)
        saved.toggle(make_signal("m1"))
        entry = saved.list()[0]
        assert isinstance(entry, SavedSignalEntry)
        assert entry.home_team_name == "Home m1"
        assert entry.away_team_name == "Away m1"
        assert entry.league == "Premier League"

    def test_newest_saved_first_and_persisted(self, kv, make_signal):
        saved = SavedSignalsStore(kv)
        saved.toggle(make_signal("a"))
        saved.toggle(make_signal("b"))
        reloaded = SavedSignalsStore(kv)
        assert [e.match_id for e in reloaded.list()] == ["b", "a"]

    def test_remove(self, kv, make_signal):
        saved = SavedSignalsStore(kv)
        signal = make_signal()
        saved.toggle(signal)
        assert saved.remove(identity_of(signal)) is True
        assert saved.remove(identity_of(signal)) is False
        assert len(saved) == 0

    def test_independent_of_ledger(self, kv, make_signal):
        ledger = SignalHistoryLedger(kv)
        saved = SavedSignalsStore(kv)
        signal = make_signal()
        ledger.append([signal])
        saved.toggle(signal)
        saved.remove(identity_of(signal))
        assert len(ledger) == 1

    def test_corrupt_storage_starts_empty(self):
        store = RawBlobStore()
        store.put_raw("saved_bet_signals", b"\x00\x01")
        assert SavedSignalsStore(store).list() == []


class TestJsonFileStore:
    """File-backed key-value store."""

    def test_missing_key_is_none(self, tmp_path):
        assert JsonFileStore(str(tmp_path)).load("absent") is None

    def test_save_then_load(self, tmp_path):
        store = JsonFileStore(str(tmp_path))
        store.save("k", [{"a": 1}])
        assert store.load("k") == [{"a": 1}]
        assert (tmp_path / "k.json").exists()
        assert not (tmp_path / "k.json.tmp").exists()

    def test_corrupt_file_is_none(self, tmp_path):
        (tmp_path / "k.json").write_text("[{oops")
        assert JsonFileStore(str(tmp_path)).load("k") is None

    def test_ledger_over_files(self, tmp_path, make_signal):
        SignalHistoryLedger(JsonFileStore(str(tmp_path))).append([make_signal()])
        assert len(SignalHistoryLedger(JsonFileStore(str(tmp_path)))) == 1
