"""Tests for the engine facade (consumer API)."""

import orjson
import pytest

from config.settings import Settings
from src.betsignal.engine.scheduler import RecalcStatus, TickOutcome
from src.betsignal.feeds.generator import RateLimitError
from src.betsignal.main import SignalEngine
from src.betsignal.models.identity import identity_of
from src.betsignal.models.schemas import MatchStatus, SignalFilter, SignalStatus, TicketType
from src.betsignal.storage.kv import InMemoryStore

from conftest import FakeProvider, ManualClock, one_signal_per_match


@pytest.fixture
def config():
    return Settings(_env_file=None)


@pytest.fixture
def engine(provider, kv, clock, match_store, config):
    return SignalEngine(provider, kv, config=config, clock=clock, match_store=match_store)


class TestSignalEngine:
    """Consumer-facing operations."""

    @pytest.mark.asyncio
    async def test_sync_then_read_feed_and_history(self, engine):
        assert await engine.scheduler.tick() == TickOutcome.OK

        feed = engine.list_live_feed()
        assert len(feed) == 2
        assert engine.list_live_feed(SignalFilter(min_confidence=0.81)) == []
        assert [s.match_id for s in engine.list_history()] == [s.match_id for s in feed]

    @pytest.mark.asyncio
    async def test_history_defaults_to_today(self, engine, clock):
        await engine.scheduler.tick()
        clock.advance(24 * 60 * 60)

        assert engine.list_history() == []
        assert len(engine.list_history(since_ms=0)) == 2

    @pytest.mark.asyncio
    async def test_resolution_flows_into_metrics(self, engine, make_match):
        await engine.recalculate_for_match("live-0")
        live0 = engine.matches.get("live-0")
        assert engine.update_match(make_match(
            "live-0",
            minute=live0.minute + 5,
            home_score=live0.home.score + 1,
            dangerous_attacks=(live0.home.dangerous_attacks, live0.away.dangerous_attacks),
            shots=(live0.home.shots_on_target, live0.away.shots_on_target),
        ))

        assert engine.resolve_pending() == 1
        metrics = engine.compute_metrics()
        assert metrics.wins == 1
        assert metrics.roi == pytest.approx(0.9)
        assert engine.list_live_feed()[0].status == SignalStatus.WIN

        overview = engine.stats_overview()
        assert overview.today.wins == 1
        assert overview.average_odd == pytest.approx(1.9)

    @pytest.mark.asyncio
    async def test_toggle_saved_uses_match_names(self, engine):
        await engine.recalculate_for_match("live-1")
        signal = engine.list_live_feed()[0]

        assert engine.toggle_saved(signal) is True
        [entry] = engine.list_saved()
        assert entry.home_team_name == "Home live-1"
        assert entry.league == "Premier League"

        assert engine.toggle_saved(signal) is False
        assert engine.list_saved() == []

    @pytest.mark.asyncio
    async def test_recalculate_unknown_match(self, engine, provider):
        result = await engine.recalculate_for_match("nope")
        assert result.status == RecalcStatus.NOT_ELIGIBLE
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_ready_tickets(self, engine, provider):
        provider.ticket_response = [{
            "type": "AGGRESSIVE",
            "totalOdd": 11.5,
            "confidence": 0.4,
            "selections": [
                {"matchName": "A vs B", "market": "Home win", "odd": 3.2},
                {"matchName": "C vs D", "market": "Over 3.5", "odd": 3.6},
            ],
            "analysis": "Long shot",
        }]
        [ticket] = await engine.generate_ready_tickets()
        assert ticket.type == TicketType.AGGRESSIVE
        assert len(ticket.selections) == 2

    @pytest.mark.asyncio
    async def test_ready_tickets_absorb_quota(self, engine, provider):
        provider.ticket_response = RateLimitError("429")
        assert await engine.generate_ready_tickets() == []
        assert provider.ticket_calls == 4

    def test_pre_match_analysis_cached(self, engine):
        first = engine.pre_match_analysis("upcoming")
        assert first is not None
        assert engine.pre_match_analysis("upcoming") is first
        assert engine.pre_match_analysis("live-0") is None
        assert engine.pre_match_analysis("missing") is None

    @pytest.mark.asyncio
    async def test_sync_status(self, engine):
        status = engine.sync_status()
        assert status["online"] is True
        assert status["last_sync_ms"] is None

        await engine.set_online(False)
        assert engine.sync_status()["online"] is False
        assert await engine.set_online(True) == TickOutcome.OK
        assert engine.sync_status()["last_sync_ms"] is not None

    @pytest.mark.asyncio
    async def test_history_and_saved_survive_restart(self, config, match_store):
        kv = InMemoryStore()
        first = SignalEngine(
            FakeProvider(default=one_signal_per_match), kv,
            config=config, clock=ManualClock(), match_store=match_store,
        )
        await first.scheduler.tick()
        first.toggle_saved(first.list_live_feed()[0])

        second = SignalEngine(FakeProvider(), kv, config=config, clock=ManualClock())
        assert len(second.list_history(since_ms=0)) == 2
        assert len(second.list_saved()) == 1
        assert second.list_live_feed() == []
        assert identity_of(second.list_saved()[0]) in {identity_of(s) for s in second.list_history(0)}

    def test_load_telemetry_file(self, engine, tmp_path):
        path = tmp_path / "matches.json"
        path.write_bytes(orjson.dumps([
            {
                "id": "new-1",
                "league": "Bundesliga",
                "minute": 12,
                "status": "LIVE",
                "homeTeam": {"name": "Bayern", "dangerousAttacks": 9},
                "awayTeam": {"name": "Dortmund", "dangerousAttacks": 4},
            },
            {"league": "no id"},
        ]))

        assert engine.load_telemetry_file(str(path)) == 1
        assert engine.matches.get("new-1").status == MatchStatus.LIVE

    def test_load_telemetry_file_unreadable(self, engine, tmp_path):
        assert engine.load_telemetry_file(str(tmp_path / "missing.json")) == 0
