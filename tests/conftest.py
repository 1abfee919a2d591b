"""Shared fixtures: manual clock, fake provider, seeded matches and signals."""

import asyncio
import random
from datetime import datetime, timezone
from typing import Any, Callable, Optional

import pytest

from src.betsignal.feeds.generator import RateLimitError, SignalProvider
from src.betsignal.feeds.match_store import MatchSnapshotStore
from src.betsignal.models.schemas import (
    MatchSnapshot,
    MatchStatus,
    PreMatchContext,
    Signal,
    SignalBaseline,
    SignalStatus,
    SignalType,
    TeamStats,
)
from src.betsignal.storage.kv import InMemoryStore
from src.betsignal.utils.clock import Clock

# Wednesday 2024-03-13 15:30:00 UTC
BASE_MS = int(datetime(2024, 3, 13, 15, 30, tzinfo=timezone.utc).timestamp() * 1000)


class ManualClock(Clock):
    """Virtual clock: time only moves when told to (or when something sleeps)."""

    def __init__(self, now_ms: int = BASE_MS):
        super().__init__(timezone.utc)
        self._now_ms = now_ms
        self.sleeps: list[float] = []

    def now_ms(self) -> int:
        return self._now_ms

    def advance(self, seconds: float) -> None:
        self._now_ms += int(seconds * 1000)

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.advance(seconds)
        await asyncio.sleep(0)


class RawBlobStore(InMemoryStore):
    """In-memory store that can hold bytes which are not valid JSON."""

    def put_raw(self, key: str, blob: bytes) -> None:
        self._blobs[key] = blob


class FakeProvider(SignalProvider):
    """
    Scripted provider.

    Each request pops the next scripted response: a list is returned, an
    exception is raised. When the script runs out, `default` is used.
    Set `gate` to an unset asyncio.Event to hold calls in flight.
    """

    def __init__(self, default: Any = None):
        self.script: list[Any] = []
        self.default = default if default is not None else []
        self.calls: list[list[str]] = []
        self.ticket_calls = 0
        self.ticket_response: Any = []
        self.gate: Optional[asyncio.Event] = None
        self.in_flight = 0
        self.max_in_flight = 0
        self.closed = False

    async def request_signals(self, snapshots):
        self.calls.append([s.match_id for s in snapshots])
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.gate is not None:
                await self.gate.wait()
            response = self.script.pop(0) if self.script else self.default
            if isinstance(response, Exception):
                raise response
            if callable(response):
                return response(snapshots)
            return response
        finally:
            self.in_flight -= 1

    async def request_tickets(self, snapshots):
        self.ticket_calls += 1
        if isinstance(self.ticket_response, Exception):
            raise self.ticket_response
        return self.ticket_response

    async def close(self):
        self.closed = True


def always_rate_limited(snapshots):
    raise RateLimitError("429 RESOURCE_EXHAUSTED")


def one_signal_per_match(snapshots):
    """Provider response with a GOAL candidate for every match in the batch."""
    return [
        {
            "matchId": s.match_id,
            "type": "GOAL",
            "description": "Next goal",
            "confidence": 0.8,
            "oddSuggested": 1.9,
            "analysis": "Pressure building",
            "keyFactors": ["Dangerous attacks", "Shots on target"],
        }
        for s in snapshots
    ]


def build_match(
    match_id: str,
    minute: int = 30,
    status: MatchStatus = MatchStatus.LIVE,
    league: str = "Premier League",
    home_score: int = 0,
    away_score: int = 0,
    corners: tuple[int, int] = (0, 0),
    cards: tuple[int, int] = (0, 0),
    dangerous_attacks: tuple[int, int] = (10, 10),
    shots: tuple[int, int] = (2, 2),
    home: Optional[str] = None,
    away: Optional[str] = None,
    pre_match: Optional[PreMatchContext] = None,
) -> MatchSnapshot:
    if status == MatchStatus.SCHEDULED:
        return MatchSnapshot(
            match_id=match_id,
            league=league,
            home=TeamStats(name=home or f"Home {match_id}"),
            away=TeamStats(name=away or f"Away {match_id}"),
            pre_match=pre_match,
        )
    return MatchSnapshot(
        match_id=match_id,
        league=league,
        minute=minute,
        status=status,
        home=TeamStats(
            name=home or f"Home {match_id}",
            score=home_score,
            possession=50,
            shots_on_target=shots[0],
            corners=corners[0],
            yellow_cards=cards[0],
            dangerous_attacks=dangerous_attacks[0],
        ),
        away=TeamStats(
            name=away or f"Away {match_id}",
            score=away_score,
            possession=50,
            shots_on_target=shots[1],
            corners=corners[1],
            yellow_cards=cards[1],
            dangerous_attacks=dangerous_attacks[1],
        ),
        pre_match=pre_match,
    )


def build_signal(
    match_id: str = "m1",
    signal_type: SignalType = SignalType.GOAL,
    timestamp: str = "15:30:00",
    full_timestamp: int = BASE_MS,
    status: SignalStatus = SignalStatus.PENDING,
    odd: float = 2.0,
    confidence: float = 0.75,
    league: str = "Premier League",
    baseline: Optional[SignalBaseline] = None,
) -> Signal:
    return Signal(
        match_id=match_id,
        type=signal_type,
        description="Over 0.5 goals",
        analysis="High pressure",
        confidence=confidence,
        odd_suggested=odd,
        key_factors=["Pressure"],
        timestamp=timestamp,
        full_timestamp=full_timestamp,
        status=status,
        match_name=f"Home {match_id} vs Away {match_id}",
        league_name=league,
        minute=30,
        baseline=baseline,
    )


@pytest.fixture
def make_match() -> Callable[..., MatchSnapshot]:
    return build_match


@pytest.fixture
def make_signal() -> Callable[..., Signal]:
    return build_signal


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def provider():
    return FakeProvider(default=one_signal_per_match)


@pytest.fixture
def kv():
    return InMemoryStore()


@pytest.fixture
def seeded_matches() -> list[MatchSnapshot]:
    """Deterministic mix of live, late, scheduled and finished matches."""
    rng = random.Random(1234)
    matches = []
    for i in range(4):
        minute = rng.randint(10, 80)
        matches.append(build_match(
            f"live-{i}",
            minute=minute,
            dangerous_attacks=(rng.randint(5, 40), rng.randint(5, 40)),
            shots=(rng.randint(0, 6), rng.randint(0, 6)),
        ))
    matches.append(build_match("late", minute=90))
    matches.append(build_match("upcoming", status=MatchStatus.SCHEDULED))
    matches.append(build_match("done", minute=95, status=MatchStatus.FINISHED))
    return matches


@pytest.fixture
def match_store(seeded_matches) -> MatchSnapshotStore:
    return MatchSnapshotStore(seeded_matches)
