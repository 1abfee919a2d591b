"""
Live signal data models and schemas.

Defines the core data structures for:
- Match snapshots (live telemetry, pre-match context)
- Betting signals and their resolution lifecycle
- Saved signals and ready tickets
- Performance aggregates
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class MatchStatus(str, Enum):
    """Match lifecycle. Only moves forward."""
    SCHEDULED = "SCHEDULED"
    LIVE = "LIVE"
    FINISHED = "FINISHED"

    @property
    def rank(self) -> int:
        return _STATUS_ORDER[self]


_STATUS_ORDER = {
    MatchStatus.SCHEDULED: 0,
    MatchStatus.LIVE: 1,
    MatchStatus.FINISHED: 2,
}


class SignalType(str, Enum):
    """Betting market a signal refers to."""
    CORNER = "CORNER"
    GOAL = "GOAL"
    CARDS = "CARDS"
    RESULT = "RESULT"


class SignalStatus(str, Enum):
    """Resolution state of a signal."""
    PENDING = "PENDING"
    WIN = "WIN"
    LOSS = "LOSS"


class TicketType(str, Enum):
    """Risk profile of a ready ticket."""
    SAFE = "SAFE"
    MODERATE = "MODERATE"
    AGGRESSIVE = "AGGRESSIVE"


# --- Match Data Models ---

@dataclass(frozen=True)
class TeamStats:
    """Live counters for one side of a match."""
    name: str
    score: int = 0
    possession: int = 0  # 0-100, sides need not sum to 100
    shots_on_target: int = 0
    shots_off_target: int = 0
    corners: int = 0
    yellow_cards: int = 0
    red_cards: int = 0
    dangerous_attacks: int = 0
    attacks: int = 0

    @property
    def cards(self) -> int:
        return self.yellow_cards + self.red_cards

    @property
    def shots(self) -> int:
        return self.shots_on_target + self.shots_off_target

    def counters(self) -> tuple[int, ...]:
        """All monotonic counters (possession excluded)."""
        return (
            self.score,
            self.shots_on_target,
            self.shots_off_target,
            self.corners,
            self.yellow_cards,
            self.red_cards,
            self.dangerous_attacks,
            self.attacks,
        )

    def is_idle(self) -> bool:
        """No counters and no possession: how a side looks before kick-off."""
        return self.possession == 0 and not any(self.counters())

    @classmethod
    def from_dict(cls, data: dict) -> "TeamStats":
        """Build from a telemetry payload (camelCase keys)."""
        return cls(
            name=data.get("name", ""),
            score=int(data.get("score", 0)),
            possession=int(data.get("possession", 0)),
            shots_on_target=int(data.get("shotsOnTarget", 0)),
            shots_off_target=int(data.get("shotsOffTarget", 0)),
            corners=int(data.get("corners", 0)),
            yellow_cards=int(data.get("yellowCards", 0)),
            red_cards=int(data.get("redCards", 0)),
            dangerous_attacks=int(data.get("dangerousAttacks", 0)),
            attacks=int(data.get("attacks", 0)),
        )


@dataclass(frozen=True)
class PreMatchContext:
    """Optional pre-match context passed along to the signal provider."""
    home_form: tuple[str, ...] = ()  # "W" / "D" / "L", most recent last
    away_form: tuple[str, ...] = ()
    league_position: tuple[int, int] = (0, 0)  # (home, away)
    h2h: tuple[int, int, int] = (0, 0, 0)  # (home wins, draws, away wins)
    avg_goals: tuple[float, float] = (0.0, 0.0)
    avg_corners: tuple[float, float] = (0.0, 0.0)

    @classmethod
    def from_dict(cls, data: dict) -> "PreMatchContext":
        position = data.get("leaguePosition", {})
        h2h = data.get("h2h", {})
        goals = data.get("avgGoals", {})
        corners = data.get("avgCorners", {})
        return cls(
            home_form=tuple(data.get("homeForm", ())),
            away_form=tuple(data.get("awayForm", ())),
            league_position=(int(position.get("home", 0)), int(position.get("away", 0))),
            h2h=(int(h2h.get("homeWins", 0)), int(h2h.get("draws", 0)), int(h2h.get("awayWins", 0))),
            avg_goals=(float(goals.get("home", 0.0)), float(goals.get("away", 0.0))),
            avg_corners=(float(corners.get("home", 0.0)), float(corners.get("away", 0.0))),
        )


@dataclass(frozen=True)
class MatchSnapshot:
    """
    State of one match at a point in time.

    Snapshots are immutable; telemetry updates replace the whole record so
    readers never observe a half-applied update.
    """
    match_id: str
    league: str
    home: TeamStats
    away: TeamStats
    minute: int = 0
    status: MatchStatus = MatchStatus.SCHEDULED
    scheduled_time: Optional[str] = None
    pre_match: Optional[PreMatchContext] = None

    @property
    def match_name(self) -> str:
        return f"{self.home.name} vs {self.away.name}"

    @property
    def is_live(self) -> bool:
        return self.status == MatchStatus.LIVE

    @property
    def total_goals(self) -> int:
        return self.home.score + self.away.score

    @property
    def total_corners(self) -> int:
        return self.home.corners + self.away.corners

    @property
    def total_cards(self) -> int:
        return self.home.cards + self.away.cards

    @property
    def intensity(self) -> float:
        """
        Match "temperature" on a 0-100 scale.

        Combined dangerous attacks and shots per minute, weighted 35/15.
        Above 60 is a hot match, below 35 a cold one.
        """
        minute = max(1, self.minute)
        dangerous_per_minute = (self.home.dangerous_attacks + self.away.dangerous_attacks) / minute
        shots_per_minute = (self.home.shots + self.away.shots) / minute
        return min(100.0, dangerous_per_minute * 35 + shots_per_minute * 15)

    @classmethod
    def from_dict(cls, data: dict) -> "MatchSnapshot":
        """Build from a telemetry payload (camelCase keys)."""
        pre_match = data.get("preMatch")
        return cls(
            match_id=str(data["id"]),
            league=data.get("league", ""),
            home=TeamStats.from_dict(data.get("homeTeam", {})),
            away=TeamStats.from_dict(data.get("awayTeam", {})),
            minute=int(data.get("minute", 0)),
            status=MatchStatus(data.get("status", MatchStatus.SCHEDULED.value)),
            scheduled_time=data.get("scheduledTime"),
            pre_match=PreMatchContext.from_dict(pre_match) if pre_match else None,
        )


# --- Signal Models (persisted, camelCase on disk and on the wire) ---

class WireModel(BaseModel):
    """Base for models exchanged with the provider or written to storage."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=False,
    )

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class SignalBaseline(WireModel):
    """Match totals at the moment a signal was generated."""
    home_score: int = 0
    away_score: int = 0
    goals: int = 0
    corners: int = 0
    cards: int = 0

    @classmethod
    def from_snapshot(cls, snapshot: MatchSnapshot) -> "SignalBaseline":
        return cls(
            home_score=snapshot.home.score,
            away_score=snapshot.away.score,
            goals=snapshot.total_goals,
            corners=snapshot.total_corners,
            cards=snapshot.total_cards,
        )


class Signal(WireModel):
    """
    One actionable betting observation about a match.

    Everything except `status` is fixed at generation time. `full_timestamp`
    (epoch millis) is authoritative for ordering and expiry; `timestamp` is
    the second-resolution wall-clock label that takes part in identity.
    """
    match_id: str
    type: SignalType
    description: str = ""
    analysis: str = ""
    confidence: float = Field(ge=0.0, le=1.0)
    odd_suggested: float = Field(gt=1.0)
    key_factors: list[str] = Field(default_factory=list)
    timestamp: str
    full_timestamp: int
    status: SignalStatus = SignalStatus.PENDING

    # Denormalized so the signal outlives the match record
    match_name: str = ""
    league_name: str = ""
    minute: int = 0
    baseline: Optional[SignalBaseline] = None

    @property
    def is_resolved(self) -> bool:
        return self.status != SignalStatus.PENDING


class SavedSignalEntry(Signal):
    """A user-saved copy of a signal with team names for display."""
    home_team_name: str = ""
    away_team_name: str = ""
    league: str = ""


class TicketSelection(WireModel):
    """One leg of a ready ticket."""
    match_name: str
    market: str
    odd: float


class ReadyTicket(WireModel):
    """A bundle of 2-3 selections with a combined odd."""
    id: str
    type: TicketType
    total_odd: float
    confidence: float
    selections: list[TicketSelection] = Field(default_factory=list)
    analysis: str = ""
    timestamp: str = ""


# --- Read-side aggregates ---

@dataclass(frozen=True)
class SignalFilter:
    """Feed filter. Unset fields match everything."""
    type: Optional[SignalType] = None
    league_name: Optional[str] = None
    min_confidence: float = 0.0

    def matches(self, signal: Signal) -> bool:
        if self.type is not None and signal.type != self.type:
            return False
        if self.league_name is not None and signal.league_name != self.league_name:
            return False
        return signal.confidence >= self.min_confidence


@dataclass(frozen=True)
class Metrics:
    """Win/loss and ROI summary for a set of signals."""
    wins: int = 0
    losses: int = 0
    total: int = 0
    win_rate: float = 0.0  # percent
    roi: float = 0.0       # flat-stake units


@dataclass(frozen=True)
class WeeklyTrendPoint:
    """Performance of one Sunday-start calendar week."""
    week_label: str  # "dd/mm" of the week start
    week_start_ms: int
    win_rate: float
    roi: float


@dataclass(frozen=True)
class PreMatchAnalysis:
    """Heuristic pre-match tip for an upcoming match."""
    tip: str
    odd: float
    confidence: float


@dataclass
class StatsOverview:
    """Everything the stats screen needs in one read."""
    overall: Metrics
    today: Metrics
    weekly: list[WeeklyTrendPoint] = field(default_factory=list)
    average_odd: float = 0.0
