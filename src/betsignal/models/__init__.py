"""Live signal data models and schemas."""

from src.betsignal.models.schemas import (
    MatchStatus,
    SignalType,
    SignalStatus,
    TicketType,
    TeamStats,
    PreMatchContext,
    MatchSnapshot,
    SignalBaseline,
    Signal,
    SavedSignalEntry,
    TicketSelection,
    ReadyTicket,
    SignalFilter,
    Metrics,
    WeeklyTrendPoint,
    PreMatchAnalysis,
    StatsOverview,
)

__all__ = [
    "MatchStatus",
    "SignalType",
    "SignalStatus",
    "TicketType",
    "TeamStats",
    "PreMatchContext",
    "MatchSnapshot",
    "SignalBaseline",
    "Signal",
    "SavedSignalEntry",
    "TicketSelection",
    "ReadyTicket",
    "SignalFilter",
    "Metrics",
    "WeeklyTrendPoint",
    "PreMatchAnalysis",
    "StatsOverview",
]
