"""Scheduling, resolution and analytics."""

from src.betsignal.engine.scheduler import (
    SignalSyncScheduler,
    TickOutcome,
    RecalcStatus,
    RecalcResult,
)
from src.betsignal.engine.resolution import ResolutionTracker
from src.betsignal.engine.prematch import PreMatchAnalyzer, PreMatchAnalysisCache
from src.betsignal.engine import performance

__all__ = [
    "SignalSyncScheduler",
    "TickOutcome",
    "RecalcStatus",
    "RecalcResult",
    "ResolutionTracker",
    "PreMatchAnalyzer",
    "PreMatchAnalysisCache",
    "performance",
]
