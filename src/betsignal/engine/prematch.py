"""
Pre-match analysis.

Heuristic tips for upcoming matches, derived from the pre-match context
(average goals, head-to-head, recent form), plus a TTL cache so each
match is analysed once per window.
"""

from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Optional

import structlog

from src.betsignal.models.schemas import MatchSnapshot, PreMatchAnalysis, PreMatchContext
from src.betsignal.utils.clock import Clock

logger = structlog.get_logger()

TIP_OVER_2_5 = "Over 2.5 Goals"
TIP_BTTS = "Both Teams To Score: Yes"

MIN_CONFIDENCE = 0.65
MAX_CONFIDENCE = 0.90
MIN_ODD = 1.70
MAX_ODD = 2.30

# Combined average goals at which "over 2.5" becomes the tip
OVER_GOALS_THRESHOLD = 2.6


class PreMatchAnalyzer:
    """Deterministic tip / odd / confidence from pre-match context."""

    def analyze(self, snapshot: MatchSnapshot) -> PreMatchAnalysis:
        ctx = snapshot.pre_match or PreMatchContext()

        expected_goals = ctx.avg_goals[0] + ctx.avg_goals[1]
        tip = TIP_OVER_2_5 if expected_goals >= OVER_GOALS_THRESHOLD else TIP_BTTS

        strength = self._strength(ctx, expected_goals)
        confidence = MIN_CONFIDENCE + (MAX_CONFIDENCE - MIN_CONFIDENCE) * strength
        # Higher confidence, shorter price
        odd = MAX_ODD - (MAX_ODD - MIN_ODD) * strength

        return PreMatchAnalysis(tip=tip, odd=round(odd, 2), confidence=round(confidence, 2))

    @staticmethod
    def _strength(ctx: PreMatchContext, expected_goals: float) -> float:
        """0..1 blend of goal expectation, decisive H2H share and recent form."""
        goals = min(1.0, expected_goals / 4.0)

        h2h_total = sum(ctx.h2h)
        decisive = (ctx.h2h[0] + ctx.h2h[2]) / h2h_total if h2h_total else 0.0

        form = ctx.home_form + ctx.away_form
        form_wins = sum(1 for r in form if r == "W") / len(form) if form else 0.0

        return round(0.5 * goals + 0.25 * decisive + 0.25 * form_wins, 4)


@dataclass
class _Entry:
    analysis: PreMatchAnalysis
    stored_ms: int


class PreMatchAnalysisCache:
    """
    Per-match analysis cache with TTL and a size cap.

    Entries older than ttl_seconds are treated as missing. When full, the
    oldest stored entry is evicted.
    """

    def __init__(
        self,
        clock: Optional[Clock] = None,
        ttl_seconds: float = 1800.0,
        max_entries: int = 256,
    ):
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self.clock = clock or Clock()
        self.ttl_ms = int(ttl_seconds * 1000)
        self.max_entries = max_entries

        self._entries: OrderedDict[str, _Entry] = OrderedDict()

        # Stats
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def get(self, match_id: str) -> Optional[PreMatchAnalysis]:
        entry = self._entries.get(match_id)
        if entry is None:
            self._misses += 1
            return None

        if self.clock.now_ms() - entry.stored_ms >= self.ttl_ms:
            del self._entries[match_id]
            self._misses += 1
            return None

        self._hits += 1
        return entry.analysis

    def put(self, match_id: str, analysis: PreMatchAnalysis) -> None:
        self._entries.pop(match_id, None)
        self._entries[match_id] = _Entry(analysis, self.clock.now_ms())

        while len(self._entries) > self.max_entries:
            evicted, _ = self._entries.popitem(last=False)
            self._evictions += 1
            logger.debug("Pre-match cache eviction", match_id=evicted)

    def get_or_compute(
        self,
        match_id: str,
        compute: Callable[[], PreMatchAnalysis],
    ) -> PreMatchAnalysis:
        cached = self.get(match_id)
        if cached is not None:
            return cached
        analysis = compute()
        self.put(match_id, analysis)
        return analysis

    def invalidate(self, match_id: str) -> bool:
        return self._entries.pop(match_id, None) is not None

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, match_id: str) -> bool:
        return match_id in self._entries

    def get_metrics(self) -> dict:
        return {
            "entries": len(self._entries),
            "hits": self._hits,
            "misses": self._misses,
            "evictions": self._evictions,
        }
