"""
Signal Sync Scheduler.

Decides when and on which matches the signal generator runs, then folds
the result into the live feed and the history ledger.

Triggers:
- Fixed-interval timer (run loop, 45s by default)
- Offline -> online transition (one immediate catch-up tick)
- Manual recalculation for a single match

Rules:
- Eligible matches are LIVE with minute < 90; an empty set is a no-op
- Batch policy is intensity priority by default (hottest matches first)
- At most one generator call in flight; timer ticks that find one running
  are dropped, manual recalculation waits for it
- QuotaExceeded on a timer tick skips the next tick that has work
"""

import asyncio
import random
import threading
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

import structlog

from config.settings import BatchPolicy
from src.betsignal.feeds.generator import ExternalSignalGenerator, QuotaExceeded
from src.betsignal.feeds.match_store import MatchSnapshotStore
from src.betsignal.models.schemas import MatchSnapshot, MatchStatus, Signal
from src.betsignal.storage.ledger import SignalHistoryLedger
from src.betsignal.storage.live_feed import LiveSignalFeed
from src.betsignal.utils.clock import Clock

logger = structlog.get_logger()


class TickOutcome(str, Enum):
    """What a single scheduler tick did."""
    OK = "OK"
    NO_CANDIDATES = "NO_CANDIDATES"
    SKIPPED_IN_FLIGHT = "SKIPPED_IN_FLIGHT"
    SKIPPED_OFFLINE = "SKIPPED_OFFLINE"
    SKIPPED_COOLDOWN = "SKIPPED_COOLDOWN"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    FAILED = "FAILED"


class RecalcStatus(str, Enum):
    """Result of a manual per-match recalculation."""
    OK = "OK"
    NOT_ELIGIBLE = "NOT_ELIGIBLE"
    OFFLINE = "OFFLINE"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    FAILED = "FAILED"


@dataclass
class RecalcResult:
    status: RecalcStatus
    signals: list[Signal] = field(default_factory=list)
    error: Optional[str] = None


class SignalSyncScheduler:
    """
    Single-flight sync loop over the match store.

    Usage:
        scheduler = SignalSyncScheduler(store, generator, feed, ledger)
        task = asyncio.create_task(scheduler.run())
        ...
        await scheduler.stop()
    """

    def __init__(
        self,
        store: MatchSnapshotStore,
        generator: ExternalSignalGenerator,
        feed: LiveSignalFeed,
        ledger: SignalHistoryLedger,
        clock: Optional[Clock] = None,
        interval_seconds: float = 45.0,
        batch_size: int = 2,
        policy: BatchPolicy = BatchPolicy.INTENSITY,
        rng: Optional[random.Random] = None,
        max_minute: int = 90,
        writer_lock: Optional[threading.RLock] = None,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")

        self.store = store
        self.generator = generator
        self.feed = feed
        self.ledger = ledger
        self.clock = clock or Clock()
        self.interval_seconds = interval_seconds
        self.batch_size = batch_size
        self.policy = BatchPolicy(policy)
        self.rng = rng or random.Random()
        self.max_minute = max_minute

        self.logger = logger.bind(component="sync_scheduler")

        # One generator call at a time
        self._in_flight = asyncio.Lock()
        # Feed + ledger writes (shared with the resolution tracker)
        self.writer_lock = writer_lock or threading.RLock()

        # State
        self._online = True
        self._cooldown = False
        self._quota_exhausted = False
        self._last_sync_ms: Optional[int] = None
        self._running = False
        self._tick_tasks: set[asyncio.Task] = set()

        # Stats
        self._outcomes: Counter = Counter()
        self._signals_merged = 0

    # =========================================================================
    # Status
    # =========================================================================

    @property
    def is_online(self) -> bool:
        return self._online

    @property
    def in_flight(self) -> bool:
        return self._in_flight.locked()

    @property
    def cooldown_pending(self) -> bool:
        return self._cooldown

    @property
    def quota_exhausted(self) -> bool:
        """True while the last sync attempt ran out of quota and nothing has succeeded since."""
        return self._quota_exhausted

    @property
    def last_sync_ms(self) -> Optional[int]:
        return self._last_sync_ms

    # =========================================================================
    # Selection
    # =========================================================================

    def eligible(self) -> list[MatchSnapshot]:
        """LIVE matches before the 90th minute, ordered by match id."""
        return sorted(
            (m for m in self.store.live() if m.minute < self.max_minute),
            key=lambda m: m.match_id,
        )

    def select_batch(self, candidates: list[MatchSnapshot]) -> list[MatchSnapshot]:
        if len(candidates) <= self.batch_size:
            if self.policy == BatchPolicy.RANDOM:
                return list(candidates)
            return sorted(candidates, key=lambda m: (-m.intensity, m.match_id))

        if self.policy == BatchPolicy.RANDOM:
            return self.rng.sample(candidates, self.batch_size)

        ranked = sorted(candidates, key=lambda m: (-m.intensity, m.match_id))
        return ranked[:self.batch_size]

    # =========================================================================
    # Triggers
    # =========================================================================

    async def tick(self) -> TickOutcome:
        """
        One timer-driven sync cycle.

        Never raises for expected failures; the outcome says what happened.
        """
        # No await between this check and acquiring the lock below
        if self._in_flight.locked():
            return self._record(TickOutcome.SKIPPED_IN_FLIGHT)

        if not self._online:
            return self._record(TickOutcome.SKIPPED_OFFLINE)

        candidates = self.eligible()
        if not candidates:
            return self._record(TickOutcome.NO_CANDIDATES)

        if self._cooldown:
            self._cooldown = False
            self.logger.info("Sync skipped for quota cooldown")
            return self._record(TickOutcome.SKIPPED_COOLDOWN)

        batch = self.select_batch(candidates)

        async with self._in_flight:
            try:
                signals = await self.generator.generate(batch)
            except QuotaExceeded as e:
                self._cooldown = True
                self._quota_exhausted = True
                self.logger.warning(
                    "Provider quota exhausted, next sync skipped",
                    matches=[m.match_id for m in batch],
                    error=str(e),
                )
                return self._record(TickOutcome.QUOTA_EXCEEDED)
            except Exception as e:
                self.logger.error(
                    "Sync failed",
                    matches=[m.match_id for m in batch],
                    error=str(e),
                    error_type=type(e).__name__,
                )
                return self._record(TickOutcome.FAILED)

            self._merge(signals)
            self._quota_exhausted = False
            self._last_sync_ms = self.clock.now_ms()

        return self._record(TickOutcome.OK)

    async def recalculate_for_match(self, match_id: str) -> RecalcResult:
        """
        Manual one-shot generation for a single LIVE match.

        Waits for any in-flight call instead of dropping, and leaves the
        timer cooldown untouched.
        """
        if not self._online:
            return RecalcResult(RecalcStatus.OFFLINE)

        match = self.store.get(match_id)
        if match is None or match.status != MatchStatus.LIVE:
            return RecalcResult(RecalcStatus.NOT_ELIGIBLE)

        async with self._in_flight:
            # Re-read: the match may have moved on while we waited
            match = self.store.get(match_id)
            if match is None or match.status != MatchStatus.LIVE:
                return RecalcResult(RecalcStatus.NOT_ELIGIBLE)

            try:
                signals = await self.generator.generate([match])
            except QuotaExceeded as e:
                self.logger.warning("Recalculation hit provider quota", match_id=match_id)
                return RecalcResult(RecalcStatus.QUOTA_EXCEEDED, error=str(e))
            except Exception as e:
                self.logger.error("Recalculation failed", match_id=match_id, error=str(e))
                return RecalcResult(RecalcStatus.FAILED, error=str(e))

            self._merge(signals)
            self._quota_exhausted = False

        self.logger.info("Match recalculated", match_id=match_id, signals=len(signals))
        return RecalcResult(RecalcStatus.OK, signals=signals)

    async def set_online(self, online: bool) -> Optional[TickOutcome]:
        """
        Record connectivity. Coming back online runs one catch-up tick.

        In-flight calls are never cancelled by going offline.
        """
        was_online = self._online
        self._online = online

        if online and not was_online:
            self.logger.info("Back online, running catch-up sync")
            return await self.tick()

        if not online and was_online:
            self.logger.warning("Offline, sync paused")
        return None

    # =========================================================================
    # Merge
    # =========================================================================

    def _merge(self, signals: list[Signal]) -> None:
        """Feed prepend and ledger append with the same batch, as one write."""
        if not signals:
            return
        with self.writer_lock:
            evicted = self.feed.prepend(signals)
            self.ledger.append(signals)
        self._signals_merged += len(signals)
        self.logger.info("Signals merged", count=len(signals), evicted=evicted)

    def _record(self, outcome: TickOutcome) -> TickOutcome:
        self._outcomes[outcome] += 1
        if outcome not in (TickOutcome.OK, TickOutcome.NO_CANDIDATES):
            self.logger.debug("Tick", outcome=outcome.value)
        return outcome

    # =========================================================================
    # Loop
    # =========================================================================

    async def run(self) -> None:
        """
        Fire a tick every interval until stop().

        Ticks run as tasks so a slow generator call makes later ticks drop
        instead of queueing behind it.
        """
        self._running = True
        self.logger.info(
            "Scheduler started",
            interval_seconds=self.interval_seconds,
            batch_size=self.batch_size,
            policy=self.policy.value,
        )

        while self._running:
            task = asyncio.create_task(self.tick(), name="sync_tick")
            self._tick_tasks.add(task)
            task.add_done_callback(self._tick_tasks.discard)
            try:
                await self.clock.sleep(self.interval_seconds)
            except asyncio.CancelledError:
                break

        self._running = False

    async def stop(self) -> None:
        """Stop the loop and let running ticks finish."""
        self._running = False
        if self._tick_tasks:
            await asyncio.gather(*self._tick_tasks, return_exceptions=True)
        self.logger.info("Scheduler stopped", **self.get_metrics())

    @property
    def is_running(self) -> bool:
        return self._running

    def get_metrics(self) -> dict:
        return {
            "online": self._online,
            "in_flight": self.in_flight,
            "cooldown_pending": self._cooldown,
            "quota_exhausted": self._quota_exhausted,
            "last_sync_ms": self._last_sync_ms,
            "signals_merged": self._signals_merged,
            "ticks": {outcome.value: count for outcome, count in self._outcomes.items()},
        }
