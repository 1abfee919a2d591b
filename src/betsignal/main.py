"""
BetSignal Live Sync Engine - Main Application

Keeps a capped live feed and a persisted history of betting signals for
live football matches:

- Match telemetry lands in the snapshot store
- The sync scheduler asks the signal provider about the hottest live matches
- The resolution loop settles pending signals as matches progress
- Performance analytics are computed on demand from history

Run with: python -m src.betsignal.main
"""

import asyncio
import random
import signal
import threading
from pathlib import Path
from typing import Optional

import orjson
import structlog

from config.settings import Settings, settings
from src.betsignal.engine import performance
from src.betsignal.engine.prematch import PreMatchAnalysisCache, PreMatchAnalyzer
from src.betsignal.engine.resolution import ResolutionTracker
from src.betsignal.engine.scheduler import RecalcResult, SignalSyncScheduler, TickOutcome
from src.betsignal.feeds.gemini import GeminiSignalProvider
from src.betsignal.feeds.generator import ExternalSignalGenerator, GeneratorError, SignalProvider
from src.betsignal.feeds.match_store import MatchSnapshotStore
from src.betsignal.models.schemas import (
    MatchSnapshot,
    MatchStatus,
    Metrics,
    PreMatchAnalysis,
    ReadyTicket,
    SavedSignalEntry,
    Signal,
    SignalFilter,
    StatsOverview,
)
from src.betsignal.storage.kv import JsonFileStore, KeyValueStore
from src.betsignal.storage.ledger import SignalHistoryLedger
from src.betsignal.storage.live_feed import LiveSignalFeed
from src.betsignal.storage.saved import SavedSignalsStore
from src.betsignal.utils.clock import Clock, resolve_timezone
from src.betsignal.utils.logging import setup_logging

logger = structlog.get_logger()


class SignalEngine:
    """
    Engine orchestrator and the consumer-facing API.

    Coordinates:
    - Match snapshot store (telemetry in)
    - Sync scheduler + signal generator
    - Live feed and history ledger
    - Resolution tracker
    - Saved signals and pre-match analysis

    Presentation code should only call the public methods below.
    """

    def __init__(
        self,
        provider: SignalProvider,
        kv_store: KeyValueStore,
        config: Optional[Settings] = None,
        clock: Optional[Clock] = None,
        match_store: Optional[MatchSnapshotStore] = None,
        rng: Optional[random.Random] = None,
    ):
        self.config = config or settings
        self.tz = resolve_timezone(self.config.timezone)
        self.clock = clock or Clock(self.tz)
        self.logger = logger.bind(component="engine")

        sched_cfg = self.config.scheduler
        gen_cfg = self.config.generator
        storage_cfg = self.config.storage

        # Single writer discipline for feed + ledger
        self._writer_lock = threading.RLock()

        self.matches = match_store or MatchSnapshotStore()
        self.generator = ExternalSignalGenerator(
            provider,
            clock=self.clock,
            max_retries=gen_cfg.max_retries,
            initial_backoff_seconds=gen_cfg.initial_backoff_seconds,
            backoff_multiplier=gen_cfg.backoff_multiplier,
            request_timeout_seconds=gen_cfg.request_timeout_seconds,
        )
        self.feed = LiveSignalFeed(capacity=self.config.feed.capacity)
        self.ledger = SignalHistoryLedger(kv_store, key=storage_cfg.history_key)
        self.saved = SavedSignalsStore(kv_store, key=storage_cfg.saved_key)

        self.scheduler = SignalSyncScheduler(
            self.matches,
            self.generator,
            self.feed,
            self.ledger,
            clock=self.clock,
            interval_seconds=sched_cfg.interval_seconds,
            batch_size=sched_cfg.batch_size,
            policy=sched_cfg.batch_policy,
            rng=rng or random.Random(sched_cfg.random_seed),
            max_minute=sched_cfg.max_minute,
            writer_lock=self._writer_lock,
        )
        self.resolver = ResolutionTracker(writer_lock=self._writer_lock)

        self.prematch_analyzer = PreMatchAnalyzer()
        self.prematch_cache = PreMatchAnalysisCache(
            clock=self.clock,
            ttl_seconds=self.config.prematch.ttl_seconds,
            max_entries=self.config.prematch.max_entries,
        )

        # State
        self._running = False
        self._tasks: list[asyncio.Task] = []
        self._shutdown_event = asyncio.Event()
        self._telemetry_mtime: Optional[float] = None

    @classmethod
    def from_settings(cls, config: Settings = settings) -> "SignalEngine":
        """Wire the production provider and file store from settings."""
        gen_cfg = config.generator
        provider = GeminiSignalProvider(
            api_key=gen_cfg.api_key,
            signal_model=gen_cfg.signal_model,
            ticket_model=gen_cfg.ticket_model,
            base_url=gen_cfg.base_url,
            timeout_seconds=gen_cfg.request_timeout_seconds,
            temperature=gen_cfg.temperature,
        )
        return cls(provider, JsonFileStore(config.storage.data_dir), config=config)

    # =========================================================================
    # Telemetry in
    # =========================================================================

    def update_match(self, snapshot: MatchSnapshot) -> bool:
        """Full-state replace for one match. False if the update was rejected."""
        return self.matches.apply(snapshot)

    def load_telemetry_file(self, path: str) -> int:
        """
        Apply every match payload in a JSON array file.

        Returns:
            Number of updates applied
        """
        try:
            raw = orjson.loads(Path(path).read_bytes())
        except (OSError, orjson.JSONDecodeError) as e:
            self.logger.warning("Telemetry file unreadable", path=path, error=str(e))
            return 0

        if not isinstance(raw, list):
            self.logger.warning("Telemetry file is not a list", path=path)
            return 0

        snapshots = []
        for item in raw:
            try:
                snapshots.append(MatchSnapshot.from_dict(item))
            except (KeyError, ValueError, TypeError, AttributeError) as e:
                self.logger.warning("Skipped malformed match payload", error=str(e))
        return self.matches.apply_many(snapshots)

    async def set_online(self, online: bool) -> Optional[TickOutcome]:
        return await self.scheduler.set_online(online)

    # =========================================================================
    # Consumer API
    # =========================================================================

    def list_live_feed(self, signal_filter: Optional[SignalFilter] = None) -> list[Signal]:
        return self.feed.list(signal_filter)

    def list_history(self, since_ms: Optional[int] = None) -> list[Signal]:
        """History newest first. Defaults to today (local midnight onwards)."""
        if since_ms is None:
            since_ms = performance.start_of_day_ms(self.clock.now_ms(), self.tz)
        return self.ledger.query(since_ms)

    def compute_metrics(self, since_ms: Optional[int] = None) -> Metrics:
        """Metrics over history since since_ms (all history when omitted)."""
        return performance.metrics(self.ledger.query(since_ms or 0))

    def stats_overview(self) -> StatsOverview:
        return performance.overview(self.ledger.all(), self.clock.now_ms(), self.tz)

    def list_saved(self) -> list[SavedSignalEntry]:
        return self.saved.list()

    def toggle_saved(self, signal: Signal) -> bool:
        """Save or un-save. Team names come from the match when it is still tracked."""
        match = self.matches.get(signal.match_id)
        if match is None:
            return self.saved.toggle(signal)
        return self.saved.toggle(
            signal,
            home_team_name=match.home.name,
            away_team_name=match.away.name,
            league=match.league,
        )

    async def recalculate_for_match(self, match_id: str) -> RecalcResult:
        return await self.scheduler.recalculate_for_match(match_id)

    async def generate_ready_tickets(self) -> list[ReadyTicket]:
        """Ready tickets over all live matches. Empty on failure or no live matches."""
        live = self.matches.live()
        if not live:
            return []
        try:
            return await self.generator.generate_tickets(live)
        except GeneratorError as e:
            self.logger.warning("Ticket generation failed", error=str(e), error_type=type(e).__name__)
            return []

    def pre_match_analysis(self, match_id: str) -> Optional[PreMatchAnalysis]:
        """Cached heuristic tip for a scheduled match; None if not scheduled."""
        match = self.matches.get(match_id)
        if match is None or match.status != MatchStatus.SCHEDULED:
            return None
        return self.prematch_cache.get_or_compute(
            match_id, lambda: self.prematch_analyzer.analyze(match)
        )

    def sync_status(self) -> dict:
        return {
            "online": self.scheduler.is_online,
            "in_flight": self.scheduler.in_flight,
            "last_sync_ms": self.scheduler.last_sync_ms,
            "quota_exhausted": self.scheduler.quota_exhausted,
        }

    def resolve_pending(self) -> int:
        return self.resolver.sweep(self.ledger, self.matches)

    def get_metrics(self) -> dict:
        return {
            "matches": self.matches.get_metrics(),
            "scheduler": self.scheduler.get_metrics(),
            "generator": self.generator.get_metrics(),
            "feed": self.feed.get_metrics(),
            "ledger": self.ledger.get_metrics(),
            "resolution": self.resolver.get_metrics(),
            "prematch_cache": self.prematch_cache.get_metrics(),
        }

    # =========================================================================
    # Loops
    # =========================================================================

    async def _resolution_loop(self) -> None:
        interval = self.config.scheduler.resolution_interval_seconds
        while self._running:
            try:
                self.resolve_pending()
                await self.clock.sleep(interval)
            except asyncio.CancelledError:
                break
            except Exception as e:
                self.logger.error("Resolution loop error", error=str(e))
                await self.clock.sleep(interval)

    async def _telemetry_loop(self, path: str) -> None:
        """Re-read the telemetry file whenever it changes."""
        interval = self.config.telemetry.poll_seconds
        while self._running:
            try:
                mtime = Path(path).stat().st_mtime
                if mtime != self._telemetry_mtime:
                    self._telemetry_mtime = mtime
                    applied = self.load_telemetry_file(path)
                    self.logger.info("Telemetry reloaded", path=path, applied=applied)
            except OSError as e:
                self.logger.warning("Telemetry file missing", path=path, error=str(e))
            try:
                await self.clock.sleep(interval)
            except asyncio.CancelledError:
                break

    async def start(self) -> None:
        """Start the engine and block until shutdown."""
        self.logger.info(
            "Starting BetSignal engine",
            interval_seconds=self.config.scheduler.interval_seconds,
            batch_policy=self.config.scheduler.batch_policy.value,
            history_entries=len(self.ledger),
            saved_entries=len(self.saved),
        )
        self._running = True

        matches_file = self.config.telemetry.matches_file
        if matches_file:
            self._tasks.append(asyncio.create_task(self._telemetry_loop(matches_file), name="telemetry"))
        self._tasks.append(asyncio.create_task(self.scheduler.run(), name="sync_scheduler"))
        self._tasks.append(asyncio.create_task(self._resolution_loop(), name="resolution"))

        await self._shutdown_event.wait()

        for task in self._tasks:
            if not task.done():
                task.cancel()
        try:
            await asyncio.wait_for(
                asyncio.gather(*self._tasks, return_exceptions=True),
                timeout=5.0,
            )
        except asyncio.TimeoutError:
            self.logger.warning("Some tasks didn't finish in time, forcing shutdown")

        await self.stop()

    async def stop(self) -> None:
        """Stop loops and release the provider client."""
        self._running = False
        await self.scheduler.stop()
        await self.generator.close()
        self._shutdown_event.set()
        self.logger.info("Engine stopped", **self.get_metrics())

    def shutdown(self) -> None:
        """Trigger graceful shutdown."""
        if not self._shutdown_event.is_set():
            self._shutdown_event.set()
            self.logger.info("Shutdown signal set")


def main():
    """Main entry point."""
    setup_logging(settings.log_level, json_logs=settings.log_json)

    engine = SignalEngine.from_settings(settings)

    def signal_handler(sig, frame):
        logger.info("Shutdown requested", signal=sig)
        engine.shutdown()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        asyncio.run(engine.start())
    except KeyboardInterrupt:
        logger.warning("Interrupted by user")


if __name__ == "__main__":
    main()
