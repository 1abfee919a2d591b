"""
External Signal Generator.

Adapter around the analysis provider (an LLM behind an HTTP API). The
provider turns a batch of live match snapshots into candidate signals; this
module owns everything around that call:

- Retry with exponential backoff on rate-limit responses (2s, 4s, 8s)
- A bounded total wall-clock budget per call
- Validation of untrusted provider output
- Stamping generation time and denormalized match fields

Error taxonomy:
    GeneratorError      base class, any generator failure
    RateLimitError      provider signalled quota/rate limit (retried)
    ProviderError       any other provider failure (not retried)
    QuotaExceeded       rate-limit retries exhausted
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Optional, TypeVar

import structlog
from pydantic import ValidationError

from src.betsignal.models.schemas import (
    MatchSnapshot,
    MatchStatus,
    ReadyTicket,
    Signal,
    SignalBaseline,
    SignalStatus,
    SignalType,
)
from src.betsignal.utils.clock import Clock

logger = structlog.get_logger()

T = TypeVar("T")


# =============================================================================
# Errors
# =============================================================================

class GeneratorError(Exception):
    """Signal generation failed."""
    pass


class RateLimitError(GeneratorError):
    """Provider rejected the call for quota / rate-limit reasons."""
    pass


class ProviderError(GeneratorError):
    """Provider call failed for any other reason (HTTP error, bad payload, timeout)."""
    pass


class QuotaExceeded(GeneratorError):
    """Rate-limit retries exhausted."""
    pass


# =============================================================================
# Retry
# =============================================================================

def backoff_schedule(retries: int, initial_delay: float, multiplier: float = 2.0) -> list[float]:
    """Delays slept before each retry, e.g. [2.0, 4.0, 8.0]."""
    return [initial_delay * (multiplier ** i) for i in range(retries)]


async def retry_with_backoff(
    call: Callable[[], Awaitable[T]],
    retries: int = 3,
    initial_delay: float = 2.0,
    multiplier: float = 2.0,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Await call(), retrying only on RateLimitError.

    Retry count and delay are local to this call chain, so concurrent
    callers never share backoff state.

    Raises:
        QuotaExceeded: after 1 + retries rate-limited attempts
        Any other exception from call() immediately
    """
    delay = initial_delay
    attempt = 0
    while True:
        try:
            return await call()
        except RateLimitError as e:
            if attempt >= retries:
                raise QuotaExceeded(f"Provider quota exhausted after {attempt + 1} attempts") from e
            attempt += 1
            logger.warning(
                "Provider rate limited, backing off",
                delay_seconds=delay,
                retries_left=retries - attempt + 1,
            )
            await sleep(delay)
            delay *= multiplier


# =============================================================================
# Provider interface
# =============================================================================

class SignalProvider(ABC):
    """
    Raw access to the analysis provider.

    Implementations return the provider's decoded JSON items untouched and
    raise RateLimitError / ProviderError on failure.
    """

    @abstractmethod
    async def request_signals(self, snapshots: list[MatchSnapshot]) -> list[Any]:
        """Ask for candidate signals on a batch of live matches."""
        pass

    @abstractmethod
    async def request_tickets(self, snapshots: list[MatchSnapshot]) -> list[Any]:
        """Ask for ready tickets (2-3 selection bundles) over live matches."""
        pass

    async def close(self) -> None:
        pass


# =============================================================================
# Generator
# =============================================================================

class ExternalSignalGenerator:
    """
    Turns live match snapshots into stamped, validated signals.

    Usage:
        generator = ExternalSignalGenerator(GeminiSignalProvider(api_key))
        signals = await generator.generate([snapshot_a, snapshot_b])

    Provider candidates that reference a match outside the batch, or that
    fail validation, are dropped silently (counted in metrics).
    """

    def __init__(
        self,
        provider: SignalProvider,
        clock: Optional[Clock] = None,
        max_retries: int = 3,
        initial_backoff_seconds: float = 2.0,
        backoff_multiplier: float = 2.0,
        request_timeout_seconds: float = 20.0,
    ):
        self.provider = provider
        self.clock = clock or Clock()
        self.max_retries = max_retries
        self.initial_backoff_seconds = initial_backoff_seconds
        self.backoff_multiplier = backoff_multiplier
        self.request_timeout_seconds = request_timeout_seconds

        self.logger = logger.bind(component="signal_generator")

        # Stats
        self._calls = 0
        self._signals_generated = 0
        self._dropped_unknown_match = 0
        self._dropped_invalid = 0
        self._quota_exhausted = 0

    @property
    def total_budget_seconds(self) -> float:
        """Upper bound on one generate() call: all backoff sleeps plus every attempt timing out."""
        sleeps = sum(backoff_schedule(
            self.max_retries, self.initial_backoff_seconds, self.backoff_multiplier,
        ))
        return sleeps + (self.max_retries + 1) * self.request_timeout_seconds

    # =========================================================================
    # Public API
    # =========================================================================

    async def generate(self, snapshots: list[MatchSnapshot]) -> list[Signal]:
        """
        Generate signals for a batch of LIVE matches.

        Args:
            snapshots: Non-empty list of LIVE match snapshots

        Returns:
            Validated signals, each referencing a match in the batch

        Raises:
            ValueError: empty batch or a non-LIVE snapshot
            QuotaExceeded: rate-limit retries exhausted
            GeneratorError: any other provider failure, or the budget ran out
        """
        batch = self._validate_batch(snapshots)

        raw = await self._call(lambda: self.provider.request_signals(batch))

        now_ms = self.clock.now_ms()
        label = self.clock.time_label(now_ms)
        by_id = {s.match_id: s for s in batch}

        signals = []
        for candidate in raw:
            signal = self._to_signal(candidate, by_id, now_ms, label)
            if signal is not None:
                signals.append(signal)

        self._signals_generated += len(signals)
        self.logger.info(
            "Signals generated",
            matches=[s.match_id for s in batch],
            candidates=len(raw),
            accepted=len(signals),
        )
        return signals

    async def generate_tickets(self, snapshots: list[MatchSnapshot]) -> list[ReadyTicket]:
        """Generate ready tickets over the given live matches (same retry policy)."""
        batch = self._validate_batch(snapshots)

        raw = await self._call(lambda: self.provider.request_tickets(batch))

        now_ms = self.clock.now_ms()
        label = self.clock.time_label(now_ms)

        tickets = []
        for idx, item in enumerate(raw):
            if not isinstance(item, dict):
                self._dropped_invalid += 1
                continue
            try:
                tickets.append(ReadyTicket.model_validate({
                    **item,
                    "id": f"ticket-{now_ms}-{idx}",
                    "timestamp": label,
                }))
            except ValidationError:
                self._dropped_invalid += 1

        self.logger.info("Tickets generated", candidates=len(raw), accepted=len(tickets))
        return tickets

    async def close(self) -> None:
        await self.provider.close()

    # =========================================================================
    # Internals
    # =========================================================================

    @staticmethod
    def _validate_batch(snapshots: list[MatchSnapshot]) -> list[MatchSnapshot]:
        batch = list(snapshots)
        if not batch:
            raise ValueError("snapshots must not be empty")
        not_live = [s.match_id for s in batch if s.status != MatchStatus.LIVE]
        if not_live:
            raise ValueError(f"snapshots must all be LIVE, got non-live: {not_live}")
        return batch

    async def _call(self, request: Callable[[], Awaitable[list[Any]]]) -> list[Any]:
        self._calls += 1
        try:
            raw = await asyncio.wait_for(
                retry_with_backoff(
                    request,
                    retries=self.max_retries,
                    initial_delay=self.initial_backoff_seconds,
                    multiplier=self.backoff_multiplier,
                    sleep=self.clock.sleep,
                ),
                timeout=self.total_budget_seconds,
            )
        except QuotaExceeded:
            self._quota_exhausted += 1
            raise
        except asyncio.TimeoutError as e:
            raise GeneratorError(
                f"Generation exceeded {self.total_budget_seconds:.0f}s budget"
            ) from e

        if not isinstance(raw, list):
            raise ProviderError(f"Expected a list from provider, got {type(raw).__name__}")
        return raw

    def _to_signal(
        self,
        candidate: Any,
        by_id: dict[str, MatchSnapshot],
        now_ms: int,
        label: str,
    ) -> Optional[Signal]:
        if not isinstance(candidate, dict):
            self._dropped_invalid += 1
            return None

        match = by_id.get(str(candidate.get("matchId", "")))
        if match is None:
            self._dropped_unknown_match += 1
            self.logger.debug("Dropped signal for unknown match", match_id=candidate.get("matchId"))
            return None

        try:
            confidence = min(1.0, max(0.0, float(candidate.get("confidence", 0.0))))
            key_factors = candidate.get("keyFactors") or []
            if isinstance(key_factors, str):
                key_factors = [key_factors]

            return Signal(
                match_id=match.match_id,
                type=SignalType(str(candidate.get("type", "")).upper()),
                description=str(candidate.get("description", "")),
                analysis=str(candidate.get("analysis", "")),
                confidence=confidence,
                odd_suggested=float(candidate.get("oddSuggested", 0.0)),
                key_factors=[str(f) for f in key_factors],
                timestamp=label,
                full_timestamp=now_ms,
                status=SignalStatus.PENDING,
                match_name=match.match_name,
                league_name=match.league,
                minute=match.minute,
                baseline=SignalBaseline.from_snapshot(match),
            )
        except (ValueError, TypeError, ValidationError) as e:
            self._dropped_invalid += 1
            self.logger.debug("Dropped invalid signal candidate", error=str(e))
            return None

    def get_metrics(self) -> dict:
        return {
            "calls": self._calls,
            "signals_generated": self._signals_generated,
            "dropped_unknown_match": self._dropped_unknown_match,
            "dropped_invalid": self._dropped_invalid,
            "quota_exhausted": self._quota_exhausted,
            "budget_seconds": self.total_budget_seconds,
        }
