"""Match telemetry and the external signal provider."""

from src.betsignal.feeds.match_store import MatchSnapshotStore
from src.betsignal.feeds.generator import (
    ExternalSignalGenerator,
    SignalProvider,
    GeneratorError,
    RateLimitError,
    ProviderError,
    QuotaExceeded,
    retry_with_backoff,
)
from src.betsignal.feeds.gemini import GeminiSignalProvider

__all__ = [
    "MatchSnapshotStore",
    "ExternalSignalGenerator",
    "SignalProvider",
    "GeneratorError",
    "RateLimitError",
    "ProviderError",
    "QuotaExceeded",
    "retry_with_backoff",
    "GeminiSignalProvider",
]
