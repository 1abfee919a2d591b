"""BetSignal live sync engine."""

__version__ = "1.0.0"
