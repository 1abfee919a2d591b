"""Utility modules."""

from src.betsignal.utils.clock import Clock, resolve_timezone
from src.betsignal.utils.logging import setup_logging

__all__ = [
    "Clock",
    "resolve_timezone",
    "setup_logging",
]
