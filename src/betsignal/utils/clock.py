"""
Clock abstraction.

Everything time-dependent in the engine (signal stamping, backoff sleeps,
cache expiry, "today" windows) goes through a Clock so tests can drive
virtual time instead of waiting on the wall clock.
"""

import asyncio
import time
from datetime import datetime, tzinfo, timezone
from typing import Optional
from zoneinfo import ZoneInfo


class Clock:
    """Wall clock backed by time.time() and asyncio.sleep()."""

    def __init__(self, tz: Optional[tzinfo] = None):
        self.tz = tz or timezone.utc

    def now_ms(self) -> int:
        return int(time.time() * 1000)

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)

    def time_label(self, ms: Optional[int] = None) -> str:
        """Second-resolution wall-clock label (HH:MM:SS) in the clock's timezone."""
        if ms is None:
            ms = self.now_ms()
        return datetime.fromtimestamp(ms / 1000, tz=self.tz).strftime("%H:%M:%S")


def resolve_timezone(name: str) -> tzinfo:
    """Map a settings timezone name to a tzinfo (UTC for empty/"UTC")."""
    if not name or name.upper() == "UTC":
        return timezone.utc
    return ZoneInfo(name)
