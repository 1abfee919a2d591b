"""
Performance aggregation.

Pure read-side functions over a slice of signal history. No I/O, no
mutation: identical input always gives identical output.

ROI is in flat-stake units (1 unit per signal): a WIN returns
odd_suggested - 1, a LOSS costs 1, PENDING contributes nothing.
"""

from datetime import datetime, timedelta, timezone, tzinfo
from typing import Iterable

from src.betsignal.models.schemas import Metrics, Signal, SignalStatus, StatsOverview, WeeklyTrendPoint

# Returned by average_odd() when nothing has been resolved yet
DEFAULT_AVERAGE_ODD = 0.0

WEEKLY_TREND_WEEKS = 6


def _roi_contribution(signal: Signal) -> float:
    if signal.status == SignalStatus.WIN:
        return signal.odd_suggested - 1
    if signal.status == SignalStatus.LOSS:
        return -1.0
    return 0.0


def metrics(signals: Iterable[Signal]) -> Metrics:
    """Wins, losses, total, win rate (percent of resolved) and ROI."""
    signals = list(signals)
    wins = sum(1 for s in signals if s.status == SignalStatus.WIN)
    losses = sum(1 for s in signals if s.status == SignalStatus.LOSS)
    return Metrics(
        wins=wins,
        losses=losses,
        total=len(signals),
        win_rate=wins / max(1, wins + losses) * 100,
        roi=sum(_roi_contribution(s) for s in signals),
    )


def average_odd(signals: Iterable[Signal]) -> float:
    """Mean suggested odd over resolved signals, DEFAULT_AVERAGE_ODD if none."""
    odds = [s.odd_suggested for s in signals if s.status != SignalStatus.PENDING]
    if not odds:
        return DEFAULT_AVERAGE_ODD
    return sum(odds) / len(odds)


# =============================================================================
# Time windows
# =============================================================================

def _local(ms: int, tz: tzinfo) -> datetime:
    return datetime.fromtimestamp(ms / 1000, tz=tz)


def start_of_day_ms(now_ms: int, tz: tzinfo = timezone.utc) -> int:
    """Epoch millis of local midnight for the day containing now_ms."""
    midnight = _local(now_ms, tz).replace(hour=0, minute=0, second=0, microsecond=0)
    return int(midnight.timestamp() * 1000)


def week_start(ms: int, tz: tzinfo = timezone.utc) -> datetime:
    """Local midnight of the Sunday that starts the week containing ms."""
    local = _local(ms, tz).replace(hour=0, minute=0, second=0, microsecond=0)
    # weekday(): Monday=0 .. Sunday=6
    days_since_sunday = (local.weekday() + 1) % 7
    return local - timedelta(days=days_since_sunday)


def filter_since(signals: Iterable[Signal], since_ms: int) -> list[Signal]:
    return [s for s in signals if s.full_timestamp >= since_ms]


# =============================================================================
# Trend
# =============================================================================

def weekly_trend(
    signals: Iterable[Signal],
    tz: tzinfo = timezone.utc,
    weeks: int = WEEKLY_TREND_WEEKS,
) -> list[WeeklyTrendPoint]:
    """
    Win rate and ROI per Sunday-start week, resolved signals only.

    Returns:
        At most `weeks` points, ascending by week start, covering the most
        recent weeks present in the data
    """
    buckets: dict[int, tuple[datetime, list[Signal]]] = {}
    for signal in signals:
        if signal.status == SignalStatus.PENDING:
            continue
        start = week_start(signal.full_timestamp, tz)
        key = int(start.timestamp() * 1000)
        if key not in buckets:
            buckets[key] = (start, [])
        buckets[key][1].append(signal)

    points = []
    for key in sorted(buckets)[-weeks:]:
        start, group = buckets[key]
        m = metrics(group)
        points.append(WeeklyTrendPoint(
            week_label=start.strftime("%d/%m"),
            week_start_ms=key,
            win_rate=m.win_rate,
            roi=m.roi,
        ))
    return points


def overview(signals: Iterable[Signal], now_ms: int, tz: tzinfo = timezone.utc) -> StatsOverview:
    """Overall and today's metrics, weekly trend and average odd in one pass."""
    signals = list(signals)
    today = filter_since(signals, start_of_day_ms(now_ms, tz))
    return StatsOverview(
        overall=metrics(signals),
        today=metrics(today),
        weekly=weekly_trend(signals, tz),
        average_odd=average_odd(signals),
    )
