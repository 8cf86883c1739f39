# stats.py
# =============================================================================
# Workout statistics: totals, day streak, per-type counts, trailing 7 days.
# Pure functions only. Records are fetched (and owner-filtered) by the caller.
# =============================================================================

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, tzinfo
from typing import Dict, Iterable, List, Optional, Protocol, Sequence, Tuple, Union

TRAILING_DAYS = 7


class WorkoutLike(Protocol):
    """Anything carrying the four fields the aggregator reads."""

    exercise_type: str
    duration: int
    calories_burned: int
    date: Union[datetime, date]


@dataclass(frozen=True)
class DayBucket:
    """Totals for one calendar day."""

    date: date
    calories: int = 0
    duration: int = 0
    count: int = 0


@dataclass(frozen=True)
class StatsResult:
    total_workouts: int
    total_calories: int
    total_duration: int
    streak: int
    workouts_by_type: Dict[str, int] = field(default_factory=dict)
    last_7_days: Tuple[DayBucket, ...] = ()


def calendar_day(ts: Union[datetime, date], tz: Optional[tzinfo] = None) -> date:
    """Reduce a timestamp to its (year, month, day).

    Aware datetimes are shifted into ``tz`` first when one is given; naive
    datetimes are taken to already be in local time.
    """
    if isinstance(ts, datetime) and tz is not None and ts.tzinfo is not None:
        ts = ts.astimezone(tz)
    return date(ts.year, ts.month, ts.day)


def compute_streak(days: Iterable[date], today: date) -> int:
    """Count consecutive workout days ending at ``today``.

    The most recent day must be ``today``; a missing ``today`` (or a day
    after it) means no streak.
    """
    distinct = sorted(set(days), reverse=True)
    streak = 0
    for i, d in enumerate(distinct):
        if d != today - timedelta(days=i):
            break
        streak += 1
    return streak


def trailing_days(
    records: Sequence[WorkoutLike],
    days: Sequence[date],
    today: date,
    span: int = TRAILING_DAYS,
) -> List[DayBucket]:
    # days[i] is the calendar day of records[i]
    totals: Dict[date, List[int]] = {
        today - timedelta(days=i): [0, 0, 0] for i in range(span - 1, -1, -1)
    }
    for rec, d in zip(records, days):
        bucket = totals.get(d)
        if bucket is None:
            continue
        bucket[0] += rec.calories_burned
        bucket[1] += rec.duration
        bucket[2] += 1
    return [
        DayBucket(date=d, calories=c, duration=m, count=n)
        for d, (c, m, n) in sorted(totals.items())
    ]


def compute(
    records: Sequence[WorkoutLike],
    today: date,
    tz: Optional[tzinfo] = None,
) -> StatsResult:
    """Aggregate one user's workouts as seen on ``today``."""
    days = [calendar_day(r.date, tz) for r in records]
    by_type = Counter(r.exercise_type for r in records)
    return StatsResult(
        total_workouts=len(records),
        total_calories=sum(r.calories_burned for r in records),
        total_duration=sum(r.duration for r in records),
        streak=compute_streak(days, today),
        workouts_by_type=dict(by_type),
        last_7_days=tuple(trailing_days(records, days, today)),
    )
