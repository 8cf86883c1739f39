"""
Unit tests for the workout statistics aggregator.
"""
import dataclasses
from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from stats import DayBucket, calendar_day, compute, compute_streak
from storage import WorkoutRecord

TODAY = date(2026, 3, 15)


def _rec(days_ago=0, exercise_type="cardio", duration=30, calories=300, hour=9, minute=0):
    d = TODAY - timedelta(days=days_ago)
    return WorkoutRecord(
        id="x",
        user="1",
        exercise_type=exercise_type,
        exercise_name="Session",
        duration=duration,
        calories_burned=calories,
        date=datetime(d.year, d.month, d.day, hour, minute),
    )


# ─── Totals ─────────────────────────────────────────────────────────────────

def test_empty_input():
    result = compute([], TODAY)
    assert result.total_workouts == 0
    assert result.total_calories == 0
    assert result.total_duration == 0
    assert result.streak == 0
    assert result.workouts_by_type == {}
    assert len(result.last_7_days) == 7
    assert [b.date for b in result.last_7_days] == [
        TODAY - timedelta(days=i) for i in range(6, -1, -1)
    ]
    assert all(b == DayBucket(date=b.date) for b in result.last_7_days)


def test_totals_are_sums_of_all_records():
    records = [
        _rec(0, duration=30, calories=300),
        _rec(3, duration=15, calories=0),
        _rec(40, duration=90, calories=850),
        _rec(400, duration=1, calories=7),
    ]
    result = compute(records, TODAY)
    assert result.total_workouts == 4
    assert result.total_calories == 1157
    assert result.total_duration == 136


def test_example_two_records():
    records = [
        _rec(0, "cardio", duration=30, calories=300),
        _rec(1, "strength", duration=45, calories=200),
    ]
    result = compute(records, TODAY)
    assert result.total_workouts == 2
    assert result.total_calories == 500
    assert result.total_duration == 75
    assert result.streak == 2
    assert result.workouts_by_type == {"cardio": 1, "strength": 1}


def test_type_breakdown_omits_absent_types():
    records = [_rec(0, "cardio"), _rec(2, "cardio"), _rec(5, "flexibility")]
    result = compute(records, TODAY)
    assert result.workouts_by_type == {"cardio": 2, "flexibility": 1}
    assert "strength" not in result.workouts_by_type


# ─── Streak ─────────────────────────────────────────────────────────────────

def test_streak_three_days():
    records = [_rec(0), _rec(1), _rec(2), _rec(4), _rec(5)]
    assert compute(records, TODAY).streak == 3


def test_streak_zero_without_workout_today():
    assert compute([_rec(1)], TODAY).streak == 0
    assert compute([_rec(1), _rec(2), _rec(3)], TODAY).streak == 0


def test_streak_counts_days_not_workouts():
    records = [_rec(0, hour=6), _rec(0, hour=18), _rec(0, hour=21), _rec(1)]
    assert compute(records, TODAY).streak == 2


def test_streak_zero_when_latest_workout_is_after_today():
    records = [_rec(-1), _rec(0), _rec(1)]
    assert compute(records, TODAY).streak == 0
    assert compute_streak([date(2026, 3, 16), date(2026, 3, 15)], TODAY) == 0


def test_streak_stops_at_first_gap():
    days = [TODAY, TODAY - timedelta(days=2), TODAY - timedelta(days=3)]
    assert compute_streak(days, TODAY) == 1


def test_streak_across_month_boundary():
    today = date(2026, 3, 1)
    days = [date(2026, 3, 1), date(2026, 2, 28), date(2026, 2, 27)]
    assert compute_streak(days, today) == 3


# ─── Trailing 7 days ────────────────────────────────────────────────────────

def test_last_7_days_sums_same_day_records():
    records = [
        _rec(0, duration=30, calories=300, hour=7),
        _rec(0, duration=20, calories=150, hour=19),
        _rec(6, duration=10, calories=50),
        _rec(7, duration=99, calories=999),
    ]
    buckets = compute(records, TODAY).last_7_days
    assert buckets[-1] == DayBucket(date=TODAY, calories=450, duration=50, count=2)
    assert buckets[0] == DayBucket(
        date=TODAY - timedelta(days=6), calories=50, duration=10, count=1
    )
    assert sum(b.count for b in buckets) == 3


def test_last_7_days_day_edges():
    records = [
        _rec(1, hour=23, minute=59, calories=10),
        _rec(0, hour=0, minute=0, calories=20),
    ]
    buckets = compute(records, TODAY).last_7_days
    assert buckets[-2].calories == 10
    assert buckets[-1].calories == 20


def test_last_7_days_order_and_length():
    records = [_rec(i) for i in range(0, 20, 3)]
    buckets = compute(records, TODAY).last_7_days
    assert len(buckets) == 7
    assert buckets[-1].date == TODAY
    assert list(buckets) == sorted(buckets, key=lambda b: b.date)


# ─── Calendar normalization ─────────────────────────────────────────────────

def test_calendar_day_converts_aware_timestamps():
    ts = datetime(2026, 3, 15, 2, 30, tzinfo=timezone.utc)
    assert calendar_day(ts) == date(2026, 3, 15)
    assert calendar_day(ts, ZoneInfo("America/New_York")) == date(2026, 3, 14)
    assert calendar_day(ts, ZoneInfo("Asia/Tokyo")) == date(2026, 3, 15)


def test_calendar_day_keeps_naive_timestamps():
    ts = datetime(2026, 3, 15, 23, 30)
    assert calendar_day(ts, ZoneInfo("Asia/Tokyo")) == date(2026, 3, 15)
    assert calendar_day(date(2026, 3, 15)) == date(2026, 3, 15)


def test_compute_uses_timezone_for_days():
    late = WorkoutRecord(
        id="1", user="1", exercise_type="sports", exercise_name="Match",
        duration=60, calories_burned=500,
        date=datetime(2026, 3, 15, 3, 0, tzinfo=timezone.utc),
    )
    assert compute([late], TODAY).streak == 1
    result = compute([late], TODAY, tz=ZoneInfo("America/Los_Angeles"))
    assert result.streak == 0
    assert result.last_7_days[-2].count == 1


def test_result_is_immutable():
    result = compute([_rec(0)], TODAY)
    with pytest.raises(dataclasses.FrozenInstanceError):
        result.streak = 5
