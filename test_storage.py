"""
Tests for the in-memory stores (the SQL stores are exercised through test_app).
"""
from datetime import datetime, timedelta, timezone

import pytest

from storage import DuplicateEmail, MemoryUserStore, MemoryWorkoutStore, build_stores

T0 = datetime(2026, 3, 15, 8, 0, tzinfo=timezone.utc)


def _values(**overrides):
    v = {
        "exercise_type": "cardio",
        "exercise_name": "Run",
        "duration": 30,
        "calories_burned": 300,
        "date": T0,
    }
    v.update(overrides)
    return v


@pytest.mark.asyncio
async def test_user_store_roundtrip():
    users = MemoryUserStore()
    u = await users.insert("Ana", "ana@example.com", "hash")
    assert u.id == "1"
    assert (await users.get("1")).email == "ana@example.com"
    assert (await users.get_by_email("  ANA@example.com ")).id == "1"
    assert await users.get_by_email("bo@example.com") is None
    assert await users.get("2") is None


@pytest.mark.asyncio
async def test_user_store_rejects_duplicate_email():
    users = MemoryUserStore()
    await users.insert("Ana", "ana@example.com", "hash")
    with pytest.raises(DuplicateEmail):
        await users.insert("Other", "ANA@example.com", "hash")
    assert await users.get("2") is None


@pytest.mark.asyncio
async def test_workout_ids_are_per_store():
    a, b = MemoryWorkoutStore(), MemoryWorkoutStore()
    assert (await a.insert("1", _values())).id == "1"
    assert (await a.insert("1", _values())).id == "2"
    assert (await b.insert("1", _values())).id == "1"


@pytest.mark.asyncio
async def test_insert_fills_defaults():
    store = MemoryWorkoutStore()
    w = await store.insert("1", _values(date=None))
    assert w.sets == 0 and w.reps == 0
    assert w.weight == 0.0 and w.distance == 0.0
    assert w.notes == ""
    assert w.date.tzinfo is not None
    assert w.created_at is not None


@pytest.mark.asyncio
async def test_insert_rejects_unknown_fields():
    store = MemoryWorkoutStore()
    with pytest.raises(ValueError):
        await store.insert("1", _values(user="2"))


@pytest.mark.asyncio
async def test_find_is_owner_scoped_and_newest_first():
    store = MemoryWorkoutStore()
    await store.insert("1", _values(exercise_name="old", date=T0 - timedelta(days=2)))
    await store.insert("1", _values(exercise_name="new", date=T0))
    await store.insert("2", _values(exercise_name="theirs", date=T0))
    rows = await store.find("1")
    assert [w.exercise_name for w in rows] == ["new", "old"]
    assert [w.exercise_name for w in await store.find("2")] == ["theirs"]
    assert await store.find("3") == []


@pytest.mark.asyncio
async def test_find_filters():
    store = MemoryWorkoutStore()
    await store.insert("1", _values(exercise_name="a", date=T0 - timedelta(days=3)))
    await store.insert("1", _values(exercise_name="b", exercise_type="strength", date=T0))
    await store.insert("1", _values(exercise_name="c", date=T0 + timedelta(days=1)))
    rows = await store.find("1", exercise_type="strength")
    assert [w.exercise_name for w in rows] == ["b"]
    rows = await store.find("1", start=T0 - timedelta(days=1), end=T0 + timedelta(hours=1))
    assert [w.exercise_name for w in rows] == ["b"]


@pytest.mark.asyncio
async def test_returned_records_are_copies():
    store = MemoryWorkoutStore()
    w = await store.insert("1", _values())
    w.duration = 999
    assert (await store.get("1", w.id)).duration == 30


@pytest.mark.asyncio
async def test_update_and_delete_are_owner_scoped():
    store = MemoryWorkoutStore()
    w = await store.insert("1", _values())
    assert await store.update("2", w.id, {"duration": 5}) is None
    assert await store.delete("2", w.id) is False

    updated = await store.update("1", w.id, {"duration": 5, "notes": "short"})
    assert updated.duration == 5
    assert updated.notes == "short"
    assert updated.calories_burned == 300

    assert await store.delete("1", w.id) is True
    assert await store.get("1", w.id) is None
    assert await store.update("1", w.id, {"duration": 6}) is None


def test_build_stores():
    users, workouts = build_stores("memory")
    assert isinstance(users, MemoryUserStore)
    assert isinstance(workouts, MemoryWorkoutStore)
    with pytest.raises(ValueError):
        build_stores("mongo")
