# storage.py
# =============================================================================
# Persistence for users and workouts (SQLAlchemy 2.x async, or in-memory).
# Routes only see the UserStore / WorkoutStore interfaces; every workout
# operation is scoped to an owner id.
# =============================================================================

from __future__ import annotations

import itertools
import logging
import os
from dataclasses import dataclass, fields, replace
from datetime import datetime, timezone
from pathlib import Path as OSPath
from typing import Any, Dict, List, Mapping, Optional, Protocol, Tuple

from sqlalchemy import (
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    asc,
    desc,
    func,
    select,
    text,
)
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

log = logging.getLogger("fittrack-api.storage")

# -----------------------------------------------------------------------------
# DB connection
# Priority:
#   1) Cloud SQL (PostgreSQL) if CLOUD_SQL_CONNECTION_NAME is set
#   2) env FITTRACK_DB (path to the SQLite file)
#   3) ./data/fittrack.db
#   4) ./fittrack.db  (fallback)
# -----------------------------------------------------------------------------
_cloud_sql = os.getenv("CLOUD_SQL_CONNECTION_NAME")  # e.g. project:region:instance
_db_user = os.getenv("DB_USER", "postgres")
_db_pass = os.getenv("DB_PASSWORD", "")
_db_name = os.getenv("DB_NAME", "fittrack")

if _cloud_sql:
    _socket_path = f"/cloudsql/{_cloud_sql}"
    DB_PATH = f"postgresql+asyncpg://{_db_user}:{_db_pass}@/{_db_name}?host={_socket_path}"
    engine = create_async_engine(DB_PATH, echo=False, pool_pre_ping=True)
else:
    env_db = os.getenv("FITTRACK_DB")
    candidates = [
        env_db,
        str((OSPath(__file__).parent / "data" / "fittrack.db").resolve()),
        str((OSPath(__file__).parent / "fittrack.db").resolve()),
    ]
    DB_PATH = next((p for p in candidates if p and OSPath(p).exists()), env_db or candidates[-1])
    engine = create_async_engine(f"sqlite+aiosqlite:///{DB_PATH}", echo=False)

async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


def db_type() -> str:
    """Return a safe description of the DB type (no credentials)."""
    if _cloud_sql:
        return f"Cloud SQL PostgreSQL ({_cloud_sql})"
    return "SQLite"


# -----------------------------------------------------------------------------
# SQLAlchemy models
# -----------------------------------------------------------------------------
class Base(DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "user"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    email: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(String, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)  # UTC


class Workout(Base):
    __tablename__ = "workout"
    __table_args__ = (Index("ix_workout_user_date", "user_id", "date"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("user.id", ondelete="CASCADE"), nullable=False)
    exercise_type: Mapped[str] = mapped_column(String, nullable=False, default="other")
    exercise_name: Mapped[str] = mapped_column(String(100), nullable=False)
    duration: Mapped[int] = mapped_column(Integer, nullable=False)          # minutes
    calories_burned: Mapped[int] = mapped_column(Integer, nullable=False)
    sets: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    reps: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    weight: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    distance: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    notes: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    date: Mapped[datetime] = mapped_column(DateTime, nullable=False)        # UTC
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)  # UTC


async def init_db() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    log.info(f"Tables ready on {db_type()}")


async def ping_db() -> bool:
    try:
        async with async_session() as s:
            await s.execute(text("SELECT 1"))
        return True
    except Exception as e:
        log.error(f"DB ping failed: {e}")
        return False


# -----------------------------------------------------------------------------
# Records handed to the rest of the app
# Timestamps are timezone-aware UTC.
# -----------------------------------------------------------------------------
@dataclass
class UserRecord:
    id: str
    name: str
    email: str
    password_hash: str
    created_at: datetime


@dataclass
class WorkoutRecord:
    id: str
    user: str
    exercise_type: str
    exercise_name: str
    duration: int
    calories_burned: int
    sets: int = 0
    reps: int = 0
    weight: float = 0.0
    distance: float = 0.0
    notes: str = ""
    date: Optional[datetime] = None
    created_at: Optional[datetime] = None


# Fields a caller may set on insert/update
WORKOUT_FIELDS: Tuple[str, ...] = tuple(
    f.name for f in fields(WorkoutRecord) if f.name not in ("id", "user", "created_at")
)


class DuplicateEmail(ValueError):
    """Another user already holds this email."""


class UserStore(Protocol):
    async def get(self, user_id: str) -> Optional[UserRecord]: ...

    async def get_by_email(self, email: str) -> Optional[UserRecord]: ...

    async def insert(self, name: str, email: str, password_hash: str) -> UserRecord:
        """Raises DuplicateEmail if the email is taken."""
        ...


class WorkoutStore(Protocol):
    async def find(
        self,
        owner: str,
        exercise_type: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[WorkoutRecord]:
        """Owner's workouts, newest first; ``start``/``end`` form a half-open range."""
        ...

    async def get(self, owner: str, workout_id: str) -> Optional[WorkoutRecord]: ...

    async def insert(self, owner: str, values: Mapping[str, Any]) -> WorkoutRecord: ...

    async def update(
        self, owner: str, workout_id: str, changes: Mapping[str, Any]
    ) -> Optional[WorkoutRecord]: ...

    async def delete(self, owner: str, workout_id: str) -> bool: ...


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------
def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(dt: datetime) -> datetime:
    """Aware UTC from either a naive-UTC (as stored) or an aware datetime."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _naive_utc(dt: datetime) -> datetime:
    return _as_utc(dt).replace(tzinfo=None)


def _as_pk(value: str) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _check_fields(values: Mapping[str, Any]) -> Dict[str, Any]:
    unknown = set(values) - set(WORKOUT_FIELDS)
    if unknown:
        raise ValueError(f"unknown workout fields: {sorted(unknown)}")
    return dict(values)


def _user_from_row(u: User) -> UserRecord:
    return UserRecord(
        id=str(u.id),
        name=u.name,
        email=u.email,
        password_hash=u.password_hash,
        created_at=_as_utc(u.created_at),
    )


def _workout_from_row(w: Workout) -> WorkoutRecord:
    return WorkoutRecord(
        id=str(w.id),
        user=str(w.user_id),
        exercise_type=w.exercise_type,
        exercise_name=w.exercise_name,
        duration=int(w.duration),
        calories_burned=int(w.calories_burned),
        sets=int(w.sets or 0),
        reps=int(w.reps or 0),
        weight=float(w.weight or 0.0),
        distance=float(w.distance or 0.0),
        notes=w.notes or "",
        date=_as_utc(w.date),
        created_at=_as_utc(w.created_at),
    )


# -----------------------------------------------------------------------------
# SQL stores
# -----------------------------------------------------------------------------
class SqlUserStore:
    def __init__(self, session_factory: async_sessionmaker) -> None:
        self._session = session_factory

    async def get(self, user_id: str) -> Optional[UserRecord]:
        pk = _as_pk(user_id)
        if pk is None:
            return None
        async with self._session() as s:
            u = await s.get(User, pk)
            return _user_from_row(u) if u else None

    async def get_by_email(self, email: str) -> Optional[UserRecord]:
        async with self._session() as s:
            result = await s.execute(
                select(User).where(func.lower(User.email) == email.strip().lower())
            )
            u = result.scalar()
            return _user_from_row(u) if u else None

    async def insert(self, name: str, email: str, password_hash: str) -> UserRecord:
        async with self._session() as s:
            u = User(
                name=name,
                email=email,
                password_hash=password_hash,
                created_at=_naive_utc(utcnow()),
            )
            s.add(u)
            try:
                await s.commit()
            except IntegrityError as e:
                await s.rollback()
                raise DuplicateEmail(email) from e
            await s.refresh(u)
            return _user_from_row(u)


class SqlWorkoutStore:
    def __init__(self, session_factory: async_sessionmaker) -> None:
        self._session = session_factory

    async def find(
        self,
        owner: str,
        exercise_type: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[WorkoutRecord]:
        pk = _as_pk(owner)
        if pk is None:
            return []
        stmt = select(Workout).where(Workout.user_id == pk)
        if exercise_type:
            stmt = stmt.where(Workout.exercise_type == exercise_type)
        if start is not None:
            stmt = stmt.where(Workout.date >= _naive_utc(start))
        if end is not None:
            stmt = stmt.where(Workout.date < _naive_utc(end))
        stmt = stmt.order_by(desc(Workout.date), asc(Workout.id))
        async with self._session() as s:
            result = await s.execute(stmt)
            rows = result.scalars().all()
        return [_workout_from_row(w) for w in rows]

    async def _owned(self, s: AsyncSession, owner: str, workout_id: str) -> Optional[Workout]:
        pk, owner_pk = _as_pk(workout_id), _as_pk(owner)
        if pk is None or owner_pk is None:
            return None
        w = await s.get(Workout, pk)
        if not w or w.user_id != owner_pk:
            return None
        return w

    async def get(self, owner: str, workout_id: str) -> Optional[WorkoutRecord]:
        async with self._session() as s:
            w = await self._owned(s, owner, workout_id)
            return _workout_from_row(w) if w else None

    async def insert(self, owner: str, values: Mapping[str, Any]) -> WorkoutRecord:
        data = _check_fields(values)
        now = utcnow()
        data["date"] = _naive_utc(data.get("date") or now)
        async with self._session() as s:
            w = Workout(user_id=int(owner), created_at=_naive_utc(now), **data)
            s.add(w)
            await s.commit()
            await s.refresh(w)
            return _workout_from_row(w)

    async def update(
        self, owner: str, workout_id: str, changes: Mapping[str, Any]
    ) -> Optional[WorkoutRecord]:
        data = _check_fields(changes)
        if data.get("date") is not None:
            data["date"] = _naive_utc(data["date"])
        async with self._session() as s:
            w = await self._owned(s, owner, workout_id)
            if not w:
                return None
            for k, v in data.items():
                setattr(w, k, v)
            await s.commit()
            await s.refresh(w)
            return _workout_from_row(w)

    async def delete(self, owner: str, workout_id: str) -> bool:
        async with self._session() as s:
            w = await self._owned(s, owner, workout_id)
            if not w:
                return False
            await s.delete(w)
            await s.commit()
        return True


# -----------------------------------------------------------------------------
# In-memory stores (demo mode: data resets on restart)
# -----------------------------------------------------------------------------
class MemoryUserStore:
    def __init__(self) -> None:
        self._rows: Dict[str, UserRecord] = {}
        self._ids = itertools.count(1)

    async def get(self, user_id: str) -> Optional[UserRecord]:
        u = self._rows.get(user_id)
        return replace(u) if u else None

    async def get_by_email(self, email: str) -> Optional[UserRecord]:
        wanted = email.strip().lower()
        for u in self._rows.values():
            if u.email.lower() == wanted:
                return replace(u)
        return None

    async def insert(self, name: str, email: str, password_hash: str) -> UserRecord:
        if await self.get_by_email(email):
            raise DuplicateEmail(email)
        u = UserRecord(
            id=str(next(self._ids)),
            name=name,
            email=email,
            password_hash=password_hash,
            created_at=utcnow(),
        )
        self._rows[u.id] = u
        return replace(u)


class MemoryWorkoutStore:
    def __init__(self) -> None:
        self._rows: Dict[str, WorkoutRecord] = {}
        self._ids = itertools.count(1)

    async def find(
        self,
        owner: str,
        exercise_type: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[WorkoutRecord]:
        rows = [w for w in self._rows.values() if w.user == owner]
        if exercise_type:
            rows = [w for w in rows if w.exercise_type == exercise_type]
        if start is not None:
            rows = [w for w in rows if w.date >= _as_utc(start)]
        if end is not None:
            rows = [w for w in rows if w.date < _as_utc(end)]
        # newest first, ties by insertion order
        rows.sort(key=lambda w: int(w.id))
        rows.sort(key=lambda w: w.date, reverse=True)
        return [replace(w) for w in rows]

    async def get(self, owner: str, workout_id: str) -> Optional[WorkoutRecord]:
        w = self._rows.get(workout_id)
        if not w or w.user != owner:
            return None
        return replace(w)

    async def insert(self, owner: str, values: Mapping[str, Any]) -> WorkoutRecord:
        data = _check_fields(values)
        now = utcnow()
        data["date"] = _as_utc(data.get("date") or now)
        w = WorkoutRecord(id=str(next(self._ids)), user=owner, created_at=now, **data)
        self._rows[w.id] = w
        return replace(w)

    async def update(
        self, owner: str, workout_id: str, changes: Mapping[str, Any]
    ) -> Optional[WorkoutRecord]:
        data = _check_fields(changes)
        if data.get("date") is not None:
            data["date"] = _as_utc(data["date"])
        w = self._rows.get(workout_id)
        if not w or w.user != owner:
            return None
        self._rows[workout_id] = replace(w, **data)
        return replace(self._rows[workout_id])

    async def delete(self, owner: str, workout_id: str) -> bool:
        w = self._rows.get(workout_id)
        if not w or w.user != owner:
            return False
        del self._rows[workout_id]
        return True


def build_stores(kind: str) -> Tuple[UserStore, WorkoutStore]:
    """Create the user/workout store pair for ``kind`` ('sql' or 'memory')."""
    if kind == "memory":
        log.info("Using in-memory storage (data resets on restart)")
        return MemoryUserStore(), MemoryWorkoutStore()
    if kind != "sql":
        raise ValueError(f"unknown storage backend: {kind!r}")
    log.info(f"Using SQL storage: {db_type()}")
    return SqlUserStore(async_session), SqlWorkoutStore(async_session)
