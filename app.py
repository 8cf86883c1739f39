# app.py
# =============================================================================
# Fitness Tracker API: users, workouts & stats (FastAPI, Pydantic v2)
# Storage is pluggable: SQLAlchemy 2.x async (default) or in-memory demo mode.
# Wire format is camelCase JSON with Mongo-style "_id" keys.
# =============================================================================

from __future__ import annotations

import logging
import os
import re
import traceback
from contextlib import asynccontextmanager
from datetime import date, datetime, time, timedelta, timezone
from typing import AsyncGenerator, Dict, List, Literal, NoReturn, Optional
from zoneinfo import ZoneInfo

from fastapi import Body, Depends, FastAPI, HTTPException, Query, Request, status
from fastapi import Path as FPath
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from starlette.exceptions import HTTPException as StarletteHTTPException

import stats as workout_stats
from security import TokenError, create_access_token, decode_access_token, hash_password, verify_password
from storage import (
    DuplicateEmail,
    UserRecord,
    UserStore,
    WorkoutRecord,
    WorkoutStore,
    build_stores,
    db_type,
    engine,
    init_db,
    ping_db,
)

# -----------------------------------------------------------------------------
# Logging
# -----------------------------------------------------------------------------
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(levelname)s %(message)s",
)
log = logging.getLogger("fittrack-api")

# -----------------------------------------------------------------------------
# Config
# -----------------------------------------------------------------------------
STORAGE_BACKEND = os.getenv("FITTRACK_STORAGE", "sql").strip().lower()
TIMEZONE = ZoneInfo(os.getenv("FITTRACK_TIMEZONE", "UTC"))
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

_user_store, _workout_store = build_stores(STORAGE_BACKEND)


def get_user_store() -> UserStore:
    return _user_store


def get_workout_store() -> WorkoutStore:
    return _workout_store


def get_today() -> date:
    """Current calendar date in the configured timezone."""
    return datetime.now(TIMEZONE).date()


# -----------------------------------------------------------------------------
# Pydantic schemas
# -----------------------------------------------------------------------------
_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

ExerciseType = Literal["cardio", "strength", "flexibility", "sports", "other"]


def _parse_date_str(v: str) -> date:
    if not _DATE_RE.match(v):
        raise ValueError("date must be YYYY-MM-DD format")
    try:
        return datetime.strptime(v, "%Y-%m-%d").date()
    except ValueError:
        raise ValueError("date is not a valid calendar date")


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class GenericResponse(BaseModel):
    message: str


class HealthOut(BaseModel):
    status: str
    storage: str
    message: str
    timestamp: str


class RegisterIn(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None


class LoginIn(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class AuthOut(CamelModel):
    id: str = Field(alias="_id")
    name: str
    email: str
    token: str


class MeOut(CamelModel):
    id: str = Field(alias="_id")
    name: str
    email: str
    created_at: datetime


class WorkoutUpdate(CamelModel):
    """Partial workout change. Only fields present in the body are applied."""
    exercise_type: Optional[ExerciseType] = None
    exercise_name: Optional[str] = None
    duration: Optional[int] = Field(None, ge=1)
    calories_burned: Optional[int] = Field(None, ge=0)
    sets: Optional[int] = Field(None, ge=0)
    reps: Optional[int] = Field(None, ge=0)
    weight: Optional[float] = Field(None, ge=0)
    distance: Optional[float] = Field(None, ge=0)
    notes: Optional[str] = Field(None, max_length=500)
    date: Optional[datetime] = None

    @field_validator("exercise_name")
    @classmethod
    def normalize_name(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        if not v:
            raise ValueError("Exercise name is required")
        if len(v) > 100:
            raise ValueError("Exercise name cannot be more than 100 characters")
        return v

    @field_validator("sets", "reps", "weight", "distance", mode="before")
    @classmethod
    def blank_to_zero(cls, v):
        # form clients send "" or null for untouched optional inputs
        if v is None or (isinstance(v, str) and not v.strip()):
            return 0
        return v

    @field_validator("notes", mode="before")
    @classmethod
    def none_to_empty(cls, v):
        return "" if v is None else v


class WorkoutIn(WorkoutUpdate):
    exercise_type: ExerciseType = "other"
    exercise_name: str
    duration: int = Field(..., ge=1)
    calories_burned: int = Field(..., ge=0)
    sets: int = Field(0, ge=0)
    reps: int = Field(0, ge=0)
    weight: float = Field(0.0, ge=0)
    distance: float = Field(0.0, ge=0)
    notes: str = Field("", max_length=500)
    date: Optional[datetime] = None


class WorkoutOut(CamelModel):
    id: str = Field(alias="_id")
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
    date: datetime
    created_at: datetime


class DayBucketOut(BaseModel):
    date: str  # YYYY-MM-DD
    calories: int
    duration: int
    count: int


class StatsOut(CamelModel):
    total_workouts: int
    total_calories: int
    total_duration: int
    streak: int
    workouts_by_type: Dict[str, int] = Field(default_factory=dict)
    last_7_days: List[DayBucketOut] = Field(default_factory=list, alias="last7Days")


# -----------------------------------------------------------------------------
# App (with lifespan)
# -----------------------------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    if STORAGE_BACKEND == "sql":
        await init_db()
    log.info(f"Fitness Tracker API started (storage={STORAGE_BACKEND}, tz={TIMEZONE.key})")
    yield
    await engine.dispose()
    log.info("Fitness Tracker API stopped")


app = FastAPI(
    title="Fitness Tracker API",
    description="Log workouts and track calories, duration and streaks.",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials="*" not in CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)


# -----------------------------------------------------------------------------
# Error handlers: every error body is {"message": ...}
# -----------------------------------------------------------------------------
@app.exception_handler(StarletteHTTPException)
async def _http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def _validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = [
        {
            "field": ".".join(str(p) for p in e.get("loc", ()) if p != "body"),
            "msg": e.get("msg", ""),
        }
        for e in exc.errors()
    ]
    message = errors[0]["msg"] if errors else "Invalid request"
    return JSONResponse(status_code=400, content={"message": message, "errors": errors})


@app.exception_handler(Exception)
async def _global_exception_handler(request: Request, exc: Exception):
    tb = traceback.format_exc()
    log.error(f"Unhandled error on {request.method} {request.url.path}: {exc}\n{tb}")
    return JSONResponse(status_code=500, content={"message": "Server error"})


# -----------------------------------------------------------------------------
# Auth dependency
# -----------------------------------------------------------------------------
_bearer = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> NoReturn:
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
    users: UserStore = Depends(get_user_store),
) -> UserRecord:
    if credentials is None or not credentials.credentials:
        _unauthorized("Not authorized, no token")
    try:
        user_id = decode_access_token(credentials.credentials)
    except TokenError:
        _unauthorized("Not authorized, token failed")
    user = await users.get(user_id)
    if not user:
        log.warning(f"Token for unknown user id={user_id}")
        _unauthorized("User not found")
    return user


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------
def _to_utc(dt: datetime) -> datetime:
    """Naive timestamps are local to TIMEZONE; everything is stored as UTC."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=TIMEZONE)
    return dt.astimezone(timezone.utc)


def _local_midnight_utc(d: date) -> datetime:
    return datetime.combine(d, time.min, tzinfo=TIMEZONE).astimezone(timezone.utc)


def _workout_values(body: WorkoutUpdate, partial: bool) -> Dict:
    values = body.model_dump(exclude_unset=partial)
    if partial:
        values = {k: v for k, v in values.items() if v is not None}
    if values.get("date") is not None:
        values["date"] = _to_utc(values["date"])
    elif not partial:
        values["date"] = datetime.now(timezone.utc)
    return values


def _workout_out(w: WorkoutRecord) -> WorkoutOut:
    return WorkoutOut(
        id=w.id,
        user=w.user,
        exercise_type=w.exercise_type,
        exercise_name=w.exercise_name,
        duration=w.duration,
        calories_burned=w.calories_burned,
        sets=w.sets,
        reps=w.reps,
        weight=w.weight,
        distance=w.distance,
        notes=w.notes,
        date=w.date,
        created_at=w.created_at,
    )


def _stats_out(result: workout_stats.StatsResult) -> StatsOut:
    return StatsOut(
        total_workouts=result.total_workouts,
        total_calories=result.total_calories,
        total_duration=result.total_duration,
        streak=result.streak,
        workouts_by_type=result.workouts_by_type,
        last_7_days=[
            DayBucketOut(
                date=b.date.isoformat(),
                calories=b.calories,
                duration=b.duration,
                count=b.count,
            )
            for b in result.last_7_days
        ],
    )


def _auth_out(user: UserRecord) -> AuthOut:
    return AuthOut(id=user.id, name=user.name, email=user.email, token=create_access_token(user.id))


# -----------------------------------------------------------------------------
# Health / Root
# -----------------------------------------------------------------------------
@app.get("/api/health", response_model=HealthOut)
async def health() -> HealthOut:
    ok = True
    if STORAGE_BACKEND == "memory":
        storage = "memory"
        message = "Fitness Tracker API running in DEMO mode (in-memory storage)"
    else:
        storage = db_type()
        ok = await ping_db()
        message = "Fitness Tracker API running" if ok else "Database unreachable"
    return HealthOut(
        status="ok" if ok else "error",
        storage=storage,
        message=message,
        timestamp=datetime.now(timezone.utc).isoformat(),
    )


@app.get("/", response_model=GenericResponse)
async def root() -> GenericResponse:
    return GenericResponse(message="Fitness Tracker API v1 is running")


# -----------------------------------------------------------------------------
# Auth
# -----------------------------------------------------------------------------
@app.post("/api/auth/register", response_model=AuthOut, status_code=201)
async def register(
    body: RegisterIn,
    users: UserStore = Depends(get_user_store),
) -> AuthOut:
    name = (body.name or "").strip()
    email = (body.email or "").strip().lower()
    if not name or not email or not body.password:
        raise HTTPException(400, "Please fill all fields")
    if await users.get_by_email(email):
        raise HTTPException(400, "User already exists")
    try:
        user = await users.insert(name, email, hash_password(body.password))
    except DuplicateEmail:
        log.info("Register lost a race for an existing email")
        raise HTTPException(400, "User already exists")
    log.info(f"Registered user id={user.id}")
    return _auth_out(user)


@app.post("/api/auth/login", response_model=AuthOut)
async def login(
    body: LoginIn,
    users: UserStore = Depends(get_user_store),
) -> AuthOut:
    email = (body.email or "").strip().lower()
    user = await users.get_by_email(email) if email else None
    if not user or not verify_password(body.password or "", user.password_hash):
        log.info("Failed login attempt")
        raise HTTPException(401, "Invalid credentials")
    return _auth_out(user)


@app.get("/api/auth/me", response_model=MeOut)
async def me(user: UserRecord = Depends(get_current_user)) -> MeOut:
    return MeOut(id=user.id, name=user.name, email=user.email, created_at=user.created_at)


# -----------------------------------------------------------------------------
# Workouts
# IMPORTANT: define /api/workouts/stats BEFORE /api/workouts/{workout_id}
# -----------------------------------------------------------------------------
@app.get("/api/workouts", response_model=List[WorkoutOut])
async def list_workouts(
    exercise_type: Optional[ExerciseType] = Query(None, alias="exerciseType"),
    start: Optional[str] = Query(None, description="YYYY-MM-DD, inclusive"),
    end: Optional[str] = Query(None, description="YYYY-MM-DD, inclusive"),
    user: UserRecord = Depends(get_current_user),
    workouts: WorkoutStore = Depends(get_workout_store),
) -> List[WorkoutOut]:
    try:
        start_day = _parse_date_str(start) if start else None
        end_day = _parse_date_str(end) if end else None
    except ValueError as e:
        raise HTTPException(400, str(e))
    rows = await workouts.find(
        user.id,
        exercise_type=exercise_type,
        start=_local_midnight_utc(start_day) if start_day else None,
        end=_local_midnight_utc(end_day + timedelta(days=1)) if end_day else None,
    )
    return [_workout_out(w) for w in rows]


@app.get("/api/workouts/stats", response_model=StatsOut)
async def workout_stats_view(
    user: UserRecord = Depends(get_current_user),
    workouts: WorkoutStore = Depends(get_workout_store),
    today: date = Depends(get_today),
) -> StatsOut:
    rows = await workouts.find(user.id)
    return _stats_out(workout_stats.compute(rows, today, tz=TIMEZONE))


@app.get("/api/workouts/{workout_id}", response_model=WorkoutOut)
async def get_workout(
    workout_id: str = FPath(..., min_length=1),
    user: UserRecord = Depends(get_current_user),
    workouts: WorkoutStore = Depends(get_workout_store),
) -> WorkoutOut:
    w = await workouts.get(user.id, workout_id)
    if not w:
        raise HTTPException(404, "Workout not found")
    return _workout_out(w)


@app.post("/api/workouts", response_model=WorkoutOut, status_code=201)
async def create_workout(
    body: WorkoutIn,
    user: UserRecord = Depends(get_current_user),
    workouts: WorkoutStore = Depends(get_workout_store),
) -> WorkoutOut:
    w = await workouts.insert(user.id, _workout_values(body, partial=False))
    log.info(f"User {user.id} logged workout {w.id} ({w.exercise_type})")
    return _workout_out(w)


@app.put("/api/workouts/{workout_id}", response_model=WorkoutOut)
async def update_workout(
    workout_id: str = FPath(..., min_length=1),
    body: WorkoutUpdate = Body(...),
    user: UserRecord = Depends(get_current_user),
    workouts: WorkoutStore = Depends(get_workout_store),
) -> WorkoutOut:
    w = await workouts.update(user.id, workout_id, _workout_values(body, partial=True))
    if not w:
        raise HTTPException(404, "Workout not found")
    return _workout_out(w)


@app.delete("/api/workouts/{workout_id}", response_model=GenericResponse)
async def delete_workout(
    workout_id: str = FPath(..., min_length=1),
    user: UserRecord = Depends(get_current_user),
    workouts: WorkoutStore = Depends(get_workout_store),
) -> GenericResponse:
    if not await workouts.delete(user.id, workout_id):
        raise HTTPException(404, "Workout not found")
    return GenericResponse(message="Workout removed")


def main() -> None:
    import uvicorn

    uvicorn.run(app, host=os.getenv("HOST", "0.0.0.0"), port=int(os.getenv("PORT", "5000")))


if __name__ == "__main__":
    main()
