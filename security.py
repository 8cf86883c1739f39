"""Password hashing (passlib/bcrypt) and bearer token issue/verify (PyJWT).

Never logs raw passwords or tokens.
"""

from __future__ import annotations

import logging
import os
from datetime import datetime, timedelta, timezone

import jwt
from passlib.context import CryptContext

log = logging.getLogger("fittrack-api.security")

# HS256 keys under 32 bytes are rejected as insecure by PyJWT
JWT_SECRET = os.getenv("JWT_SECRET", "dev-only-insecure-secret-change-me-0123456789")
if "JWT_SECRET" not in os.environ:
    log.warning("JWT_SECRET is not set; using the development default")
JWT_ALGORITHM = "HS256"
JWT_EXPIRE_DAYS = int(os.getenv("JWT_EXPIRE_DAYS", "30"))
BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "12"))

pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=BCRYPT_ROUNDS,
)


class TokenError(Exception):
    """Token is missing a subject, malformed, badly signed or expired."""


def hash_password(password: str) -> str:
    """Hash a password using bcrypt.

    Raises:
        ValueError: If password is empty
    """
    if not password:
        raise ValueError("Password cannot be empty")
    # bcrypt hard limit: 72 bytes
    return pwd_context.hash(password.encode("utf-8")[:72])


def verify_password(plain: str, hashed: str) -> bool:
    if not plain or not hashed:
        return False
    return pwd_context.verify(plain.encode("utf-8")[:72], hashed)


def create_access_token(user_id: str, now: datetime | None = None) -> str:
    if not user_id:
        raise ValueError("user_id cannot be empty")
    now = now or datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "iat": now,
        "exp": now + timedelta(days=JWT_EXPIRE_DAYS),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def decode_access_token(token: str) -> str:
    """Verify ``token`` and return the user id from its ``sub`` claim.

    Raises:
        TokenError: If the token is invalid, expired or has no subject
    """
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except jwt.PyJWTError as e:
        log.warning(f"JWT decode failed: {type(e).__name__}")
        raise TokenError("Invalid or expired token") from e
    user_id = payload.get("sub")
    if not user_id:
        raise TokenError("Token missing user ID")
    return str(user_id)
