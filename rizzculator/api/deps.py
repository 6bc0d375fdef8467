"""
rizzculator.api.deps — FastAPI dependency injection
=====================================================

Engine and config are process-wide (``lru_cache``).  The broker, AI
gateway, rate limiter and scan tracker are created in the app lifespan
and stored on ``app.state``; tests swap any of them through
``app.dependency_overrides``.
"""

from __future__ import annotations

import os
from functools import lru_cache
from typing import TYPE_CHECKING, Annotated

import jwt
from fastapi import Depends, Header, HTTPException, status
from fastapi.requests import HTTPConnection
from jwt.exceptions import InvalidTokenError
from sqlalchemy import Engine
from sqlalchemy.orm import Session

from rizzculator.config import RizzConfig, load_config
from rizzculator.database.engine import create_db_engine

if TYPE_CHECKING:
    from rizzculator.api.rate_limit import SlidingWindowRateLimiter
    from rizzculator.engine.broker import InMemoryBroker
    from rizzculator.services.ai_gateway import AIGateway
    from rizzculator.services.messaging_service import PresenceRegistry
    from rizzculator.services.scan_service import ScanRequestTracker

_WEAK_SECRETS = frozenset({
    "rizzculator-dev-secret-change-me",
    "change-me",
    "secret",
    "dev",
    "",
})

_MIN_SECRET_LENGTH = 32

JWT_ALGORITHM = "HS256"


def _load_jwt_secret() -> str:
    """Load and validate JWT_SECRET from the environment.

    Raises RuntimeError at import time if the secret is missing, blank,
    too short (< 32 chars), or a known weak default.
    """
    secret = os.getenv("JWT_SECRET", "")
    if not secret:
        raise RuntimeError(
            "JWT_SECRET environment variable is not set. "
            "Generate one with: python -c \"import secrets; print(secrets.token_urlsafe(64))\""
        )
    if secret in _WEAK_SECRETS:
        raise RuntimeError(
            f"JWT_SECRET is set to a known weak default ('{secret}'). "
            "Please set a strong, unique secret."
        )
    if len(secret) < _MIN_SECRET_LENGTH:
        raise RuntimeError(
            f"JWT_SECRET is too short ({len(secret)} chars). "
            f"Minimum length is {_MIN_SECRET_LENGTH} characters."
        )
    return secret


JWT_SECRET: str = _load_jwt_secret()


def decode_token(token: str) -> dict:
    """Decode a user JWT.  Raises :class:`InvalidTokenError` if invalid."""
    payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    if not payload.get("sub"):
        raise InvalidTokenError("token has no subject")
    return payload


# ---------------------------------------------------------------------------
# Shared resources
# ---------------------------------------------------------------------------
@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_db_engine()


@lru_cache(maxsize=1)
def get_config() -> RizzConfig:
    return load_config()


def get_session(engine: Annotated[Engine, Depends(get_engine)]):
    with Session(engine) as session:
        yield session


def get_broker(conn: HTTPConnection) -> InMemoryBroker:
    return conn.app.state.broker


def get_gateway(conn: HTTPConnection) -> AIGateway:
    return conn.app.state.gateway


def get_rate_limiter(conn: HTTPConnection) -> SlidingWindowRateLimiter:
    return conn.app.state.rate_limiter


def get_scan_tracker(conn: HTTPConnection) -> ScanRequestTracker:
    return conn.app.state.scan_tracker


def get_presence_registry(conn: HTTPConnection) -> PresenceRegistry:
    return conn.app.state.presence


# ---------------------------------------------------------------------------
# Caller identity
# ---------------------------------------------------------------------------
def _bearer_subject(authorization: str | None) -> str | None:
    if not authorization or not authorization.startswith("Bearer "):
        return None
    token = authorization.split(" ", 1)[1]
    try:
        return str(decode_token(token)["sub"])
    except InvalidTokenError:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token")


def get_current_user_id(
    authorization: Annotated[str | None, Header()] = None,
) -> str:
    """Validate the bearer JWT and return its subject.  Raises 401."""
    user_id = _bearer_subject(authorization)
    if user_id is None:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Missing token")
    return user_id


def get_optional_user_id(
    authorization: Annotated[str | None, Header()] = None,
) -> str | None:
    return _bearer_subject(authorization)


def get_caller_id(
    conn: HTTPConnection,
    user_id: str | None = Depends(get_optional_user_id),
    x_user_id: Annotated[str | None, Header()] = None,
) -> str:
    """Rate-limit key: the token subject, else an ``anon:`` key."""
    if user_id is not None:
        return user_id
    fallback = x_user_id or (conn.client.host if conn.client else None) or "unknown"
    return f"anon:{fallback}"
