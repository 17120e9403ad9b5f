"""
huddle.api.deps — FastAPI dependency injection
================================================
"""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Annotated

import jwt
from fastapi import Depends, Header, HTTPException, status
from jwt.exceptions import InvalidTokenError
from sqlalchemy import Engine

from huddle.config import HuddleConfig, load_config
from huddle.database.engine import create_db_engine
from huddle.services.recompute_queue import ScoreRecomputeQueue, get_recompute_queue

_WEAK_SECRETS = frozenset({
    "huddle-dev-secret-change-me",
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


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_db_engine()


@lru_cache(maxsize=1)
def get_config() -> HuddleConfig:
    return load_config()


def get_queue() -> ScoreRecomputeQueue:
    return get_recompute_queue()


def get_current_user_id(
    authorization: Annotated[str | None, Header()] = None,
) -> int:
    """Validate the bearer JWT and return its ``sub`` as a user id.

    Tokens are issued by the identity provider; this service only verifies
    them.  Raises 401 if the header is missing, the signature is bad, or
    ``sub`` is not an integer id.
    """
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Missing token")
    token = authorization.split(" ", 1)[1]
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except InvalidTokenError:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token")
    try:
        return int(payload["sub"])
    except (KeyError, TypeError, ValueError):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token subject")


CurrentUser = Annotated[int, Depends(get_current_user_id)]
EngineDep = Annotated[Engine, Depends(get_engine)]
ConfigDep = Annotated[HuddleConfig, Depends(get_config)]
QueueDep = Annotated[ScoreRecomputeQueue, Depends(get_queue)]
