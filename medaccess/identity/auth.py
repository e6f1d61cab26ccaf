"""
Session authentication for patients, clinicians and record services.

Callers present an HS256 JWT bearer token carrying `sub` (the patient or
clinician id) and `traits` (`patient`, `clinician`, `record_service`,
`admin`). Tokens are issued by the surrounding product's login flow; this
module only verifies them, plus a DEV_MODE helper for local use.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Protocol, Tuple
import asyncio
import functools
import logging
import os
import time
import uuid

import jwt
from fastapi import Depends, Header, HTTPException

logger = logging.getLogger(__name__)

SESSION_TOKEN_TYPE = "user"
DEV_SESSION_MINUTES = 30


class AuthManager:
    """Signs and verifies session tokens."""

    def __init__(self, jwt_secret: str):
        if not jwt_secret or jwt_secret == "change-this-secret":
            logger.warning("Using default/weak JWT secret. Set JWT_SECRET in production.")
        self.jwt_secret = jwt_secret

    def issue(self, subject: str, traits: Iterable[str], ttl: timedelta) -> str:
        now = datetime.now(tz=timezone.utc)
        claims = {
            "sub": subject,
            "type": SESSION_TOKEN_TYPE,
            "traits": sorted(set(traits)),
            "iat": now,
            "exp": now + ttl,
            "jti": uuid.uuid4().hex,
        }
        return jwt.encode(claims, self.jwt_secret, algorithm="HS256")

    def decode(self, token: str) -> Optional[Dict[str, Any]]:
        try:
            claims = jwt.decode(
                token, self.jwt_secret, algorithms=["HS256"], options={"require": ["sub", "exp"]}
            )
        except jwt.InvalidTokenError as e:
            logger.info("Rejected session token: %s", e.__class__.__name__)
            return None
        return claims if claims.get("type") == SESSION_TOKEN_TYPE else None


_AUTH_MANAGER: Optional[AuthManager] = None


def get_auth_manager() -> AuthManager:
    global _AUTH_MANAGER
    if _AUTH_MANAGER is None:
        _AUTH_MANAGER = AuthManager(os.getenv("JWT_SECRET", "change-this-secret"))
    return _AUTH_MANAGER


async def get_current_user(
    authorization: Optional[str] = Header(default=None),
) -> Dict[str, Any]:
    """FastAPI dependency resolving the bearer session.

    Returns {"id": str, "traits": List[str], "claims": Dict}.
    """
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise HTTPException(status_code=401, detail="Missing or invalid Authorization header")
    claims = get_auth_manager().decode(token.strip())
    if claims is None or not claims.get("sub"):
        raise HTTPException(status_code=401, detail="Invalid token")
    return {
        "id": str(claims["sub"]),
        "traits": list(claims.get("traits") or []),
        "claims": claims,
    }


def require_auth(
    required_traits: Optional[List[str]] = None,
) -> Callable[..., Awaitable[Dict[str, Any]]]:
    """Dependency admitting callers that hold any of `required_traits`; admins always pass."""
    wanted = set(required_traits or ())

    async def _dep(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
        traits = set(user["traits"])
        if wanted and "admin" not in traits and not traits & wanted:
            raise HTTPException(status_code=403, detail="Forbidden: insufficient traits")
        return user

    return _dep


def require_trait(trait: str) -> Callable[..., Awaitable[Dict[str, Any]]]:
    """Like require_auth but without the admin bypass.

    Patient and clinician routes act on the caller's own id, which an admin
    session does not have.
    """

    async def _dep(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
        if trait not in user["traits"]:
            raise HTTPException(status_code=403, detail=f"Forbidden: {trait} session required")
        return user

    return _dep


class RateLimiter(Protocol):
    async def allow(self, key: str, limit: int, window_seconds: int) -> bool: ...


class MemoryRateLimiter:
    """Fixed-window counters kept in process; only sound with a single worker."""

    def __init__(self, now: Callable[[], float] = time.monotonic) -> None:
        self._now = now
        self._lock = asyncio.Lock()
        self._windows: Dict[str, Tuple[float, int]] = {}

    async def allow(self, key: str, limit: int, window_seconds: int) -> bool:
        now = self._now()
        async with self._lock:
            started, count = self._windows.get(key, (now, 0))
            if now - started >= window_seconds:
                started, count = now, 0
            if count >= limit:
                return False
            self._windows[key] = (started, count + 1)
            return True

    def reset(self) -> None:
        self._windows.clear()


class RedisRateLimiter:
    """Fixed-window counters shared across workers through Redis.

    The window's TTL is created in the same MULTI as the first increment, so
    a key can never outlive its window. Any Redis failure rejects the call.
    """

    def __init__(self, url: str, client: Any = None) -> None:
        self._url = url
        self._client = client

    def _connection(self) -> Any:
        if self._client is None:
            import redis.asyncio as redis

            self._client = redis.from_url(self._url)
        return self._client

    async def allow(self, key: str, limit: int, window_seconds: int) -> bool:
        from redis.exceptions import RedisError

        pipe = self._connection().pipeline(transaction=True)
        pipe.set(key, 0, ex=window_seconds, nx=True)
        pipe.incr(key)
        try:
            _, count = await pipe.execute()
        except RedisError as e:
            logger.error("Rate limiter unavailable, rejecting %s: %s", key, e.__class__.__name__)
            return False
        return int(count) <= limit


_RATE_BACKEND: Optional[RateLimiter] = None


def get_rate_backend() -> RateLimiter:
    global _RATE_BACKEND
    if _RATE_BACKEND is None:
        redis_url = os.getenv("REDIS_URL")
        if os.getenv("RATE_LIMIT_BACKEND", "memory").lower() == "redis" and redis_url:
            _RATE_BACKEND = RedisRateLimiter(redis_url)
        else:
            _RATE_BACKEND = MemoryRateLimiter()
    return _RATE_BACKEND


def rate_limit(
    limit: int = 60,
    window_seconds: int = 60,
    key: Optional[str] = None,
    key_fn: Optional[Callable[..., str]] = None,
    limits_fn: Optional[Callable[..., Tuple[int, int]]] = None,
) -> Callable:
    """Reject with 429 once a bucket passes `limit` calls per window.

    `key_fn` and `limits_fn` receive the endpoint's resolved keyword
    arguments, so the bucket and its `(limit, window_seconds)` can come from
    the caller or from injected services.
    """

    def _decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def _wrapper(*args, **kwargs):
            bucket = key or (key_fn(**kwargs) if key_fn else func.__name__)
            max_calls, window = limits_fn(**kwargs) if limits_fn else (limit, window_seconds)
            if not await get_rate_backend().allow(bucket, max_calls, window):
                raise HTTPException(status_code=429, detail="Rate limit exceeded")
            return await func(*args, **kwargs)

        return _wrapper

    return _decorator


DEV_MODE = os.getenv("DEV_MODE", "false").lower() in {"1", "true", "yes"}

DEV_TRAITS = {"patient", "clinician", "record_service", "admin"}


def dev_issue_token(subject: str, traits: List[str]) -> str:
    """Issue a short-lived session token for local/dev usage."""
    if not DEV_MODE:
        raise PermissionError("Dev login disabled")
    unknown = set(traits) - DEV_TRAITS
    if unknown:
        raise ValueError(f"unknown traits: {sorted(unknown)}")
    return get_auth_manager().issue(subject, traits, timedelta(minutes=DEV_SESSION_MINUTES))
