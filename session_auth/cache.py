"""Redis client configuration and the session cache"""
import os
from datetime import timedelta
from typing import Optional

import redis

from .errors import CacheUnavailable

#Redis configuration
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
REDIS_TIMEOUT_SECONDS = float(os.getenv("REDIS_TIMEOUT_SECONDS", "2"))

SESSION_KEY_PREFIX = "session:"

_client: Optional[redis.Redis] = None


def get_redis_client() -> redis.Redis:
    """Get the shared Redis client with bounded socket timeouts"""
    global _client
    if _client is None:
        _client = redis.Redis.from_url(
            REDIS_URL,
            decode_responses=True,
            socket_timeout=REDIS_TIMEOUT_SECONDS,
            socket_connect_timeout=REDIS_TIMEOUT_SECONDS
        )
    return _client


def session_key(token: str) -> str:
    return f"{SESSION_KEY_PREFIX}{token}"


class SessionCache:
    """Maps session token to account id with a TTL.

    The cache is an accelerator, not an authority: a miss is conclusive for
    denying access, a hit still has to be confirmed against the database.
    Every Redis failure is raised as CacheUnavailable.
    """

    def __init__(self, client):
        self.client = client

    def store(self, token: str, account_id: int, ttl: timedelta) -> None:
        seconds = max(1, int(ttl.total_seconds()))
        try:
            self.client.set(session_key(token), str(account_id), ex=seconds)
        except redis.RedisError as exc:
            raise CacheUnavailable() from exc

    def lookup(self, token: str) -> Optional[int]:
        try:
            value = self.client.get(session_key(token))
        except redis.RedisError as exc:
            raise CacheUnavailable() from exc
        if value is None:
            return None
        try:
            return int(value)
        except (TypeError, ValueError):
            #Garbage under our key is treated as a miss
            return None

    def delete(self, token: str) -> None:
        try:
            self.client.delete(session_key(token))
        except redis.RedisError as exc:
            raise CacheUnavailable() from exc

    def ping(self) -> bool:
        try:
            return bool(self.client.ping())
        except redis.RedisError as exc:
            raise CacheUnavailable() from exc


def get_session_cache() -> SessionCache:
    """Dependency for getting the session cache"""
    return SessionCache(get_redis_client())
