"""Shared fixtures: in-memory SQLite, an in-memory Redis stand-in and a controllable clock."""
import fnmatch
import os
import threading
from datetime import timedelta

#Must be set before session_auth.database creates its engine
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["GEOLOCATION_ENABLED"] = "false"
os.environ["LOG_JSON"] = "false"

import pytest  # noqa: E402
import redis  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from session_auth import accounts  # noqa: E402
from session_auth.cache import SessionCache, get_session_cache  # noqa: E402
from session_auth.database import Base, SessionLocal, engine  # noqa: E402
from session_auth.guard import get_clock  # noqa: E402
from session_auth.main import app  # noqa: E402
from session_auth.models import utcnow  # noqa: E402
from session_auth.sessions import SessionManager  # noqa: E402

PASSWORD = "password123"


class FakeRedis:
    """Implements the handful of redis.Redis methods the service calls.

    Keys never expire on their own, which lets tests model a cache that
    still holds entries the database has already revoked or expired.
    """

    def __init__(self):
        self.data = {}
        self.ttls = {}
        self.failing = set()
        self._lock = threading.Lock()

    def _maybe_fail(self, op):
        if op in self.failing:
            raise redis.ConnectionError(f"simulated {op} failure")

    def set(self, key, value, ex=None):
        self._maybe_fail("set")
        with self._lock:
            self.data[key] = value
            self.ttls[key] = ex
        return True

    def get(self, key):
        self._maybe_fail("get")
        with self._lock:
            return self.data.get(key)

    def delete(self, *keys):
        self._maybe_fail("delete")
        removed = 0
        with self._lock:
            for key in keys:
                if self.data.pop(key, None) is not None:
                    removed += 1
                self.ttls.pop(key, None)
        return removed

    def ping(self):
        self._maybe_fail("ping")
        return True

    def scan_iter(self, match=None):
        with self._lock:
            keys = list(self.data)
        return [k for k in keys if match is None or fnmatch.fnmatch(k, match)]


class FakeClock:
    """Callable clock that only moves when told to"""

    def __init__(self):
        self.now = utcnow()

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def cache(fake_redis):
    return SessionCache(fake_redis)


@pytest.fixture
def db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def manager(db, cache, clock):
    return SessionManager(db, cache, clock)


@pytest.fixture
def account(db):
    return accounts.register(db, "u@x.com", "alice", PASSWORD, "Alice A")


@pytest.fixture
def client(db, cache, clock):
    app.dependency_overrides[get_session_cache] = lambda: cache
    app.dependency_overrides[get_clock] = lambda: clock

    with TestClient(app) as client:
        yield client

    app.dependency_overrides.clear()
