"""
Shared fixtures: in-memory Redis double, controllable clock, wired services.
"""

import os
from fnmatch import fnmatchcase

# Settings are read at import time; keep the app out of startup side effects
os.environ.setdefault("ENVIRONMENT", "testing")

import pytest
import redis

from app.models.geofence import EventConfig
from app.services.event_provider import StaticEventProvider
from app.services.monitoring.circuit_breakers import create_breaker
from app.services.token_cache import TokenCache
from app.services.token_service import TokenService

TEST_SECRET = "test-encryption-secret"
START_MS = 1_700_000_000_000


class Clock:
    """Epoch-millisecond clock that only moves when told to."""

    def __init__(self, start: int = START_MS):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class FakeRedis:
    """
    The subset of redis-py used by TokenCache, with clock-driven expiry.

    Set `fail = True` to make every call raise ConnectionError.
    """

    def __init__(self, clock: Clock):
        self.clock = clock
        self.store = {}
        self.fail = False

    def _check(self):
        if self.fail:
            raise redis.ConnectionError("connection refused")

    def _live(self, key):
        item = self.store.get(key)
        if item is None:
            return None
        value, expires_at = item
        if expires_at is not None and expires_at <= self.clock():
            del self.store[key]
            return None
        return value

    def set(self, key, value, ex=None, nx=False):
        self._check()
        if nx and self._live(key) is not None:
            return None
        expires_at = self.clock() + ex * 1000 if ex else None
        self.store[key] = (value, expires_at)
        return True

    def get(self, key):
        self._check()
        return self._live(key)

    def delete(self, *keys):
        self._check()
        removed = 0
        for key in keys:
            if self._live(key) is not None:
                del self.store[key]
                removed += 1
        return removed

    def scan_iter(self, match=None, count=None):
        self._check()
        for key in list(self.store):
            if self._live(key) is None:
                continue
            if match is None or fnmatchcase(key, match):
                yield key

    def ping(self):
        self._check()
        return True

    def persist(self, key):
        """Drop a key's TTL, simulating a store that does not evict."""
        value, _ = self.store[key]
        self.store[key] = (value, None)


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def fake_redis(clock):
    return FakeRedis(clock)


@pytest.fixture
def token_cache(fake_redis, clock):
    return TokenCache(fake_redis, breaker=create_breaker("redis-test", fail_max=1000), clock=clock)


@pytest.fixture
def token_service(token_cache, clock):
    return TokenService(
        cache=token_cache,
        encryption_key=TEST_SECRET,
        base_url="https://checkin.example.com/",
        default_expiration_seconds=60,
        clock=clock,
    )


@pytest.fixture
def event_provider():
    return StaticEventProvider([
        EventConfig.model_validate({
            "id": "evt-circle",
            "name": "Town Hall",
            "isActive": True,
            "geofence": {"type": "circle", "center": {"lat": 37.7749, "lng": -122.4194}, "radiusMeters": 100},
        }),
        EventConfig.model_validate({
            "id": "evt-polygon",
            "geofence": {
                "type": "polygon",
                "vertices": [{"lat": 0, "lng": 0}, {"lat": 0, "lng": 2}, {"lat": 2, "lng": 2}, {"lat": 2, "lng": 0}],
            },
        }),
        EventConfig.model_validate({"id": "evt-open", "isActive": True}),
        EventConfig.model_validate({"id": "evt-closed", "isActive": False}),
    ])
