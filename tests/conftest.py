"""Pytest configuration and fixtures."""

import asyncio
import json
from datetime import UTC, datetime, timedelta

import pytest
from fastapi.testclient import TestClient
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from weather_push.api.dependencies import (
    get_aggregator,
    get_auth_gate,
    get_delivery_engine,
    get_registry,
)
from weather_push.database import Base, get_db
from weather_push.main import app
from weather_push.models.location import Location, UserLocation
from weather_push.services.auth import AuthGate, create_access_token
from weather_push.services.delivery import DeliveryEngine
from weather_push.services.dispatcher import RouteDispatcher
from weather_push.services.errors import EndpointGone, UpstreamTransient
from weather_push.services.locations import LocationRepository
from weather_push.services.registry import ConnectionRegistry
from weather_push.services.weather import WeatherAggregator
from weather_push.services.weather_cache import InMemoryCacheStore, WeatherCache

TEST_SECRET = "test-secret"  # noqa: S105

# In-memory SQLite shared across threads (the SQL cache store uses worker threads)
engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class FakeClock:
    """Mutable clock injected wherever the code asks for "now"."""

    def __init__(self) -> None:
        self.now = datetime(2025, 1, 15, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeRedis:
    """In-memory stand-in for the subset of ``redis.asyncio.Redis`` the registry uses.

    Key expiry follows the injected clock. ``fail_next`` makes the next N
    calls raise a Redis ``ConnectionError``.
    """

    def __init__(self, clock: FakeClock) -> None:
        self.clock = clock
        self.strings: dict[str, tuple[str, datetime | None]] = {}
        self.sets: dict[str, set[str]] = {}
        self.zsets: dict[str, dict[str, float]] = {}
        self.fail_next = 0
        self.calls = 0
        self.closed = False

    def _tick(self) -> None:
        self.calls += 1
        if self.fail_next > 0:
            self.fail_next -= 1
            raise RedisConnectionError("connection reset")

    def _live(self, key: str) -> str | None:
        entry = self.strings.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and expires_at <= self.clock():
            del self.strings[key]
            return None
        return value

    async def set(self, key, value, ex=None, nx=False, xx=False):
        self._tick()
        exists = self._live(key) is not None
        if (nx and exists) or (xx and not exists):
            return None
        expires_at = self.clock() + timedelta(seconds=ex) if ex else None
        self.strings[key] = (value, expires_at)
        return True

    async def get(self, key):
        self._tick()
        return self._live(key)

    async def mget(self, keys):
        self._tick()
        return [self._live(key) for key in keys]

    async def delete(self, *keys):
        self._tick()
        removed = 0
        for key in keys:
            live = self._live(key) is not None
            self.strings.pop(key, None)
            if live or self.sets.pop(key, None) is not None:
                removed += 1
        return removed

    async def sadd(self, key, *members):
        self._tick()
        self.sets.setdefault(key, set()).update(members)
        return len(members)

    async def srem(self, key, *members):
        self._tick()
        self.sets.get(key, set()).difference_update(members)
        return len(members)

    async def smembers(self, key):
        self._tick()
        return set(self.sets.get(key, set()))

    async def zadd(self, key, mapping):
        self._tick()
        self.zsets.setdefault(key, {}).update(mapping)
        return len(mapping)

    async def zrem(self, key, *members):
        self._tick()
        zset = self.zsets.get(key, {})
        return sum(1 for member in members if zset.pop(member, None) is not None)

    async def zrangebyscore(self, key, low, high):
        self._tick()

        def above_min(score):
            bound = str(low)
            if bound == "-inf":
                return True
            if bound.startswith("("):
                return score > float(bound[1:])
            return score >= float(bound)

        def below_max(score):
            bound = str(high)
            if bound == "+inf":
                return True
            return score <= float(bound)

        items = sorted(self.zsets.get(key, {}).items(), key=lambda item: item[1])
        return [member for member, score in items if above_min(score) and below_max(score)]

    async def aclose(self):
        self.closed = True


class FakeTransport:
    """Push transport that records messages and can simulate failures."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, dict]] = []
        self.gone: set[str] = set()
        self.transient_failures: dict[str, int] = {}
        self.attempts: dict[str, int] = {}

    async def post_to_connection(self, connection_id: str, data: bytes) -> None:
        self.attempts[connection_id] = self.attempts.get(connection_id, 0) + 1
        if connection_id in self.gone:
            raise EndpointGone(f"Connection {connection_id} is gone")
        remaining = self.transient_failures.get(connection_id, 0)
        if remaining:
            self.transient_failures[connection_id] = remaining - 1
            raise UpstreamTransient("gateway returned 503")
        self.sent.append((connection_id, json.loads(data)))

    def messages_for(self, connection_id: str) -> list[dict]:
        return [message for cid, message in self.sent if cid == connection_id]


class FakeProvider:
    """Weather provider double that counts calls per location."""

    def __init__(self) -> None:
        self.calls: list[str] = []
        self.failures: dict[str, Exception] = {}
        self.delay: float = 0

    async def fetch_current(self, location):
        self.calls.append(location.location_id)
        if self.delay:
            await asyncio.sleep(self.delay)
        if location.location_id in self.failures:
            raise self.failures[location.location_id]
        return {
            "temperature": 21.5,
            "condition": "Sunny",
            "humidity": 40,
            "windSpeed": 12.0,
            "feelsLike": 22.0,
            "lastUpdated": "2025-01-15 12:00",
        }


async def no_sleep(_delay: float) -> None:
    return None


@pytest.fixture(scope="session", autouse=True)
def setup_test_database():
    """Create test database schema once at the start of the test session."""
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture(scope="function", autouse=True)
def db():
    """Create a fresh database session for each test with cleanup."""
    session = TestingSessionLocal()

    yield session

    # Clean up all data after test
    session.rollback()
    for table in reversed(Base.metadata.sorted_tables):
        session.execute(table.delete())
    session.commit()
    session.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_redis(clock):
    return FakeRedis(clock)


@pytest.fixture
def registry(fake_redis, clock):
    return ConnectionRegistry(fake_redis, clock=clock, sleep=no_sleep)


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def delivery(transport, registry):
    return DeliveryEngine(transport, registry, sleep=no_sleep)


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def weather_cache(clock):
    return WeatherCache(InMemoryCacheStore(), clock=clock, freshness=timedelta(minutes=5))


@pytest.fixture
def aggregator(provider, weather_cache):
    return WeatherAggregator(provider, weather_cache, sleep=no_sleep)


@pytest.fixture
def gate():
    return AuthGate(secret=TEST_SECRET)


@pytest.fixture
def make_token():
    """Issue test tokens signed with the test secret."""

    def _make(user_id: str = "42", username: str = "alice", **kwargs) -> str:
        return create_access_token(user_id, username, secret=TEST_SECRET, **kwargs)

    return _make


@pytest.fixture
def locations(db):
    """Seed three known locations and return a repository."""
    db.add_all(
        [
            Location(
                location_id="loc-1",
                name="London",
                country_code="GB",
                latitude=51.5,
                longitude=-0.12,
            ),
            Location(location_id="loc-2", name="Paris", country_code="FR"),
            Location(
                location_id="loc-7",
                name="Berlin",
                country_code="DE",
                latitude=52.52,
                longitude=13.4,
            ),
        ]
    )
    db.commit()
    return LocationRepository(db)


@pytest.fixture
def save_location(db):
    """Save a location for a user."""

    def _save(user_id: str, location_id: str, display_order: int = 0) -> None:
        db.add(UserLocation(user_id=user_id, location_id=location_id, display_order=display_order))
        db.commit()

    return _save


@pytest.fixture
def dispatcher(gate, registry, aggregator, delivery, locations):
    return RouteDispatcher(gate, registry, aggregator, delivery, locations)


@pytest.fixture(scope="function")
def client(db, gate, registry, aggregator, delivery):
    """Create a test client with database and service overrides."""

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_auth_gate] = lambda: gate
    app.dependency_overrides[get_registry] = lambda: registry
    app.dependency_overrides[get_aggregator] = lambda: aggregator
    app.dependency_overrides[get_delivery_engine] = lambda: delivery
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers(make_token):
    """Bearer headers for user 42."""
    return {"Authorization": f"Bearer {make_token('42')}"}


@pytest.fixture
def session_factory():
    """Session factory bound to the test database."""
    return TestingSessionLocal
