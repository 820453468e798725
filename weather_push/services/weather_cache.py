"""Short-lived cache of current-conditions snapshots.

``WeatherCache`` is built once per process with an injected clock and
backing store and handed to the aggregator. Snapshots older than the
freshness window are never served.
"""

import asyncio
import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any, Protocol

from sqlalchemy import delete
from sqlalchemy.orm import Session

from weather_push.config import get_settings
from weather_push.models.weather_cache import WeatherCacheEntry
from weather_push.schemas.weather import WeatherSnapshot

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


class CacheStore(Protocol):
    """Persistence for snapshots, keyed by location id."""

    async def load(self, location_id: str) -> WeatherSnapshot | None: ...

    async def save(self, snapshot: WeatherSnapshot) -> None: ...

    async def purge_older_than(self, cutoff: datetime) -> int: ...


class InMemoryCacheStore:
    """Process-local store, mainly for tests and single-process development."""

    def __init__(self) -> None:
        self._snapshots: dict[str, WeatherSnapshot] = {}

    async def load(self, location_id: str) -> WeatherSnapshot | None:
        return self._snapshots.get(location_id)

    async def save(self, snapshot: WeatherSnapshot) -> None:
        self._snapshots[snapshot.location_id] = snapshot

    async def purge_older_than(self, cutoff: datetime) -> int:
        expired = [key for key, snap in self._snapshots.items() if snap.last_updated < cutoff]
        for key in expired:
            del self._snapshots[key]
        return len(expired)


class SqlCacheStore:
    """Store backed by the ``weather_cache`` table."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def _load(self, location_id: str) -> WeatherSnapshot | None:
        with self._session_factory() as db:
            entry = db.get(WeatherCacheEntry, location_id)
            if entry is None:
                return None
            return WeatherSnapshot(
                location_id=entry.location_id,
                weather=dict(entry.weather_data),
                last_updated=_aware(entry.last_updated),
            )

    def _save(self, snapshot: WeatherSnapshot) -> None:
        with self._session_factory() as db:
            db.merge(
                WeatherCacheEntry(
                    location_id=snapshot.location_id,
                    weather_data=snapshot.weather,
                    last_updated=snapshot.last_updated,
                )
            )
            db.commit()

    def _purge(self, cutoff: datetime) -> int:
        with self._session_factory() as db:
            result = db.execute(
                delete(WeatherCacheEntry).where(WeatherCacheEntry.last_updated < cutoff)
            )
            db.commit()
            return result.rowcount or 0

    async def load(self, location_id: str) -> WeatherSnapshot | None:
        return await asyncio.to_thread(self._load, location_id)

    async def save(self, snapshot: WeatherSnapshot) -> None:
        await asyncio.to_thread(self._save, snapshot)

    async def purge_older_than(self, cutoff: datetime) -> int:
        return await asyncio.to_thread(self._purge, cutoff)


class WeatherCache:
    """Freshness-aware front to a ``CacheStore``."""

    def __init__(
        self,
        store: CacheStore,
        clock: Callable[[], datetime] = _utcnow,
        freshness: timedelta | None = None,
    ) -> None:
        self.store = store
        self.clock = clock
        self.freshness = freshness or timedelta(
            seconds=get_settings().weather_cache_freshness_seconds
        )

    def is_fresh(self, snapshot: WeatherSnapshot) -> bool:
        return snapshot.age_seconds(self.clock()) < self.freshness.total_seconds()

    async def get(self, location_id: str) -> WeatherSnapshot | None:
        """Return a snapshot only if it is inside the freshness window."""
        snapshot = await self.store.load(location_id)
        if snapshot is None:
            return None
        if not self.is_fresh(snapshot):
            logger.debug(f"Cached weather for {location_id} is stale")
            return None
        return snapshot

    async def put(self, location_id: str, weather: dict[str, Any]) -> WeatherSnapshot:
        snapshot = WeatherSnapshot(location_id, weather, last_updated=self.clock())
        await self.store.save(snapshot)
        return snapshot

    async def purge_stale(self) -> int:
        """Delete snapshots that can no longer be served."""
        return await self.store.purge_older_than(self.clock() - self.freshness)
