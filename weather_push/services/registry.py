"""Connection registry backed by Redis.

Layout (``<prefix>`` defaults to ``wx``):

- ``<prefix>:connection:<connectionId>``: JSON ``ConnectionRecord`` with a
  native Redis expiry matching its ``ttl``
- ``<prefix>:user:<userId>``: set of the user's connection ids
- ``<prefix>:active:<serviceType>``: sorted set of connection ids scored by
  ``ttl`` (epoch seconds), used to enumerate active connections
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, timedelta
from typing import TypeVar

import redis.asyncio as aioredis
from pydantic import ValidationError as PydanticValidationError
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from weather_push.config import get_settings
from weather_push.schemas.connection import ConnectionRecord
from weather_push.services.errors import UpstreamTransient
from weather_push.services.resilience import call_with_retry

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_STORE_ERRORS = (RedisConnectionError, RedisTimeoutError)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class ConnectionRegistry:
    """Typed operations over the connection store.

    Every store call is retried on transient Redis errors with exponential
    backoff and bounded by a per-call deadline.
    """

    def __init__(
        self,
        redis_client: aioredis.Redis,
        *,
        clock: Callable[[], datetime] = _utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        settings = get_settings()
        self._redis = redis_client
        self._clock = clock
        self._sleep = sleep
        self.prefix = settings.registry_key_prefix
        self.service_type = settings.service_type
        self.ttl = timedelta(hours=settings.connection_ttl_hours)
        self.max_attempts = settings.registry_max_attempts
        self.base_delay = settings.registry_base_delay_seconds
        self.deadline = settings.registry_deadline_seconds

    @classmethod
    def from_url(cls, url: str | None = None, **kwargs) -> "ConnectionRegistry":
        settings = get_settings()
        return cls(aioredis.from_url(url or settings.redis_url, decode_responses=True), **kwargs)

    # Keys

    def _connection_key(self, connection_id: str) -> str:
        return f"{self.prefix}:connection:{connection_id}"

    def _user_key(self, user_id: str) -> str:
        return f"{self.prefix}:user:{user_id}"

    @property
    def _active_key(self) -> str:
        return f"{self.prefix}:active:{self.service_type}"

    # Plumbing

    async def _call(self, description: str, operation: Callable[[], Awaitable[T]]) -> T:
        try:
            return await call_with_retry(
                operation,
                attempts=self.max_attempts,
                base_delay=self.base_delay,
                retry_on=TRANSIENT_STORE_ERRORS,
                deadline=self.deadline,
                description=f"registry {description}",
                sleep=self._sleep,
            )
        except TRANSIENT_STORE_ERRORS as e:
            logger.error(f"Registry {description} failed after {self.max_attempts} attempts: {e}")
            raise UpstreamTransient(f"Connection registry unavailable ({description})") from e

    def _expiry(self, now: datetime) -> int:
        return int((now + self.ttl).timestamp())

    def _decode(self, raw: str | bytes | None) -> ConnectionRecord | None:
        if raw is None:
            return None
        try:
            return ConnectionRecord.model_validate_json(raw)
        except PydanticValidationError:
            logger.warning(f"Discarding unreadable connection record: {raw!r}")
            return None

    async def _write(self, record: ConnectionRecord, now: datetime) -> bool:
        """Overwrite an existing record; returns False if it vanished meanwhile."""
        ttl_seconds = max(record.ttl - int(now.timestamp()), 1)
        written = await self._call(
            "update",
            lambda: self._redis.set(
                self._connection_key(record.connection_id),
                record.to_json(),
                ex=ttl_seconds,
                xx=True,
            ),
        )
        if not written:
            return False
        await self._call(
            "index",
            lambda: self._redis.zadd(self._active_key, {record.connection_id: record.ttl}),
        )
        return True

    async def _delete_records(self, connection_ids: list[str]) -> None:
        if connection_ids:
            keys = [self._connection_key(connection_id) for connection_id in connection_ids]
            await self._call("remove", lambda: self._redis.delete(*keys))

    # Operations

    async def create(self, connection_id: str, user_id: str) -> bool:
        """Register a new connection.

        Conditional insert: if a record already exists for ``connection_id``
        it is left untouched. Returns True if a record was created.
        """
        now = self._clock()
        record = ConnectionRecord(
            connection_id=connection_id,
            user_id=str(user_id),
            timestamp=int(now.timestamp() * 1000),
            ttl=self._expiry(now),
            service_type=self.service_type,
        )
        created = await self._call(
            "create",
            lambda: self._redis.set(
                self._connection_key(connection_id),
                record.to_json(),
                ex=int(self.ttl.total_seconds()),
                nx=True,
            ),
        )
        if not created:
            logger.info(f"Connection {connection_id} already registered, leaving it unchanged")
            return False

        user_key = self._user_key(record.user_id)
        await self._call("index", lambda: self._redis.sadd(user_key, connection_id))
        await self._call(
            "index", lambda: self._redis.zadd(self._active_key, {connection_id: record.ttl})
        )
        logger.info(f"Stored connection {connection_id} for user {record.user_id}")
        return True

    async def get(self, connection_id: str) -> ConnectionRecord | None:
        """Return the record for a connection, or None if absent or expired."""
        raw = await self._call("get", lambda: self._redis.get(self._connection_key(connection_id)))
        record = self._decode(raw)
        if record is None or not record.is_active(self._clock()):
            return None
        return record

    async def remove(self, connection_id: str) -> bool:
        """Delete a connection. Deleting a missing record is not an error."""
        key = self._connection_key(connection_id)
        record = self._decode(await self._call("get", lambda: self._redis.get(key)))
        deleted = await self._call("remove", lambda: self._redis.delete(key))
        await self._call("unindex", lambda: self._redis.zrem(self._active_key, connection_id))
        if record is not None:
            user_key = self._user_key(record.user_id)
            await self._call("unindex", lambda: self._redis.srem(user_key, connection_id))

        if deleted:
            logger.info(f"Removed connection {connection_id}")
        else:
            logger.debug(f"Connection {connection_id} was not registered, nothing to remove")
        return bool(deleted)

    async def refresh_ttl(self, connection_id: str) -> bool:
        """Extend a connection's TTL to now + window.

        Returns False, without creating anything, if the connection is not
        registered.
        """
        record = await self.get(connection_id)
        if record is None:
            return False
        now = self._clock()
        record.ttl = self._expiry(now)
        return await self._write(record, now)

    async def set_subscriptions(self, connection_id: str, location_ids: list[str]) -> bool:
        """Replace the connection's subscription set and refresh its TTL.

        Returns False if the connection is not registered.
        """
        record = await self.get(connection_id)
        if record is None:
            return False
        now = self._clock()
        record.subscribed_location_ids = list(dict.fromkeys(location_ids))
        record.ttl = self._expiry(now)
        written = await self._write(record, now)
        if written:
            count = len(record.subscribed_location_ids)
            logger.info(f"Connection {connection_id} subscribed to {count} location(s)")
        return written

    async def _load(self, connection_ids: list[str]) -> list[ConnectionRecord]:
        if not connection_ids:
            return []
        keys = [self._connection_key(connection_id) for connection_id in connection_ids]
        raws = await self._call("load", lambda: self._redis.mget(keys))
        now = self._clock()
        records = []
        for raw in raws:
            record = self._decode(raw)
            if record is not None and record.is_active(now):
                records.append(record)
        return records

    async def list_active(self) -> list[ConnectionRecord]:
        """Return every connection whose TTL has not passed."""
        now = self._clock()
        connection_ids = await self._call(
            "list",
            lambda: self._redis.zrangebyscore(self._active_key, f"({int(now.timestamp())}", "+inf"),
        )
        records = await self._load(list(connection_ids))
        logger.debug(f"Retrieved {len(records)} active connection(s)")
        return records

    async def list_for_user(self, user_id: str) -> list[ConnectionRecord]:
        """Return the active connections of one user."""
        user_key = self._user_key(str(user_id))
        members = await self._call("list", lambda: self._redis.smembers(user_key))
        connection_ids = sorted(members)
        records = await self._load(connection_ids)

        stale = set(connection_ids) - {record.connection_id for record in records}
        if stale:
            await self._call("unindex", lambda: self._redis.srem(user_key, *stale))
        return records

    async def remove_for_user(self, user_id: str) -> list[str]:
        """Remove every connection of a user. Returns the removed ids."""
        user_key = self._user_key(str(user_id))
        members = await self._call("list", lambda: self._redis.smembers(user_key))
        connection_ids = sorted(members)
        await self._delete_records(connection_ids)
        if connection_ids:
            await self._call("unindex", lambda: self._redis.zrem(self._active_key, *connection_ids))
        await self._call("remove", lambda: self._redis.delete(user_key))
        logger.info(f"Removed {len(connection_ids)} connection(s) for user {user_id}")
        return connection_ids

    async def purge_expired(self) -> int:
        """Drop index entries and records whose TTL has passed."""
        now_ts = int(self._clock().timestamp())
        expired = await self._call(
            "list", lambda: self._redis.zrangebyscore(self._active_key, "-inf", now_ts)
        )
        expired = list(expired)
        if not expired:
            return 0
        await self._delete_records(expired)
        await self._call("unindex", lambda: self._redis.zrem(self._active_key, *expired))
        logger.info(f"Purged {len(expired)} expired connection(s)")
        return len(expired)

    async def close(self) -> None:
        """Close the Redis connection."""
        await self._redis.aclose()
