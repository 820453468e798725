"""Celery tasks for periodic weather broadcast and registry cleanup."""

import asyncio
import logging

from weather_push.celery_app import app as celery_app
from weather_push.config import get_settings
from weather_push.database import SessionLocal
from weather_push.schemas.push import WeatherUpdateMessage
from weather_push.services.delivery import DeliveryEngine, DeliveryStatus
from weather_push.services.locations import LocationRepository
from weather_push.services.registry import ConnectionRegistry
from weather_push.services.transport import ApiGatewayTransport
from weather_push.services.weather import WeatherAggregator
from weather_push.services.weather_cache import SqlCacheStore, WeatherCache
from weather_push.services.weather_provider import WeatherProvider

logger = logging.getLogger(__name__)


async def broadcast_to_subscribers(
    registry: ConnectionRegistry,
    aggregator: WeatherAggregator,
    delivery: DeliveryEngine,
    locations: LocationRepository,
) -> dict:
    """Push fresh weather to every active connection with subscriptions.

    Each subscribed location is resolved once however many connections
    follow it; deliveries run concurrently and fail independently.

    Returns:
        dict with broadcast statistics
    """
    records = [record for record in await registry.list_active() if record.subscribed_location_ids]
    stats = {"connections": len(records), "locations": 0, "delivered": 0, "stale": 0, "failed": 0}
    if not records:
        logger.info("No subscribed connections to broadcast to")
        return stats

    location_ids = list(
        dict.fromkeys(
            location_id for record in records for location_id in record.subscribed_location_ids
        )
    )
    stats["locations"] = len(location_ids)
    results = await aggregator.resolve_ids(location_ids, locations.get_many(location_ids))
    by_id = dict(zip(location_ids, results, strict=True))

    outcomes = await asyncio.gather(
        *(
            delivery.send(
                record.connection_id,
                WeatherUpdateMessage(data=[by_id[i] for i in record.subscribed_location_ids]),
            )
            for record in records
        )
    )
    for outcome in outcomes:
        if outcome.status == DeliveryStatus.DELIVERED:
            stats["delivered"] += 1
        elif outcome.status == DeliveryStatus.STALE:
            stats["stale"] += 1
        else:
            stats["failed"] += 1

    logger.info(f"Broadcast weather: {stats}")
    return stats


async def _broadcast() -> dict:
    db = SessionLocal()
    registry = ConnectionRegistry.from_url()
    try:
        aggregator = WeatherAggregator(WeatherProvider(), WeatherCache(SqlCacheStore(SessionLocal)))
        delivery = DeliveryEngine(ApiGatewayTransport(), registry)
        locations = LocationRepository(db)
        return await broadcast_to_subscribers(registry, aggregator, delivery, locations)
    finally:
        await registry.close()
        db.close()


async def _cleanup() -> dict:
    registry = ConnectionRegistry.from_url()
    try:
        purged_connections = await registry.purge_expired()
        purged_snapshots = await WeatherCache(SqlCacheStore(SessionLocal)).purge_stale()
        return {"connections": purged_connections, "snapshots": purged_snapshots}
    finally:
        await registry.close()


@celery_app.task
def broadcast_weather_updates() -> dict:
    """Push current weather to all subscribed connections.

    This task runs every ``broadcast_interval_seconds`` via celery-beat.
    """
    if not get_settings().websocket_api_endpoint:
        logger.warning("WEBSOCKET_API_ENDPOINT not configured, skipping broadcast")
        return {"skipped": True}
    return asyncio.run(_broadcast())


@celery_app.task
def cleanup_expired_connections() -> dict:
    """Drop expired registry entries and stale weather cache rows."""
    stats = asyncio.run(_cleanup())
    logger.info(f"Cleanup finished: {stats}")
    return stats
