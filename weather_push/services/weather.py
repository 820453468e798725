"""Weather aggregator: cached, failure-isolated resolution of many locations."""

import asyncio
import logging
from collections.abc import Awaitable, Callable

from weather_push.config import get_settings
from weather_push.models.enums import ErrorCode
from weather_push.schemas.weather import WeatherLocation, WeatherResult
from weather_push.services.errors import (
    InvalidLocation,
    ProviderError,
    RateLimited,
    UpstreamTransient,
)
from weather_push.services.resilience import call_with_retry
from weather_push.services.weather_cache import WeatherCache
from weather_push.services.weather_provider import WeatherProvider

logger = logging.getLogger(__name__)


class WeatherAggregator:
    """Resolves current conditions for a batch of locations.

    Each location is resolved independently: a cache hit inside the freshness
    window is served, otherwise the provider is called and the fresh snapshot
    written back. Failures are reported per location; ``resolve`` itself
    never raises for a partial failure.
    """

    def __init__(
        self,
        provider: WeatherProvider,
        cache: WeatherCache,
        *,
        deadline: float | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        settings = get_settings()
        self.provider = provider
        self.cache = cache
        if deadline is None:
            deadline = settings.weather_batch_deadline_seconds
        self.deadline = deadline
        self.max_attempts = settings.provider_max_attempts
        self.base_delay = settings.provider_base_delay_seconds
        self._sleep = sleep

    async def resolve(self, locations: list[WeatherLocation]) -> list[WeatherResult]:
        """Return one result per input location, in input order."""
        if not locations:
            return []

        # One task per distinct location; duplicates share the result
        unique = {location.location_id: location for location in locations}
        tasks = {
            location_id: asyncio.create_task(self._resolve_one(location))
            for location_id, location in unique.items()
        }
        done, pending = await asyncio.wait(tasks.values(), timeout=self.deadline)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.warning(
                f"Weather batch deadline of {self.deadline}s exceeded, "
                f"{len(pending)}/{len(tasks)} location(s) unresolved"
            )

        resolved: dict[str, WeatherResult] = {}
        for location_id, task in tasks.items():
            location = unique[location_id]
            if task in pending:
                resolved[location_id] = WeatherResult.failure(
                    location_id, "Timed out fetching weather", ErrorCode.TIMEOUT, location.name
                )
            elif task.exception() is not None:
                resolved[location_id] = WeatherResult.failure(
                    location_id, str(task.exception()), ErrorCode.PROVIDER_ERROR, location.name
                )
            else:
                resolved[location_id] = task.result()

        results = [resolved[location.location_id] for location in locations]
        failed = sum(1 for result in results if not result.ok)
        if failed:
            logger.info(f"Resolved weather for {len(results) - failed}/{len(results)} location(s)")
        return results

    async def resolve_ids(
        self, location_ids: list[str], known: dict[str, WeatherLocation]
    ) -> list[WeatherResult]:
        """Resolve location ids, reporting ids missing from ``known`` in place."""
        resolved = await self.resolve([known[i] for i in location_ids if i in known])
        by_id = {result.location_id: result for result in resolved}
        return [
            by_id.get(location_id)
            or WeatherResult.failure(location_id, "Unknown location", ErrorCode.UNKNOWN_LOCATION)
            for location_id in location_ids
        ]

    async def _resolve_one(self, location: WeatherLocation) -> WeatherResult:
        try:
            snapshot = await self.cache.get(location.location_id)
        except Exception as e:
            logger.warning(f"Weather cache read failed for {location.location_id}: {e}")
            snapshot = None
        if snapshot is not None:
            return WeatherResult.success(location, snapshot.weather, cached=True)

        try:
            weather = await call_with_retry(
                lambda: self.provider.fetch_current(location),
                attempts=self.max_attempts,
                base_delay=self.base_delay,
                retry_on=UpstreamTransient,
                description=f"weather fetch for {location.location_id}",
                sleep=self._sleep,
            )
        except RateLimited as e:
            return self._failure(location, e, ErrorCode.RATE_LIMITED)
        except InvalidLocation as e:
            return self._failure(location, e, ErrorCode.INVALID_LOCATION)
        except (UpstreamTransient, ProviderError) as e:
            return self._failure(location, e, ErrorCode.PROVIDER_ERROR)
        except Exception as e:
            logger.error(
                f"Unexpected error fetching weather for {location.location_id}: {e}", exc_info=True
            )
            return self._failure(location, e, ErrorCode.PROVIDER_ERROR)

        try:
            await self.cache.put(location.location_id, weather)
        except Exception as e:
            logger.warning(f"Weather cache write failed for {location.location_id}: {e}")

        return WeatherResult.success(location, weather)

    def _failure(
        self, location: WeatherLocation, error: Exception, code: ErrorCode
    ) -> WeatherResult:
        logger.warning(f"Weather for {location.location_id} unavailable ({code.value}): {error}")
        return WeatherResult.failure(location.location_id, str(error), code, location.name)
