"""Current-conditions client for the weatherapi.com HTTP API."""

import logging
from typing import Any

import httpx

from weather_push.config import get_settings
from weather_push.schemas.weather import WeatherLocation
from weather_push.services.errors import (
    InvalidLocation,
    ProviderError,
    RateLimited,
    UpstreamTransient,
)

logger = logging.getLogger(__name__)


def map_current_conditions(payload: dict[str, Any]) -> dict[str, Any]:
    """Map a ``current.json`` response to the pushed ``weather`` object.

    Raises:
        ProviderError: If the response has no usable ``current`` block
    """
    current = payload.get("current")
    if not isinstance(current, dict) or "temp_c" not in current:
        raise ProviderError("Weather provider response is missing current conditions")

    condition = current.get("condition") or {}
    return {
        "temperature": current.get("temp_c"),
        "condition": condition.get("text"),
        "conditionCode": condition.get("code"),
        "icon": condition.get("icon"),
        "humidity": current.get("humidity"),
        "windSpeed": current.get("wind_kph"),
        "windDirection": current.get("wind_dir"),
        "feelsLike": current.get("feelslike_c"),
        "pressure": current.get("pressure_mb"),
        "precipitation": current.get("precip_mm"),
        "cloudCover": current.get("cloud"),
        "uvIndex": current.get("uv"),
        "lastUpdated": current.get("last_updated"),
    }


class WeatherProvider:
    """Fetches current conditions for one location at a time."""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        settings = get_settings()
        self.api_key = api_key if api_key is not None else settings.weather_api_key
        self.base_url = (base_url or settings.weather_api_base_url).rstrip("/")
        self.timeout = timeout or settings.weather_api_timeout
        self._client = client

    @property
    def is_configured(self) -> bool:
        """Check if an API key is available."""
        return bool(self.api_key)

    async def _get(self, params: dict[str, Any]) -> httpx.Response:
        url = f"{self.base_url}/current.json"
        if self._client is not None:
            return await self._client.get(url, params=params, timeout=self.timeout)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.get(url, params=params)

    async def fetch_current(self, location: WeatherLocation) -> dict[str, Any]:
        """Fetch and map current conditions for a location.

        Raises:
            UpstreamTransient: Timeout, connection failure or 5xx
            RateLimited: HTTP 429
            InvalidLocation: The provider could not resolve the query
            ProviderError: Any other unusable response
        """
        if not self.is_configured:
            raise ProviderError("WEATHER_API_KEY is not configured")

        try:
            response = await self._get({"key": self.api_key, "q": location.query, "aqi": "no"})
        except httpx.TimeoutException as e:
            raise UpstreamTransient(f"Weather provider timed out for {location.location_id}") from e
        except httpx.TransportError as e:
            raise UpstreamTransient(f"Weather provider unreachable: {e}") from e

        if response.status_code == 429:
            raise RateLimited("Weather provider rate limit exceeded")
        if response.status_code >= 500:
            raise UpstreamTransient(f"Weather provider returned {response.status_code}")
        if response.status_code == 400:
            raise InvalidLocation(f"Weather provider could not resolve '{location.query}'")
        if response.status_code != 200:
            raise ProviderError(f"Weather provider returned {response.status_code}")

        try:
            payload = response.json()
        except ValueError as e:
            raise ProviderError("Weather provider returned invalid JSON") from e

        logger.debug(f"Fetched current weather for {location.location_id}")
        return map_current_conditions(payload)
