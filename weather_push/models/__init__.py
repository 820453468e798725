"""SQLAlchemy models."""

from weather_push.models.location import Location, UserLocation
from weather_push.models.weather_cache import WeatherCacheEntry

__all__ = [
    "Location",
    "UserLocation",
    "WeatherCacheEntry",
]
