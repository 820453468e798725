"""Weather schemas."""

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from weather_push.models.enums import ErrorCode


@dataclass(frozen=True)
class WeatherLocation:
    """A place the weather provider can be queried for.

    Built once from the relational store; everything downstream reads
    these fields and nothing else.
    """

    location_id: str
    name: str
    country_code: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    timezone: str | None = None

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    @property
    def query(self) -> str:
        """Provider query: ``"lat,lon"`` if known, else ``"name, country"``."""
        if self.has_coordinates:
            return f"{self.latitude},{self.longitude}"
        if self.country_code:
            return f"{self.name}, {self.country_code}"
        return self.name


@dataclass(frozen=True)
class WeatherSnapshot:
    """Current conditions for one location as of ``last_updated``."""

    location_id: str
    weather: dict[str, Any]
    last_updated: datetime

    def age_seconds(self, now: datetime) -> float:
        return (now - self.last_updated).total_seconds()


class WeatherResult(BaseModel):
    """Per-location entry of a ``weatherUpdate`` push.

    Exactly one of ``weather`` and ``error`` is set.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    location_id: str
    name: str | None = None
    weather: dict[str, Any] | None = None
    error: str | None = None
    code: ErrorCode | None = None
    cached: bool = False
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(
        cls, location: WeatherLocation, weather: dict[str, Any], *, cached: bool = False
    ) -> "WeatherResult":
        return cls(
            location_id=location.location_id,
            name=location.name,
            weather=weather,
            cached=cached,
        )

    @classmethod
    def failure(
        cls, location_id: str, message: str, code: ErrorCode, name: str | None = None
    ) -> "WeatherResult":
        return cls(location_id=location_id, name=name, error=message, code=code)
