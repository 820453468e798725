"""Outbound push envelopes."""

from datetime import UTC, datetime
from typing import Literal

from pydantic import BaseModel, Field

from weather_push.schemas.weather import WeatherResult


def _now() -> datetime:
    return datetime.now(UTC)


class WeatherUpdateMessage(BaseModel):
    """Weather for a set of locations."""

    type: Literal["weatherUpdate"] = "weatherUpdate"
    data: list[WeatherResult]
    timestamp: datetime = Field(default_factory=_now)


class NoLocationsMessage(BaseModel):
    """Sent on connect when the user has no saved locations."""

    type: Literal["noLocations"] = "noLocations"
    message: str = "No saved locations yet. Add a location to receive weather updates."
    timestamp: datetime = Field(default_factory=_now)


class ErrorMessage(BaseModel):
    """Best-effort error notice pushed to the client."""

    type: Literal["error"] = "error"
    message: str
    code: str | None = None
    timestamp: datetime = Field(default_factory=_now)


PushMessage = WeatherUpdateMessage | NoLocationsMessage | ErrorMessage


def encode_push(message: PushMessage) -> bytes:
    """Serialize an envelope to the JSON bytes sent over the channel."""
    return message.model_dump_json(by_alias=True, exclude_none=True).encode("utf-8")
