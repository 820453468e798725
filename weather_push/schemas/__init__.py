"""Pydantic schemas for channel events, push envelopes and API requests."""

from weather_push.schemas.connection import ConnectionRecord
from weather_push.schemas.events import ChannelEvent, DispatchResponse, MessageBody
from weather_push.schemas.location import (
    LocationOrderUpdate,
    SavedLocationCreate,
    SavedLocationResponse,
)
from weather_push.schemas.push import (
    ErrorMessage,
    NoLocationsMessage,
    PushMessage,
    WeatherUpdateMessage,
)
from weather_push.schemas.weather import WeatherLocation, WeatherResult, WeatherSnapshot

__all__ = [
    "ConnectionRecord",
    "ChannelEvent",
    "DispatchResponse",
    "MessageBody",
    "SavedLocationCreate",
    "SavedLocationResponse",
    "LocationOrderUpdate",
    "WeatherUpdateMessage",
    "NoLocationsMessage",
    "ErrorMessage",
    "PushMessage",
    "WeatherLocation",
    "WeatherResult",
    "WeatherSnapshot",
]
