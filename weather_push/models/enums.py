"""Enums for model fields."""

from enum import Enum


class ConnectionStatus(str, Enum):
    """Lifecycle status stored on a connection record."""

    CONNECTED = "CONNECTED"


class ErrorCode(str, Enum):
    """Per-location error codes reported in weather results."""

    PROVIDER_ERROR = "PROVIDER_ERROR"
    INVALID_LOCATION = "INVALID_LOCATION"
    RATE_LIMITED = "RATE_LIMITED"
    TIMEOUT = "TIMEOUT"
    UNKNOWN_LOCATION = "UNKNOWN_LOCATION"