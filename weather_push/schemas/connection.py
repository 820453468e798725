"""Connection registry record schema."""

from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from weather_push.models.enums import ConnectionStatus


class ConnectionRecord(BaseModel):
    """One active push channel, stored under its connection id.

    Serialized with camelCase keys (``connectionId``, ``userId``,
    ``timestamp``, ``ttl``, ``subscribedLocationIds``, ``status``,
    ``serviceType``). ``timestamp`` is epoch milliseconds, ``ttl`` epoch seconds.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    connection_id: str
    user_id: str
    timestamp: int
    ttl: int
    subscribed_location_ids: list[str] = Field(default_factory=list)
    status: ConnectionStatus = ConnectionStatus.CONNECTED
    service_type: str = "weather-updates"

    @property
    def established_at(self) -> datetime:
        return datetime.fromtimestamp(self.timestamp / 1000, UTC)

    @property
    def ttl_expiry(self) -> datetime:
        return datetime.fromtimestamp(self.ttl, UTC)

    def is_active(self, now: datetime) -> bool:
        """A record is active until its TTL passes."""
        return self.ttl > now.timestamp()

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)
