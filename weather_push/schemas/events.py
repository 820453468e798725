"""Inbound channel event and synchronous response schemas."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class RequestContext(BaseModel):
    """Routing information attached by the push gateway."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    route_key: str = Field(alias="routeKey")
    connection_id: str = Field(alias="connectionId")


class ChannelEvent(BaseModel):
    """One inbound event: connect, disconnect, or a client message."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    request_context: RequestContext = Field(alias="requestContext")
    query_string_parameters: dict[str, str] | None = Field(
        default=None, alias="queryStringParameters"
    )
    body: str | None = None

    @property
    def route_key(self) -> str:
        return self.request_context.route_key

    @property
    def connection_id(self) -> str:
        return self.request_context.connection_id

    def query_param(self, name: str) -> str | None:
        return (self.query_string_parameters or {}).get(name)


class MessageBody(BaseModel):
    """JSON body of a client message on an established connection."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    action: str | None = None
    token: str | None = None
    location_id: str | None = Field(default=None, alias="locationId")
    locations: list[str] | None = None

    @field_validator("locations")
    @classmethod
    def strip_blank_locations(cls, value: list[str] | None) -> list[str] | None:
        if value is None:
            return None
        return [location_id for location_id in value if location_id.strip()]

    def requested_location_ids(self) -> list[str]:
        """Location ids named by the message, in order and without duplicates."""
        ids = list(self.locations or [])
        if self.location_id:
            ids.append(self.location_id)
        return list(dict.fromkeys(ids))


class DispatchResponse(BaseModel):
    """Synchronous response returned to the gateway for one event."""

    model_config = ConfigDict(populate_by_name=True)

    status_code: int = Field(alias="statusCode")
    body: dict[str, Any]

    @classmethod
    def of(cls, status_code: int, message: str, **fields: Any) -> "DispatchResponse":
        return cls(status_code=status_code, body={"message": message, **fields})
