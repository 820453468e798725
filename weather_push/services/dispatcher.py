"""Route dispatcher: turns channel events into registry, weather and push work."""

import json
import logging
from collections.abc import Awaitable, Callable
from enum import StrEnum

from pydantic import ValidationError as PydanticValidationError

from weather_push.schemas.connection import ConnectionRecord
from weather_push.schemas.events import ChannelEvent, DispatchResponse, MessageBody
from weather_push.schemas.push import ErrorMessage, NoLocationsMessage, WeatherUpdateMessage
from weather_push.schemas.weather import WeatherResult
from weather_push.services.auth import AuthClaims, AuthGate
from weather_push.services.delivery import DeliveryEngine
from weather_push.services.errors import (
    AuthError,
    ConnectionNotRegistered,
    IdentityMismatch,
    UpstreamTransient,
    ValidationError,
)
from weather_push.services.locations import LocationRepository
from weather_push.services.registry import ConnectionRegistry
from weather_push.services.weather import WeatherAggregator

logger = logging.getLogger(__name__)


class ConnectionState(StrEnum):
    """Connection states as seen by the dispatcher."""

    DISCONNECTED = "DISCONNECTED"
    CONNECTED = "CONNECTED"


class Route(StrEnum):
    """Inbound route identifiers."""

    CONNECT = "connect"
    DISCONNECT = "disconnect"
    GET_WEATHER = "getWeather"
    SUBSCRIBE = "subscribe"
    UNSUBSCRIBE = "unsubscribe"
    LOGOUT = "logout"


# Gateway spellings of the lifecycle routes
ROUTE_ALIASES = {"$connect": Route.CONNECT, "$disconnect": Route.DISCONNECT}

# route -> (state it applies to, state after success)
TRANSITIONS: dict[Route, tuple[ConnectionState, ConnectionState]] = {
    Route.CONNECT: (ConnectionState.DISCONNECTED, ConnectionState.CONNECTED),
    Route.DISCONNECT: (ConnectionState.CONNECTED, ConnectionState.DISCONNECTED),
    Route.GET_WEATHER: (ConnectionState.CONNECTED, ConnectionState.CONNECTED),
    Route.SUBSCRIBE: (ConnectionState.CONNECTED, ConnectionState.CONNECTED),
    Route.UNSUBSCRIBE: (ConnectionState.CONNECTED, ConnectionState.CONNECTED),
    Route.LOGOUT: (ConnectionState.CONNECTED, ConnectionState.DISCONNECTED),
}


def resolve_route(route_key: str | None) -> Route | None:
    """Map a gateway route key to a route, or None if it is not handled."""
    if not route_key:
        return None
    if route_key in ROUTE_ALIASES:
        return ROUTE_ALIASES[route_key]
    try:
        return Route(route_key)
    except ValueError:
        return None


def parse_message(event: ChannelEvent) -> MessageBody:
    """Parse a client message body.

    Raises:
        ValidationError: Body missing, not JSON, or of the wrong shape
    """
    if not event.body:
        raise ValidationError("Message body is required")
    try:
        raw = json.loads(event.body)
    except json.JSONDecodeError as e:
        raise ValidationError("Message body must be valid JSON") from e
    if not isinstance(raw, dict):
        raise ValidationError("Message body must be a JSON object")
    try:
        return MessageBody.model_validate(raw)
    except PydanticValidationError as e:
        fields = ", ".join(".".join(str(part) for part in err["loc"]) for err in e.errors())
        raise ValidationError(f"Invalid message fields: {fields}") from e


class RouteDispatcher:
    """Handles one inbound event per call.

    Authorization always happens before any registry mutation or weather
    lookup. Every outcome is returned as a ``DispatchResponse``; nothing is
    raised to the caller.
    """

    def __init__(
        self,
        gate: AuthGate,
        registry: ConnectionRegistry,
        aggregator: WeatherAggregator,
        delivery: DeliveryEngine,
        locations: LocationRepository,
    ) -> None:
        self.gate = gate
        self.registry = registry
        self.aggregator = aggregator
        self.delivery = delivery
        self.locations = locations
        self._handlers: dict[Route, Callable[[ChannelEvent], Awaitable[DispatchResponse]]] = {
            Route.CONNECT: self.handle_connect,
            Route.DISCONNECT: self.handle_disconnect,
            Route.GET_WEATHER: self.handle_get_weather,
            Route.SUBSCRIBE: self.handle_subscribe,
            Route.UNSUBSCRIBE: self.handle_unsubscribe,
            Route.LOGOUT: self.handle_logout,
        }

    async def dispatch(self, event: ChannelEvent) -> DispatchResponse:
        """Route an event to its handler and map failures to responses."""
        connection_id = event.connection_id
        route = resolve_route(event.route_key)
        if route is None:
            logger.info(f"Unknown route {event.route_key!r} on connection {connection_id}")
            return DispatchResponse.of(400, f"Unknown route: {event.route_key}")

        try:
            response = await self._handlers[route](event)
            if response.status_code == 200:
                from_state, to_state = TRANSITIONS[route]
                logger.debug(f"{connection_id}: {route} {from_state} -> {to_state}")
                response.body["state"] = to_state.value
            return response
        except AuthError as e:
            logger.info(f"Rejected {route} on {connection_id}: {e}")
            return DispatchResponse.of(401, str(e), code=e.code)
        except ValidationError as e:
            return DispatchResponse.of(400, str(e), code=e.code)
        except ConnectionNotRegistered as e:
            return DispatchResponse.of(410, str(e), code=e.code)
        except UpstreamTransient as e:
            logger.error(f"Upstream failure handling {route} on {connection_id}: {e}")
            await self._notify_error(connection_id, "Service temporarily unavailable", e.code)
            return DispatchResponse.of(500, "Service temporarily unavailable", code=e.code)
        except Exception as e:
            logger.error(f"Error handling {route} on {connection_id}: {e}", exc_info=True)
            await self._notify_error(connection_id, "Internal server error")
            return DispatchResponse.of(500, "Internal server error")

    async def _notify_error(
        self, connection_id: str, message: str, code: str | None = None
    ) -> None:
        """Best-effort error push; its own failures are logged, never raised."""
        try:
            if await self.registry.get(connection_id) is None:
                return
            await self.delivery.send(connection_id, ErrorMessage(message=message, code=code))
        except Exception as e:
            logger.error(f"Failed to notify {connection_id} of error: {e}")

    # Helpers

    async def _require_connection(self, connection_id: str, claims: AuthClaims) -> ConnectionRecord:
        record = await self.registry.get(connection_id)
        if record is None:
            raise ConnectionNotRegistered("Connection is no longer registered")
        if record.user_id != claims.user_id:
            raise IdentityMismatch("Connection belongs to a different user")
        return record

    async def _weather_for_ids(self, location_ids: list[str]) -> list[WeatherResult]:
        known = self.locations.get_many(location_ids)
        return await self.aggregator.resolve_ids(location_ids, known)

    # Handlers

    async def handle_connect(self, event: ChannelEvent) -> DispatchResponse:
        claims = self.gate.verify(event.query_param("token"))
        claimed_user_id = event.query_param("userId")
        if claimed_user_id is not None and claimed_user_id != claims.user_id:
            raise IdentityMismatch("userId does not match token")

        await self.registry.create(event.connection_id, claims.user_id)

        saved = self.locations.saved_for_user(claims.user_id)
        if saved:
            results = await self.aggregator.resolve(saved)
            message = WeatherUpdateMessage(data=results)
        else:
            message = NoLocationsMessage()
        outcome = await self.delivery.send(event.connection_id, message, remove_if_gone=False)

        return DispatchResponse.of(
            200, "Connected", userId=claims.user_id, locations=len(saved), delivery=outcome.status
        )

    async def handle_disconnect(self, event: ChannelEvent) -> DispatchResponse:
        await self.registry.remove(event.connection_id)
        return DispatchResponse.of(200, "Disconnected")

    async def handle_get_weather(self, event: ChannelEvent) -> DispatchResponse:
        body = parse_message(event)
        claims = self.gate.verify(body.token)
        await self._require_connection(event.connection_id, claims)

        if not await self.registry.refresh_ttl(event.connection_id):
            raise ConnectionNotRegistered("Connection is no longer registered")

        requested = body.requested_location_ids()
        if requested:
            results = await self._weather_for_ids(requested)
        else:
            saved = self.locations.saved_for_user(claims.user_id)
            if not saved:
                outcome = await self.delivery.send(event.connection_id, NoLocationsMessage())
                return DispatchResponse.of(
                    200, "No locations", locations=0, delivery=outcome.status
                )
            results = await self.aggregator.resolve(saved)

        outcome = await self.delivery.send(event.connection_id, WeatherUpdateMessage(data=results))
        return DispatchResponse.of(
            200, "Weather sent", locations=len(results), delivery=outcome.status
        )

    async def handle_subscribe(self, event: ChannelEvent) -> DispatchResponse:
        body = parse_message(event)
        claims = self.gate.verify(body.token)
        location_ids = body.requested_location_ids()
        if not location_ids:
            raise ValidationError("locationId or locations is required")
        await self._require_connection(event.connection_id, claims)

        if not await self.registry.set_subscriptions(event.connection_id, location_ids):
            raise ConnectionNotRegistered("Connection is no longer registered")

        results = await self._weather_for_ids(location_ids)
        outcome = await self.delivery.send(event.connection_id, WeatherUpdateMessage(data=results))
        return DispatchResponse.of(
            200, "Subscribed", locationIds=location_ids, delivery=outcome.status
        )

    async def handle_unsubscribe(self, event: ChannelEvent) -> DispatchResponse:
        body = parse_message(event)
        claims = self.gate.verify(body.token)
        await self._require_connection(event.connection_id, claims)

        if not await self.registry.set_subscriptions(event.connection_id, []):
            raise ConnectionNotRegistered("Connection is no longer registered")
        return DispatchResponse.of(200, "Unsubscribed")

    async def handle_logout(self, event: ChannelEvent) -> DispatchResponse:
        body = parse_message(event)
        claims = self.gate.verify(body.token)
        current = await self.registry.get(event.connection_id)
        if current is not None and current.user_id != claims.user_id:
            raise IdentityMismatch("Connection belongs to a different user")

        removed = await self.registry.remove_for_user(claims.user_id)
        if current is not None and event.connection_id not in removed:
            await self.registry.remove(event.connection_id)
            removed.append(event.connection_id)
        return DispatchResponse.of(200, "Logged out", removedConnections=len(removed))
