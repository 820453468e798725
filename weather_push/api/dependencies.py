"""FastAPI dependencies: shared service instances, authentication and database."""

from functools import lru_cache
from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from weather_push.config import get_settings
from weather_push.database import SessionLocal, get_db
from weather_push.services.auth import AuthClaims, AuthGate
from weather_push.services.delivery import DeliveryEngine
from weather_push.services.dispatcher import RouteDispatcher
from weather_push.services.errors import AuthError
from weather_push.services.locations import LocationRepository
from weather_push.services.registry import ConnectionRegistry
from weather_push.services.transport import (
    ApiGatewayTransport,
    LocalWebSocketTransport,
    PushTransport,
)
from weather_push.services.weather import WeatherAggregator
from weather_push.services.weather_cache import SqlCacheStore, WeatherCache
from weather_push.services.weather_provider import WeatherProvider

security = HTTPBearer()


# Process-wide services, constructed once and shared by reference


@lru_cache
def get_auth_gate() -> AuthGate:
    """Get the shared authentication gate."""
    return AuthGate()


@lru_cache
def get_registry() -> ConnectionRegistry:
    """Get the shared connection registry client."""
    return ConnectionRegistry.from_url()


@lru_cache
def get_weather_cache() -> WeatherCache:
    """Get the shared weather cache, backed by the relational store."""
    return WeatherCache(SqlCacheStore(SessionLocal))


@lru_cache
def get_aggregator() -> WeatherAggregator:
    """Get the shared weather aggregator."""
    return WeatherAggregator(WeatherProvider(), get_weather_cache())


@lru_cache
def get_local_transport() -> LocalWebSocketTransport:
    """Get the transport for sockets held by the self-hosted gateway."""
    return LocalWebSocketTransport()


@lru_cache
def get_transport() -> PushTransport:
    """Use the managed gateway when configured, else the local gateway."""
    if get_settings().websocket_api_endpoint:
        return ApiGatewayTransport()
    return get_local_transport()


def get_delivery_engine(
    registry: Annotated[ConnectionRegistry, Depends(get_registry)],
) -> DeliveryEngine:
    """Get a delivery engine over the configured transport."""
    return DeliveryEngine(get_transport(), registry)


def get_dispatcher(
    db: Annotated[Session, Depends(get_db)],
    gate: Annotated[AuthGate, Depends(get_auth_gate)],
    registry: Annotated[ConnectionRegistry, Depends(get_registry)],
    aggregator: Annotated[WeatherAggregator, Depends(get_aggregator)],
    delivery: Annotated[DeliveryEngine, Depends(get_delivery_engine)],
) -> RouteDispatcher:
    """Get a dispatcher bound to this request's database session."""
    return RouteDispatcher(gate, registry, aggregator, delivery, LocationRepository(db))


def get_current_claims(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
    gate: Annotated[AuthGate, Depends(get_auth_gate)],
) -> AuthClaims:
    """Get the authenticated caller from the bearer token."""
    try:
        return gate.verify(credentials.credentials)
    except AuthError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        ) from e


def get_location_repository(
    db: Annotated[Session, Depends(get_db)],
) -> LocationRepository:
    """Get location repository bound to this request's session."""
    return LocationRepository(db)
