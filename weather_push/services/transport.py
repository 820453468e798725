"""Push transports: how a message reaches one connection's endpoint.

A transport raises ``EndpointGone`` when the endpoint is permanently
unreachable, ``UpstreamTransient`` when a retry may succeed and
``TransportError`` otherwise.
"""

import asyncio
import logging
from typing import Protocol

import boto3
from botocore.config import Config
from botocore.exceptions import (
    ClientError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)
from fastapi import WebSocket
from starlette.websockets import WebSocketDisconnect

from weather_push.config import get_settings
from weather_push.services.errors import EndpointGone, TransportError, UpstreamTransient

logger = logging.getLogger(__name__)


class PushTransport(Protocol):
    """Anything that can post bytes to a connection id."""

    async def post_to_connection(self, connection_id: str, data: bytes) -> None: ...


class ApiGatewayTransport:
    """Posts to connections through the API Gateway Management API."""

    THROTTLING_CODES = frozenset(
        {"ThrottlingException", "LimitExceededException", "TooManyRequestsException"}
    )

    def __init__(self, endpoint_url: str | None = None, client=None) -> None:
        settings = get_settings()
        if client is None:
            endpoint_url = endpoint_url or settings.websocket_api_endpoint
            if not endpoint_url:
                raise ValueError("WEBSOCKET_API_ENDPOINT is required for the API Gateway transport")
            client = boto3.client(
                "apigatewaymanagementapi",
                endpoint_url=endpoint_url,
                region_name=settings.aws_region,
                # Retries are handled by the delivery engine
                config=Config(retries={"max_attempts": 1}, connect_timeout=10, read_timeout=30),
            )
        self._client = client

    async def post_to_connection(self, connection_id: str, data: bytes) -> None:
        try:
            await asyncio.to_thread(
                self._client.post_to_connection, ConnectionId=connection_id, Data=data
            )
        except ClientError as e:
            status = e.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
            code = e.response.get("Error", {}).get("Code", "")
            if status == 410 or code == "GoneException":
                raise EndpointGone(f"Connection {connection_id} is gone") from e
            if code in self.THROTTLING_CODES or status == 429 or (status or 0) >= 500:
                raise UpstreamTransient(f"Push to {connection_id} failed: {code or status}") from e
            raise TransportError(f"Push to {connection_id} rejected: {code or status}") from e
        except (EndpointConnectionError, ConnectTimeoutError, ReadTimeoutError) as e:
            raise UpstreamTransient(f"Push to {connection_id} failed: {e}") from e


class LocalWebSocketTransport:
    """Delivers to WebSockets held by this process (self-hosted gateway)."""

    def __init__(self) -> None:
        self._sockets: dict[str, WebSocket] = {}

    def register(self, connection_id: str, websocket: WebSocket) -> None:
        self._sockets[connection_id] = websocket

    def unregister(self, connection_id: str) -> None:
        self._sockets.pop(connection_id, None)

    def __contains__(self, connection_id: str) -> bool:
        return connection_id in self._sockets

    async def post_to_connection(self, connection_id: str, data: bytes) -> None:
        websocket = self._sockets.get(connection_id)
        if websocket is None:
            raise EndpointGone(f"Connection {connection_id} is gone")
        try:
            await websocket.send_text(data.decode("utf-8"))
        except (WebSocketDisconnect, RuntimeError) as e:
            # Starlette raises RuntimeError when sending on a closed socket
            self.unregister(connection_id)
            raise EndpointGone(f"Connection {connection_id} is gone") from e
