"""Self-hosted WebSocket gateway for local development.

Plays the role of the managed push gateway: assigns connection ids, turns
socket lifecycle and frames into channel events, and holds the sockets the
local transport delivers to.
"""

import json
import logging
import secrets

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from weather_push.api.dependencies import (
    get_aggregator,
    get_auth_gate,
    get_local_transport,
    get_registry,
)
from weather_push.database import SessionLocal
from weather_push.schemas.events import ChannelEvent, DispatchResponse, RequestContext
from weather_push.schemas.push import ErrorMessage, encode_push
from weather_push.services.delivery import DeliveryEngine
from weather_push.services.dispatcher import Route, RouteDispatcher
from weather_push.services.locations import LocationRepository

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1", tags=["websocket"])


def frame_route(text: str) -> str:
    """Route key for a client frame, taken from its ``action`` field."""
    try:
        payload = json.loads(text)
    except json.JSONDecodeError:
        return "$default"
    if isinstance(payload, dict) and isinstance(payload.get("action"), str):
        return payload["action"]
    return "$default"


def make_event(
    route_key: str,
    connection_id: str,
    body: str | None = None,
    query: dict[str, str] | None = None,
) -> ChannelEvent:
    return ChannelEvent(
        request_context=RequestContext(route_key=route_key, connection_id=connection_id),
        query_string_parameters=query,
        body=body,
    )


async def send_error(websocket: WebSocket, response: DispatchResponse) -> None:
    body = response.body
    message = ErrorMessage(message=body.get("message", "Error"), code=body.get("code"))
    await websocket.send_text(encode_push(message).decode("utf-8"))


@router.websocket("/ws")
async def websocket_gateway(
    websocket: WebSocket,
    token: str = Query(...),
    user_id: str | None = Query(None, alias="userId"),
) -> None:
    """WebSocket endpoint translating socket traffic into channel events.

    Authentication via token query parameter (WebSocket doesn't support headers).
    """
    # Manual DB session for WebSocket (can't use Depends normally)
    db = SessionLocal()
    transport = get_local_transport()
    registry = get_registry()
    dispatcher = RouteDispatcher(
        get_auth_gate(),
        registry,
        get_aggregator(),
        DeliveryEngine(transport, registry),
        LocationRepository(db),
    )
    connection_id = secrets.token_urlsafe(12)
    connected = False

    try:
        await websocket.accept()
        transport.register(connection_id, websocket)

        query = {"token": token}
        if user_id is not None:
            query["userId"] = user_id
        response = await dispatcher.dispatch(make_event("$connect", connection_id, query=query))
        if response.status_code != 200:
            await send_error(websocket, response)
            await websocket.close(code=4001 if response.status_code == 401 else 4000)
            return

        connected = True
        logger.info(f"WebSocket connected: connection={connection_id}")

        while True:
            text = await websocket.receive_text()
            route_key = frame_route(text)
            response = await dispatcher.dispatch(make_event(route_key, connection_id, body=text))
            if response.status_code != 200:
                await send_error(websocket, response)
            elif route_key == Route.LOGOUT:
                connected = False
                await websocket.close(code=1000)
                break

    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected: connection={connection_id}")
    except Exception as e:
        logger.error(f"WebSocket error: {e}", exc_info=True)
    finally:
        transport.unregister(connection_id)
        if connected:
            await dispatcher.dispatch(make_event("$disconnect", connection_id))
        db.close()
