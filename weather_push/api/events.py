"""Channel event endpoint for the managed push gateway's HTTP integration."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from weather_push.api.dependencies import get_dispatcher
from weather_push.schemas.events import ChannelEvent
from weather_push.services.dispatcher import RouteDispatcher

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1", tags=["events"])


@router.post("/events")
async def handle_channel_event(
    event: ChannelEvent,
    dispatcher: Annotated[RouteDispatcher, Depends(get_dispatcher)],
) -> JSONResponse:
    """Handle one connect, disconnect or message event.

    The response mirrors the dispatcher result: ``{"statusCode", "body"}``,
    with the HTTP status set to ``statusCode``.
    """
    result = await dispatcher.dispatch(event)
    return JSONResponse(
        status_code=result.status_code,
        content=result.model_dump(by_alias=True, mode="json"),
    )
