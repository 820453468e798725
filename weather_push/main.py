"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from weather_push.api import events, locations, websocket
from weather_push.api.dependencies import get_registry
from weather_push.config import get_settings

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle application startup and shutdown events."""
    yield
    # Shutdown: close the registry connection if one was opened
    if get_registry.cache_info().currsize:
        await get_registry().close()


app = FastAPI(
    title="Weather Push API",
    description="Real-time weather updates over persistent push channels",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware for development clients of the locations API
if settings.is_development:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

# Register routers
app.include_router(events.router)
app.include_router(locations.router)
app.include_router(websocket.router)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "environment": settings.environment}
