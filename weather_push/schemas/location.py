"""Saved location schemas."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class SavedLocationCreate(BaseModel):
    """Save a known location for the current user."""

    location_id: str = Field(..., min_length=1, max_length=64)


class SavedLocationResponse(BaseModel):
    """Saved location response."""

    model_config = ConfigDict(from_attributes=True)

    location_id: str
    name: str
    country_code: str | None
    latitude: float | None
    longitude: float | None
    display_order: int
    created_at: datetime | None = None


class LocationOrderUpdate(BaseModel):
    """New display order: saved location ids, first to last."""

    location_ids: list[str]
