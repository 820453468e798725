"""Saved location API endpoints."""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status

from weather_push.api.dependencies import get_current_claims, get_location_repository
from weather_push.models.location import UserLocation
from weather_push.schemas.location import (
    LocationOrderUpdate,
    SavedLocationCreate,
    SavedLocationResponse,
)
from weather_push.services.auth import AuthClaims
from weather_push.services.locations import LocationRepository

router = APIRouter(prefix="/api/v1/locations", tags=["locations"])


def to_response(saved: UserLocation) -> SavedLocationResponse:
    location = saved.location
    return SavedLocationResponse(
        location_id=saved.location_id,
        name=location.name,
        country_code=location.country_code,
        latitude=location.latitude,
        longitude=location.longitude,
        display_order=saved.display_order,
        created_at=saved.created_at,
    )


@router.get("", response_model=list[SavedLocationResponse])
def list_saved_locations(
    claims: Annotated[AuthClaims, Depends(get_current_claims)],
    repo: Annotated[LocationRepository, Depends(get_location_repository)],
):
    """List the current user's saved locations in display order."""
    return [to_response(saved) for saved in repo.saved_rows(claims.user_id)]


@router.post("", response_model=SavedLocationResponse, status_code=status.HTTP_201_CREATED)
def add_saved_location(
    data: SavedLocationCreate,
    claims: Annotated[AuthClaims, Depends(get_current_claims)],
    repo: Annotated[LocationRepository, Depends(get_location_repository)],
):
    """Save a location for the current user."""
    if data.location_id not in repo.get_many([data.location_id]):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Location not found")
    if repo.get_saved(claims.user_id, data.location_id):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Location already exists for user",
        )
    return to_response(repo.add_saved(claims.user_id, data.location_id))


@router.put("/order", response_model=list[SavedLocationResponse])
def update_location_order(
    data: LocationOrderUpdate,
    claims: Annotated[AuthClaims, Depends(get_current_claims)],
    repo: Annotated[LocationRepository, Depends(get_location_repository)],
):
    """Reorder the current user's saved locations."""
    return [to_response(saved) for saved in repo.reorder_saved(claims.user_id, data.location_ids)]


@router.delete("/{location_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_saved_location(
    location_id: str,
    claims: Annotated[AuthClaims, Depends(get_current_claims)],
    repo: Annotated[LocationRepository, Depends(get_location_repository)],
):
    """Remove a saved location."""
    if not repo.remove_saved(claims.user_id, location_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Saved location not found"
        )
