"""Data access for locations and users' saved locations."""

import logging

from sqlalchemy import func
from sqlalchemy.orm import Session

from weather_push.models.location import Location, UserLocation
from weather_push.schemas.weather import WeatherLocation

logger = logging.getLogger(__name__)


def to_weather_location(location: Location) -> WeatherLocation:
    """Build the value type handed to the weather services."""
    return WeatherLocation(
        location_id=location.location_id,
        name=location.name,
        country_code=location.country_code,
        latitude=location.latitude,
        longitude=location.longitude,
        timezone=location.timezone,
    )


class LocationRepository:
    """Reads locations and manages per-user saved locations."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def saved_rows(self, user_id: str) -> list[UserLocation]:
        return (
            self.db.query(UserLocation)
            .filter(UserLocation.user_id == str(user_id))
            .order_by(UserLocation.display_order, UserLocation.created_at, UserLocation.id)
            .all()
        )

    def saved_for_user(self, user_id: str) -> list[WeatherLocation]:
        """A user's saved locations in display order."""
        return [to_weather_location(row.location) for row in self.saved_rows(user_id)]

    def get_many(self, location_ids: list[str]) -> dict[str, WeatherLocation]:
        """Look up locations by id. Unknown ids are absent from the result."""
        if not location_ids:
            return {}
        rows = self.db.query(Location).filter(Location.location_id.in_(location_ids)).all()
        return {row.location_id: to_weather_location(row) for row in rows}

    def get_saved(self, user_id: str, location_id: str) -> UserLocation | None:
        return (
            self.db.query(UserLocation)
            .filter(UserLocation.user_id == str(user_id), UserLocation.location_id == location_id)
            .first()
        )

    def add_saved(self, user_id: str, location_id: str) -> UserLocation:
        """Append a location to the end of the user's saved list.

        Callers must check that the location exists and is not already saved.
        """
        max_order = (
            self.db.query(func.max(UserLocation.display_order))
            .filter(UserLocation.user_id == str(user_id))
            .scalar()
        )
        saved = UserLocation(
            user_id=str(user_id),
            location_id=location_id,
            display_order=(max_order + 1) if max_order is not None else 0,
        )
        self.db.add(saved)
        self.db.commit()
        self.db.refresh(saved)
        logger.info(f"User {user_id} saved location {location_id}")
        return saved

    def remove_saved(self, user_id: str, location_id: str) -> bool:
        saved = self.get_saved(user_id, location_id)
        if saved is None:
            return False
        self.db.delete(saved)
        self.db.commit()
        logger.info(f"User {user_id} removed location {location_id}")
        return True

    def reorder_saved(self, user_id: str, location_ids: list[str]) -> list[UserLocation]:
        """Apply a new display order; ids not listed keep their relative order after."""
        rows = {row.location_id: row for row in self.saved_rows(user_id)}
        ordered = [location_id for location_id in location_ids if location_id in rows]
        ordered += [location_id for location_id in rows if location_id not in ordered]
        for position, location_id in enumerate(ordered):
            rows[location_id].display_order = position
        self.db.commit()
        return self.saved_rows(user_id)
