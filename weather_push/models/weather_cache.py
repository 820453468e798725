"""Weather cache model."""

from sqlalchemy import JSON, Column, DateTime, String

from weather_push.database import Base


class WeatherCacheEntry(Base):
    """Latest current-conditions snapshot per location.

    One row per location; ``last_updated`` is when the snapshot was fetched
    from the provider, which is what freshness is measured against.
    """

    __tablename__ = "weather_cache"

    location_id = Column(String(64), primary_key=True)
    weather_data = Column(JSON, nullable=False)
    last_updated = Column(DateTime(timezone=True), nullable=False)
