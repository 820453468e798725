"""Location and saved-location models."""

from sqlalchemy import (
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import relationship

from weather_push.database import Base


class Location(Base):
    """A place the weather provider can be queried for.

    Rows without coordinates are queried by name and country code.
    """

    __tablename__ = "locations"

    location_id = Column(String(64), primary_key=True)
    name = Column(String(255), nullable=False)
    country_code = Column(String(8), nullable=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    timezone = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class UserLocation(Base):
    """A location saved by a user, in display order."""

    __tablename__ = "user_locations"
    __table_args__ = (UniqueConstraint("user_id", "location_id", name="uq_user_location"),)

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    location_id = Column(String(64), ForeignKey("locations.location_id"), nullable=False)
    display_order = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    # Relationships
    location = relationship("Location", lazy="joined")
