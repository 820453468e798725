#!/usr/bin/env python3
"""Seed demo locations for local development.

Creates a handful of well-known locations, saves some of them for a demo
user and prints a token for that user, ready to paste into a WebSocket
client.

Usage:
    # From project root:
    JWT_SECRET=dev-secret python scripts/seed_demo_data.py

    # Then connect:
    wscat -c "ws://localhost:8000/api/v1/ws?token=<printed token>"
"""

import os
import sys

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from weather_push.database import SessionLocal, init_db
from weather_push.models import Location, UserLocation
from weather_push.services.auth import create_access_token

DEMO_USER_ID = "demo-user"
DEMO_USERNAME = "demo"

DEMO_LOCATIONS = [
    Location(
        location_id="london-gb",
        name="London",
        country_code="GB",
        latitude=51.5072,
        longitude=-0.1276,
        timezone="Europe/London",
    ),
    Location(
        location_id="paris-fr",
        name="Paris",
        country_code="FR",
        latitude=48.8566,
        longitude=2.3522,
        timezone="Europe/Paris",
    ),
    Location(
        location_id="new-york-us",
        name="New York",
        country_code="US",
        latitude=40.7128,
        longitude=-74.006,
        timezone="America/New_York",
    ),
    Location(
        location_id="tokyo-jp",
        name="Tokyo",
        country_code="JP",
        latitude=35.6762,
        longitude=139.6503,
        timezone="Asia/Tokyo",
    ),
    # No coordinates: queried by name and country
    Location(location_id="reykjavik-is", name="Reykjavik", country_code="IS"),
]

# Saved for the demo user, in display order
DEMO_SAVED = ["london-gb", "tokyo-jp", "reykjavik-is"]


def seed_demo_data():
    """Seed the database with demo locations and a demo user's saved list."""
    init_db()
    session = SessionLocal()

    try:
        print("Creating locations...")
        for location in DEMO_LOCATIONS:
            session.merge(location)
        session.flush()

        # Replace the demo user's saved list
        session.query(UserLocation).filter_by(user_id=DEMO_USER_ID).delete()
        for position, location_id in enumerate(DEMO_SAVED):
            session.add(
                UserLocation(user_id=DEMO_USER_ID, location_id=location_id, display_order=position)
            )

        session.commit()
        print("Demo data seeded successfully!")
        print(f"Token for {DEMO_USERNAME}: {create_access_token(DEMO_USER_ID, DEMO_USERNAME)}")

    except Exception as e:
        session.rollback()
        print(f"Error seeding demo data: {e}")
        raise
    finally:
        session.close()


if __name__ == "__main__":
    seed_demo_data()
