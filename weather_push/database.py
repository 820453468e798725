"""Database configuration and session management.

The relational store holds the location catalogue, users' saved locations
and the weather cache. Connection state lives in Redis, not here.
"""

from collections.abc import Generator
from typing import Any

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from weather_push.config import get_settings


def create_db_engine(database_url: str) -> Engine:
    """Create the engine for ``database_url``.

    SQLite connections are shared with the worker threads the weather cache
    runs its queries on.
    """
    if database_url.startswith("sqlite"):
        return create_engine(database_url, connect_args={"check_same_thread": False})
    return create_engine(database_url, pool_pre_ping=True, pool_size=5, max_overflow=10)


engine = create_db_engine(get_settings().database_url)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base: Any = declarative_base()


def get_db() -> Generator[Session, None, None]:
    """Dependency that provides a database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db() -> None:
    """Create the location and weather cache tables if they do not exist."""
    from weather_push import models  # noqa: F401

    Base.metadata.create_all(bind=engine)
