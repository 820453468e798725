"""Celery application configuration."""

from celery import Celery

from weather_push.config import get_settings

settings = get_settings()

app = Celery(
    "weather_push",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["weather_push.tasks.broadcast"],
)

# Celery configuration
app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=120,  # 2 minutes max per task
    task_soft_time_limit=90,
    beat_schedule={
        "broadcast-weather-updates": {
            "task": "weather_push.tasks.broadcast.broadcast_weather_updates",
            "schedule": float(settings.broadcast_interval_seconds),
        },
        "cleanup-expired-connections": {
            "task": "weather_push.tasks.broadcast.cleanup_expired_connections",
            "schedule": 3600.0,
        },
    },
)
