"""Celery app and beat schedule for the circulation jobs."""
from .celery import celery_app
from .beat import CELERY_BEAT_SCHEDULE

__all__ = ["CELERY_BEAT_SCHEDULE", "celery_app"]
