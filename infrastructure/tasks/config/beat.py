"""Celery beat schedule for the circulation jobs."""
from __future__ import annotations

from celery.schedules import crontab

CELERY_BEAT_SCHEDULE = {
    "loans-mark-overdue": {
        "task": "loans.mark_overdue",
        "schedule": crontab(minute=0),  # hourly
    },
    "payments-expire-stale": {
        "task": "payments.expire_stale",
        "schedule": crontab(minute="*/15"),
    },
}
