"""Celery task infrastructure package.

Importing this module wires the configured Celery app; the periodic
circulation jobs live in ``tasks.circulation``.
"""
from .config.celery import celery_app

__all__ = ["celery_app"]
