"""Periodic circulation jobs: overdue sweep and stale payment expiry"""
from __future__ import annotations

from celery import shared_task

from ..utils.base_task import BaseTask, run_with_container
from core.logging_config import get_logger

logger = get_logger(__name__)


@shared_task(
    name="loans.mark_overdue",
    bind=True,
    base=BaseTask,
    max_retries=3,
    default_retry_delay=60,
)
def mark_overdue(self) -> int:
    """Flag active loans past their due date as overdue."""

    async def _job(container):
        return await container.circulation.mark_overdue()

    try:
        flagged = run_with_container(_job)
    except Exception as exc:
        logger.error("loans_mark_overdue_failed", error=str(exc))
        raise self.retry(exc=exc)
    logger.info("loans_mark_overdue_done", flagged=flagged)
    return flagged


@shared_task(
    name="payments.expire_stale",
    bind=True,
    base=BaseTask,
    max_retries=3,
    default_retry_delay=60,
)
def expire_stale_payments(self) -> int:
    """Cancel pending payments whose callback never arrived."""

    async def _job(container):
        return await container.payments.expire_stale()

    try:
        expired = run_with_container(_job)
    except Exception as exc:
        logger.error("payments_expire_stale_failed", error=str(exc))
        raise self.retry(exc=exc)
    logger.info("payments_expire_stale_done", expired=expired)
    return expired
