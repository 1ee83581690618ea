"""Common base task for Celery jobs"""
from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable

from celery import Task
from core.logging_config import get_logger

logger = get_logger(__name__)


class BaseTask(Task):
    """Unified success / failure logging for circulation jobs"""

    def on_failure(self, exc, task_id, args, kwargs, einfo):  # type: ignore[override]
        logger.error(
            "celery_task_failure",
            task_id=task_id,
            task_name=self.name,
            args=args,
            kwargs=kwargs,
            exc=str(exc),
        )
        super().on_failure(exc, task_id, args, kwargs, einfo)

    def on_success(self, retval, task_id, args, kwargs):  # type: ignore[override]
        logger.info(
            "celery_task_success",
            task_id=task_id,
            task_name=self.name,
            result=retval,
        )
        super().on_success(retval, task_id, args, kwargs)


def run_with_container(job: Callable[[Any], Awaitable[Any]]) -> Any:
    """
    Run ``job(container)`` on a fresh event loop.

    Every task gets its own loop through asyncio.run, so the pooled database
    connections are disposed before the loop closes.
    """
    from infrastructure.container import build_container
    from infrastructure.database import engine

    async def _run():
        container = await build_container()
        try:
            return await job(container)
        finally:
            await container.aclose()
            await engine.dispose()

    return asyncio.run(_run())
