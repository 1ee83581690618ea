"""
Domain event logging

Events collected by domain services are emitted as structured log lines after
the unit of work commits.
"""
from __future__ import annotations

import re
from dataclasses import asdict
from datetime import datetime
from typing import Iterable

from core.logging_config import get_logger


logger = get_logger("domain.events")

_CAMEL = re.compile(r"(?<!^)(?=[A-Z])")


def event_name(event: object) -> str:
    """LoanIssued -> loan_issued"""
    return _CAMEL.sub("_", type(event).__name__).lower()


def log_domain_events(events: Iterable[object]) -> None:
    for event in events:
        fields = {
            k: (v.isoformat() if isinstance(v, datetime) else v)
            for k, v in asdict(event).items()
        }
        logger.info(event_name(event), **fields)
