"""
借阅领域事件。

由借阅服务收集的普通 dataclass，如何处理由应用层决定
（目前写日志）。
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional
import uuid


@dataclass
class LoanEvent:
    loan_id: Optional[int]
    borrower_id: int
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class LoanIssued(LoanEvent):
    copy_id: Optional[int] = None
    due_at: Optional[datetime] = None


@dataclass
class LoanRenewed(LoanEvent):
    renewal_count: int = 0
    due_at: Optional[datetime] = None


@dataclass
class LoanReturned(LoanEvent):
    overdue_days: int = 0
    fine_amount: str = "0"


@dataclass
class LoanMarkedLost(LoanEvent):
    copy_id: Optional[int] = None


@dataclass
class LoanBecameOverdue(LoanEvent):
    pass


@dataclass
class FineSettled(LoanEvent):
    amount: str = "0"
    method: str = ""


@dataclass
class FineWaived(LoanEvent):
    amount: str = "0"
