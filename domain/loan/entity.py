"""
借阅实体 - 借阅聚合根及其内嵌罚金
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from domain.common.exceptions import (
    DomainValidationException,
    AlreadyReturnedException,
    LoanNotActiveException,
    RenewalLimitExceededException,
    NoPendingFineException,
    FineNotPendingException,
)


class LoanStatus(str, Enum):
    ACTIVE = "active"
    RETURNED = "returned"
    OVERDUE = "overdue"
    LOST = "lost"


class FineStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    WAIVED = "waived"


# 占用副本的借阅状态
OPEN_LOAN_STATUSES = (LoanStatus.ACTIVE, LoanStatus.OVERDUE)


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@dataclass
class Fine:
    """
    借阅内嵌的逾期罚金。

    状态只能 pending -> paid 或 pending -> waived。金额在归还核算时写入，
    且仅在 pending 时可改。
    """

    amount: Decimal = field(default_factory=lambda: Decimal("0"))
    status: FineStatus = FineStatus.PENDING
    paid_at: Optional[datetime] = None
    payment_method: Optional[str] = None
    notes: Optional[str] = None

    def __post_init__(self):
        if self.amount is None:
            self.amount = Decimal("0")
        if self.amount < 0:
            raise DomainValidationException(f"Fine amount must not be negative: {self.amount}", field="amount")
        self.paid_at = _ensure_utc(self.paid_at)

    @property
    def is_outstanding(self) -> bool:
        return self.status == FineStatus.PENDING and self.amount > 0


@dataclass
class Loan:
    """
    借阅聚合根。

    业务规则：
    1. active -> returned | overdue | lost; overdue -> returned | lost
    2. 续借不改变状态，只推后到期日
    3. 重复归还直接失败，不会再次释放副本
    """

    id: Optional[int]
    borrower_id: int
    book_id: int
    copy_id: int
    issued_at: datetime
    due_at: datetime
    status: LoanStatus = LoanStatus.ACTIVE
    returned_at: Optional[datetime] = None
    renewal_count: int = 0
    last_renewed_at: Optional[datetime] = None
    fine: Fine = field(default_factory=Fine)
    notes: Optional[str] = None
    created_by: Optional[int] = None
    updated_by: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        self.issued_at = _ensure_utc(self.issued_at)
        self.due_at = _ensure_utc(self.due_at)
        self.returned_at = _ensure_utc(self.returned_at)
        self.last_renewed_at = _ensure_utc(self.last_renewed_at)
        self.created_at = _ensure_utc(self.created_at)
        self.updated_at = _ensure_utc(self.updated_at)
        if self.fine is None:
            self.fine = Fine()
        if self.due_at < self.issued_at:
            raise DomainValidationException("Due date must not precede issue date", field="due_at")

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_LOAN_STATUSES

    def overdue_days(self, at: datetime) -> int:
        """截至 ``at`` 的逾期天数，不足一天按一天计"""
        late = _ensure_utc(at) - self.due_at
        if late <= timedelta(0):
            return 0
        day = timedelta(days=1)
        return late // day + (1 if late % day else 0)

    def _touch(self, actor: Optional[int], at: datetime) -> None:
        self.updated_by = actor
        self.updated_at = at

    def renew(self, duration: timedelta, max_renewals: int, at: datetime, actor: Optional[int] = None) -> None:
        if self.status != LoanStatus.ACTIVE:
            raise LoanNotActiveException(self.id, self.status.value)
        if self.renewal_count >= max_renewals:
            raise RenewalLimitExceededException(self.id, max_renewals)
        self.due_at = at + duration
        self.renewal_count += 1
        self.last_renewed_at = at
        self._touch(actor, at)

    def mark_returned(self, fine_amount: Decimal, at: datetime, actor: Optional[int] = None) -> None:
        if self.status == LoanStatus.RETURNED:
            raise AlreadyReturnedException(self.id)
        if not self.is_open:
            raise LoanNotActiveException(self.id, self.status.value)
        self.status = LoanStatus.RETURNED
        self.returned_at = at
        if fine_amount > 0:
            self.fine.amount = fine_amount
            self.fine.status = FineStatus.PENDING
        self._touch(actor, at)

    def mark_lost(self, at: datetime, actor: Optional[int] = None) -> None:
        if not self.is_open:
            raise LoanNotActiveException(self.id, self.status.value)
        self.status = LoanStatus.LOST
        self._touch(actor, at)

    def mark_overdue(self, at: datetime) -> None:
        if self.status != LoanStatus.ACTIVE:
            raise LoanNotActiveException(self.id, self.status.value)
        self.status = LoanStatus.OVERDUE
        self._touch(None, at)

    def settle_fine(self, method: str, at: datetime, note: Optional[str] = None) -> None:
        if self.fine.status != FineStatus.PENDING:
            raise FineNotPendingException(self.id, self.fine.status.value)
        self.fine.status = FineStatus.PAID
        self.fine.paid_at = at
        self.fine.payment_method = method
        if note:
            self.fine.notes = note
        self.updated_at = at

    def waive_fine(self, at: datetime, actor: Optional[int] = None, reason: Optional[str] = None) -> None:
        if self.fine.status != FineStatus.PENDING:
            raise FineNotPendingException(self.id, self.fine.status.value)
        if not self.fine.is_outstanding:
            raise NoPendingFineException(self.id)
        self.fine.status = FineStatus.WAIVED
        self.fine.notes = reason
        self._touch(actor, at)

    def add_fine_note(self, note: str, at: datetime, actor: Optional[int] = None) -> None:
        """给已结清的罚金追加备注（如退款后），不改金额和状态"""
        self.fine.notes = f"{self.fine.notes}\n{note}" if self.fine.notes else note
        self._touch(actor, at)
