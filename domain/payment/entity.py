"""
支付实体 - 通过网关结清一笔借阅罚金的一次尝试
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Any
from enum import Enum

from domain.common.exceptions import DomainValidationException


class PaymentStatus(str, Enum):
    """支付状态"""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


TERMINAL_STATUSES = (
    PaymentStatus.COMPLETED,
    PaymentStatus.FAILED,
    PaymentStatus.CANCELLED,
    PaymentStatus.REFUNDED,
)

# 处于这些状态时，同一借阅不能再发起支付
OPEN_STATUSES = (PaymentStatus.PENDING, PaymentStatus.COMPLETED)


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@dataclass
class Payment:
    """
    支付聚合根

    业务规则：
    1. 金额必须为正
    2. 每笔借阅最多一条 pending 或 completed 的支付
    3. pending -> completed | failed | cancelled; completed -> refunded
    4. 记录不删除，网关原始响应留作审计
    """

    id: Optional[int]
    borrower_id: int
    loan_id: int
    amount: Decimal
    currency: str
    status: PaymentStatus = PaymentStatus.PENDING
    gateway: str = "bkash"
    gateway_payment_id: Optional[str] = None
    gateway_transaction_id: Optional[str] = None
    redirect_url: Optional[str] = None
    gateway_response: dict = field(default_factory=dict)
    notes: Optional[str] = None
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if self.amount <= 0:
            raise DomainValidationException(
                f"Payment amount must be positive: {self.amount}",
                field="amount",
            )
        if not self.currency or len(self.currency) != 3 or not self.currency.isalpha():
            raise DomainValidationException(f"Invalid currency code: {self.currency}", field="currency")
        self.currency = self.currency.upper()
        if self.gateway_response is None:
            self.gateway_response = {}
        self.completed_at = _ensure_utc(self.completed_at)
        self.created_at = _ensure_utc(self.created_at)
        self.updated_at = _ensure_utc(self.updated_at)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def reached_gateway(self) -> bool:
        return bool(self.gateway_payment_id)

    def add_note(self, note: str, at: Optional[datetime] = None) -> None:
        """追加一条运营可见的备注"""
        self.notes = f"{self.notes}\n{note}" if self.notes else note
        self.updated_at = at or datetime.now(timezone.utc)

    def record_response(self, stage: str, raw: Any) -> None:
        """按协议阶段（create / execute / callback）保存网关原始报文"""
        self.gateway_response = {**(self.gateway_response or {}), stage: raw}

    def attach_gateway_reference(
        self,
        gateway_payment_id: str,
        redirect_url: Optional[str],
        at: Optional[datetime] = None,
    ) -> None:
        if self.status != PaymentStatus.PENDING:
            raise DomainValidationException(
                f"Cannot attach a gateway reference to a {self.status.value} payment",
                field="status",
            )
        self.gateway_payment_id = gateway_payment_id
        self.redirect_url = redirect_url
        self.updated_at = at or datetime.now(timezone.utc)

    def _require_pending(self, target: PaymentStatus) -> None:
        if self.status != PaymentStatus.PENDING:
            raise DomainValidationException(
                f"Cannot move payment from {self.status.value} to {target.value}",
                field="status",
            )

    def mark_completed(self, transaction_id: Optional[str], at: Optional[datetime] = None) -> None:
        self._require_pending(PaymentStatus.COMPLETED)
        at = at or datetime.now(timezone.utc)
        self.status = PaymentStatus.COMPLETED
        self.gateway_transaction_id = transaction_id
        self.completed_at = at
        self.updated_at = at

    def mark_failed(self, reason: Optional[str] = None, at: Optional[datetime] = None) -> None:
        self._require_pending(PaymentStatus.FAILED)
        self.status = PaymentStatus.FAILED
        if reason:
            self.add_note(reason, at)
        self.updated_at = at or datetime.now(timezone.utc)

    def mark_cancelled(self, reason: Optional[str] = None, at: Optional[datetime] = None) -> None:
        self._require_pending(PaymentStatus.CANCELLED)
        self.status = PaymentStatus.CANCELLED
        if reason:
            self.add_note(reason, at)
        self.updated_at = at or datetime.now(timezone.utc)

    def mark_refunded(self, reason: Optional[str] = None, at: Optional[datetime] = None) -> None:
        if self.status != PaymentStatus.COMPLETED:
            raise DomainValidationException(
                f"Cannot refund a {self.status.value} payment",
                field="status",
            )
        self.status = PaymentStatus.REFUNDED
        if reason:
            self.add_note(f"refunded: {reason}", at)
        self.updated_at = at or datetime.now(timezone.utc)
