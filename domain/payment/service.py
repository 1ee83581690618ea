"""
支付台账 - 记录结算尝试及其终态
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, List, Optional

from .entity import Payment, PaymentStatus
from .repository import PaymentRepository
from .events import PaymentCompleted, PaymentFailed, PaymentCancelled, PaymentRefunded
from domain.common.exceptions import (
    PaymentInProgressException,
    PaymentNotFoundException,
    PaymentNotRefundableException,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PaymentLedger:
    """
    支付台账。

    职责：
    1. 每笔借阅最多一条 pending 或 completed 的支付
    2. 终态写入以库中状态为条件，并发时只有一个写入方成功
    3. 收集领域事件
    """

    def __init__(
        self,
        payment_repository: PaymentRepository,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.payment_repository = payment_repository
        self.clock = clock
        self.events: List = []

    async def get(self, payment_id: int) -> Payment:
        payment = await self.payment_repository.get_by_id(payment_id)
        if not payment:
            raise PaymentNotFoundException(f"id={payment_id}")
        return payment

    async def open(
        self,
        loan_id: int,
        borrower_id: int,
        amount: Decimal,
        currency: str,
        gateway: str,
    ) -> Payment:
        """
        为借阅发起一次结算。

        未到达网关的 pending 记录会被复用，其他 pending 或 completed
        记录则阻止本次发起。
        """
        existing = await self.payment_repository.find_open_for_loan(loan_id)
        if existing:
            if existing.status == PaymentStatus.PENDING and not existing.reached_gateway:
                return existing
            raise PaymentInProgressException(loan_id, existing.id)

        now = self.clock()
        payment = Payment(
            id=None,
            borrower_id=borrower_id,
            loan_id=loan_id,
            amount=amount,
            currency=currency,
            status=PaymentStatus.PENDING,
            gateway=gateway,
            created_at=now,
            updated_at=now,
        )
        return await self.payment_repository.create(payment)

    async def attach_gateway_reference(
        self,
        payment: Payment,
        gateway_payment_id: str,
        redirect_url: Optional[str],
        raw: Any = None,
    ) -> Payment:
        payment.attach_gateway_reference(gateway_payment_id, redirect_url, self.clock())
        if raw is not None:
            payment.record_response("create", raw)
        return await self.payment_repository.update(payment)

    async def record_create_failure(self, payment: Payment, error: str, raw: Any = None) -> Payment:
        """记录保持 pending，由调用方决定重试或放弃"""
        payment.add_note(f"create failed: {error}", self.clock())
        if raw is not None:
            payment.record_response("create", raw)
        return await self.payment_repository.update(payment)

    async def note(self, payment: Payment, note: str) -> Payment:
        payment.add_note(note, self.clock())
        return await self.payment_repository.update(payment)

    async def complete(self, payment: Payment, transaction_id: Optional[str], raw: Any = None) -> bool:
        payment.mark_completed(transaction_id, self.clock())
        if raw is not None:
            payment.record_response("execute", raw)
        won = await self.payment_repository.update_if_status(payment, PaymentStatus.PENDING)
        if won:
            self.events.append(PaymentCompleted(
                payment_id=payment.id,
                loan_id=payment.loan_id,
                gateway=payment.gateway,
                gateway_payment_id=payment.gateway_payment_id,
                transaction_id=transaction_id,
                amount=str(payment.amount),
            ))
        return won

    async def fail(self, payment: Payment, reason: Optional[str], raw: Any = None, stage: str = "execute") -> bool:
        payment.mark_failed(reason, self.clock())
        if raw is not None:
            payment.record_response(stage, raw)
        won = await self.payment_repository.update_if_status(payment, PaymentStatus.PENDING)
        if won:
            self.events.append(PaymentFailed(
                payment_id=payment.id,
                loan_id=payment.loan_id,
                gateway=payment.gateway,
                gateway_payment_id=payment.gateway_payment_id,
                reason=reason,
            ))
        return won

    async def cancel(self, payment: Payment, reason: Optional[str], raw: Any = None, stage: str = "callback") -> bool:
        payment.mark_cancelled(reason, self.clock())
        if raw is not None:
            payment.record_response(stage, raw)
        won = await self.payment_repository.update_if_status(payment, PaymentStatus.PENDING)
        if won:
            self.events.append(PaymentCancelled(
                payment_id=payment.id,
                loan_id=payment.loan_id,
                gateway=payment.gateway,
                gateway_payment_id=payment.gateway_payment_id,
                reason=reason,
            ))
        return won

    async def refund(self, payment_id: int, reason: Optional[str] = None) -> Payment:
        """completed -> refunded（管理操作）"""
        payment = await self.get(payment_id)
        if payment.status != PaymentStatus.COMPLETED:
            raise PaymentNotRefundableException(payment_id, payment.status.value)
        payment.mark_refunded(reason, self.clock())
        if not await self.payment_repository.update_if_status(payment, PaymentStatus.COMPLETED):
            current = await self.get(payment_id)
            raise PaymentNotRefundableException(payment_id, current.status.value)
        self.events.append(PaymentRefunded(
            payment_id=payment.id,
            loan_id=payment.loan_id,
            gateway=payment.gateway,
            gateway_payment_id=payment.gateway_payment_id,
            amount=str(payment.amount),
        ))
        return payment

    async def list_stale(self, older_than: datetime, limit: int = 100) -> List[Payment]:
        """``older_than`` 之前创建且仍为 pending 的支付"""
        return await self.payment_repository.list_pending_created_before(older_than, limit=limit)

    async def expire(self, payment_id: int) -> Optional[Payment]:
        """
        取消一条超时未回调的 pending 支付。

        调用方需持有该支付的回调锁。记录已不是 pending 时返回 None。
        """
        payment = await self.get(payment_id)
        if payment.status != PaymentStatus.PENDING:
            return None
        if await self.cancel(payment, "expired: no callback received", stage="expiry"):
            return payment
        return None

    def clear_events(self) -> List:
        events = self.events.copy()
        self.events.clear()
        return events
