"""
借阅领域服务 - 借阅状态机

借出、续借、归还、登记丢失，以及逾期扫描和罚金的结清/减免。
副本保管状态一律经由副本台账变更。
"""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from .entity import Loan, LoanStatus
from .events import (
    LoanIssued,
    LoanRenewed,
    LoanReturned,
    LoanMarkedLost,
    LoanBecameOverdue,
    FineSettled,
    FineWaived,
)
from .policy import FinePolicy
from .repository import LoanRepository
from domain.catalog.ledger import CopyLedger
from domain.payment.entity import PaymentStatus
from domain.payment.repository import PaymentRepository
from domain.common.exceptions import (
    LoanNotFoundException,
    LoanNotActiveException,
    RenewalLimitExceededException,
    ReservationConflictException,
    UnpaidFineExistsException,
    PaymentInProgressException,
)


@dataclass(frozen=True)
class LoanTerms:
    """状态机使用的期限与次数限制"""
    loan_duration: timedelta = timedelta(days=14)
    renewal_duration: timedelta = timedelta(days=14)
    max_renewals: int = 2

    @classmethod
    def from_settings(cls, circulation) -> "LoanTerms":
        return cls(
            loan_duration=timedelta(days=circulation.loan_duration_days),
            renewal_duration=timedelta(days=circulation.renewal_duration_days),
            max_renewals=circulation.max_renewals,
        )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LoanDomainService:
    """
    借阅状态机。

    职责：
    1. 每个迁移的前置校验（抛出具体业务异常，不重试）
    2. 通过 CopyLedger 管理副本保管
    3. 归还时通过 FinePolicy 核算罚金
    4. 收集领域事件
    """

    def __init__(
        self,
        loan_repository: LoanRepository,
        copy_ledger: CopyLedger,
        fine_policy: FinePolicy,
        terms: LoanTerms,
        payment_repository: Optional[PaymentRepository] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.loan_repository = loan_repository
        self.copy_ledger = copy_ledger
        self.fine_policy = fine_policy
        self.terms = terms
        self.payment_repository = payment_repository
        self.clock = clock
        self.events: List = []

    async def _get(self, loan_id: int) -> Loan:
        loan = await self.loan_repository.get_by_id(loan_id, for_update=True)
        if not loan:
            raise LoanNotFoundException(loan_id)
        return loan

    async def issue(
        self,
        borrower_id: int,
        book_id: int,
        copy_id: Optional[int] = None,
        actor: Optional[int] = None,
    ) -> Loan:
        """
        借出。

        业务规则：
        1. 借阅人没有未结清的罚金
        2. 通过台账占用一本可借副本
        """
        now = self.clock()
        unpaid = await self.loan_repository.outstanding_fine_loan_ids(borrower_id)
        if unpaid:
            raise UnpaidFineExistsException(borrower_id, unpaid)

        copy = await self.copy_ledger.acquire(book_id, copy_id, now=now)
        loan = Loan(
            id=None,
            borrower_id=borrower_id,
            book_id=book_id,
            copy_id=copy.id,
            issued_at=now,
            due_at=now + self.terms.loan_duration,
            status=LoanStatus.ACTIVE,
            created_by=actor,
            updated_by=actor,
            created_at=now,
            updated_at=now,
        )
        created = await self.loan_repository.create(loan)
        self.events.append(LoanIssued(
            loan_id=created.id,
            borrower_id=borrower_id,
            copy_id=copy.id,
            due_at=created.due_at,
        ))
        return created

    async def renew(self, loan_id: int, actor: Optional[int] = None) -> Loan:
        """
        延长在借借阅的到期日。

        所有校验都在写入之前完成，被拒绝的续借不会改动借阅。
        """
        now = self.clock()
        loan = await self._get(loan_id)
        if loan.status != LoanStatus.ACTIVE:
            raise LoanNotActiveException(loan.id, loan.status.value)
        if loan.renewal_count >= self.terms.max_renewals:
            raise RenewalLimitExceededException(loan.id, self.terms.max_renewals)
        if await self.copy_ledger.has_reservation(loan.book_id):
            raise ReservationConflictException(loan.id, loan.book_id)

        loan.renew(self.terms.renewal_duration, self.terms.max_renewals, now, actor)
        updated = await self.loan_repository.update(loan)
        self.events.append(LoanRenewed(
            loan_id=updated.id,
            borrower_id=updated.borrower_id,
            renewal_count=updated.renewal_count,
            due_at=updated.due_at,
        ))
        return updated

    async def return_loan(self, loan_id: int, actor: Optional[int] = None) -> Loan:
        """关闭在借或逾期的借阅，核算罚金并释放副本"""
        now = self.clock()
        loan = await self._get(loan_id)
        days = loan.overdue_days(now)
        amount = self.fine_policy.compute(days)

        loan.mark_returned(amount, now, actor)
        await self.copy_ledger.release(loan.copy_id, now=now)
        updated = await self.loan_repository.update(loan)
        self.events.append(LoanReturned(
            loan_id=updated.id,
            borrower_id=updated.borrower_id,
            overdue_days=days,
            fine_amount=str(updated.fine.amount),
        ))
        return updated

    async def mark_lost(self, loan_id: int, actor: Optional[int] = None) -> Loan:
        """副本不再流通，如何处置由馆藏侧决定"""
        now = self.clock()
        loan = await self._get(loan_id)
        loan.mark_lost(now, actor)
        updated = await self.loan_repository.update(loan)
        self.events.append(LoanMarkedLost(
            loan_id=updated.id,
            borrower_id=updated.borrower_id,
            copy_id=updated.copy_id,
        ))
        return updated

    async def mark_overdue(self, limit: int = 500) -> List[Loan]:
        """把已过期的在借借阅标记为逾期"""
        now = self.clock()
        flagged: List[Loan] = []
        for loan in await self.loan_repository.list_active_due_before(now, limit=limit):
            loan.mark_overdue(now)
            flagged.append(await self.loan_repository.update(loan))
            self.events.append(LoanBecameOverdue(loan_id=loan.id, borrower_id=loan.borrower_id))
        return flagged

    async def settle_fine(
        self,
        loan_id: int,
        method: str,
        note: Optional[str] = None,
    ) -> Loan:
        """pending -> paid，网关支付完成后调用"""
        now = self.clock()
        loan = await self._get(loan_id)
        loan.settle_fine(method, now, note)
        updated = await self.loan_repository.update(loan)
        self.events.append(FineSettled(
            loan_id=updated.id,
            borrower_id=updated.borrower_id,
            amount=str(updated.fine.amount),
            method=method,
        ))
        return updated

    async def waive_fine(
        self,
        loan_id: int,
        actor: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> Loan:
        """
        pending -> waived.

        该借阅仍有 pending 的网关支付时拒绝。
        """
        now = self.clock()
        loan = await self._get(loan_id)
        if self.payment_repository is not None:
            open_payment = await self.payment_repository.find_open_for_loan(loan.id)
            if open_payment and open_payment.status == PaymentStatus.PENDING:
                raise PaymentInProgressException(loan.id, open_payment.id)

        loan.waive_fine(now, actor, reason)
        updated = await self.loan_repository.update(loan)
        self.events.append(FineWaived(
            loan_id=updated.id,
            borrower_id=updated.borrower_id,
            amount=str(updated.fine.amount),
        ))
        return updated

    async def annotate_fine(self, loan_id: int, note: str, actor: Optional[int] = None) -> Loan:
        loan = await self._get(loan_id)
        loan.add_fine_note(note, self.clock(), actor)
        return await self.loan_repository.update(loan)

    def clear_events(self) -> List:
        events = self.events.copy()
        self.events.clear()
        return events
