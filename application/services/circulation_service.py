"""
借阅应用服务 - 借阅与副本保管用例

每次调用使用独立的工作单元，领域服务按单元用其仓储构建。
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, List, Optional, Tuple

from application.dtos.loans import (
    IssueLoanRequest,
    LoanDTO,
    CopyDTO,
    AvailabilityDTO,
)
from application.services.event_log import log_domain_events
from core.logging_config import get_logger
from domain.catalog.entity import CopyState
from domain.catalog.ledger import CopyLedger
from domain.common.exceptions import LoanNotFoundException, DomainValidationException
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.loan.entity import LoanStatus
from domain.loan.policy import FinePolicy
from domain.loan.service import LoanDomainService, LoanTerms


logger = get_logger(__name__)

UnitOfWorkFactory = Callable[..., AbstractUnitOfWork]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def build_loan_service(
    uow: AbstractUnitOfWork,
    policy: FinePolicy,
    terms: LoanTerms,
    clock: Callable[[], datetime] = _utcnow,
) -> LoanDomainService:
    return LoanDomainService(
        loan_repository=uow.loan_repository,
        copy_ledger=CopyLedger(uow.book_repository, uow.copy_repository),
        fine_policy=policy,
        terms=terms,
        payment_repository=uow.payment_repository,
        clock=clock,
    )


class CirculationService:
    """借阅生命周期与副本台账用例"""

    # 操作名 -> 台账方法
    COPY_ACTIONS = {
        "reserve": "reserve",
        "cancel-reservation": "cancel_reservation",
        "maintenance": "send_to_maintenance",
        "restore": "return_from_maintenance",
    }

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        policy: FinePolicy,
        terms: LoanTerms,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._uow_factory = uow_factory
        self._policy = policy
        self._terms = terms
        self._clock = clock

    def _loans(self, uow: AbstractUnitOfWork) -> LoanDomainService:
        return build_loan_service(uow, self._policy, self._terms, self._clock)

    # ------------------------------------------------------------ 借阅

    async def issue_loan(self, req: IssueLoanRequest, actor: Optional[int] = None) -> LoanDTO:
        async with self._uow_factory() as uow:
            service = self._loans(uow)
            loan = await service.issue(req.borrower_id, req.book_id, req.copy_id, actor=actor)
            await uow.commit()
        log_domain_events(service.clear_events())
        return LoanDTO.from_entity(loan)

    async def renew_loan(self, loan_id: int, actor: Optional[int] = None) -> LoanDTO:
        async with self._uow_factory() as uow:
            service = self._loans(uow)
            loan = await service.renew(loan_id, actor=actor)
            await uow.commit()
        log_domain_events(service.clear_events())
        return LoanDTO.from_entity(loan)

    async def return_loan(self, loan_id: int, actor: Optional[int] = None) -> LoanDTO:
        async with self._uow_factory() as uow:
            service = self._loans(uow)
            loan = await service.return_loan(loan_id, actor=actor)
            await uow.commit()
        log_domain_events(service.clear_events())
        return LoanDTO.from_entity(loan)

    async def mark_lost(self, loan_id: int, actor: Optional[int] = None) -> LoanDTO:
        async with self._uow_factory() as uow:
            service = self._loans(uow)
            loan = await service.mark_lost(loan_id, actor=actor)
            await uow.commit()
        log_domain_events(service.clear_events())
        return LoanDTO.from_entity(loan)

    async def waive_fine(self, loan_id: int, actor: Optional[int] = None, reason: Optional[str] = None) -> LoanDTO:
        async with self._uow_factory() as uow:
            service = self._loans(uow)
            loan = await service.waive_fine(loan_id, actor=actor, reason=reason)
            await uow.commit()
        log_domain_events(service.clear_events())
        return LoanDTO.from_entity(loan)

    async def mark_overdue(self) -> int:
        async with self._uow_factory() as uow:
            service = self._loans(uow)
            flagged = await service.mark_overdue()
            await uow.commit()
        log_domain_events(service.clear_events())
        return len(flagged)

    async def get_loan(self, loan_id: int) -> LoanDTO:
        async with self._uow_factory(readonly=True) as uow:
            loan = await uow.loan_repository.get_by_id(loan_id)
        if not loan:
            raise LoanNotFoundException(loan_id)
        return LoanDTO.from_entity(loan)

    async def list_loans(
        self,
        borrower_id: Optional[int] = None,
        status: Optional[str] = None,
        page: int = 1,
        size: int = 20,
    ) -> Tuple[List[LoanDTO], int]:
        try:
            status_enum = LoanStatus(status) if status else None
        except ValueError:
            raise DomainValidationException(f"Unknown loan status: {status}", field="status")
        async with self._uow_factory(readonly=True) as uow:
            loans = await uow.loan_repository.list_loans(
                borrower_id=borrower_id,
                status=status_enum,
                skip=(page - 1) * size,
                limit=size,
            )
            total = await uow.loan_repository.count_loans(borrower_id=borrower_id, status=status_enum)
        return [LoanDTO.from_entity(l) for l in loans], total

    # ------------------------------------------------------------ 副本

    async def register_copy(self, book_id: int, barcode: str) -> CopyDTO:
        async with self._uow_factory() as uow:
            ledger = CopyLedger(uow.book_repository, uow.copy_repository)
            copy = await ledger.register_copy(book_id, barcode, now=self._clock())
            await uow.commit()
        return CopyDTO.from_entity(copy)

    async def copy_action(self, copy_id: int, action: str) -> CopyDTO:
        method = self.COPY_ACTIONS.get(action)
        if method is None:
            raise DomainValidationException(f"Unknown copy action: {action}", field="action")
        async with self._uow_factory() as uow:
            ledger = CopyLedger(uow.book_repository, uow.copy_repository)
            copy = await getattr(ledger, method)(copy_id, now=self._clock())
            await uow.commit()
        logger.info("copy_action_applied", copy_id=copy_id, action=action, state=copy.state.value)
        return CopyDTO.from_entity(copy)

    async def availability(self, book_id: int) -> AvailabilityDTO:
        async with self._uow_factory(readonly=True) as uow:
            ledger = CopyLedger(uow.book_repository, uow.copy_repository)
            data = await ledger.availability(book_id)
        return AvailabilityDTO(**data)

    async def list_copies(self, book_id: int, state: Optional[str] = None) -> List[CopyDTO]:
        try:
            state_enum = CopyState(state) if state else None
        except ValueError:
            raise DomainValidationException(f"Unknown copy state: {state}", field="state")
        async with self._uow_factory(readonly=True) as uow:
            ledger = CopyLedger(uow.book_repository, uow.copy_repository)
            copies = await ledger.list_copies(book_id, state_enum)
        return [CopyDTO.from_entity(c) for c in copies]
