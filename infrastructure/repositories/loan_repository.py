"""
借阅仓储实现 - SQLAlchemy 数据访问
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional, List

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from domain.loan.entity import Loan, LoanStatus, Fine, FineStatus, OPEN_LOAN_STATUSES
from domain.loan.repository import LoanRepository
from domain.common.exceptions import LoanNotFoundException, NoAvailableCopyException
from infrastructure.models.loan import LoanModel
from core.logging_config import get_logger


logger = get_logger(__name__)


class SQLAlchemyLoanRepository(LoanRepository):
    """基于 SQLAlchemy 的借阅仓储"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: LoanModel) -> Loan:
        return Loan(
            id=model.id,
            borrower_id=model.borrower_id,
            book_id=model.book_id,
            copy_id=model.copy_id,
            issued_at=model.issued_at,
            due_at=model.due_at,
            status=LoanStatus(model.status),
            returned_at=model.returned_at,
            renewal_count=model.renewal_count,
            last_renewed_at=model.last_renewed_at,
            fine=Fine(
                amount=Decimal(str(model.fine_amount or 0)),
                status=FineStatus(model.fine_status),
                paid_at=model.fine_paid_at,
                payment_method=model.fine_payment_method,
                notes=model.fine_notes,
            ),
            notes=model.notes,
            created_by=model.created_by,
            updated_by=model.updated_by,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    def _apply(self, model: LoanModel, entity: Loan) -> None:
        """把实体的可变状态写回数据行"""
        model.due_at = entity.due_at
        model.returned_at = entity.returned_at
        model.status = entity.status.value
        model.renewal_count = entity.renewal_count
        model.last_renewed_at = entity.last_renewed_at
        model.fine_amount = entity.fine.amount
        model.fine_status = entity.fine.status.value
        model.fine_paid_at = entity.fine.paid_at
        model.fine_payment_method = entity.fine.payment_method
        model.fine_notes = entity.fine.notes
        model.notes = entity.notes
        model.updated_by = entity.updated_by
        model.updated_at = entity.updated_at

    async def create(self, loan: Loan) -> Loan:
        db_loan = LoanModel(
            borrower_id=loan.borrower_id,
            book_id=loan.book_id,
            copy_id=loan.copy_id,
            issued_at=loan.issued_at,
            created_by=loan.created_by,
            created_at=loan.created_at,
        )
        self._apply(db_loan, loan)
        try:
            self.session.add(db_loan)
            await self.session.flush()
            await self.session.refresh(db_loan)
        except IntegrityError as e:
            if "uq_loans_open_copy" in str(e) or "copy_id" in str(e).lower():
                logger.warning("loan_create_conflict", copy_id=loan.copy_id, book_id=loan.book_id)
                raise NoAvailableCopyException(loan.book_id)
            raise
        logger.info(
            "loan_created",
            loan_id=db_loan.id,
            borrower_id=db_loan.borrower_id,
            copy_id=db_loan.copy_id,
        )
        return self._to_entity(db_loan)

    async def _get_model(self, loan_id: int, for_update: bool = False) -> Optional[LoanModel]:
        query = (
            select(LoanModel)
            .where(LoanModel.id == loan_id)
            .execution_options(populate_existing=True)
        )
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def get_by_id(self, loan_id: int, *, for_update: bool = False) -> Optional[Loan]:
        db_loan = await self._get_model(loan_id, for_update)
        return self._to_entity(db_loan) if db_loan else None

    async def update(self, loan: Loan) -> Loan:
        db_loan = await self._get_model(loan.id)
        if not db_loan:
            raise LoanNotFoundException(loan.id)
        self._apply(db_loan, loan)
        await self.session.flush()
        await self.session.refresh(db_loan)
        logger.info("loan_updated", loan_id=db_loan.id, status=db_loan.status, fine_status=db_loan.fine_status)
        return self._to_entity(db_loan)

    def _filtered(self, query, borrower_id: Optional[int], status: Optional[LoanStatus]):
        if borrower_id is not None:
            query = query.where(LoanModel.borrower_id == borrower_id)
        if status:
            query = query.where(LoanModel.status == status.value)
        return query

    async def list_loans(
        self,
        borrower_id: Optional[int] = None,
        status: Optional[LoanStatus] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[Loan]:
        query = self._filtered(select(LoanModel), borrower_id, status)
        query = query.order_by(LoanModel.issued_at.desc()).offset(skip).limit(limit)
        result = await self.session.execute(query)
        return [self._to_entity(m) for m in result.scalars().all()]

    async def count_loans(
        self,
        borrower_id: Optional[int] = None,
        status: Optional[LoanStatus] = None,
    ) -> int:
        query = self._filtered(select(func.count(LoanModel.id)), borrower_id, status)
        result = await self.session.execute(query)
        return result.scalar_one()

    async def outstanding_fine_loan_ids(self, borrower_id: int) -> List[int]:
        result = await self.session.execute(
            select(LoanModel.id)
            .where(
                LoanModel.borrower_id == borrower_id,
                LoanModel.fine_status == FineStatus.PENDING.value,
                LoanModel.fine_amount > 0,
            )
            .order_by(LoanModel.id)
        )
        return list(result.scalars().all())

    async def get_open_by_copy(self, copy_id: int) -> Optional[Loan]:
        result = await self.session.execute(
            select(LoanModel).where(
                LoanModel.copy_id == copy_id,
                LoanModel.status.in_([s.value for s in OPEN_LOAN_STATUSES]),
            )
        )
        db_loan = result.scalar_one_or_none()
        return self._to_entity(db_loan) if db_loan else None

    async def list_active_due_before(self, moment: datetime, limit: int = 500) -> List[Loan]:
        result = await self.session.execute(
            select(LoanModel)
            .where(
                LoanModel.status == LoanStatus.ACTIVE.value,
                LoanModel.due_at < moment,
            )
            .order_by(LoanModel.due_at)
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        return [self._to_entity(m) for m in result.scalars().all()]
