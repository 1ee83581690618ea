"""
支付仓储实现 - SQLAlchemy 数据访问
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional, List

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from domain.payment.entity import Payment, PaymentStatus, OPEN_STATUSES
from domain.payment.repository import PaymentRepository
from domain.common.exceptions import PaymentInProgressException, PaymentNotFoundException
from infrastructure.models.payment import PaymentModel
from core.logging_config import get_logger


logger = get_logger(__name__)


class SQLAlchemyPaymentRepository(PaymentRepository):
    """基于 SQLAlchemy 的支付仓储"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: PaymentModel) -> Payment:
        return Payment(
            id=model.id,
            borrower_id=model.borrower_id,
            loan_id=model.loan_id,
            amount=Decimal(str(model.amount)),
            currency=model.currency,
            status=PaymentStatus(model.status),
            gateway=model.gateway,
            gateway_payment_id=model.gateway_payment_id,
            gateway_transaction_id=model.gateway_transaction_id,
            redirect_url=model.redirect_url,
            gateway_response=model.gateway_response or {},
            notes=model.notes,
            completed_at=model.completed_at,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    def _values(self, entity: Payment) -> dict:
        return {
            "status": entity.status.value,
            "gateway_payment_id": entity.gateway_payment_id,
            "gateway_transaction_id": entity.gateway_transaction_id,
            "redirect_url": entity.redirect_url,
            "gateway_response": entity.gateway_response,
            "notes": entity.notes,
            "completed_at": entity.completed_at,
            "updated_at": entity.updated_at,
        }

    async def create(self, payment: Payment) -> Payment:
        try:
            db_payment = PaymentModel(
                borrower_id=payment.borrower_id,
                loan_id=payment.loan_id,
                amount=payment.amount,
                currency=payment.currency,
                gateway=payment.gateway,
                created_at=payment.created_at,
                **self._values(payment),
            )
            self.session.add(db_payment)
            await self.session.flush()
            await self.session.refresh(db_payment)
        except IntegrityError as e:
            if "uq_payments_open_loan" in str(e) or "loan_id" in str(e).lower():
                logger.warning("payment_create_conflict", loan_id=payment.loan_id)
                raise PaymentInProgressException(payment.loan_id)
            raise
        logger.info(
            "payment_created",
            payment_id=db_payment.id,
            loan_id=db_payment.loan_id,
            amount=str(db_payment.amount),
            gateway=db_payment.gateway,
        )
        return self._to_entity(db_payment)

    async def _first(self, query) -> Optional[Payment]:
        result = await self.session.execute(query.execution_options(populate_existing=True))
        db_payment = result.scalars().first()
        return self._to_entity(db_payment) if db_payment else None

    async def get_by_id(self, payment_id: int) -> Optional[Payment]:
        return await self._first(select(PaymentModel).where(PaymentModel.id == payment_id))

    async def get_by_gateway_payment_id(self, gateway_payment_id: str) -> Optional[Payment]:
        return await self._first(
            select(PaymentModel).where(PaymentModel.gateway_payment_id == gateway_payment_id)
        )

    async def find_open_for_loan(self, loan_id: int) -> Optional[Payment]:
        return await self._first(
            select(PaymentModel)
            .where(
                PaymentModel.loan_id == loan_id,
                PaymentModel.status.in_([s.value for s in OPEN_STATUSES]),
            )
            .order_by(PaymentModel.id.desc())
        )

    async def list_by_loan(self, loan_id: int) -> List[Payment]:
        result = await self.session.execute(
            select(PaymentModel)
            .where(PaymentModel.loan_id == loan_id)
            .order_by(PaymentModel.created_at.desc())
        )
        return [self._to_entity(p) for p in result.scalars().all()]

    async def update(self, payment: Payment) -> Payment:
        try:
            result = await self.session.execute(
                update(PaymentModel)
                .where(PaymentModel.id == payment.id)
                .values(**self._values(payment))
                .execution_options(synchronize_session=False)
            )
        except IntegrityError as e:
            if "gateway_payment_id" in str(e).lower():
                logger.error("payment_gateway_id_conflict", payment_id=payment.id,
                             gateway_payment_id=payment.gateway_payment_id)
            raise
        if result.rowcount != 1:
            raise PaymentNotFoundException(f"id={payment.id}")
        logger.info("payment_updated", payment_id=payment.id, status=payment.status.value)
        return payment

    async def update_if_status(self, payment: Payment, expected: PaymentStatus) -> bool:
        result = await self.session.execute(
            update(PaymentModel)
            .where(PaymentModel.id == payment.id, PaymentModel.status == expected.value)
            .values(**self._values(payment))
            .execution_options(synchronize_session=False)
        )
        won = result.rowcount == 1
        if won:
            logger.info(
                "payment_status_changed",
                payment_id=payment.id,
                from_status=expected.value,
                to_status=payment.status.value,
            )
        else:
            logger.info("payment_status_change_lost", payment_id=payment.id, expected=expected.value)
        return won

    async def list_pending_created_before(self, moment: datetime, limit: int = 100) -> List[Payment]:
        result = await self.session.execute(
            select(PaymentModel)
            .where(
                PaymentModel.status == PaymentStatus.PENDING.value,
                PaymentModel.created_at < moment,
            )
            .order_by(PaymentModel.created_at)
            .limit(limit)
        )
        return [self._to_entity(p) for p in result.scalars().all()]
