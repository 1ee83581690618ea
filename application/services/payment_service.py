"""
Application service orchestrating fine payment use-cases.

Depends only on the PaymentGateway and KeyedLock ports; adapters are built by
the composition root (lifespan / tasks) and injected. Gateway calls never run
inside a database transaction.
"""
from __future__ import annotations

from contextlib import AsyncExitStack
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from application.dtos.payments import InitiatePaymentResult, PaymentDTO
from application.ports.locks import KeyedLock
from application.ports.payment_gateway import PaymentGateway
from application.services.circulation_service import UnitOfWorkFactory, build_loan_service
from application.services.event_log import log_domain_events
from core.logging_config import get_logger
from domain.common.exceptions import (
    BusinessException,
    LoanNotFoundException,
    NoPendingFineException,
    NotLoanOwnerException,
    PaymentNotFoundException,
)
from domain.loan.policy import FinePolicy
from domain.loan.service import LoanTerms
from domain.payment.entity import PaymentStatus
from domain.payment.service import PaymentLedger


logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LockBusy(Exception):
    """Another worker holds a lock the sweep needs"""


async def _try_hold(stack: AsyncExitStack, locks: KeyedLock, key: str) -> None:
    try:
        await stack.enter_async_context(locks.hold(key, wait=False))
    except TimeoutError as e:
        raise LockBusy(key) from e


def payment_reference(payment_id: int) -> str:
    """merchantInvoiceNumber sent to the gateway for one of our payment rows"""
    return f"fine-{payment_id}"


class FinePaymentService:
    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        gateway: PaymentGateway,
        locks: KeyedLock,
        *,
        currency: str = "BDT",
        stale_after: timedelta = timedelta(minutes=60),
        policy: Optional[FinePolicy] = None,
        terms: Optional[LoanTerms] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._uow_factory = uow_factory
        self.gateway = gateway
        self._locks = locks
        self._currency = currency
        self._stale_after = stale_after
        self._policy = policy or FinePolicy()
        self._terms = terms or LoanTerms()
        self._clock = clock

    async def initiate_payment(self, loan_id: int, borrower_id: int) -> InitiatePaymentResult:
        """
        Start paying a loan's fine through the gateway.

        Business rules:
        1. only the borrower of the loan may pay
        2. the fine must be pending with a positive amount
        3. a checkout that already has a redirect URL is handed back as is
        4. on a gateway fault the row stays pending with the error noted
        """
        async with self._locks.hold(f"initiate:{loan_id}"):
            async with self._uow_factory() as uow:
                loan = await uow.loan_repository.get_by_id(loan_id)
                if not loan:
                    raise LoanNotFoundException(loan_id)
                if loan.borrower_id != borrower_id:
                    raise NotLoanOwnerException(loan_id)
                if not loan.fine.is_outstanding:
                    raise NoPendingFineException(loan_id)

                existing = await uow.payment_repository.find_open_for_loan(loan_id)
                if existing and existing.status == PaymentStatus.PENDING and existing.redirect_url:
                    logger.info("payment_initiate_reused", payment_id=existing.id, loan_id=loan_id)
                    return InitiatePaymentResult(
                        payment_id=existing.id,
                        redirect_url=existing.redirect_url,
                        gateway_payment_id=existing.gateway_payment_id,
                        amount=existing.amount,
                        currency=existing.currency,
                        reused=True,
                    )

                ledger = PaymentLedger(uow.payment_repository, self._clock)
                payment = await ledger.open(
                    loan_id=loan_id,
                    borrower_id=borrower_id,
                    amount=loan.fine.amount,
                    currency=self._currency,
                    gateway=self.gateway.gateway,
                )
                await uow.commit()

            logger.info("payment_create_request", payment_id=payment.id, loan_id=loan_id, amount=str(payment.amount))
            try:
                created = await self.gateway.create_payment(payment.amount, payment_reference(payment.id))
            except BusinessException as e:
                logger.warning(
                    "payment_create_failed",
                    payment_id=payment.id,
                    loan_id=loan_id,
                    error_type=e.error_type,
                    error=e.message,
                )
                async with self._uow_factory() as uow:
                    ledger = PaymentLedger(uow.payment_repository, self._clock)
                    stored = await ledger.get(payment.id)
                    raw = (e.details or {}).get("raw")
                    await ledger.record_create_failure(stored, e.message, raw=raw)
                    await uow.commit()
                raise

            async with self._uow_factory() as uow:
                ledger = PaymentLedger(uow.payment_repository, self._clock)
                stored = await ledger.get(payment.id)
                stored = await ledger.attach_gateway_reference(
                    stored, created.payment_id, created.redirect_url, raw=created.raw
                )
                await uow.commit()

        logger.info(
            "payment_create_response",
            payment_id=stored.id,
            loan_id=loan_id,
            gateway_payment_id=stored.gateway_payment_id,
        )
        return InitiatePaymentResult(
            payment_id=stored.id,
            redirect_url=stored.redirect_url,
            gateway_payment_id=stored.gateway_payment_id,
            amount=stored.amount,
            currency=stored.currency,
        )

    async def refund_payment(self, payment_id: int, reason: Optional[str] = None, actor: Optional[int] = None) -> PaymentDTO:
        """
        Administrative refund: completed -> refunded.

        The money is returned outside this service; the loan's fine stays paid
        and gets a note pointing at the refunded payment.
        """
        async with self._uow_factory() as uow:
            ledger = PaymentLedger(uow.payment_repository, self._clock)
            payment = await ledger.refund(payment_id, reason)
            loans = build_loan_service(uow, self._policy, self._terms, self._clock)
            note = f"payment {payment.id} refunded" + (f": {reason}" if reason else "")
            try:
                await loans.annotate_fine(payment.loan_id, note, actor=actor)
            except LoanNotFoundException:
                logger.warning("payment_refund_loan_missing", payment_id=payment.id, loan_id=payment.loan_id)
            await uow.commit()
        log_domain_events(ledger.clear_events())
        return PaymentDTO.from_entity(payment)

    async def expire_stale(self, limit: int = 100) -> int:
        """
        Cancel pending payments that saw no callback within ``stale_after``.

        Each row is expired under the same locks initiation and the callback
        reconciler take; rows whose locks are held are skipped until the next
        sweep.
        """
        cutoff = self._clock() - self._stale_after
        async with self._uow_factory(readonly=True) as uow:
            stale = await PaymentLedger(uow.payment_repository, self._clock).list_stale(cutoff, limit=limit)

        expired = 0
        for candidate in stale:
            try:
                if await self._expire_one(candidate.id, candidate.loan_id):
                    expired += 1
            except LockBusy:
                logger.info("payment_expiry_skipped", payment_id=candidate.id, reason="in progress")
        if expired:
            logger.info("payments_expired", count=expired, cutoff=cutoff.isoformat())
        return expired

    async def _expire_one(self, payment_id: int, loan_id: int) -> bool:
        async with AsyncExitStack() as stack:
            await _try_hold(stack, self._locks, f"initiate:{loan_id}")
            async with self._uow_factory(readonly=True) as uow:
                current = await uow.payment_repository.get_by_id(payment_id)
            if current is None or current.status != PaymentStatus.PENDING:
                return False
            if current.gateway_payment_id:
                await _try_hold(stack, self._locks, f"payment-callback:{current.gateway_payment_id}")

            async with self._uow_factory() as uow:
                ledger = PaymentLedger(uow.payment_repository, self._clock)
                payment = await ledger.expire(payment_id)
                await uow.commit()
        log_domain_events(ledger.clear_events())
        return payment is not None

    async def get_payment(self, payment_id: int) -> PaymentDTO:
        async with self._uow_factory(readonly=True) as uow:
            payment = await uow.payment_repository.get_by_id(payment_id)
        if not payment:
            raise PaymentNotFoundException(f"id={payment_id}")
        return PaymentDTO.from_entity(payment)

    async def list_for_loan(self, loan_id: int) -> List[PaymentDTO]:
        async with self._uow_factory(readonly=True) as uow:
            payments = await uow.payment_repository.list_by_loan(loan_id)
        return [PaymentDTO.from_entity(p) for p in payments]

    async def aclose(self) -> None:
        await self.gateway.aclose()
