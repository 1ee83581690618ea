"""
Callback reconciler - folds gateway callbacks into payment and loan state

Each callback runs under a per-payment keyed lock: read, execute at the
gateway outside any transaction, then write with conditional updates. A
callback never leaves its payment pending; faults are logged and noted on the
payment row instead of being raised to the gateway.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Optional

from application.dtos.payments import CallbackOutcome, ExecutionOutcome, WebhookCallback
from application.ports.locks import KeyedLock
from application.ports.payment_gateway import PaymentGateway
from application.services.circulation_service import UnitOfWorkFactory, build_loan_service
from application.services.event_log import log_domain_events
from core.logging_config import get_logger
from domain.common.exceptions import (
    BusinessException,
    FineNotPendingException,
    LoanNotFoundException,
)
from domain.loan.policy import FinePolicy
from domain.loan.service import LoanTerms
from domain.payment.entity import Payment, PaymentStatus
from domain.payment.service import PaymentLedger


logger = get_logger(__name__)

SUCCESS = "success"
CANCEL = "cancel"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CallbackReconciler:
    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        gateway: PaymentGateway,
        locks: KeyedLock,
        *,
        policy: Optional[FinePolicy] = None,
        terms: Optional[LoanTerms] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._uow_factory = uow_factory
        self.gateway = gateway
        self._locks = locks
        self._policy = policy or FinePolicy()
        self._terms = terms or LoanTerms()
        self._clock = clock

    @staticmethod
    def _outcome(payment: Payment, gateway_payment_id: str, duplicate: bool = False) -> CallbackOutcome:
        return CallbackOutcome(
            gateway_payment_id=gateway_payment_id,
            outcome=payment.status.value,
            duplicate=duplicate,
            payment_id=payment.id,
            loan_id=payment.loan_id,
        )

    async def handle(self, callback: WebhookCallback) -> CallbackOutcome:
        gid = callback.gateway_payment_id
        status = callback.status.lower()
        async with self._locks.hold(f"payment-callback:{gid}"):
            async with self._uow_factory(readonly=True) as uow:
                payment = await uow.payment_repository.get_by_gateway_payment_id(gid)

            if payment is None:
                logger.warning("payment_callback_unknown", gateway_payment_id=gid, status=status)
                return CallbackOutcome(gateway_payment_id=gid, outcome="not_found")

            if payment.is_terminal:
                logger.info(
                    "payment_callback_duplicate",
                    gateway_payment_id=gid,
                    payment_id=payment.id,
                    recorded=payment.status.value,
                )
                return self._outcome(payment, gid, duplicate=True)

            if status != SUCCESS:
                return await self._close_without_execute(payment.id, gid, status)

            try:
                outcome = await self.gateway.execute_payment(gid)
            except BusinessException as e:
                logger.error(
                    "payment_execute_failed",
                    gateway_payment_id=gid,
                    payment_id=payment.id,
                    error_type=e.error_type,
                    error=e.message,
                )
                return await self._fail(
                    payment.id, gid, f"execute error: {e.message}", raw={"error": e.message, "details": e.details}
                )
            except Exception as e:
                # unreadable answers and adapter bugs still close the payment
                logger.exception(
                    "payment_execute_failed",
                    gateway_payment_id=gid,
                    payment_id=payment.id,
                    error_type=type(e).__name__,
                )
                return await self._fail(
                    payment.id, gid, f"execute error: {type(e).__name__}: {e}", raw={"error": str(e)}
                )

            if not outcome.completed:
                logger.warning(
                    "payment_execute_not_completed",
                    gateway_payment_id=gid,
                    payment_id=payment.id,
                    status=outcome.status,
                    reason_code=outcome.reason_code,
                )
                return await self._fail(
                    payment.id,
                    gid,
                    f"execute returned {outcome.status} ({outcome.reason_code})",
                    raw=outcome.raw,
                )
            return await self._complete(payment.id, gid, outcome)

    async def _close_without_execute(self, payment_id: int, gid: str, status: str) -> CallbackOutcome:
        async with self._uow_factory() as uow:
            ledger = PaymentLedger(uow.payment_repository, self._clock)
            payment = await ledger.get(payment_id)
            if payment.is_terminal:
                return self._outcome(payment, gid, duplicate=True)
            reason = f"callback status {status}"
            if status == CANCEL:
                won = await ledger.cancel(payment, reason, raw={"status": status}, stage="callback")
            else:
                won = await ledger.fail(payment, reason, raw={"status": status}, stage="callback")
            if not won:
                payment = await ledger.get(payment_id)
            await uow.commit()
        log_domain_events(ledger.clear_events())
        logger.info("payment_callback_closed", gateway_payment_id=gid, payment_id=payment_id, status=payment.status.value)
        return self._outcome(payment, gid, duplicate=not won)

    async def _fail(self, payment_id: int, gid: str, reason: str, raw: dict) -> CallbackOutcome:
        async with self._uow_factory() as uow:
            ledger = PaymentLedger(uow.payment_repository, self._clock)
            payment = await ledger.get(payment_id)
            if payment.is_terminal:
                return self._outcome(payment, gid, duplicate=True)
            won = await ledger.fail(payment, reason, raw=raw)
            if not won:
                payment = await ledger.get(payment_id)
            await uow.commit()
        log_domain_events(ledger.clear_events())
        return self._outcome(payment, gid, duplicate=not won)

    async def _complete(self, payment_id: int, gid: str, outcome: ExecutionOutcome) -> CallbackOutcome:
        async with self._uow_factory() as uow:
            ledger = PaymentLedger(uow.payment_repository, self._clock)
            loans = build_loan_service(uow, self._policy, self._terms, self._clock)
            payment = await ledger.get(payment_id)
            if payment.is_terminal:
                return self._outcome(payment, gid, duplicate=True)

            won = await ledger.complete(payment, outcome.transaction_id, raw=outcome.raw)
            if not won:
                # captured at the gateway but another writer closed the row first
                payment = await ledger.get(payment_id)
                logger.error(
                    "payment_completed_after_close",
                    gateway_payment_id=gid,
                    payment_id=payment.id,
                    transaction_id=outcome.transaction_id,
                    recorded=payment.status.value,
                )
                payment = await ledger.note(
                    payment,
                    f"gateway completed trx {outcome.transaction_id} after the payment was {payment.status.value}",
                )
                await uow.commit()
                return self._outcome(payment, gid)

            try:
                await loans.settle_fine(
                    payment.loan_id,
                    method=payment.gateway,
                    note=f"payment {payment.id} trx {outcome.transaction_id}",
                )
            except (LoanNotFoundException, FineNotPendingException) as e:
                # the money is in; leave the trail for an operator
                logger.warning(
                    "payment_fine_not_settled",
                    payment_id=payment.id,
                    loan_id=payment.loan_id,
                    error_type=e.error_type,
                    error=e.message,
                )
                await ledger.note(payment, f"fine not settled: {e.message}")
            await uow.commit()

        log_domain_events(ledger.clear_events())
        log_domain_events(loans.clear_events())
        logger.info(
            "payment_callback_completed",
            gateway_payment_id=gid,
            payment_id=payment.id,
            transaction_id=outcome.transaction_id,
        )
        return self._outcome(payment, gid)
