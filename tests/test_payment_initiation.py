import asyncio
from decimal import Decimal

import pytest

from application.dtos.loans import IssueLoanRequest
from application.dtos.payments import WebhookCallback
from domain.common.exceptions import (
    NoPendingFineException,
    NotLoanOwnerException,
    PaymentInProgressException,
    PaymentNotRefundableException,
)
from infrastructure.external.payments.exceptions import GatewayCreateError

BORROWER = 101


async def _fined_loan(seed_book, circulation, clock, late_days=10):
    book_id, _ = await seed_book(copies=1)
    loan = await circulation.issue_loan(IssueLoanRequest(borrower_id=BORROWER, book_id=book_id))
    clock.advance(days=14 + late_days)
    return await circulation.return_loan(loan.id)


@pytest.mark.asyncio
async def test_initiate_creates_pending_payment(seed_book, circulation, payments, gateway, clock):
    loan = await _fined_loan(seed_book, circulation, clock)

    result = await payments.initiate_payment(loan.id, BORROWER)
    assert result.amount == Decimal("65")
    assert result.currency == "BDT"
    assert result.gateway_payment_id == "TR001"
    assert result.redirect_url.endswith("TR001")
    assert result.reused is False
    assert gateway.created == [(Decimal("65"), f"fine-{result.payment_id}")]

    payment = await payments.get_payment(result.payment_id)
    assert payment.status == "pending"
    assert payment.loan_id == loan.id


@pytest.mark.asyncio
async def test_initiate_twice_hands_back_the_same_checkout(seed_book, circulation, payments, gateway, clock):
    loan = await _fined_loan(seed_book, circulation, clock)

    first, second = await asyncio.gather(
        payments.initiate_payment(loan.id, BORROWER),
        payments.initiate_payment(loan.id, BORROWER),
    )
    assert first.payment_id == second.payment_id
    assert {first.reused, second.reused} == {False, True}
    assert len(gateway.created) == 1
    assert len(await payments.list_for_loan(loan.id)) == 1


@pytest.mark.asyncio
async def test_initiate_by_someone_else(seed_book, circulation, payments, gateway, clock):
    loan = await _fined_loan(seed_book, circulation, clock)
    with pytest.raises(NotLoanOwnerException):
        await payments.initiate_payment(loan.id, borrower_id=999)
    assert gateway.created == []


@pytest.mark.asyncio
async def test_initiate_without_fine(seed_book, circulation, payments, clock):
    loan = await _fined_loan(seed_book, circulation, clock, late_days=0)
    with pytest.raises(NoPendingFineException):
        await payments.initiate_payment(loan.id, BORROWER)


@pytest.mark.asyncio
async def test_create_failure_keeps_row_pending_and_retry_reuses_it(seed_book, circulation, payments, gateway, clock):
    loan = await _fined_loan(seed_book, circulation, clock)
    gateway.create_error = GatewayCreateError("bKash create failed: 2001", gateway="bkash", gateway_code="2001")

    with pytest.raises(GatewayCreateError):
        await payments.initiate_payment(loan.id, BORROWER)

    [failed_attempt] = await payments.list_for_loan(loan.id)
    assert failed_attempt.status == "pending"
    assert failed_attempt.gateway_payment_id is None
    assert "create failed" in failed_attempt.notes

    gateway.create_error = None
    result = await payments.initiate_payment(loan.id, BORROWER)
    assert result.payment_id == failed_attempt.id
    assert result.gateway_payment_id == "TR002"


@pytest.mark.asyncio
async def test_waive_refused_while_payment_pending(seed_book, circulation, payments, clock):
    loan = await _fined_loan(seed_book, circulation, clock)
    await payments.initiate_payment(loan.id, BORROWER)
    with pytest.raises(PaymentInProgressException):
        await circulation.waive_fine(loan.id, actor=7)


@pytest.mark.asyncio
async def test_expire_stale_cancels_old_pending_payments(seed_book, circulation, payments, clock):
    loan = await _fined_loan(seed_book, circulation, clock)
    result = await payments.initiate_payment(loan.id, BORROWER)

    clock.advance(minutes=30)
    assert await payments.expire_stale() == 0
    clock.advance(minutes=31)
    assert await payments.expire_stale() == 1

    payment = await payments.get_payment(result.payment_id)
    assert payment.status == "cancelled"
    # the fine is still owed and can be paid with a fresh checkout
    again = await payments.initiate_payment(loan.id, BORROWER)
    assert again.payment_id != result.payment_id


@pytest.mark.asyncio
async def test_refund_only_completed_payments(seed_book, circulation, payments, reconciler, clock):
    loan = await _fined_loan(seed_book, circulation, clock)
    result = await payments.initiate_payment(loan.id, BORROWER)

    with pytest.raises(PaymentNotRefundableException):
        await payments.refund_payment(result.payment_id, reason="duplicate charge")

    await reconciler.handle(WebhookCallback(paymentID=result.gateway_payment_id, status="success"))
    refunded = await payments.refund_payment(result.payment_id, reason="duplicate charge", actor=1)
    assert refunded.status == "refunded"

    settled = await circulation.get_loan(loan.id)
    assert settled.fine.status == "paid"
    assert f"payment {result.payment_id} refunded" in settled.fine.notes

    with pytest.raises(PaymentNotRefundableException):
        await payments.refund_payment(result.payment_id)
