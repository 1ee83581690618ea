import asyncio

import pytest

from application.dtos.loans import IssueLoanRequest
from application.dtos.payments import ExecutionOutcome, WebhookCallback
from infrastructure.external.payments.exceptions import GatewayExecuteError

BORROWER = 101


async def _pending_checkout(seed_book, circulation, payments, clock):
    book_id, _ = await seed_book(copies=1)
    loan = await circulation.issue_loan(IssueLoanRequest(borrower_id=BORROWER, book_id=book_id))
    clock.advance(days=20)
    await circulation.return_loan(loan.id)
    result = await payments.initiate_payment(loan.id, BORROWER)
    return loan.id, result


@pytest.mark.asyncio
async def test_success_completes_payment_and_settles_fine(seed_book, circulation, payments, reconciler, gateway, clock):
    loan_id, checkout = await _pending_checkout(seed_book, circulation, payments, clock)

    outcome = await reconciler.handle(WebhookCallback(paymentID=checkout.gateway_payment_id, status="success"))
    assert outcome.outcome == "completed"
    assert outcome.duplicate is False
    assert outcome.payment_id == checkout.payment_id
    assert outcome.loan_id == loan_id
    assert gateway.executed == [checkout.gateway_payment_id]

    payment = await payments.get_payment(checkout.payment_id)
    assert payment.status == "completed"
    assert payment.gateway_transaction_id == f"TRX-{checkout.gateway_payment_id}"
    assert payment.completed_at == clock()

    loan = await circulation.get_loan(loan_id)
    assert loan.fine.status == "paid"
    assert loan.fine.payment_method == "bkash"
    assert loan.fine.paid_at == clock()


@pytest.mark.asyncio
async def test_duplicate_delivery_is_a_no_op(seed_book, circulation, payments, reconciler, gateway, clock):
    loan_id, checkout = await _pending_checkout(seed_book, circulation, payments, clock)
    callback = WebhookCallback(paymentID=checkout.gateway_payment_id, status="success")

    first, second = await asyncio.gather(reconciler.handle(callback), reconciler.handle(callback))
    assert {first.outcome, second.outcome} == {"completed"}
    assert sorted([first.duplicate, second.duplicate]) == [False, True]
    assert gateway.executed == [checkout.gateway_payment_id]

    paid = await circulation.get_loan(loan_id)
    assert paid.fine.status == "paid"

    # a late redelivery, even with another status, does not change anything
    late = await reconciler.handle(WebhookCallback(paymentID=checkout.gateway_payment_id, status="failure"))
    assert late.outcome == "completed"
    assert late.duplicate is True
    assert len(gateway.executed) == 1
    assert (await circulation.get_loan(loan_id)).fine.paid_at == paid.fine.paid_at


@pytest.mark.asyncio
@pytest.mark.parametrize("status, expected", [("cancel", "cancelled"), ("failure", "failed"), ("timeout", "failed")])
async def test_non_success_never_executes(seed_book, circulation, payments, reconciler, gateway, clock, status, expected):
    loan_id, checkout = await _pending_checkout(seed_book, circulation, payments, clock)

    outcome = await reconciler.handle(WebhookCallback(paymentID=checkout.gateway_payment_id, status=status))
    assert outcome.outcome == expected
    assert gateway.executed == []

    payment = await payments.get_payment(checkout.payment_id)
    assert payment.status == expected
    assert (await circulation.get_loan(loan_id)).fine.status == "pending"

    # a success arriving after the failure is ignored
    again = await reconciler.handle(WebhookCallback(paymentID=checkout.gateway_payment_id, status="success"))
    assert again.duplicate is True
    assert again.outcome == expected
    assert gateway.executed == []


@pytest.mark.asyncio
async def test_execute_error_marks_payment_failed(seed_book, circulation, payments, reconciler, gateway, clock):
    loan_id, checkout = await _pending_checkout(seed_book, circulation, payments, clock)
    gateway.execute_error = GatewayExecuteError("bKash execute failed: timed out", gateway="bkash")

    outcome = await reconciler.handle(WebhookCallback(paymentID=checkout.gateway_payment_id, status="success"))
    assert outcome.outcome == "failed"

    payment = await payments.get_payment(checkout.payment_id)
    assert payment.status == "failed"
    assert "execute error" in payment.notes
    assert (await circulation.get_loan(loan_id)).fine.status == "pending"

    # the borrower can start over
    retry = await payments.initiate_payment(loan_id, BORROWER)
    assert retry.payment_id != checkout.payment_id


@pytest.mark.asyncio
async def test_execute_not_completed_marks_payment_failed(seed_book, circulation, payments, reconciler, gateway, clock):
    loan_id, checkout = await _pending_checkout(seed_book, circulation, payments, clock)
    gateway.outcome = ExecutionOutcome(
        completed=False,
        status="failed",
        reason_code="2023",
        raw={"statusCode": "2023", "statusMessage": "Insufficient Balance"},
    )

    outcome = await reconciler.handle(WebhookCallback(paymentID=checkout.gateway_payment_id, status="success"))
    assert outcome.outcome == "failed"
    payment = await payments.get_payment(checkout.payment_id)
    assert "2023" in payment.notes
    assert (await circulation.get_loan(loan_id)).fine.status == "pending"


@pytest.mark.asyncio
async def test_completed_payment_for_waived_fine_is_noted(seed_book, circulation, payments, reconciler, uow_factory, clock):
    loan_id, checkout = await _pending_checkout(seed_book, circulation, payments, clock)
    # fine settled out of band while the checkout was open
    async with uow_factory() as uow:
        loan = await uow.loan_repository.get_by_id(loan_id)
        loan.waive_fine(clock(), actor=7, reason="staff override")
        await uow.loan_repository.update(loan)

    outcome = await reconciler.handle(WebhookCallback(paymentID=checkout.gateway_payment_id, status="success"))
    assert outcome.outcome == "completed"

    payment = await payments.get_payment(checkout.payment_id)
    assert payment.status == "completed"
    assert "fine not settled" in payment.notes
    assert (await circulation.get_loan(loan_id)).fine.status == "waived"


@pytest.mark.asyncio
async def test_unknown_payment_id(reconciler, gateway):
    outcome = await reconciler.handle(WebhookCallback(paymentID="TR-UNKNOWN", status="success"))
    assert outcome.outcome == "not_found"
    assert outcome.payment_id is None
    assert gateway.executed == []


async def _wait_for_execute(gateway):
    while not gateway.executed:
        await asyncio.sleep(0)


@pytest.mark.asyncio
async def test_unexpected_execute_error_marks_payment_failed(seed_book, circulation, payments, reconciler, gateway, clock):
    loan_id, checkout = await _pending_checkout(seed_book, circulation, payments, clock)
    gateway.execute_error = RuntimeError("trxID is not a string")

    outcome = await reconciler.handle(WebhookCallback(paymentID=checkout.gateway_payment_id, status="success"))
    assert outcome.outcome == "failed"

    payment = await payments.get_payment(checkout.payment_id)
    assert payment.status == "failed"
    assert "RuntimeError" in payment.notes
    assert (await circulation.get_loan(loan_id)).fine.status == "pending"


@pytest.mark.asyncio
async def test_sweep_leaves_payment_alone_while_execute_runs(seed_book, circulation, payments, reconciler, gateway, clock):
    loan_id, checkout = await _pending_checkout(seed_book, circulation, payments, clock)
    gateway.execute_gate = asyncio.Event()

    callback = asyncio.create_task(
        reconciler.handle(WebhookCallback(paymentID=checkout.gateway_payment_id, status="success"))
    )
    await _wait_for_execute(gateway)

    clock.advance(minutes=61)
    assert await payments.expire_stale() == 0

    gateway.execute_gate.set()
    outcome = await callback
    assert outcome.outcome == "completed"
    assert outcome.duplicate is False

    assert (await payments.get_payment(checkout.payment_id)).status == "completed"
    assert (await circulation.get_loan(loan_id)).fine.status == "paid"
    assert await payments.expire_stale() == 0


@pytest.mark.asyncio
async def test_capture_after_row_was_closed_is_reported(seed_book, circulation, payments, reconciler, gateway, uow_factory, clock):
    loan_id, checkout = await _pending_checkout(seed_book, circulation, payments, clock)
    gateway.execute_gate = asyncio.Event()

    callback = asyncio.create_task(
        reconciler.handle(WebhookCallback(paymentID=checkout.gateway_payment_id, status="success"))
    )
    await _wait_for_execute(gateway)

    # closed by a writer that ignores the callback lock
    async with uow_factory() as uow:
        payment = await uow.payment_repository.get_by_id(checkout.payment_id)
        payment.mark_cancelled("closed by operator", clock())
        await uow.payment_repository.update(payment)

    gateway.execute_gate.set()
    outcome = await callback
    assert outcome.outcome == "cancelled"
    assert outcome.duplicate is False

    payment = await payments.get_payment(checkout.payment_id)
    assert payment.status == "cancelled"
    assert f"gateway completed trx TRX-{checkout.gateway_payment_id}" in payment.notes
    assert (await circulation.get_loan(loan_id)).fine.status == "pending"
