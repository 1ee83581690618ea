import asyncio
from decimal import Decimal

import pytest

from application.dtos.loans import IssueLoanRequest
from application.services.circulation_service import CirculationService
from domain.common.exceptions import (
    AlreadyReturnedException,
    FineNotPendingException,
    LoanNotActiveException,
    NoAvailableCopyException,
    NoPendingFineException,
    RenewalLimitExceededException,
    ReservationConflictException,
    UnpaidFineExistsException,
)
from domain.loan.policy import FinePolicy

U1, U2 = 101, 102


@pytest.mark.asyncio
async def test_single_copy_scenario(seed_book, read_book, uow_factory, terms, clock):
    # only the first tier is charged so ten late days cost 7 * 5
    first_tier_only = FinePolicy(second_tier_rate=Decimal("0"), third_tier_rate=Decimal("0"))
    circulation = CirculationService(uow_factory, first_tier_only, terms, clock)
    book_id, _ = await seed_book(copies=1)

    loan = await circulation.issue_loan(IssueLoanRequest(borrower_id=U1, book_id=book_id))
    assert loan.status == "active"
    assert (await read_book(book_id)).available_copies == 0

    with pytest.raises(NoAvailableCopyException):
        await circulation.issue_loan(IssueLoanRequest(borrower_id=U2, book_id=book_id))
    _, total = await circulation.list_loans(borrower_id=U2)
    assert total == 0

    clock.advance(days=14 + 10)
    returned = await circulation.return_loan(loan.id)
    assert returned.status == "returned"
    assert returned.fine.amount == Decimal("35")
    assert returned.fine.status == "pending"
    assert (await read_book(book_id)).available_copies == 1


@pytest.mark.asyncio
async def test_return_ten_days_late_with_default_tiers(seed_book, circulation, terms, clock):
    book_id, _ = await seed_book(copies=1)
    loan = await circulation.issue_loan(IssueLoanRequest(borrower_id=U1, book_id=book_id))
    assert loan.due_at - loan.issued_at == terms.loan_duration

    clock.advance(days=24)
    returned = await circulation.return_loan(loan.id)
    assert returned.fine.amount == Decimal("65")


@pytest.mark.asyncio
async def test_partial_day_counts_as_a_full_day(seed_book, circulation, clock):
    book_id, _ = await seed_book(copies=1)
    loan = await circulation.issue_loan(IssueLoanRequest(borrower_id=U1, book_id=book_id))
    clock.advance(days=14, hours=2)
    returned = await circulation.return_loan(loan.id)
    assert returned.fine.amount == Decimal("5")


@pytest.mark.asyncio
async def test_on_time_return_has_no_fine(seed_book, circulation, clock):
    book_id, _ = await seed_book(copies=1)
    loan = await circulation.issue_loan(IssueLoanRequest(borrower_id=U1, book_id=book_id))
    clock.advance(days=3)
    returned = await circulation.return_loan(loan.id)
    assert returned.fine.amount == Decimal("0")

    # a zero fine does not block the next loan
    again = await circulation.issue_loan(IssueLoanRequest(borrower_id=U1, book_id=book_id))
    assert again.status == "active"


@pytest.mark.asyncio
async def test_double_return_fails_without_side_effects(seed_book, read_book, circulation, clock):
    book_id, _ = await seed_book(copies=2)
    loan = await circulation.issue_loan(IssueLoanRequest(borrower_id=U1, book_id=book_id))
    other = await circulation.issue_loan(IssueLoanRequest(borrower_id=U2, book_id=book_id))
    clock.advance(days=20)
    first = await circulation.return_loan(loan.id)

    with pytest.raises(AlreadyReturnedException):
        await circulation.return_loan(loan.id)

    again = await circulation.get_loan(loan.id)
    assert again.fine.amount == first.fine.amount
    assert again.returned_at == first.returned_at
    # only the returned copy came back; the other is still out
    assert (await read_book(book_id)).available_copies == 1
    assert (await circulation.get_loan(other.id)).status == "active"


@pytest.mark.asyncio
async def test_unpaid_fine_blocks_new_loans_until_waived(seed_book, circulation, clock):
    book_id, _ = await seed_book(copies=2)
    loan = await circulation.issue_loan(IssueLoanRequest(borrower_id=U1, book_id=book_id))
    clock.advance(days=16)
    await circulation.return_loan(loan.id)

    with pytest.raises(UnpaidFineExistsException) as exc_info:
        await circulation.issue_loan(IssueLoanRequest(borrower_id=U1, book_id=book_id))
    assert exc_info.value.details["loan_ids"] == [loan.id]

    waived = await circulation.waive_fine(loan.id, actor=7, reason="first offence")
    assert waived.fine.status == "waived"
    assert waived.fine.notes == "first offence"

    with pytest.raises(FineNotPendingException):
        await circulation.waive_fine(loan.id, actor=7)

    issued = await circulation.issue_loan(IssueLoanRequest(borrower_id=U1, book_id=book_id))
    assert issued.status == "active"


@pytest.mark.asyncio
async def test_waive_without_fine(seed_book, circulation):
    book_id, _ = await seed_book(copies=1)
    loan = await circulation.issue_loan(IssueLoanRequest(borrower_id=U1, book_id=book_id))
    await circulation.return_loan(loan.id)
    with pytest.raises(NoPendingFineException):
        await circulation.waive_fine(loan.id, actor=7)


@pytest.mark.asyncio
async def test_renewal_limit_leaves_loan_unchanged(seed_book, circulation, terms, clock):
    book_id, _ = await seed_book(copies=1)
    loan = await circulation.issue_loan(IssueLoanRequest(borrower_id=U1, book_id=book_id))

    for expected_count in (1, 2):
        clock.advance(days=5)
        renewed = await circulation.renew_loan(loan.id, actor=U1)
        assert renewed.renewal_count == expected_count
        assert renewed.due_at == clock() + terms.renewal_duration
        assert renewed.status == "active"

    before = await circulation.get_loan(loan.id)
    clock.advance(days=1)
    with pytest.raises(RenewalLimitExceededException):
        await circulation.renew_loan(loan.id, actor=U1)

    after = await circulation.get_loan(loan.id)
    assert after.renewal_count == before.renewal_count == 2
    assert after.due_at == before.due_at


@pytest.mark.asyncio
async def test_renewal_refused_while_book_is_reserved(seed_book, circulation):
    book_id, copy_ids = await seed_book(copies=2)
    loan = await circulation.issue_loan(IssueLoanRequest(borrower_id=U1, book_id=book_id, copy_id=copy_ids[0]))
    await circulation.copy_action(copy_ids[1], "reserve")

    with pytest.raises(ReservationConflictException):
        await circulation.renew_loan(loan.id)

    await circulation.copy_action(copy_ids[1], "cancel-reservation")
    renewed = await circulation.renew_loan(loan.id)
    assert renewed.renewal_count == 1


@pytest.mark.asyncio
async def test_overdue_sweep_then_return(seed_book, read_book, circulation, clock):
    book_id, _ = await seed_book(copies=2)
    late = await circulation.issue_loan(IssueLoanRequest(borrower_id=U1, book_id=book_id))
    clock.advance(days=10)
    fresh = await circulation.issue_loan(IssueLoanRequest(borrower_id=U2, book_id=book_id))

    clock.advance(days=5)
    assert await circulation.mark_overdue() == 1
    assert (await circulation.get_loan(late.id)).status == "overdue"
    assert (await circulation.get_loan(fresh.id)).status == "active"
    # already flagged loans are not picked up again
    assert await circulation.mark_overdue() == 0

    with pytest.raises(LoanNotActiveException):
        await circulation.renew_loan(late.id)

    returned = await circulation.return_loan(late.id)
    assert returned.status == "returned"
    assert returned.fine.amount == Decimal("5")
    assert (await read_book(book_id)).available_copies == 1


@pytest.mark.asyncio
async def test_lost_loan_keeps_copy_out_of_circulation(seed_book, read_book, circulation):
    book_id, _ = await seed_book(copies=1)
    loan = await circulation.issue_loan(IssueLoanRequest(borrower_id=U1, book_id=book_id))

    lost = await circulation.mark_lost(loan.id, actor=7)
    assert lost.status == "lost"
    assert (await read_book(book_id)).available_copies == 0

    with pytest.raises(LoanNotActiveException):
        await circulation.return_loan(loan.id)
    with pytest.raises(LoanNotActiveException):
        await circulation.mark_lost(loan.id)


@pytest.mark.asyncio
async def test_list_loans_pages_and_filters(seed_book, circulation):
    book_id, _ = await seed_book(copies=3)
    for borrower in (U1, U1, U2):
        await circulation.issue_loan(IssueLoanRequest(borrower_id=borrower, book_id=book_id))

    items, total = await circulation.list_loans(borrower_id=U1, page=1, size=1)
    assert total == 2
    assert len(items) == 1

    items, total = await circulation.list_loans(status="active")
    assert total == 3
    items, total = await circulation.list_loans(status="returned")
    assert total == 0


@pytest.mark.asyncio
async def test_concurrent_issues_never_share_a_copy(seed_book, read_book, circulation):
    book_id, [copy_id] = await seed_book(copies=1)

    results = await asyncio.gather(
        *(circulation.issue_loan(IssueLoanRequest(borrower_id=b, book_id=book_id)) for b in (101, 102, 103, 104)),
        return_exceptions=True,
    )
    issued = [r for r in results if not isinstance(r, Exception)]
    refused = [r for r in results if isinstance(r, Exception)]

    assert len(issued) == 1
    assert issued[0].copy_id == copy_id
    assert all(isinstance(e, NoAvailableCopyException) for e in refused)
    assert len(refused) == 3
    assert (await read_book(book_id)).available_copies == 0
    _, open_loans = await circulation.list_loans(status="active")
    assert open_loans == 1
