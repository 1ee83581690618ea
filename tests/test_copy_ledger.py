import pytest

from domain.catalog.entity import CopyState
from domain.catalog.ledger import CopyLedger
from domain.common.exceptions import (
    BookNotFoundException,
    CopyAlreadyRegisteredException,
    InvalidCopyTransitionException,
    NoAvailableCopyException,
)


async def _assert_counters_match(uow_factory, book_id):
    async with uow_factory(readonly=True) as uow:
        book = await uow.book_repository.get_by_id(book_id)
        counts = await uow.copy_repository.count_by_state(book_id)
    assert book.available_copies == counts.get(CopyState.AVAILABLE, 0)
    assert book.total_copies == sum(counts.values())


@pytest.mark.asyncio
async def test_register_copies_recounts_book(seed_book, read_book, uow_factory):
    book_id, copy_ids = await seed_book(copies=3)
    book = await read_book(book_id)
    assert len(copy_ids) == 3
    assert book.total_copies == 3
    assert book.available_copies == 3
    await _assert_counters_match(uow_factory, book_id)


@pytest.mark.asyncio
async def test_duplicate_barcode_rejected(seed_book, circulation):
    book_id, _ = await seed_book(copies=1)
    with pytest.raises(CopyAlreadyRegisteredException):
        await circulation.register_copy(book_id, f"BC-{book_id}-1")


@pytest.mark.asyncio
async def test_register_copy_for_unknown_book(circulation):
    with pytest.raises(BookNotFoundException):
        await circulation.register_copy(999, "BC-X")


@pytest.mark.asyncio
async def test_acquire_until_exhausted(seed_book, read_book, uow_factory, clock):
    book_id, copy_ids = await seed_book(copies=2)

    taken = []
    for _ in range(2):
        async with uow_factory() as uow:
            ledger = CopyLedger(uow.book_repository, uow.copy_repository)
            copy = await ledger.acquire(book_id, now=clock())
            taken.append(copy.id)
    assert sorted(taken) == sorted(copy_ids)
    assert (await read_book(book_id)).available_copies == 0

    async with uow_factory() as uow:
        ledger = CopyLedger(uow.book_repository, uow.copy_repository)
        with pytest.raises(NoAvailableCopyException):
            await ledger.acquire(book_id, now=clock())
    await _assert_counters_match(uow_factory, book_id)


@pytest.mark.asyncio
async def test_acquire_specific_copy_and_release(seed_book, read_book, uow_factory, clock):
    book_id, copy_ids = await seed_book(copies=2)
    target = copy_ids[1]

    async with uow_factory() as uow:
        ledger = CopyLedger(uow.book_repository, uow.copy_repository)
        copy = await ledger.acquire(book_id, target, now=clock())
    assert copy.id == target
    assert copy.state == CopyState.ON_LOAN
    assert copy.last_borrowed_at == clock()

    # the same copy cannot be taken twice
    async with uow_factory() as uow:
        ledger = CopyLedger(uow.book_repository, uow.copy_repository)
        with pytest.raises(NoAvailableCopyException):
            await ledger.acquire(book_id, target, now=clock())

    clock.advance(days=3)
    async with uow_factory() as uow:
        ledger = CopyLedger(uow.book_repository, uow.copy_repository)
        released = await ledger.release(target, now=clock())
    assert released.state == CopyState.AVAILABLE
    assert released.last_returned_at == clock()
    assert (await read_book(book_id)).available_copies == 2


@pytest.mark.asyncio
async def test_release_of_available_copy_is_invalid(seed_book, uow_factory, clock):
    _, copy_ids = await seed_book(copies=1)
    async with uow_factory() as uow:
        ledger = CopyLedger(uow.book_repository, uow.copy_repository)
        with pytest.raises(InvalidCopyTransitionException):
            await ledger.release(copy_ids[0], now=clock())


@pytest.mark.asyncio
async def test_reservation_and_maintenance_actions(seed_book, circulation, uow_factory):
    book_id, copy_ids = await seed_book(copies=3)

    reserved = await circulation.copy_action(copy_ids[0], "reserve")
    assert reserved.state == "reserved"
    repaired = await circulation.copy_action(copy_ids[1], "maintenance")
    assert repaired.state == "maintenance"

    availability = await circulation.availability(book_id)
    assert availability.available_copies == 1
    assert availability.total_copies == 3
    assert availability.by_state == {"available": 1, "on_loan": 0, "reserved": 1, "maintenance": 1}

    # a reserved copy cannot go straight to maintenance
    with pytest.raises(InvalidCopyTransitionException):
        await circulation.copy_action(copy_ids[0], "maintenance")

    await circulation.copy_action(copy_ids[0], "cancel-reservation")
    await circulation.copy_action(copy_ids[1], "restore")
    availability = await circulation.availability(book_id)
    assert availability.available_copies == 3
    await _assert_counters_match(uow_factory, book_id)


@pytest.mark.asyncio
async def test_copy_version_bumps_on_every_transition(seed_book, circulation):
    _, copy_ids = await seed_book(copies=1)
    first = await circulation.copy_action(copy_ids[0], "reserve")
    second = await circulation.copy_action(copy_ids[0], "cancel-reservation")
    assert second.version == first.version + 1


@pytest.mark.asyncio
async def test_list_copies_filters_by_state(seed_book, circulation):
    book_id, copy_ids = await seed_book(copies=2)
    await circulation.copy_action(copy_ids[0], "reserve")

    reserved = await circulation.list_copies(book_id, "reserved")
    assert [c.id for c in reserved] == [copy_ids[0]]
    assert len(await circulation.list_copies(book_id)) == 2
