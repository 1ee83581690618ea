"""
副本台账 - 副本保管状态与图书可借数量的唯一写入方

每次迁移都在锁住图书行的前提下对 ``(state, version)`` 做 CAS，
随后在同一事务内按副本状态重新统计图书计数。
计数总是重新计算，从不做增减。
"""
from datetime import datetime, timezone
from typing import Optional, List

from .entity import Book, Copy, CopyState
from .repository import BookRepository, CopyRepository
from domain.common.exceptions import (
    BookNotFoundException,
    CopyNotFoundException,
    CopyAlreadyRegisteredException,
    NoAvailableCopyException,
    InvalidCopyTransitionException,
)


class CopyLedger:
    """实体副本的保管状态迁移"""

    # 每轮占用尝试拉取的候选数
    ACQUIRE_BATCH = 10
    MAX_ACQUIRE_ROUNDS = 3

    def __init__(self, book_repository: BookRepository, copy_repository: CopyRepository):
        self.book_repository = book_repository
        self.copy_repository = copy_repository

    async def _lock_book(self, book_id: int) -> Book:
        book = await self.book_repository.get_by_id(book_id, for_update=True)
        if not book:
            raise BookNotFoundException(book_id)
        return book

    async def _swap(self, copy: Copy, target: CopyState, now: datetime) -> bool:
        expected_state, expected_version = copy.state, copy.version
        copy.transition_to(target, now)
        saved = await self.copy_repository.save_state(
            copy, expected_state=expected_state, expected_version=expected_version
        )
        if not saved:
            # 回滚内存中的实体，库中记录已被其他写入方改动
            copy.state, copy.version = expected_state, expected_version
        return saved

    async def acquire(
        self,
        book_id: int,
        copy_id: Optional[int] = None,
        *,
        now: Optional[datetime] = None,
    ) -> Copy:
        """
        把 ``book_id`` 的一本可借副本置为 on_loan。

        指定 ``copy_id`` 时只考虑该副本。没有可占用的副本时抛出
        NoAvailableCopyException。
        """
        now = now or datetime.now(timezone.utc)
        await self._lock_book(book_id)

        if copy_id is not None:
            copy = await self.copy_repository.get_by_id(copy_id)
            if not copy or copy.book_id != book_id:
                raise CopyNotFoundException(copy_id)
            if copy.is_available and await self._swap(copy, CopyState.ON_LOAN, now):
                await self.recount(book_id)
                return copy
            raise NoAvailableCopyException(book_id)

        for _ in range(self.MAX_ACQUIRE_ROUNDS):
            candidates = await self.copy_repository.list_by_book(
                book_id, state=CopyState.AVAILABLE, limit=self.ACQUIRE_BATCH
            )
            if not candidates:
                break
            for copy in candidates:
                if await self._swap(copy, CopyState.ON_LOAN, now):
                    await self.recount(book_id)
                    return copy
        raise NoAvailableCopyException(book_id)

    async def _move(
        self,
        copy_id: int,
        source: CopyState,
        target: CopyState,
        now: Optional[datetime] = None,
    ) -> Copy:
        now = now or datetime.now(timezone.utc)
        copy = await self.copy_repository.get_by_id(copy_id)
        if not copy:
            raise CopyNotFoundException(copy_id)
        await self._lock_book(copy.book_id)
        # 持有图书锁后重新读取
        copy = await self.copy_repository.get_by_id(copy_id)
        if copy.state != source or not copy.can_transition(target):
            raise InvalidCopyTransitionException(copy_id, copy.state.value, target.value)
        if not await self._swap(copy, target, now):
            current = await self.copy_repository.get_by_id(copy_id)
            raise InvalidCopyTransitionException(copy_id, current.state.value, target.value)
        await self.recount(copy.book_id)
        return copy

    async def release(self, copy_id: int, *, now: Optional[datetime] = None) -> Copy:
        """on_loan -> available"""
        return await self._move(copy_id, CopyState.ON_LOAN, CopyState.AVAILABLE, now)

    async def reserve(self, copy_id: int, *, now: Optional[datetime] = None) -> Copy:
        return await self._move(copy_id, CopyState.AVAILABLE, CopyState.RESERVED, now)

    async def cancel_reservation(self, copy_id: int, *, now: Optional[datetime] = None) -> Copy:
        return await self._move(copy_id, CopyState.RESERVED, CopyState.AVAILABLE, now)

    async def send_to_maintenance(self, copy_id: int, *, now: Optional[datetime] = None) -> Copy:
        return await self._move(copy_id, CopyState.AVAILABLE, CopyState.MAINTENANCE, now)

    async def return_from_maintenance(self, copy_id: int, *, now: Optional[datetime] = None) -> Copy:
        return await self._move(copy_id, CopyState.MAINTENANCE, CopyState.AVAILABLE, now)

    async def register_copy(
        self,
        book_id: int,
        barcode: str,
        *,
        now: Optional[datetime] = None,
    ) -> Copy:
        """为图书登记一本新的可借副本"""
        now = now or datetime.now(timezone.utc)
        await self._lock_book(book_id)
        if await self.copy_repository.exists_by_barcode(barcode.strip()):
            raise CopyAlreadyRegisteredException(barcode)
        copy = await self.copy_repository.create(
            Copy(id=None, book_id=book_id, barcode=barcode, created_at=now, updated_at=now)
        )
        await self.recount(book_id)
        return copy

    async def recount(self, book_id: int) -> int:
        """重新统计并保存图书计数，返回可借数量"""
        counts = await self.copy_repository.count_by_state(book_id)
        available = counts.get(CopyState.AVAILABLE, 0)
        total = sum(counts.values())
        await self.book_repository.update_counts(book_id, available=available, total=total)
        return available

    async def has_reservation(self, book_id: int) -> bool:
        """只要有副本处于 reserved 状态，图书即视为已被预约"""
        counts = await self.copy_repository.count_by_state(book_id)
        return counts.get(CopyState.RESERVED, 0) > 0

    async def availability(self, book_id: int) -> dict:
        book = await self.book_repository.get_by_id(book_id)
        if not book:
            raise BookNotFoundException(book_id)
        counts = await self.copy_repository.count_by_state(book_id)
        return {
            "book_id": book_id,
            "available_copies": book.available_copies,
            "total_copies": book.total_copies,
            "by_state": {state.value: counts.get(state, 0) for state in CopyState},
        }

    async def list_copies(self, book_id: int, state: Optional[CopyState] = None) -> List[Copy]:
        return await self.copy_repository.list_by_book(book_id, state=state, limit=1000)
