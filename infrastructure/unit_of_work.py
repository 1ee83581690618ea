"""基于 SQLAlchemy 的工作单元"""
from __future__ import annotations

from typing import Optional, Callable

from sqlalchemy.ext.asyncio import AsyncSession

from domain.common.unit_of_work import AbstractUnitOfWork
from infrastructure.database import AsyncSessionLocal
from infrastructure.repositories.catalog_repository import (
    SQLAlchemyBookRepository,
    SQLAlchemyCopyRepository,
)
from infrastructure.repositories.loan_repository import SQLAlchemyLoanRepository
from infrastructure.repositories.payment_repository import SQLAlchemyPaymentRepository


class SQLAlchemyUnitOfWork(AbstractUnitOfWork):
    """一个 AsyncSession 加一个事务组成的工作单元"""

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession] = AsyncSessionLocal,
        session: Optional[AsyncSession] = None,
        *,
        readonly: bool = False,
    ) -> None:
        super().__init__(readonly=readonly)
        self._session_factory = session_factory
        self._external_session = session
        self.session: Optional[AsyncSession] = session
        self._transaction = None

    async def __aenter__(self) -> "SQLAlchemyUnitOfWork":
        if self.session is None:
            self.session = self._session_factory()
        self.book_repository = SQLAlchemyBookRepository(self.session)
        self.copy_repository = SQLAlchemyCopyRepository(self.session)
        self.loan_repository = SQLAlchemyLoanRepository(self.session)
        self.payment_repository = SQLAlchemyPaymentRepository(self.session)
        # 只读单元不显式开启事务
        if not self._readonly:
            self._transaction = await self.session.begin()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            await super().__aexit__(exc_type, exc, tb)
        finally:
            tx = self._transaction
            if tx is not None and tx.is_active:
                await tx.rollback()
            self._transaction = None
            if self._external_session is None and self.session is not None:
                await self.session.close()
                self.session = None
            self.book_repository = None
            self.copy_repository = None
            self.loan_repository = None
            self.payment_repository = None

    async def commit(self) -> None:
        if self._readonly:
            self._committed = True
            return
        if self.session and self.session.in_transaction():
            await self.session.commit()
        self._committed = True

    async def rollback(self) -> None:
        if self.session and self.session.in_transaction():
            await self.session.rollback()
        self._committed = False
