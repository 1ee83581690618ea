"""工作单元抽象"""
from __future__ import annotations

from abc import ABC, abstractmethod

from domain.catalog.repository import BookRepository, CopyRepository
from domain.loan.repository import LoanRepository
from domain.payment.repository import PaymentRepository


class AbstractUnitOfWork(ABC):
    """应用层使用的事务边界"""

    book_repository: BookRepository
    copy_repository: CopyRepository
    loan_repository: LoanRepository
    payment_repository: PaymentRepository

    def __init__(self, *, readonly: bool = False) -> None:
        self._committed = False
        self._readonly = readonly
        self.book_repository = None  # type: ignore[assignment]
        self.copy_repository = None  # type: ignore[assignment]
        self.loan_repository = None  # type: ignore[assignment]
        self.payment_repository = None  # type: ignore[assignment]

    async def __aenter__(self) -> "AbstractUnitOfWork":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if exc:
            await self.rollback()
        else:
            # 仅对未显式提交的可写单元自动提交
            if not self._readonly and not self._committed:
                await self.commit()

    @abstractmethod
    async def commit(self) -> None:
        ...

    @abstractmethod
    async def rollback(self) -> None:
        ...
