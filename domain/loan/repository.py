"""
借阅仓储接口
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional, List

from .entity import Loan, LoanStatus


class LoanRepository(ABC):
    """借阅持久化，记录不删除"""

    @abstractmethod
    async def create(self, loan: Loan) -> Loan:
        pass

    @abstractmethod
    async def get_by_id(self, loan_id: int, *, for_update: bool = False) -> Optional[Loan]:
        pass

    @abstractmethod
    async def update(self, loan: Loan) -> Loan:
        pass

    @abstractmethod
    async def list_loans(
        self,
        borrower_id: Optional[int] = None,
        status: Optional[LoanStatus] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[Loan]:
        pass

    @abstractmethod
    async def count_loans(
        self,
        borrower_id: Optional[int] = None,
        status: Optional[LoanStatus] = None,
    ) -> int:
        pass

    @abstractmethod
    async def outstanding_fine_loan_ids(self, borrower_id: int) -> List[int]:
        """借阅人名下罚金 pending 且金额为正的借阅 id"""
        pass

    @abstractmethod
    async def get_open_by_copy(self, copy_id: int) -> Optional[Loan]:
        """占用 ``copy_id`` 的在借或逾期借阅（如有）"""
        pass

    @abstractmethod
    async def list_active_due_before(self, moment: datetime, limit: int = 500) -> List[Loan]:
        pass
