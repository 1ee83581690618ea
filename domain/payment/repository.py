"""
支付仓储接口
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional, List

from .entity import Payment, PaymentStatus


class PaymentRepository(ABC):
    """支付持久化，记录不删除"""

    @abstractmethod
    async def create(self, payment: Payment) -> Payment:
        """创建支付记录"""
        pass

    @abstractmethod
    async def get_by_id(self, payment_id: int) -> Optional[Payment]:
        pass

    @abstractmethod
    async def get_by_gateway_payment_id(self, gateway_payment_id: str) -> Optional[Payment]:
        """回调对账时按网关支付号查询"""
        pass

    @abstractmethod
    async def find_open_for_loan(self, loan_id: int) -> Optional[Payment]:
        """借阅当前 pending 或 completed 的支付（如有）"""
        pass

    @abstractmethod
    async def list_by_loan(self, loan_id: int) -> List[Payment]:
        pass

    @abstractmethod
    async def update(self, payment: Payment) -> Payment:
        """无条件写入非状态字段（网关引用、备注、原始响应）"""
        pass

    @abstractmethod
    async def update_if_status(self, payment: Payment, expected: PaymentStatus) -> bool:
        """
        仅当库中记录仍为 ``expected`` 状态时写入。

        已被其他写入方改动时返回 False。
        """
        pass

    @abstractmethod
    async def list_pending_created_before(self, moment: datetime, limit: int = 100) -> List[Payment]:
        pass
