"""
馆藏仓储接口
"""
from abc import ABC, abstractmethod
from typing import Optional, List

from .entity import Book, Copy, CopyState


class BookRepository(ABC):
    """图书持久化。馆藏增删改查另有归属，这里只覆盖借阅流程所需"""

    @abstractmethod
    async def create(self, book: Book) -> Book:
        """创建图书（供初始化数据和馆藏协作方使用）"""
        pass

    @abstractmethod
    async def get_by_id(self, book_id: int, *, for_update: bool = False) -> Optional[Book]:
        """获取图书，``for_update`` 会加行锁以串行化其副本集合的变更"""
        pass

    @abstractmethod
    async def update_counts(self, book_id: int, available: int, total: int) -> None:
        """保存推导出的副本计数"""
        pass


class CopyRepository(ABC):
    """副本持久化，状态写入采用 CAS"""

    @abstractmethod
    async def create(self, copy: Copy) -> Copy:
        pass

    @abstractmethod
    async def get_by_id(self, copy_id: int) -> Optional[Copy]:
        pass

    @abstractmethod
    async def exists_by_barcode(self, barcode: str) -> bool:
        pass

    @abstractmethod
    async def list_by_book(
        self,
        book_id: int,
        state: Optional[CopyState] = None,
        limit: int = 100,
    ) -> List[Copy]:
        pass

    @abstractmethod
    async def count_by_state(self, book_id: int) -> dict[CopyState, int]:
        """按保管状态统计图书的副本数"""
        pass

    @abstractmethod
    async def save_state(self, copy: Copy, *, expected_state: CopyState, expected_version: int) -> bool:
        """
        仅当库中记录仍为 ``expected_state`` 与 ``expected_version`` 时
        写入 ``copy.state``。被其他写入方抢先时返回 False。
        """
        pass
