"""
馆藏实体 - 图书及其实体副本
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from domain.common.exceptions import DomainValidationException


class CopyState(str, Enum):
    """实体副本的保管状态"""
    AVAILABLE = "available"
    ON_LOAN = "on_loan"
    RESERVED = "reserved"
    MAINTENANCE = "maintenance"


# 源状态 -> 可迁移到的状态
COPY_TRANSITIONS: dict[CopyState, frozenset[CopyState]] = {
    CopyState.AVAILABLE: frozenset({CopyState.ON_LOAN, CopyState.RESERVED, CopyState.MAINTENANCE}),
    CopyState.ON_LOAN: frozenset({CopyState.AVAILABLE}),
    CopyState.RESERVED: frozenset({CopyState.AVAILABLE}),
    CopyState.MAINTENANCE: frozenset({CopyState.AVAILABLE}),
}


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """无时区的时间统一视为 UTC"""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@dataclass
class Book:
    """
    馆藏条目。

    ``available_copies`` 与 ``total_copies`` 是由副本状态推导出的缓存，
    只由副本台账写入。
    """

    id: Optional[int]
    title: str
    author: str
    isbn: str
    total_copies: int = 0
    available_copies: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if not self.isbn or not self.isbn.strip():
            raise DomainValidationException("ISBN is required", field="isbn")
        self.isbn = self.isbn.strip()
        self.created_at = _ensure_utc(self.created_at)
        self.updated_at = _ensure_utc(self.updated_at)


@dataclass
class Copy:
    """图书的一本实体副本，单独跟踪"""

    id: Optional[int]
    book_id: int
    barcode: str
    state: CopyState = CopyState.AVAILABLE
    version: int = 0
    last_borrowed_at: Optional[datetime] = None
    last_returned_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if not self.barcode or not self.barcode.strip():
            raise DomainValidationException("Barcode is required", field="barcode")
        self.barcode = self.barcode.strip()
        self.last_borrowed_at = _ensure_utc(self.last_borrowed_at)
        self.last_returned_at = _ensure_utc(self.last_returned_at)
        self.created_at = _ensure_utc(self.created_at)
        self.updated_at = _ensure_utc(self.updated_at)

    @property
    def is_available(self) -> bool:
        return self.state == CopyState.AVAILABLE

    def can_transition(self, target: CopyState) -> bool:
        return target in COPY_TRANSITIONS.get(self.state, frozenset())

    def transition_to(self, target: CopyState, at: Optional[datetime] = None) -> None:
        """在内存中执行保管状态迁移，持久化时按旧版本号做 CAS"""
        at = at or datetime.now(timezone.utc)
        if target == CopyState.ON_LOAN:
            self.last_borrowed_at = at
        elif self.state == CopyState.ON_LOAN and target == CopyState.AVAILABLE:
            self.last_returned_at = at
        self.state = target
        self.version += 1
        self.updated_at = at
