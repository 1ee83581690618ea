"""
馆藏数据库模型 - 图书与实体副本
仅做表映射，业务规则在 domain.catalog
"""
from sqlalchemy import Column, Integer, String, DateTime, Index, ForeignKey, CheckConstraint
from datetime import datetime, timezone

from .base import Base


class BookModel(Base):
    """图书表，计数列只由副本台账写入"""
    __tablename__ = "books"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(300), nullable=False, comment="Title")
    author = Column(String(200), nullable=False, comment="Author")
    isbn = Column(String(20), unique=True, index=True, nullable=False, comment="ISBN")

    total_copies = Column(Integer, nullable=False, default=0, comment="Number of copies")
    available_copies = Column(Integer, nullable=False, default=0, comment="Copies in available state")

    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="Created at",
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="Updated at",
    )

    __table_args__ = (
        CheckConstraint("available_copies >= 0", name="ck_books_available_non_negative"),
        CheckConstraint("available_copies <= total_copies", name="ck_books_available_le_total"),
    )

    def __repr__(self):
        return (
            f"<BookModel(id={self.id}, isbn='{self.isbn}', "
            f"available={self.available_copies}/{self.total_copies})>"
        )


class CopyModel(Base):
    """实体副本表"""
    __tablename__ = "copies"

    id = Column(Integer, primary_key=True, index=True)
    book_id = Column(
        Integer,
        ForeignKey("books.id", ondelete="RESTRICT"),
        nullable=False,
        comment="Owning book",
    )
    barcode = Column(String(64), unique=True, nullable=False, comment="Barcode")
    state = Column(
        String(20),
        nullable=False,
        default="available",
        comment="Custody state: available/on_loan/reserved/maintenance",
    )
    version = Column(Integer, nullable=False, default=0, comment="Optimistic concurrency counter")

    last_borrowed_at = Column(DateTime(timezone=True), nullable=True, comment="Last checkout")
    last_returned_at = Column(DateTime(timezone=True), nullable=True, comment="Last return")

    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="Created at",
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="Updated at",
    )

    __table_args__ = (
        Index("ix_copies_book_state", "book_id", "state"),
    )

    def __repr__(self):
        return f"<CopyModel(id={self.id}, book_id={self.book_id}, state='{self.state}', v={self.version})>"
