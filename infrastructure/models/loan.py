"""
借阅数据库模型 - 罚金作为借阅行的列存储
"""
from sqlalchemy import (
    Column, Integer, String, Numeric, DateTime, Text, Index, ForeignKey, text
)
from datetime import datetime, timezone

from .base import Base


class LoanModel(Base):
    """借阅表，记录不删除"""
    __tablename__ = "loans"

    id = Column(Integer, primary_key=True, index=True)
    borrower_id = Column(Integer, nullable=False, comment="Borrower (user id from the auth service)")
    book_id = Column(Integer, ForeignKey("books.id", ondelete="RESTRICT"), nullable=False, comment="Book")
    copy_id = Column(Integer, ForeignKey("copies.id", ondelete="RESTRICT"), nullable=False, comment="Copy")

    issued_at = Column(DateTime(timezone=True), nullable=False, comment="Issue date")
    due_at = Column(DateTime(timezone=True), nullable=False, index=True, comment="Due date")
    returned_at = Column(DateTime(timezone=True), nullable=True, comment="Return date")
    status = Column(
        String(20),
        nullable=False,
        default="active",
        index=True,
        comment="Loan status: active/returned/overdue/lost",
    )
    renewal_count = Column(Integer, nullable=False, default=0, comment="Renewals so far")
    last_renewed_at = Column(DateTime(timezone=True), nullable=True, comment="Last renewal")

    # 内嵌罚金
    fine_amount = Column(Numeric(precision=12, scale=2), nullable=False, default=0, comment="Fine amount")
    fine_status = Column(String(20), nullable=False, default="pending", comment="Fine status: pending/paid/waived")
    fine_paid_at = Column(DateTime(timezone=True), nullable=True, comment="Fine payment date")
    fine_payment_method = Column(String(50), nullable=True, comment="Fine payment method")
    fine_notes = Column(Text, nullable=True, comment="Fine notes")

    notes = Column(Text, nullable=True, comment="Loan notes")
    created_by = Column(Integer, nullable=True, comment="Created by")
    updated_by = Column(Integer, nullable=True, comment="Updated by")
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
        Index("ix_loans_borrower_status", "borrower_id", "status"),
        Index("ix_loans_borrower_fine", "borrower_id", "fine_status"),
        # 每本副本最多一条在借/逾期借阅
        Index(
            "uq_loans_open_copy",
            "copy_id",
            unique=True,
            postgresql_where=text("status IN ('active', 'overdue')"),
            sqlite_where=text("status IN ('active', 'overdue')"),
        ),
    )

    def __repr__(self):
        return f"<LoanModel(id={self.id}, copy_id={self.copy_id}, status='{self.status}')>"
