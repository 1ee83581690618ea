"""
支付数据库模型
仅做表映射，业务规则在 domain.payment.entity.Payment
"""
from sqlalchemy import (
    Column, Integer, String, Numeric, DateTime, Text, JSON, Index, ForeignKey, text
)
from datetime import datetime, timezone

from .base import Base


class PaymentModel(Base):
    """支付表，记录不删除"""
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    borrower_id = Column(Integer, nullable=False, index=True, comment="Paying borrower")
    loan_id = Column(Integer, ForeignKey("loans.id", ondelete="RESTRICT"), nullable=False, comment="Loan whose fine is paid")

    amount = Column(Numeric(precision=12, scale=2), nullable=False, comment="Amount")
    currency = Column(String(3), nullable=False, default="BDT", comment="ISO-4217 currency")
    status = Column(
        String(20),
        nullable=False,
        default="pending",
        index=True,
        comment="Payment status: pending/completed/failed/cancelled/refunded",
    )

    gateway = Column(String(30), nullable=False, default="bkash", comment="Gateway name")
    gateway_payment_id = Column(String(100), unique=True, nullable=True, comment="Gateway paymentID")
    gateway_transaction_id = Column(String(100), nullable=True, comment="Gateway trxID")
    redirect_url = Column(String(1000), nullable=True, comment="Checkout URL for the borrower")
    gateway_response = Column(JSON, nullable=True, comment="Raw gateway payloads by stage")
    notes = Column(Text, nullable=True, comment="Operator notes")

    completed_at = Column(DateTime(timezone=True), nullable=True, comment="Completed at")
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True,
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
        Index("ix_payments_loan_status", "loan_id", "status"),
        # 每笔借阅最多一条 pending/completed 支付
        Index(
            "uq_payments_open_loan",
            "loan_id",
            unique=True,
            postgresql_where=text("status IN ('pending', 'completed')"),
            sqlite_where=text("status IN ('pending', 'completed')"),
        ),
    )

    def __repr__(self):
        return (
            f"<PaymentModel(id={self.id}, loan_id={self.loan_id}, "
            f"gateway_payment_id='{self.gateway_payment_id}', status='{self.status}')>"
        )
