"""
Payment DTOs (Pydantic v2) used at application boundaries.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional, Literal
from pydantic import Field, ConfigDict, field_validator

from .base import DTOBase


class GatewayPayment(DTOBase):
    """Result of a successful gateway create call"""
    payment_id: str
    redirect_url: Optional[str] = None
    status_code: Optional[str] = None
    raw: dict[str, Any] = Field(default_factory=dict)


class ExecutionOutcome(DTOBase):
    """Normalized result of a gateway execute call"""
    completed: bool
    status: str  # internal status: completed / pending / failed / cancelled
    transaction_id: Optional[str] = None
    reason_code: Optional[str] = None
    raw: dict[str, Any] = Field(default_factory=dict)


class InitiatePaymentResult(DTOBase):
    payment_id: int
    redirect_url: Optional[str]
    gateway_payment_id: Optional[str] = None
    amount: Decimal
    currency: str
    reused: bool = False


class WebhookCallback(DTOBase):
    """Parsed gateway callback (query string or body)"""
    gateway_payment_id: str = Field(..., alias="paymentID", min_length=1, max_length=100)
    status: str = Field(..., min_length=1, max_length=32)

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("gateway_payment_id", "status")
    @classmethod
    def _strip(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v


CallbackResult = Literal["completed", "failed", "cancelled", "refunded", "pending", "not_found"]


class CallbackOutcome(DTOBase):
    gateway_payment_id: str
    outcome: CallbackResult
    duplicate: bool = False
    payment_id: Optional[int] = None
    loan_id: Optional[int] = None


class RefundPaymentRequest(DTOBase):
    reason: Optional[str] = Field(None, max_length=500)


class PaymentDTO(DTOBase):
    id: int
    borrower_id: int
    loan_id: int
    amount: Decimal
    currency: str
    status: str
    gateway: str
    gateway_payment_id: Optional[str] = None
    gateway_transaction_id: Optional[str] = None
    redirect_url: Optional[str] = None
    notes: Optional[str] = None
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_entity(cls, payment) -> "PaymentDTO":
        return cls(
            id=payment.id,
            borrower_id=payment.borrower_id,
            loan_id=payment.loan_id,
            amount=payment.amount,
            currency=payment.currency,
            status=payment.status.value,
            gateway=payment.gateway,
            gateway_payment_id=payment.gateway_payment_id,
            gateway_transaction_id=payment.gateway_transaction_id,
            redirect_url=payment.redirect_url,
            notes=payment.notes,
            completed_at=payment.completed_at,
            created_at=payment.created_at,
        )
