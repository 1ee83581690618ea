"""
Circulation DTOs - loans, copies and availability
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import Field, field_validator

from .base import DTOBase


class IssueLoanRequest(DTOBase):
    """Issue a loan"""
    borrower_id: int = Field(..., gt=0, description="Borrower user id")
    book_id: int = Field(..., gt=0, description="Book to lend")
    copy_id: Optional[int] = Field(None, gt=0, description="Specific copy, any available copy when omitted")


class WaiveFineRequest(DTOBase):
    reason: Optional[str] = Field(None, max_length=500)


class RegisterCopyRequest(DTOBase):
    barcode: str = Field(..., min_length=1, max_length=64)

    @field_validator("barcode")
    @classmethod
    def _strip(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("barcode must not be blank")
        return v


class FineDTO(DTOBase):
    amount: Decimal
    status: str
    paid_at: Optional[datetime] = None
    payment_method: Optional[str] = None
    notes: Optional[str] = None


class LoanDTO(DTOBase):
    """Loan response"""
    id: int
    borrower_id: int
    book_id: int
    copy_id: int
    status: str
    issued_at: datetime
    due_at: datetime
    returned_at: Optional[datetime] = None
    renewal_count: int
    last_renewed_at: Optional[datetime] = None
    fine: FineDTO
    notes: Optional[str] = None
    created_by: Optional[int] = None
    updated_by: Optional[int] = None

    @classmethod
    def from_entity(cls, loan) -> "LoanDTO":
        return cls(
            id=loan.id,
            borrower_id=loan.borrower_id,
            book_id=loan.book_id,
            copy_id=loan.copy_id,
            status=loan.status.value,
            issued_at=loan.issued_at,
            due_at=loan.due_at,
            returned_at=loan.returned_at,
            renewal_count=loan.renewal_count,
            last_renewed_at=loan.last_renewed_at,
            fine=FineDTO(
                amount=loan.fine.amount,
                status=loan.fine.status.value,
                paid_at=loan.fine.paid_at,
                payment_method=loan.fine.payment_method,
                notes=loan.fine.notes,
            ),
            notes=loan.notes,
            created_by=loan.created_by,
            updated_by=loan.updated_by,
        )


class CopyDTO(DTOBase):
    id: int
    book_id: int
    barcode: str
    state: str
    version: int
    last_borrowed_at: Optional[datetime] = None
    last_returned_at: Optional[datetime] = None

    @classmethod
    def from_entity(cls, copy) -> "CopyDTO":
        return cls(
            id=copy.id,
            book_id=copy.book_id,
            barcode=copy.barcode,
            state=copy.state.value,
            version=copy.version,
            last_borrowed_at=copy.last_borrowed_at,
            last_returned_at=copy.last_returned_at,
        )


class AvailabilityDTO(DTOBase):
    book_id: int
    available_copies: int
    total_copies: int
    by_state: dict[str, int]
