"""领域业务异常，由领域层抛出，各层共用。

core 层只负责把它们映射成 HTTP 响应，领域层不依赖 core。
"""
from __future__ import annotations

from typing import Optional
from shared.codes import BusinessCode


class BusinessException(Exception):
    """所有业务错误的基类"""

    def __init__(
        self,
        code: int,
        message: str,
        error_type: str = "BusinessError",
        details: Optional[dict] = None,
        field: Optional[str] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.error_type = error_type
        self.details = details
        self.field = field
        super().__init__(self.message)


class DomainValidationException(BusinessException):
    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        details: dict | None = None,
    ):
        super().__init__(
            code=BusinessCode.PARAM_VALIDATION_ERROR,
            message=message,
            error_type="DomainValidationError",
            details=details,
            field=field,
        )


# ---------------------------------------------------------------- 馆藏

class BookNotFoundException(BusinessException):
    def __init__(self, book_id: Optional[int] = None):
        super().__init__(
            code=BusinessCode.BOOK_NOT_FOUND,
            message="Book not found",
            error_type="BookNotFound",
            details={"book_id": book_id} if book_id is not None else None,
        )


class CopyNotFoundException(BusinessException):
    def __init__(self, copy_id: Optional[int] = None):
        super().__init__(
            code=BusinessCode.COPY_NOT_FOUND,
            message="Book copy not found",
            error_type="CopyNotFound",
            details={"copy_id": copy_id} if copy_id is not None else None,
        )


class CopyAlreadyRegisteredException(BusinessException):
    def __init__(self, barcode: str):
        super().__init__(
            code=BusinessCode.COPY_ALREADY_REGISTERED,
            message=f"A copy with barcode {barcode} is already registered",
            error_type="CopyAlreadyRegistered",
            details={"barcode": barcode},
            field="barcode",
        )


class NoAvailableCopyException(BusinessException):
    def __init__(self, book_id: int):
        super().__init__(
            code=BusinessCode.NO_AVAILABLE_COPY,
            message="No copy of this book is available for loan",
            error_type="NoAvailableCopy",
            details={"book_id": book_id},
        )


class InvalidCopyTransitionException(BusinessException):
    def __init__(self, copy_id: int, current: str, target: str):
        super().__init__(
            code=BusinessCode.INVALID_COPY_TRANSITION,
            message=f"Copy cannot move from {current} to {target}",
            error_type="InvalidTransition",
            details={"copy_id": copy_id, "current": current, "target": target},
        )


# ---------------------------------------------------------------- 借阅

class LoanNotFoundException(BusinessException):
    def __init__(self, loan_id: Optional[int] = None):
        super().__init__(
            code=BusinessCode.LOAN_NOT_FOUND,
            message="Loan not found",
            error_type="NotFound",
            details={"loan_id": loan_id} if loan_id is not None else None,
        )


class UnpaidFineExistsException(BusinessException):
    def __init__(self, borrower_id: int, loan_ids: list[int]):
        super().__init__(
            code=BusinessCode.UNPAID_FINE_EXISTS,
            message="Borrower has unpaid fines; settle them before borrowing again",
            error_type="UnpaidFineExists",
            details={"borrower_id": borrower_id, "loan_ids": loan_ids},
        )


class RenewalLimitExceededException(BusinessException):
    def __init__(self, loan_id: int, max_renewals: int):
        super().__init__(
            code=BusinessCode.RENEWAL_LIMIT_EXCEEDED,
            message=f"Loan has already been renewed the maximum of {max_renewals} times",
            error_type="RenewalLimitExceeded",
            details={"loan_id": loan_id, "max_renewals": max_renewals},
        )


class ReservationConflictException(BusinessException):
    def __init__(self, loan_id: int, book_id: int):
        super().__init__(
            code=BusinessCode.RESERVATION_CONFLICT,
            message="Cannot renew: another reader has reserved this book",
            error_type="ReservationConflict",
            details={"loan_id": loan_id, "book_id": book_id},
        )


class LoanNotActiveException(BusinessException):
    def __init__(self, loan_id: int, status: str):
        super().__init__(
            code=BusinessCode.LOAN_NOT_ACTIVE,
            message=f"Loan is {status} and cannot be changed this way",
            error_type="NotActive",
            details={"loan_id": loan_id, "status": status},
        )


class AlreadyReturnedException(BusinessException):
    def __init__(self, loan_id: int):
        super().__init__(
            code=BusinessCode.ALREADY_RETURNED,
            message="Book already returned",
            error_type="AlreadyReturned",
            details={"loan_id": loan_id},
        )


class FineNotPendingException(BusinessException):
    def __init__(self, loan_id: int, status: str):
        super().__init__(
            code=BusinessCode.FINE_NOT_PENDING,
            message=f"Fine is {status}, only pending fines can change",
            error_type="FineNotPending",
            details={"loan_id": loan_id, "status": status},
        )


# ---------------------------------------------------------------- 支付

class NoPendingFineException(BusinessException):
    def __init__(self, loan_id: int):
        super().__init__(
            code=BusinessCode.NO_PENDING_FINE,
            message="No pending fine applicable for this loan",
            error_type="NoPendingFine",
            details={"loan_id": loan_id},
        )


class NotLoanOwnerException(BusinessException):
    def __init__(self, loan_id: int):
        super().__init__(
            code=BusinessCode.NOT_LOAN_OWNER,
            message="Not authorized to pay for this loan",
            error_type="NotOwner",
            details={"loan_id": loan_id},
        )


class PaymentNotFoundException(BusinessException):
    def __init__(self, identifier: str):
        super().__init__(
            code=BusinessCode.PAYMENT_NOT_FOUND,
            message=f"Payment not found: {identifier}",
            error_type="PaymentNotFound",
        )


class PaymentInProgressException(BusinessException):
    def __init__(self, loan_id: int, payment_id: Optional[int] = None):
        super().__init__(
            code=BusinessCode.PAYMENT_IN_PROGRESS,
            message="A payment for this loan is already in progress or completed",
            error_type="PaymentInProgress",
            details={"loan_id": loan_id, "payment_id": payment_id},
        )


class PaymentNotRefundableException(BusinessException):
    def __init__(self, payment_id: int, status: str):
        super().__init__(
            code=BusinessCode.PAYMENT_NOT_REFUNDABLE,
            message=f"Payment is {status}; only completed payments can be refunded",
            error_type="PaymentNotRefundable",
            details={"payment_id": payment_id, "status": status},
        )
