"""
Shared business codes used across layers (Domain/Core/API).

This package exposes BusinessCode at `shared.codes` and keeps
payment-specific codes under `shared.codes.payment_codes`.
"""
from enum import IntEnum


class BusinessCode(IntEnum):
    """Unified business status codes (single source of truth)."""

    # Success
    SUCCESS = 0

    # Parameter errors (1xxxx)
    PARAM_ERROR = 10000
    PARAM_MISSING = 10001
    PARAM_TYPE_ERROR = 10002
    PARAM_VALIDATION_ERROR = 10003

    # Business errors (2xxxx)
    BUSINESS_ERROR = 20000
    TOKEN_INVALID = 20004
    TOKEN_EXPIRED = 20005
    NOT_FOUND = 20006  # Generic resource not found

    # Circulation errors (21xxx)
    BOOK_NOT_FOUND = 21000
    COPY_NOT_FOUND = 21001
    LOAN_NOT_FOUND = 21002
    NO_AVAILABLE_COPY = 21003
    INVALID_COPY_TRANSITION = 21004
    UNPAID_FINE_EXISTS = 21005
    RENEWAL_LIMIT_EXCEEDED = 21006
    RESERVATION_CONFLICT = 21007
    LOAN_NOT_ACTIVE = 21008
    ALREADY_RETURNED = 21009
    COPY_ALREADY_REGISTERED = 21010

    # Fine settlement errors (22xxx)
    NO_PENDING_FINE = 22000
    NOT_LOAN_OWNER = 22001
    PAYMENT_NOT_FOUND = 22002
    PAYMENT_IN_PROGRESS = 22003
    PAYMENT_NOT_REFUNDABLE = 22004
    FINE_NOT_PENDING = 22005

    # Authorization errors (3xxxx)
    PERMISSION_ERROR = 30000
    UNAUTHORIZED = 30001
    FORBIDDEN = 30002

    # System errors (4xxxx)
    SYSTEM_ERROR = 40000
    DATABASE_ERROR = 40001
    NETWORK_ERROR = 40002
    SERVICE_UNAVAILABLE = 40003


__all__ = ["BusinessCode"]
