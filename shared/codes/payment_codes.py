"""
Payment specific codes and gateway status mapping.
"""
from __future__ import annotations

from enum import IntEnum


class PaymentCode(IntEnum):
    # Generic success
    SUCCESS = 0

    # Gateway/Network errors (6xxxx)
    GATEWAY_ERROR = 60000
    GATEWAY_AUTH_ERROR = 60001
    GATEWAY_CREATE_ERROR = 60002
    GATEWAY_EXECUTE_ERROR = 60003


# bKash answers every business call with HTTP 200 and a statusCode field;
# "0000" is the only success code.
BKASH_SUCCESS_CODE = "0000"

# Gateway -> internal payment status mapping
GATEWAY_STATUS_TO_INTERNAL = {
    "bkash": {
        # transactionStatus returned by checkout/execute
        "Completed": "completed",
        "Initiated": "pending",
        "Authorized": "pending",
        "Failed": "failed",
        "Cancelled": "cancelled",
        "Expired": "cancelled",
        # status query param delivered to the callback URL
        "success": "completed",
        "failure": "failed",
        "cancel": "cancelled",
    },
}
