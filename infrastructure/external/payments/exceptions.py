"""
Gateway faults mapped to BusinessException variants.

Messages here are for logs and operators; the API layer shows callers a
generic retry message instead.
"""
from __future__ import annotations

from typing import Optional
from domain.common.exceptions import BusinessException
from shared.codes.payment_codes import PaymentCode


class GatewayError(BusinessException):
    code_value = PaymentCode.GATEWAY_ERROR
    error_type_value = "GatewayError"

    def __init__(
        self,
        message: str,
        *,
        gateway: str,
        gateway_code: Optional[str] = None,
        details: Optional[dict] = None,
    ):
        full_details = {"gateway": gateway, "gateway_code": gateway_code}
        if details:
            full_details.update(details)
        self.gateway = gateway
        self.gateway_code = gateway_code
        super().__init__(
            code=self.code_value,
            message=message,
            error_type=self.error_type_value,
            details=full_details,
        )


class GatewayAuthError(GatewayError):
    code_value = PaymentCode.GATEWAY_AUTH_ERROR
    error_type_value = "GatewayAuthError"


class GatewayCreateError(GatewayError):
    code_value = PaymentCode.GATEWAY_CREATE_ERROR
    error_type_value = "GatewayCreateError"


class GatewayExecuteError(GatewayError):
    code_value = PaymentCode.GATEWAY_EXECUTE_ERROR
    error_type_value = "GatewayExecuteError"
