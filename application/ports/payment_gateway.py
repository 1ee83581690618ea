"""
Payment gateway port (application/ports) exposing a replaceable protocol.

Application depends on this Protocol; infrastructure implements adapters.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Protocol, runtime_checkable

from application.dtos.payments import GatewayPayment, ExecutionOutcome


@runtime_checkable
class PaymentGateway(Protocol):
    """Create / execute / callback checkout gateway.

    ``create_payment`` raises GatewayCreateError on any non-success answer,
    ``execute_payment`` raises GatewayExecuteError on transport failure and
    returns a normalized outcome otherwise.
    """

    gateway: str

    async def get_token(self) -> str: ...

    async def create_payment(self, amount: Decimal, reference_id: str) -> GatewayPayment: ...

    async def execute_payment(self, gateway_payment_id: str) -> ExecutionOutcome: ...

    async def aclose(self) -> None: ...
