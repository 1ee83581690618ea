"""
bKash tokenized checkout client.

Protocol: grant a token, create a checkout (the borrower is redirected to
``bkashURL``), bKash calls our callback URL, then we execute the payment.
Every business answer is HTTP 200 with a ``statusCode``; "0000" is success.
"""
from __future__ import annotations

import asyncio
import time
from decimal import Decimal
from typing import Any, Callable, Optional

import httpx

from application.dtos.payments import GatewayPayment, ExecutionOutcome
from core.settings import PaymentSettings, payment_settings
from infrastructure.external.payments.base import (
    BasePaymentClient,
    CONNECT_ERRORS,
    TRANSPORT_ERRORS,
)
from infrastructure.external.payments.exceptions import (
    GatewayAuthError,
    GatewayCreateError,
    GatewayExecuteError,
)
from shared.codes.payment_codes import BKASH_SUCCESS_CODE


class BkashClient(BasePaymentClient):
    gateway = "bkash"

    GRANT_PATH = "/tokenized/checkout/token/grant"
    CREATE_PATH = "/tokenized/checkout/create"
    EXECUTE_PATH = "/tokenized/checkout/execute"

    def __init__(
        self,
        settings: Optional[PaymentSettings] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        cfg = settings or payment_settings
        super().__init__(
            timeouts=cfg.timeouts.model_dump(),
            retry=cfg.retry.model_dump(),
            transport=transport,
        )
        self._cfg = cfg.bkash
        self._currency = cfg.currency
        self._base_url = self._cfg.base_url.rstrip("/")
        self._clock = clock
        self._token: Optional[str] = None
        self._token_expires_at: float = 0.0
        self._token_lock = asyncio.Lock()

    # ------------------------------------------------------------ token

    def _token_valid(self) -> bool:
        return self._token is not None and self._clock() < self._token_expires_at

    def invalidate_token(self) -> None:
        self._token = None
        self._token_expires_at = 0.0

    async def get_token(self) -> str:
        """
        Cached id_token, refreshed ``token_refresh_margin_seconds`` early.

        Concurrent callers wait on one grant request instead of issuing their own.
        """
        if self._token_valid():
            return self._token  # type: ignore[return-value]

        async with self._token_lock:
            if self._token_valid():
                return self._token  # type: ignore[return-value]
            try:
                data = await self._grant()
            except GatewayAuthError:
                self.invalidate_token()
                raise

            expires_in = int(data.get("expires_in") or 3600)
            lifetime = max(expires_in - self._cfg.token_refresh_margin_seconds, 0)
            self._token = data["id_token"]
            self._token_expires_at = self._clock() + lifetime
            self._log("bkash_token_refreshed", expires_in=expires_in)
            return self._token

    async def _grant(self) -> dict[str, Any]:
        async def call() -> httpx.Response:
            return await self.client.post(
                f"{self._base_url}{self.GRANT_PATH}",
                json={"app_key": self._cfg.app_key, "app_secret": self._cfg.app_secret},
                headers={
                    "Content-Type": "application/json",
                    "Accept": "application/json",
                    "username": self._cfg.username or "",
                    "password": self._cfg.password or "",
                },
            )

        try:
            resp = await self._retry(call, retry_on=TRANSPORT_ERRORS)
        except httpx.HTTPError as e:
            self._log("bkash_token_grant_transport_error", error=str(e))
            raise GatewayAuthError(f"bKash token grant failed: {e}", gateway=self.gateway)

        data = self._json(resp)
        if resp.status_code >= 400 or not data.get("id_token"):
            self._log(
                "bkash_token_grant_rejected",
                http_status=resp.status_code,
                status_code=data.get("statusCode"),
            )
            raise GatewayAuthError(
                f"bKash token grant failed: {data.get('statusMessage') or data.get('errorMessage') or resp.status_code}",
                gateway=self.gateway,
                gateway_code=data.get("statusCode"),
            )
        return data

    # ------------------------------------------------------------ checkout

    def _auth_headers(self, token: str) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "Authorization": token,
            "X-APP-Key": self._cfg.app_key or "",
        }

    @staticmethod
    def _json(resp: httpx.Response) -> dict[str, Any]:
        try:
            data = resp.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}

    async def _post(self, path: str, payload: dict[str, Any]) -> httpx.Response:
        token = await self.get_token()

        async def call() -> httpx.Response:
            return await self.client.post(
                f"{self._base_url}{path}",
                json=payload,
                headers=self._auth_headers(token),
            )

        resp = await self._retry(call, retry_on=CONNECT_ERRORS)
        if resp.status_code == 401:
            # revoked or expired early; the next call grants a fresh token
            self.invalidate_token()
        return resp

    async def create_payment(self, amount: Decimal, reference_id: str) -> GatewayPayment:
        """Create a checkout; ``reference_id`` is sent as merchantInvoiceNumber."""
        payload = {
            "mode": "0011",
            "payerReference": reference_id,
            "callbackURL": self._cfg.callback_url,
            "amount": str(Decimal(amount).quantize(Decimal("0.01"))),
            "currency": self._currency,
            "intent": "sale",
            "merchantInvoiceNumber": reference_id,
        }
        try:
            resp = await self._post(self.CREATE_PATH, payload)
        except httpx.HTTPError as e:
            self._log("bkash_create_transport_error", reference_id=reference_id, error=str(e))
            raise GatewayCreateError(f"bKash create failed: {e}", gateway=self.gateway)

        data = self._json(resp)
        status_code = data.get("statusCode")
        if resp.status_code >= 400 or status_code != BKASH_SUCCESS_CODE or not data.get("paymentID"):
            self._log(
                "bkash_create_rejected",
                reference_id=reference_id,
                http_status=resp.status_code,
                status_code=status_code,
            )
            raise GatewayCreateError(
                f"bKash create failed: {data.get('statusMessage') or resp.status_code}",
                gateway=self.gateway,
                gateway_code=status_code,
                details={"raw": data},
            )

        self._log("bkash_payment_created", reference_id=reference_id, gateway_payment_id=data["paymentID"])
        return GatewayPayment(
            payment_id=data["paymentID"],
            redirect_url=data.get("bkashURL"),
            status_code=status_code,
            raw=data,
        )

    async def execute_payment(self, gateway_payment_id: str) -> ExecutionOutcome:
        """
        Execute a checkout after a success callback.

        Transport failures, timeouts and unreadable answers raise
        GatewayExecuteError; they are never read as success.
        """
        try:
            resp = await self._post(self.EXECUTE_PATH, {"paymentID": gateway_payment_id})
        except httpx.HTTPError as e:
            self._log("bkash_execute_transport_error", gateway_payment_id=gateway_payment_id, error=str(e))
            raise GatewayExecuteError(
                f"bKash execute failed: {e}",
                gateway=self.gateway,
                details={"gateway_payment_id": gateway_payment_id},
            )

        data = self._json(resp)
        if resp.status_code >= 400 or not data:
            self._log("bkash_execute_http_error", gateway_payment_id=gateway_payment_id, http_status=resp.status_code)
            raise GatewayExecuteError(
                f"bKash execute failed with HTTP {resp.status_code}",
                gateway=self.gateway,
                details={"gateway_payment_id": gateway_payment_id, "raw": data},
            )

        status_code = data.get("statusCode")
        transaction_status = data.get("transactionStatus")
        if transaction_status:
            status = self._map_status(transaction_status)
            completed = status == "completed" and bool(data.get("trxID"))
        elif status_code and status_code != BKASH_SUCCESS_CODE:
            status, completed = "failed", False
        else:
            raise GatewayExecuteError(
                "bKash execute answer carries no transaction status",
                gateway=self.gateway,
                gateway_code=status_code,
                details={"gateway_payment_id": gateway_payment_id, "raw": data},
            )

        outcome = ExecutionOutcome(
            completed=completed,
            status="completed" if completed else ("failed" if status == "completed" else status),
            transaction_id=data.get("trxID") if completed else None,
            reason_code=None if completed else (status_code or transaction_status),
            raw=data,
        )
        self._log(
            "bkash_payment_executed",
            gateway_payment_id=gateway_payment_id,
            completed=outcome.completed,
            transaction_status=transaction_status,
            status_code=status_code,
        )
        return outcome
