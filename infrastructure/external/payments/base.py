"""
Base payment client implementing shared concerns: http, retry, logging, mapping.

Concrete gateways subclass and implement the protocol calls.
"""
from __future__ import annotations

from typing import Any, Awaitable, Callable, Optional, Type

import httpx
from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential, retry_if_exception_type

from core.logging_config import get_logger
from shared.codes.payment_codes import GATEWAY_STATUS_TO_INTERNAL


logger = get_logger(__name__)

# the request never left this process, so resending cannot double-charge
CONNECT_ERRORS: tuple[Type[Exception], ...] = (httpx.ConnectError, httpx.ConnectTimeout)
TRANSPORT_ERRORS: tuple[Type[Exception], ...] = (httpx.TransportError,)


class BasePaymentClient:
    gateway: str = "base"

    def __init__(
        self,
        *,
        timeouts: Optional[dict[str, float]] = None,
        retry: Optional[dict[str, Any]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._timeouts_cfg = timeouts or {"connect": 2.0, "read": 10.0, "write": 5.0, "total": 15.0}
        self._retry_cfg = retry or {"max": 2, "base_backoff": 0.2}
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def timeouts(self) -> httpx.Timeout:
        return httpx.Timeout(
            self._timeouts_cfg["total"],
            connect=self._timeouts_cfg["connect"],
            read=self._timeouts_cfg["read"],
            write=self._timeouts_cfg["write"],
        )

    @property
    def client(self) -> httpx.AsyncClient:
        """Lazily created client, kept open for reuse until aclose()"""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeouts, transport=self._transport)
        return self._client

    async def aclose(self) -> None:
        """Close the underlying HTTP client if created."""
        if self._client is not None:
            try:
                await self._client.aclose()
            finally:
                self._client = None

    async def _retry(
        self,
        fn: Callable[[], Awaitable[Any]],
        retry_on: tuple[Type[Exception], ...] = CONNECT_ERRORS,
    ):
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(int(self._retry_cfg["max"]) + 1),
            wait=wait_exponential(multiplier=self._retry_cfg["base_backoff"], min=0.1, max=2.0),
            retry=retry_if_exception_type(retry_on),
            reraise=True,
        ):
            with attempt:
                return await fn()

    # Helpers
    def _map_status(self, gateway_status: str) -> str:
        mapping = GATEWAY_STATUS_TO_INTERNAL.get(self.gateway, {})
        return mapping.get(gateway_status, "failed")

    def _log(self, event: str, **kwargs) -> None:
        logger.info(
            event,
            gateway=self.gateway,
            **kwargs,
        )
