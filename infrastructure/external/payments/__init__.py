"""
Factory for payment gateway clients.
"""
from __future__ import annotations

from typing import Optional

import httpx

from core.settings import PaymentSettings, payment_settings
from application.ports.payment_gateway import PaymentGateway


def get_payment_gateway(
    gateway: Optional[str] = None,
    *,
    settings: Optional[PaymentSettings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> PaymentGateway:
    """Build a gateway adapter; called once by the application lifespan."""
    cfg = settings or payment_settings
    name = (gateway or cfg.default_gateway).lower()
    if name == "bkash":
        from .bkash_client import BkashClient
        return BkashClient(cfg, transport=transport)
    raise ValueError(f"Unsupported payment gateway: {name}")
