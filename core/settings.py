"""
Payment-related settings using pydantic-settings v2 with nested env keys.

This module is isolated so core.config.Settings stays focused on circulation.
"""
from __future__ import annotations

from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel, Field


class PaymentTimeouts(BaseModel):
    connect: float = 2.0
    read: float = 10.0
    write: float = 5.0
    total: float = 15.0


class PaymentRetry(BaseModel):
    max: int = 2
    base_backoff: float = 0.2


class WebhookSettings(BaseModel):
    ip_allowlist: list[str] | None = None  # Optional IPs/CIDRs allowed to post callbacks
    lock_timeout_seconds: int = 60
    lock_blocking_timeout_seconds: int = 30


class BkashSettings(BaseModel):
    base_url: str = "https://tokenized.sandbox.bka.sh/v1.2.0-beta"
    app_key: Optional[str] = None
    app_secret: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    callback_url: Optional[str] = None
    # Refresh the cached id_token this long before bKash expires it
    token_refresh_margin_seconds: int = 300


class PaymentSettings(BaseSettings):
    default_gateway: str = Field(default="bkash")
    currency: str = "BDT"
    # Pending payments older than this are cancelled by the housekeeping task
    stale_payment_minutes: int = 60
    timeouts: PaymentTimeouts = Field(default_factory=PaymentTimeouts)
    retry: PaymentRetry = Field(default_factory=PaymentRetry)
    webhook: WebhookSettings = Field(default_factory=WebhookSettings)

    bkash: BkashSettings = Field(default_factory=BkashSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="PAYMENT__",
        case_sensitive=False,
        extra="allow",
        env_nested_delimiter="__",
    )


payment_settings = PaymentSettings()
