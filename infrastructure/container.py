"""
Composition root shared by the web lifespan and the Celery workers
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from application.ports.locks import KeyedLock
from application.ports.payment_gateway import PaymentGateway
from application.services.callback_reconciler import CallbackReconciler
from application.services.circulation_service import CirculationService
from application.services.payment_service import FinePaymentService
from core.config import settings
from core.logging_config import get_logger
from core.settings import payment_settings
from domain.loan.policy import FinePolicy
from domain.loan.service import LoanTerms
from infrastructure.external.cache import shutdown_redis_client
from infrastructure.external.payments import get_payment_gateway
from infrastructure.locks import build_keyed_lock
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork


logger = get_logger(__name__)


@dataclass
class Container:
    circulation: CirculationService
    payments: FinePaymentService
    reconciler: CallbackReconciler
    gateway: PaymentGateway
    locks: KeyedLock

    async def aclose(self) -> None:
        await self.gateway.aclose()
        await self.locks.aclose()
        if settings.redis.url:
            await shutdown_redis_client()
        logger.info("container_closed")


async def build_container(
    *,
    gateway: Optional[PaymentGateway] = None,
    locks: Optional[KeyedLock] = None,
    uow_factory=SQLAlchemyUnitOfWork,
) -> Container:
    policy = FinePolicy.from_settings(settings.fines)
    terms = LoanTerms.from_settings(settings.circulation)
    gateway = gateway or get_payment_gateway(payment_settings.default_gateway)
    if locks is None:
        locks = await build_keyed_lock(
            settings.redis.url,
            timeout=payment_settings.webhook.lock_timeout_seconds,
            blocking_timeout=payment_settings.webhook.lock_blocking_timeout_seconds,
        )

    circulation = CirculationService(uow_factory, policy, terms)
    payments = FinePaymentService(
        uow_factory,
        gateway,
        locks,
        currency=payment_settings.currency,
        stale_after=timedelta(minutes=payment_settings.stale_payment_minutes),
        policy=policy,
        terms=terms,
    )
    reconciler = CallbackReconciler(uow_factory, gateway, locks, policy=policy, terms=terms)
    logger.info(
        "container_built",
        gateway=gateway.gateway,
        lock_backend=type(locks).__name__,
        loan_duration_days=settings.circulation.loan_duration_days,
    )
    return Container(
        circulation=circulation,
        payments=payments,
        reconciler=reconciler,
        gateway=gateway,
        locks=locks,
    )
