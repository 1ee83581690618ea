"""Pytest bootstrap configuration.

Mandatory environment variables are set before test collection and module
imports that depend on application settings.
"""
import os

os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("DATABASE__URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ENVIRONMENT", "test")

import asyncio
import itertools
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from functools import partial
from typing import List, Optional, Tuple

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from application.dtos.payments import ExecutionOutcome, GatewayPayment
from application.services.callback_reconciler import CallbackReconciler
from application.services.circulation_service import CirculationService
from application.services.payment_service import FinePaymentService
from domain.catalog.entity import Book
from domain.catalog.ledger import CopyLedger
from domain.loan.policy import FinePolicy
from domain.loan.service import LoanTerms
from infrastructure.locks import InProcessKeyedLock
from infrastructure.models import Base
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork


class FakeClock:
    """Callable clock that only moves when told to"""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2026, 1, 5, 10, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class StubGateway:
    """In-memory PaymentGateway that records every call"""

    gateway = "bkash"

    def __init__(self):
        self.created: List[Tuple[Decimal, str]] = []
        self.executed: List[str] = []
        self.create_error: Optional[Exception] = None
        self.execute_error: Optional[Exception] = None
        self.outcome: Optional[ExecutionOutcome] = None
        # when set, execute waits for it after recording the call
        self.execute_gate: Optional[asyncio.Event] = None
        self.closed = False

    async def get_token(self) -> str:
        return "stub-token"

    async def create_payment(self, amount, reference_id: str) -> GatewayPayment:
        self.created.append((amount, reference_id))
        await asyncio.sleep(0)
        if self.create_error is not None:
            raise self.create_error
        n = len(self.created)
        return GatewayPayment(
            payment_id=f"TR00{n}",
            redirect_url=f"https://sandbox.payment.bkash.com/?paymentId=TR00{n}",
            status_code="0000",
            raw={"paymentID": f"TR00{n}", "statusCode": "0000"},
        )

    async def execute_payment(self, gateway_payment_id: str) -> ExecutionOutcome:
        self.executed.append(gateway_payment_id)
        await asyncio.sleep(0)
        if self.execute_gate is not None:
            await self.execute_gate.wait()
        if self.execute_error is not None:
            raise self.execute_error
        if self.outcome is not None:
            return self.outcome
        return ExecutionOutcome(
            completed=True,
            status="completed",
            transaction_id=f"TRX-{gateway_payment_id}",
            raw={"transactionStatus": "Completed", "trxID": f"TRX-{gateway_payment_id}", "statusCode": "0000"},
        )

    async def aclose(self) -> None:
        self.closed = True


@pytest_asyncio.fixture
async def db_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def uow_factory(db_engine):
    session_factory = async_sessionmaker(bind=db_engine, expire_on_commit=False)
    return partial(SQLAlchemyUnitOfWork, session_factory)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def policy():
    return FinePolicy()


@pytest.fixture
def terms():
    return LoanTerms()


@pytest.fixture
def gateway():
    return StubGateway()


@pytest.fixture
def locks():
    return InProcessKeyedLock(blocking_timeout=5)


@pytest.fixture
def circulation(uow_factory, policy, terms, clock):
    return CirculationService(uow_factory, policy, terms, clock)


@pytest.fixture
def payments(uow_factory, gateway, locks, policy, terms, clock):
    return FinePaymentService(
        uow_factory,
        gateway,
        locks,
        currency="BDT",
        stale_after=timedelta(minutes=60),
        policy=policy,
        terms=terms,
        clock=clock,
    )


@pytest.fixture
def reconciler(uow_factory, gateway, locks, policy, terms, clock):
    return CallbackReconciler(uow_factory, gateway, locks, policy=policy, terms=terms, clock=clock)


@pytest.fixture
def seed_book(uow_factory, clock):
    """``await seed_book(copies=2)`` -> (book_id, [copy ids])"""
    isbns = itertools.count(1)

    async def _seed(copies: int = 1, isbn: Optional[str] = None) -> Tuple[int, List[int]]:
        async with uow_factory() as uow:
            book = await uow.book_repository.create(
                Book(id=None, title="Padma Nadir Majhi", author="Manik Bandopadhyay", isbn=isbn or f"978-984-{next(isbns):06d}")
            )
            ledger = CopyLedger(uow.book_repository, uow.copy_repository)
            copy_ids = []
            for i in range(copies):
                copy = await ledger.register_copy(book.id, f"BC-{book.id}-{i + 1}", now=clock())
                copy_ids.append(copy.id)
            await uow.commit()
        return book.id, copy_ids

    return _seed


@pytest.fixture
def read_book(uow_factory):
    async def _read(book_id: int) -> Book:
        async with uow_factory(readonly=True) as uow:
            return await uow.book_repository.get_by_id(book_id)

    return _read
