import asyncio
import json
from decimal import Decimal

import httpx
import pytest

from core.settings import BkashSettings, PaymentRetry, PaymentSettings
from infrastructure.external.payments import get_payment_gateway
from infrastructure.external.payments.bkash_client import BkashClient
from infrastructure.external.payments.exceptions import (
    GatewayAuthError,
    GatewayCreateError,
    GatewayExecuteError,
)

BASE = "https://bkash.test/v1.2.0-beta"


class MonotonicClock:
    def __init__(self):
        self.value = 1000.0

    def __call__(self) -> float:
        return self.value


class FakeBkash:
    """Scripted bKash endpoints; each path maps to a list of responses or exceptions"""

    def __init__(self):
        self.calls: list[httpx.Request] = []
        self.grant_count = 0
        self.scripts: dict[str, list] = {}

    def script(self, path: str, *responses) -> None:
        self.scripts[path] = list(responses)

    def count(self, path: str) -> int:
        return sum(1 for r in self.calls if r.url.path.endswith(path))

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        path = request.url.path
        if path.endswith("/token/grant"):
            self.grant_count += 1
            queued = self.scripts.get("grant")
            if queued:
                return self._next(queued, request)
            return httpx.Response(200, json={
                "id_token": f"token-{self.grant_count}",
                "expires_in": 3600,
                "token_type": "Bearer",
                "statusCode": "0000",
            })
        for key in ("create", "execute"):
            if path.endswith(f"/checkout/{key}"):
                return self._next(self.scripts[key], request)
        return httpx.Response(404)

    @staticmethod
    def _next(queue: list, request: httpx.Request) -> httpx.Response:
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        return item


def _settings(**overrides) -> PaymentSettings:
    return PaymentSettings(
        currency="BDT",
        retry=PaymentRetry(max=2, base_backoff=0.01),
        bkash=BkashSettings(
            base_url=BASE,
            app_key="app-key",
            app_secret="app-secret",
            username="merchant",
            password="merchant-pass",
            callback_url="https://library.test/api/v1/payments/bkash/callback",
        ),
        **overrides,
    )


def _client(fake: FakeBkash, clock=None) -> BkashClient:
    return BkashClient(_settings(), transport=httpx.MockTransport(fake), clock=clock or MonotonicClock())


def _created(payment_id="TR0011", status_code="0000"):
    return httpx.Response(200, json={
        "paymentID": payment_id,
        "bkashURL": f"https://sandbox.payment.bkash.com/?paymentId={payment_id}",
        "statusCode": status_code,
        "statusMessage": "Successful" if status_code == "0000" else "Invalid Amount",
    })


@pytest.mark.asyncio
async def test_create_sends_checkout_request():
    fake = FakeBkash()
    fake.script("create", _created())
    client = _client(fake)

    created = await client.create_payment(Decimal("65"), "fine-7")
    assert created.payment_id == "TR0011"
    assert created.redirect_url.endswith("TR0011")

    grant, create = fake.calls
    assert grant.headers["username"] == "merchant"
    assert json.loads(grant.content) == {"app_key": "app-key", "app_secret": "app-secret"}
    assert create.headers["Authorization"] == "token-1"
    assert create.headers["X-APP-Key"] == "app-key"
    assert json.loads(create.content) == {
        "mode": "0011",
        "payerReference": "fine-7",
        "callbackURL": "https://library.test/api/v1/payments/bkash/callback",
        "amount": "65.00",
        "currency": "BDT",
        "intent": "sale",
        "merchantInvoiceNumber": "fine-7",
    }
    await client.aclose()


@pytest.mark.asyncio
async def test_token_is_cached_until_refresh_margin():
    fake = FakeBkash()
    fake.script("create", _created())
    clock = MonotonicClock()
    client = _client(fake, clock)

    assert await client.get_token() == "token-1"
    await client.create_payment(Decimal("10"), "fine-1")
    assert fake.grant_count == 1

    # expires_in 3600 minus the 300s margin
    clock.value += 3299
    assert await client.get_token() == "token-1"
    clock.value += 2
    assert await client.get_token() == "token-2"
    assert fake.grant_count == 2


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_grant():
    fake = FakeBkash()
    client = _client(fake)
    tokens = await asyncio.gather(*(client.get_token() for _ in range(5)))
    assert set(tokens) == {"token-1"}
    assert fake.grant_count == 1


@pytest.mark.asyncio
async def test_grant_rejected_raises_auth_error():
    fake = FakeBkash()
    fake.script("grant", httpx.Response(200, json={"statusCode": "2079", "statusMessage": "Invalid username"}))
    client = _client(fake)

    with pytest.raises(GatewayAuthError) as exc_info:
        await client.get_token()
    assert exc_info.value.gateway_code == "2079"
    assert client._token is None


@pytest.mark.asyncio
async def test_grant_transport_failure_raises_auth_error():
    fake = FakeBkash()
    fake.script("grant", httpx.ConnectError("connection refused"))
    client = _client(fake)

    with pytest.raises(GatewayAuthError):
        await client.get_token()
    # first attempt plus two retries
    assert fake.grant_count == 3


@pytest.mark.asyncio
async def test_create_non_success_status_raises():
    fake = FakeBkash()
    fake.script("create", _created(status_code="2002"))
    client = _client(fake)

    with pytest.raises(GatewayCreateError) as exc_info:
        await client.create_payment(Decimal("10"), "fine-1")
    assert exc_info.value.gateway_code == "2002"
    assert exc_info.value.details["raw"]["statusCode"] == "2002"


@pytest.mark.asyncio
async def test_create_retries_connect_errors_only():
    fake = FakeBkash()
    fake.script("create", httpx.ConnectError("refused"), _created())
    client = _client(fake)
    created = await client.create_payment(Decimal("10"), "fine-1")
    assert created.payment_id == "TR0011"
    assert fake.count("/checkout/create") == 2

    fake = FakeBkash()
    fake.script("create", httpx.ReadTimeout("read timed out"))
    client = _client(fake)
    with pytest.raises(GatewayCreateError):
        await client.create_payment(Decimal("10"), "fine-1")
    assert fake.count("/checkout/create") == 1


@pytest.mark.asyncio
async def test_unauthorized_drops_cached_token():
    fake = FakeBkash()
    fake.script("create", httpx.Response(401, json={"message": "Unauthorized"}), _created())
    client = _client(fake)

    with pytest.raises(GatewayCreateError):
        await client.create_payment(Decimal("10"), "fine-1")
    await client.create_payment(Decimal("10"), "fine-1")
    assert fake.grant_count == 2
    assert fake.calls[-1].headers["Authorization"] == "token-2"


@pytest.mark.asyncio
async def test_execute_completed():
    fake = FakeBkash()
    fake.script("execute", httpx.Response(200, json={
        "paymentID": "TR0011",
        "trxID": "BFD90JRLST",
        "transactionStatus": "Completed",
        "amount": "65.00",
        "statusCode": "0000",
    }))
    client = _client(fake)

    outcome = await client.execute_payment("TR0011")
    assert outcome.completed is True
    assert outcome.status == "completed"
    assert outcome.transaction_id == "BFD90JRLST"
    assert json.loads(fake.calls[-1].content) == {"paymentID": "TR0011"}


@pytest.mark.asyncio
async def test_execute_completed_without_trx_id_is_not_success():
    fake = FakeBkash()
    fake.script("execute", httpx.Response(200, json={"transactionStatus": "Completed", "statusCode": "0000"}))
    outcome = await _client(fake).execute_payment("TR0011")
    assert outcome.completed is False
    assert outcome.transaction_id is None


@pytest.mark.asyncio
async def test_execute_business_failure_is_an_outcome():
    fake = FakeBkash()
    fake.script("execute", httpx.Response(200, json={"statusCode": "2056", "statusMessage": "Invalid Payment State"}))
    outcome = await _client(fake).execute_payment("TR0011")
    assert outcome.completed is False
    assert outcome.status == "failed"
    assert outcome.reason_code == "2056"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "answer",
    [
        httpx.Response(500, text="upstream error"),
        httpx.Response(200, text="<html>gateway timeout</html>"),
        httpx.Response(200, json={"statusCode": "0000"}),
        httpx.ReadTimeout("read timed out"),
    ],
)
async def test_execute_faults_raise(answer):
    fake = FakeBkash()
    fake.script("execute", answer)
    with pytest.raises(GatewayExecuteError):
        await _client(fake).execute_payment("TR0011")
    # execute is never resent after the request may have reached bKash
    assert fake.count("/checkout/execute") == 1


def test_factory_builds_bkash_client():
    client = get_payment_gateway("bkash", settings=_settings())
    assert isinstance(client, BkashClient)
    with pytest.raises(ValueError):
        get_payment_gateway("paypal", settings=_settings())
