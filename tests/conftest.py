import hashlib
import hmac
import os
from typing import Any, AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# In-memory stores and test gateway keys; must be set before settings are first read
os.environ.setdefault("STORE_BACKEND", "memory")
os.environ.setdefault("SECRET_KEY", "test-secret-key-min-32-characters-long")
os.environ.setdefault("RAZORPAY_KEY_ID", "rzp_test_key")
os.environ.setdefault("RAZORPAY_KEY_SECRET", "test_key_secret")
os.environ.setdefault("RAZORPAY_WEBHOOK_SECRET", "test_webhook_secret")

from credit_engine.core.exceptions import GatewayUnavailable, InvalidAmount, StoreUnavailable  # noqa: E402
from credit_engine.core.security import sign_razorpay_payment, verify_razorpay_payment, verify_razorpay_webhook  # noqa: E402
from credit_engine.core.types import GatewayOrder  # noqa: E402
from credit_engine.gateway.base import PaymentGateway  # noqa: E402
from credit_engine.services.checkout import CheckoutOrchestrator  # noqa: E402
from credit_engine.services.gate import ResourceGate  # noqa: E402
from credit_engine.stores.base import Stores  # noqa: E402
from credit_engine.stores.memory import MemoryLedgerStore, build_memory_stores  # noqa: E402


class FakeGateway(PaymentGateway):
    """Gateway double: sequential order ids, real Razorpay signature scheme."""

    public_key = "rzp_test_key"

    def __init__(self, key_secret: str = "test_key_secret", webhook_secret: str = "test_webhook_secret") -> None:
        self.key_secret = key_secret
        self.webhook_secret = webhook_secret
        self.created: list[dict[str, Any]] = []
        self.unavailable = False

    async def create_order(self, account_id, amount_minor_units, currency, notes=None) -> GatewayOrder:
        if amount_minor_units <= 0:
            raise InvalidAmount("Order amount must be positive")
        if self.unavailable:
            raise GatewayUnavailable()
        order_id = f"order_{len(self.created) + 1:04d}"
        self.created.append(
            {"order_id": order_id, "account_id": account_id, "amount": amount_minor_units, "currency": currency, "notes": notes}
        )
        return GatewayOrder(order_id=order_id, amount_minor_units=amount_minor_units, currency=currency)

    async def verify_payment(self, order_id, payment_id, signature) -> bool:
        return verify_razorpay_payment(order_id, payment_id, signature, self.key_secret)

    async def verify_webhook(self, payload, signature) -> bool:
        return verify_razorpay_webhook(payload, signature, self.webhook_secret)

    def sign(self, order_id: str, payment_id: str) -> str:
        return sign_razorpay_payment(order_id, payment_id, self.key_secret)

    def sign_webhook(self, payload: bytes) -> str:
        return hmac.new(self.webhook_secret.encode(), payload, hashlib.sha256).hexdigest()


class FlakyLedgerStore(MemoryLedgerStore):
    """Ledger whose credit() fails `failures` times; with `land_before_failing` the write commits first."""

    def __init__(self, failures: int = 1, land_before_failing: bool = False) -> None:
        super().__init__()
        self.failures = failures
        self.land_before_failing = land_before_failing
        self.credit_calls = 0

    async def credit(self, account_id, amount, payment_order_id):
        self.credit_calls += 1
        if self.failures > 0:
            self.failures -= 1
            if self.land_before_failing:
                await super().credit(account_id, amount, payment_order_id)
            raise StoreUnavailable(details={"op": "credit"})
        return await super().credit(account_id, amount, payment_order_id)


@pytest.fixture
def stores() -> Stores:
    return build_memory_stores()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def gate(stores: Stores) -> ResourceGate:
    return ResourceGate(stores.ledger, stores.unlocks, stores.audit)


@pytest.fixture
def checkout(stores: Stores, gateway: FakeGateway) -> CheckoutOrchestrator:
    return CheckoutOrchestrator(stores.ledger, stores.orders, gateway, stores.audit)


@pytest.fixture
def session_cookie():
    from credit_engine.core.security import create_session_cookie

    def _make(account_id: str = "acct-1", role: str = "user") -> str:
        return create_session_cookie({"account_id": account_id, "role": role})

    return _make


@pytest_asyncio.fixture
async def client(stores: Stores, gateway: FakeGateway, session_cookie) -> AsyncGenerator[AsyncClient, None]:
    from credit_engine.deps import SESSION_COOKIE_NAME, provide_gateway, provide_stores
    from credit_engine.main import app

    app.dependency_overrides[provide_stores] = lambda: stores
    app.dependency_overrides[provide_gateway] = lambda: gateway
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        cookies={SESSION_COOKIE_NAME: session_cookie()},
    ) as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def flaky_ledger():
    return FlakyLedgerStore
