"""Checkout: gateway order, signature check, exactly-once topup."""

import asyncio

import pytest

from credit_engine.core.exceptions import (
    BadRequestError,
    ConflictError,
    GatewayUnavailable,
    InvalidAmount,
    NotFoundError,
    StoreUnavailable,
)
from credit_engine.core.types import LedgerReason, OrderStatus
from credit_engine.services.checkout import CheckoutOrchestrator
from credit_engine.stores.memory import MemoryLedgerStore

pytestmark = pytest.mark.asyncio


async def _start(checkout, account_id="acct-1", credits=3000, currency="INR", plan_id="custom"):
    return await checkout.start_checkout(account_id, credits, currency, plan_id)


async def test_start_checkout_prices_and_stores_pending(stores, gateway, checkout):
    session = await _start(checkout, plan_id="pro")
    assert session.amount_minor_units == 3000 * 900
    assert session.currency == "INR"
    assert session.requested_credits == 3000
    assert session.key_id == "rzp_test_key"

    order = await stores.orders.get(session.order_id)
    assert order.status == OrderStatus.PENDING
    assert order.account_id == "acct-1"
    assert order.plan_id == "pro"
    assert gateway.created[0]["amount"] == 2_700_000
    assert gateway.created[0]["notes"]["credits"] == 3000


async def test_start_checkout_usd_and_lowercase_currency(checkout):
    session = await _start(checkout, credits=100, currency="usd")
    assert session.currency == "USD"
    assert session.amount_minor_units == 1200


@pytest.mark.parametrize("credits", [0, -3000, 99, 10001])
async def test_start_checkout_rejects_out_of_range(gateway, checkout, credits):
    with pytest.raises(InvalidAmount):
        await _start(checkout, credits=credits)
    assert gateway.created == []


async def test_start_checkout_rejects_unknown_currency(gateway, checkout):
    with pytest.raises(BadRequestError):
        await _start(checkout, currency="EUR")
    assert gateway.created == []


async def test_start_checkout_plan_mismatch(gateway, checkout):
    with pytest.raises(InvalidAmount):
        await _start(checkout, credits=100, plan_id="premium")
    with pytest.raises(BadRequestError):
        await _start(checkout, credits=100, plan_id="enterprise")
    assert gateway.created == []


async def test_gateway_unavailable_stores_nothing(stores, gateway, checkout):
    gateway.unavailable = True
    with pytest.raises(GatewayUnavailable):
        await _start(checkout)
    assert stores.orders.orders == {}


async def test_complete_checkout_credits_once(stores, gateway, checkout):
    session = await _start(checkout)
    sig = gateway.sign(session.order_id, "pay_1")

    result = await checkout.complete_checkout(session.order_id, "pay_1", sig, account_id="acct-1")
    assert result.status == OrderStatus.CREDITED
    assert result.new_balance == 3000

    replay = await checkout.complete_checkout(session.order_id, "pay_1", sig, account_id="acct-1")
    assert replay.status == OrderStatus.CREDITED
    assert replay.new_balance == 3000
    assert await stores.ledger.get_balance("acct-1") == 3000
    topups = [e for e in await stores.ledger.list_entries("acct-1") if e.reason == LedgerReason.TOPUP]
    assert len(topups) == 1

    order = await stores.orders.get(session.order_id)
    assert order.payment_id == "pay_1"
    assert order.credited_balance == 3000
    assert stores.audit.events[-1]["event_type"] == "credits_topped_up"


async def test_concurrent_completions_credit_once(stores, gateway, checkout):
    session = await _start(checkout)
    sig = gateway.sign(session.order_id, "pay_1")
    results = await asyncio.gather(
        *[checkout.complete_checkout(session.order_id, "pay_1", sig) for _ in range(5)]
    )
    assert all(r.status == OrderStatus.CREDITED for r in results)
    assert await stores.ledger.get_balance("acct-1") == 3000


async def test_bad_signature_fails_order(stores, gateway, checkout):
    session = await _start(checkout)
    result = await checkout.complete_checkout(session.order_id, "pay_1", "deadbeef")
    assert result.status == OrderStatus.FAILED
    assert await stores.ledger.get_balance("acct-1") == 0
    assert await stores.ledger.list_entries("acct-1") == []

    # FAILED is terminal even if a valid signature shows up later
    later = await checkout.complete_checkout(session.order_id, "pay_1", gateway.sign(session.order_id, "pay_1"))
    assert later.status == OrderStatus.FAILED
    assert await stores.ledger.get_balance("acct-1") == 0


async def test_bad_signature_after_credit_keeps_credit(stores, gateway, checkout):
    session = await _start(checkout)
    await checkout.complete_checkout(session.order_id, "pay_1", gateway.sign(session.order_id, "pay_1"))
    result = await checkout.complete_checkout(session.order_id, "pay_1", "forged")
    assert result.status == OrderStatus.CREDITED
    assert await stores.ledger.get_balance("acct-1") == 3000


async def test_complete_unknown_or_foreign_order(gateway, checkout):
    with pytest.raises(NotFoundError):
        await checkout.complete_checkout("order_missing", "pay_1", "sig")
    session = await _start(checkout, account_id="acct-1")
    with pytest.raises(NotFoundError):
        await checkout.complete_checkout(
            session.order_id, "pay_1", gateway.sign(session.order_id, "pay_1"), account_id="acct-2"
        )


async def test_topup_already_in_ledger_is_not_repeated(stores, gateway, checkout):
    session = await _start(checkout)
    # Another worker landed the topup but died before updating the order
    await stores.ledger.credit("acct-1", 3000, session.order_id)
    result = await checkout.complete_checkout(session.order_id, "pay_1", gateway.sign(session.order_id, "pay_1"))
    assert result.status == OrderStatus.CREDITED
    assert result.new_balance == 3000
    assert await stores.ledger.get_balance("acct-1") == 3000


async def test_credit_failure_leaves_order_verified_for_reconciliation(stores, gateway, flaky_ledger):
    ledger = flaky_ledger(failures=1)
    checkout = CheckoutOrchestrator(ledger, stores.orders, gateway, stores.audit)
    session = await _start(checkout)
    sig = gateway.sign(session.order_id, "pay_1")

    result = await checkout.complete_checkout(session.order_id, "pay_1", sig)
    assert result.status == OrderStatus.VERIFIED
    assert result.reconciliation_required is True
    order = await stores.orders.get(session.order_id)
    assert order.status == OrderStatus.VERIFIED
    assert order.credit_error.startswith("StoreUnavailable")
    assert any(e["event_type"] == "credit_failed_reconciliation_required" for e in stores.audit.events)

    # Client retry does not blindly re-credit
    retry = await checkout.complete_checkout(session.order_id, "pay_1", sig)
    assert retry.reconciliation_required is True
    assert ledger.credit_calls == 1

    reconciled = await checkout.reconcile(session.order_id, operator_id="admin-1")
    assert reconciled.status == OrderStatus.CREDITED
    assert reconciled.new_balance == 3000
    assert await ledger.get_balance("acct-1") == 3000
    order = await stores.orders.get(session.order_id)
    assert order.credit_error is None


async def test_reconcile_when_failed_write_actually_landed(stores, gateway, flaky_ledger):
    ledger = flaky_ledger(failures=1, land_before_failing=True)
    checkout = CheckoutOrchestrator(ledger, stores.orders, gateway, stores.audit)
    session = await _start(checkout)
    result = await checkout.complete_checkout(session.order_id, "pay_1", gateway.sign(session.order_id, "pay_1"))
    assert result.status == OrderStatus.VERIFIED

    reconciled = await checkout.reconcile(session.order_id)
    assert reconciled.status == OrderStatus.CREDITED
    assert reconciled.new_balance == 3000
    assert await ledger.get_balance("acct-1") == 3000
    assert len(ledger.entries) == 1


async def test_reconcile_settled_and_pending_orders(gateway, checkout):
    session = await _start(checkout)
    with pytest.raises(ConflictError):
        await checkout.reconcile(session.order_id)

    await checkout.complete_checkout(session.order_id, "pay_1", gateway.sign(session.order_id, "pay_1"))
    result = await checkout.reconcile(session.order_id)
    assert result.status == OrderStatus.CREDITED

    with pytest.raises(NotFoundError):
        await checkout.reconcile("order_missing")


class _SlowFailingLedger(MemoryLedgerStore):
    """First credit() waits until a later one lands, then fails."""

    def __init__(self) -> None:
        super().__init__()
        self.other_landed = asyncio.Event()
        self.calls = 0

    async def credit(self, account_id, amount, payment_order_id):
        self.calls += 1
        if self.calls == 1:
            await self.other_landed.wait()
            raise StoreUnavailable(details={"op": "credit"})
        balance = await super().credit(account_id, amount, payment_order_id)
        self.other_landed.set()
        return balance


async def test_failed_credit_loses_to_concurrent_success(stores, gateway):
    ledger = _SlowFailingLedger()
    checkout = CheckoutOrchestrator(ledger, stores.orders, gateway, stores.audit)
    session = await _start(checkout)
    sig = gateway.sign(session.order_id, "pay_1")

    first, second = await asyncio.gather(
        checkout.complete_checkout(session.order_id, "pay_1", sig),
        checkout.complete_checkout(session.order_id, "pay_1", sig),
    )
    assert ledger.calls == 2
    for result in (first, second):
        assert result.status == OrderStatus.CREDITED
        assert result.new_balance == 3000
        assert result.reconciliation_required is False

    order = await stores.orders.get(session.order_id)
    assert order.status == OrderStatus.CREDITED
    assert order.credit_error is None
    event_types = [e["event_type"] for e in stores.audit.events]
    assert "credit_failed_reconciliation_required" not in event_types
    assert event_types.count("credits_topped_up") == 1
