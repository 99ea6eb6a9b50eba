"""HTTP surface: auth cookie, routers, error envelope."""

import json

import pytest

from credit_engine.deps import SESSION_COOKIE_NAME

pytestmark = pytest.mark.asyncio


async def test_requires_session(client):
    client.cookies.clear()
    r = await client.get("/v1/credits/balance")
    assert r.status_code == 401
    assert r.json()["error"]["code"] == "UNAUTHORIZED"

    client.cookies.set(SESSION_COOKIE_NAME, "tampered")
    r = await client.get("/v1/credits/balance")
    assert r.status_code == 401


async def test_balance_and_pricing(client, stores):
    await stores.ledger.credit("acct-1", 250, "order_seed")
    r = await client.get("/v1/credits/balance")
    assert r.status_code == 200
    assert r.json() == {"balance": 250}

    r = await client.get("/v1/credits/pricing")
    assert r.status_code == 200
    assert r.json()["currencies"]["USD"]["minor_units_per_credit"] == 12


async def test_ledger_page(client, stores):
    await stores.ledger.credit("acct-1", 100, "order_a")
    await stores.ledger.credit("acct-1", 200, "order_b")
    r = await client.get("/v1/credits/ledger", params={"limit": 1})
    body = r.json()
    assert r.status_code == 200
    assert body["limit"] == 1
    assert body["has_more"] is True
    assert body["items"][0]["payment_order_id"] == "order_b"
    assert body["items"][0]["reason"] == "TOPUP"


async def test_unlock_flow(client, stores):
    await stores.ledger.credit("acct-1", 5, "order_seed")

    r = await client.get("/v1/unlocks/INVESTOR_PROFILE/inv-42")
    assert r.json()["unlocked"] is False

    r = await client.post("/v1/unlocks", json={"resource_kind": "INVESTOR_PROFILE", "resource_id": "inv-42"})
    assert r.status_code == 200
    assert r.json() == {"status": "UNLOCKED", "balance": 4}

    r = await client.post("/v1/unlocks", json={"resource_kind": "INVESTOR_PROFILE", "resource_id": "inv-42"})
    assert r.json()["status"] == "ALREADY_UNLOCKED"

    r = await client.get("/v1/unlocks/INVESTOR_PROFILE/inv-42")
    assert r.json()["unlocked"] is True

    r = await client.get("/v1/unlocks", params={"resource_kind": "INVESTOR_PROFILE"})
    assert [u["resource_id"] for u in r.json()] == ["inv-42"]

    r = await client.get("/v1/credits/balance")
    assert r.json()["balance"] == 4


async def test_unlock_insufficient_is_not_an_error(client):
    r = await client.post("/v1/unlocks", json={"resource_kind": "PIPELINE_CHAT", "resource_id": "chat-1"})
    assert r.status_code == 200
    assert r.json() == {"status": "INSUFFICIENT_CREDITS", "balance": 0}


async def test_unlock_validation_error(client):
    r = await client.post("/v1/unlocks", json={"resource_kind": "DEAL_ROOM", "resource_id": "x"})
    assert r.status_code == 422
    assert r.json()["error"]["code"] == "VALIDATION_ERROR"


async def test_checkout_round_trip(client, gateway, stores):
    r = await client.post("/v1/checkout/orders", json={"credits": 3000, "currency": "INR", "plan_id": "pro"})
    assert r.status_code == 200
    session = r.json()
    assert session["amount_minor_units"] == 2_700_000
    assert session["key_id"] == "rzp_test_key"
    order_id = session["order_id"]

    body = {"razorpay_payment_id": "pay_1", "razorpay_signature": gateway.sign(order_id, "pay_1")}
    r = await client.post(f"/v1/checkout/orders/{order_id}/complete", json=body)
    assert r.status_code == 200
    assert r.json()["status"] == "CREDITED"
    assert r.json()["new_balance"] == 3000

    # Replay
    r = await client.post(f"/v1/checkout/orders/{order_id}/complete", json=body)
    assert r.json()["new_balance"] == 3000
    assert await stores.ledger.get_balance("acct-1") == 3000


async def test_checkout_invalid_amount(client, gateway):
    r = await client.post("/v1/checkout/orders", json={"credits": 10, "currency": "INR"})
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "INVALID_AMOUNT"
    assert gateway.created == []


async def test_checkout_gateway_down(client, gateway):
    gateway.unavailable = True
    r = await client.post("/v1/checkout/orders", json={"credits": 100, "currency": "INR"})
    assert r.status_code == 503
    assert r.json()["error"]["code"] == "TRANSIENT_FAILURE"


async def test_complete_other_accounts_order(client, gateway, session_cookie):
    r = await client.post("/v1/checkout/orders", json={"credits": 100, "currency": "INR"})
    order_id = r.json()["order_id"]
    client.cookies.set(SESSION_COOKIE_NAME, session_cookie("acct-2"))
    body = {"razorpay_payment_id": "pay_1", "razorpay_signature": gateway.sign(order_id, "pay_1")}
    r = await client.post(f"/v1/checkout/orders/{order_id}/complete", json=body)
    assert r.status_code == 404


async def test_webhook_endpoint(client, gateway, stores):
    r = await client.post("/v1/checkout/orders", json={"credits": 100, "currency": "USD"})
    order_id = r.json()["order_id"]
    payload = json.dumps(
        {
            "event": "payment.captured",
            "payload": {"payment": {"entity": {"id": "pay_9", "order_id": order_id, "amount": 1200}}},
        }
    ).encode()

    r = await client.post("/v1/checkout/webhook", content=payload, headers={"X-Razorpay-Signature": "bogus"})
    assert r.status_code == 400

    r = await client.post(
        "/v1/checkout/webhook",
        content=payload,
        headers={"X-Razorpay-Signature": gateway.sign_webhook(payload)},
    )
    assert r.status_code == 200
    assert r.json() == {"status": "ok", "order_status": "CREDITED"}
    assert await stores.ledger.get_balance("acct-1") == 100


async def test_admin_reconciliation(client, stores, session_cookie):
    r = await client.get("/v1/admin/reconciliation")
    assert r.status_code == 403

    client.cookies.set(SESSION_COOKIE_NAME, session_cookie("ops-1", role="admin"))
    r = await client.get("/v1/admin/reconciliation")
    assert r.status_code == 200
    assert r.json() == []

    r = await client.post("/v1/admin/reconciliation/order_missing")
    assert r.status_code == 404


async def test_webhook_non_numeric_amount_is_400(client, gateway):
    r = await client.post("/v1/checkout/orders", json={"credits": 100, "currency": "INR"})
    order_id = r.json()["order_id"]
    payload = json.dumps(
        {
            "event": "payment.captured",
            "payload": {"payment": {"entity": {"id": "pay_9", "order_id": order_id, "amount": {"value": 1}}}},
        }
    ).encode()
    r = await client.post(
        "/v1/checkout/webhook",
        content=payload,
        headers={"X-Razorpay-Signature": gateway.sign_webhook(payload)},
    )
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "BAD_REQUEST"
