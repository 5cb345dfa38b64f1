from datetime import datetime, timedelta, timezone
from decimal import Decimal

import httpx
import jwt
import pytest
import pytest_asyncio

import main
from core.config import settings

from conftest import TENANT, fund_wallet, item


def _token(sub="cust-1", role="customer", tenant=None, expires_in=3600) -> str:
    claims = {"sub": sub, "role": role, "exp": datetime.now(timezone.utc) + timedelta(seconds=expires_in)}
    if tenant:
        claims["tenant"] = tenant
    return jwt.encode(claims, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def _headers(key=None, **token_kwargs) -> dict:
    headers = {"Authorization": f"Bearer {_token(**token_kwargs)}"}
    if key:
        headers[settings.idempotency.header] = key
    return headers


def _order_body(total="400", **extra) -> dict:
    body = {"tenant_id": TENANT, "items": [item("pizza", qty=2)], "total": total}
    body.update(extra)
    return body


@pytest_asyncio.fixture
async def client(order_service, ledger, idempotency, payment_service):
    state = main.app.state
    state.order_service = order_service
    state.wallet_service = ledger
    state.idempotency_service = idempotency
    state.payment_service = payment_service
    transport = httpx.ASGITransport(app=main.app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as c:
        yield c
    state.payment_service = None


@pytest.mark.asyncio
async def test_health(client):
    resp = await client.get("/health")

    assert resp.status_code == 200
    assert resp.json()["data"] == {"status": "healthy"}
    assert resp.headers["X-Request-ID"]


@pytest.mark.asyncio
async def test_requests_without_token_are_unauthorized(client):
    resp = await client.post("/api/v1/orders", json=_order_body(), headers={settings.idempotency.header: "k1"})

    assert resp.status_code == 401
    assert resp.headers["WWW-Authenticate"] == "Bearer"


@pytest.mark.asyncio
async def test_expired_or_forged_token(client):
    expired = await client.get("/api/v1/wallet/balance", headers=_headers(expires_in=-10))
    forged = await client.get(
        "/api/v1/wallet/balance",
        headers={"Authorization": "Bearer " + jwt.encode({"sub": "x", "role": "admin"}, "wrong-key", algorithm="HS256")},
    )

    assert expired.status_code == 401
    assert forged.status_code == 401


@pytest.mark.asyncio
async def test_create_order_requires_idempotency_key(client):
    resp = await client.post("/api/v1/orders", json=_order_body(), headers=_headers())

    assert resp.status_code == 400
    assert resp.json()["error"]["type"] == "IdempotencyKeyMissing"


@pytest.mark.asyncio
async def test_create_order_and_replay(client):
    first = await client.post("/api/v1/orders", json=_order_body(), headers=_headers(key="order-key-1"))
    replay = await client.post("/api/v1/orders", json=_order_body(), headers=_headers(key="order-key-1"))

    assert first.status_code == 201
    data = first.json()["data"]
    assert data["total"] == "400.00"
    assert data["payment_status"] == "pending"

    assert replay.status_code == 201
    body = replay.json()
    assert body["_idempotent"] is True
    assert body["data"]["id"] == data["id"]

    listed = await client.get("/api/v1/orders/mine", headers=_headers())
    assert listed.json()["data"]["total"] == 1


@pytest.mark.asyncio
async def test_price_mismatch_returns_every_error(client):
    body = _order_body(total="450")
    body["items"].append(item("missing"))

    resp = await client.post("/api/v1/orders", json=body, headers=_headers(key="order-key-2"))

    assert resp.status_code == 400
    error = resp.json()["error"]
    assert error["type"] == "PriceValidationError"
    assert error["details"]["errors"] == [
        "Product not found: missing",
        "Total mismatch: expected 400.00, received 450.00",
    ]


@pytest.mark.asyncio
async def test_order_status_and_visibility(client):
    created = await client.post("/api/v1/orders", json=_order_body(), headers=_headers(key="order-key-3"))
    order_id = created.json()["data"]["id"]

    stranger = await client.get(f"/api/v1/orders/{order_id}", headers=_headers(sub="cust-2"))
    updated = await client.patch(
        f"/api/v1/orders/{order_id}/status",
        json={"status": "preparing"},
        headers=_headers(sub="mgr-1", role="manager", tenant=TENANT),
    )

    assert stranger.status_code == 403
    assert updated.status_code == 200
    assert updated.json()["data"]["status"] == "preparing"


@pytest.mark.asyncio
async def test_wallet_balance_and_cashback_preview(client, ledger):
    await fund_wallet(ledger, "cust-1", "75")

    balance = await client.get("/api/v1/wallet/balance", headers=_headers())
    preview = await client.post(
        "/api/v1/wallet/cashback-preview",
        json={"order_amount": "1000", "wallet_amount_used": "200"},
        headers=_headers(),
    )
    transactions = await client.get("/api/v1/wallet/transactions", headers=_headers())

    assert balance.status_code == 200
    assert Decimal(balance.json()["data"]["balance"]) == Decimal("75")
    assert Decimal(preview.json()["data"]["cashback_amount"]) == Decimal("40")
    assert transactions.json()["data"]["total"] == 1
    assert transactions.json()["data"]["items"][0]["type"] == "refund"


@pytest.mark.asyncio
async def test_initiate_payment_over_http(client):
    created = await client.post("/api/v1/orders", json=_order_body(), headers=_headers(key="order-key-4"))
    order_id = created.json()["data"]["id"]

    resp = await client.post("/api/v1/payments/initiate", json={"order_id": order_id}, headers=_headers())

    assert resp.status_code == 200
    assert resp.json()["data"]["amount_minor"] == 40000
    assert resp.json()["data"]["gateway_order_id"] == f"gw_{order_id}"


@pytest.mark.asyncio
async def test_customer_cannot_refund(client):
    resp = await client.post("/api/v1/payments/refund", json={"order_id": "any"}, headers=_headers())

    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_payment_endpoints_unavailable_without_gateway(client):
    main.app.state.payment_service = None

    resp = await client.post("/api/v1/payments/initiate", json={"order_id": "o-1"}, headers=_headers())

    assert resp.status_code == 503
