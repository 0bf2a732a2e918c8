import asyncio

import httpx
import pytest

from pix_checkout.api.server import LoggingLateSettlementHandler, create_app
from pix_checkout.config import CheckoutSettings
from pix_checkout.schemas import SettlementState

ORDER = {
    "orderId": "A1",
    "total": 150.00,
    "items": [{"productRef": "sku-1", "quantity": 3, "unitPrice": 50.00}],
}
USER = {"email": "buyer@example.com"}


@pytest.fixture
def late_handler():
    return LoggingLateSettlementHandler()


@pytest.fixture
def app(settings, gateway, clock_factory, late_handler):
    return create_app(settings, gateway=gateway, clock_factory=clock_factory, late_settlement_handler=late_handler)


@pytest.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


async def open_checkout(client) -> dict:
    response = await client.post("/sessions", json={"user": USER, "order": ORDER})
    assert response.status_code == 200
    return response.json()


async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


async def test_unauthenticated_start_redirects(client, gateway):
    response = await client.post("/sessions", json={"user": None, "order": ORDER})

    body = response.json()
    assert response.status_code == 200
    assert body["mounted"] is False
    assert body["checkout_id"] is None
    assert body["effects"] == [{"type": "navigation", "destination": "/auth", "payload": None}]
    assert gateway.create_calls == []


async def test_invalid_order_is_rejected(client):
    bad_order = dict(ORDER, total=0)

    response = await client.post("/sessions", json={"user": USER, "order": bad_order})

    assert response.status_code == 422


async def test_start_and_confirm(app, client, gateway):
    body = await open_checkout(client)
    checkout_id = body["checkout_id"]
    assert body["state"]["status"] == "pending"
    assert body["state"]["time_left"] == "10:00"
    assert gateway.create_calls == [(150.00, "buyer@example.com")]

    gateway.statuses.extend([SettlementState.OUTSTANDING, SettlementState.SETTLED])

    pending = (await client.post(f"/sessions/{checkout_id}/confirm")).json()
    assert pending["state"]["status"] == "pending"
    assert [e["kind"] for e in pending["effects"]] == ["info"]

    paid = (await client.post(f"/sessions/{checkout_id}/confirm")).json()
    assert paid["state"]["status"] == "paid"
    navigations = [e for e in paid["effects"] if e["type"] == "navigation"]
    assert navigations == [{"type": "navigation", "destination": "/checkout/sucesso", "payload": ORDER}]

    assert paid["mounted"] is False
    assert app.state.checkouts == {}
    assert (await client.get("/health")).json()["open_checkouts"] == 0
    assert (await client.post(f"/sessions/{checkout_id}/confirm")).status_code == 404


async def test_copy_code(client):
    checkout_id = (await open_checkout(client))["checkout_id"]

    body = (await client.post(f"/sessions/{checkout_id}/copy")).json()

    assert body["code"] == "00020126580014br.gov.bcb.pix-1"
    assert body["state"]["copied"] is True


async def test_restart_while_pending_conflicts(client):
    checkout_id = (await open_checkout(client))["checkout_id"]

    response = await client.post(f"/sessions/{checkout_id}/restart")

    assert response.status_code == 409


async def test_restart_after_expiry(client, clocks):
    checkout_id = (await open_checkout(client))["checkout_id"]
    clocks[0].advance(600)

    expired = (await client.get(f"/sessions/{checkout_id}")).json()
    assert expired["status"] == "expired"
    assert expired["can_restart"] is True
    effects = (await client.get(f"/sessions/{checkout_id}/effects")).json()["effects"]
    assert [e["kind"] for e in effects] == ["warning"]

    restarted = (await client.post(f"/sessions/{checkout_id}/restart")).json()
    assert restarted["state"]["status"] == "pending"
    assert restarted["state"]["remaining_seconds"] == 600


async def test_late_settlement(client, clocks, late_handler):
    checkout_id = (await open_checkout(client))["checkout_id"]
    clocks[0].advance(600)

    response = await client.post(f"/sessions/{checkout_id}/late-settlement", json={"external_payment_id": "pay-1"})

    assert response.json() == {"forwarded": True}
    assert late_handler.received[0]["external_payment_id"] == "pay-1"
    assert late_handler.received[0]["status"] == "expired"


async def test_abandon(client, clocks):
    checkout_id = (await open_checkout(client))["checkout_id"]

    response = await client.delete(f"/sessions/{checkout_id}")

    assert response.json()["effects"] == [{"type": "navigation", "destination": "/", "payload": None}]
    assert clocks[0].stopped
    assert (await client.get(f"/sessions/{checkout_id}")).status_code == 404


async def test_unknown_checkout(client):
    assert (await client.get("/sessions/nope")).status_code == 404
    assert (await client.post("/sessions/nope/confirm")).status_code == 404


async def test_delayed_redirect_releases_checkout_once_polled(gateway, clock_factory):
    settings = CheckoutSettings(redirect_delay_seconds=0.01)
    app = create_app(settings, gateway=gateway, clock_factory=clock_factory)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        checkout_id = (await open_checkout(client))["checkout_id"]
        gateway.statuses.append(SettlementState.SETTLED)

        paid = (await client.post(f"/sessions/{checkout_id}/confirm")).json()
        assert paid["state"]["status"] == "paid"
        assert checkout_id in app.state.checkouts

        await asyncio.sleep(0.05)
        effects = (await client.get(f"/sessions/{checkout_id}/effects")).json()["effects"]

    assert [e["destination"] for e in effects if e["type"] == "navigation"] == ["/checkout/sucesso"]
    assert app.state.checkouts == {}
