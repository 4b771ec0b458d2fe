"""
HTTP tests: routing, auth, request validation and error-to-status mapping.
"""

import hashlib
import hmac
import json
from decimal import Decimal
from unittest.mock import patch

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from tests.conftest import DRIVER, OTHER_RIDER, headers_for


def booking_payload(**overrides) -> dict:
    payload = {
        "driverId": DRIVER.id,
        "vehicleCategory": "car",
        "passengers": 2,
        "pricing": {"ratePerKm": "14", "totalAmount": "238", "tripType": "one-way", "distance": "17"},
        "paymentMethod": "razorpay",
    }
    payload.update(overrides)
    return payload


async def create(client: AsyncClient, headers: dict, **overrides) -> dict:
    response = await client.post("/api/v1/bookings/", json=booking_payload(**overrides), headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


@pytest.mark.asyncio
async def test_create_booking(client: AsyncClient, rider_headers):
    data = await create(client, rider_headers)

    assert data["status"] == "pending"
    assert data["version"] == 1
    assert data["booking_number"].startswith("CS")
    assert Decimal(data["pricing"]["total_amount"]) == Decimal("238")
    assert data["payment"]["is_partial_payment"] is False
    assert data["overall_payment_status"] == "pending"
    assert data["has_outstanding_balance"] is False


@pytest.mark.asyncio
async def test_create_booking_unauthenticated(client: AsyncClient):
    response = await client.post("/api/v1/bookings/", json=booking_payload())
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_create_booking_bad_split(client: AsyncClient, rider_headers):
    response = await client.post(
        "/api/v1/bookings/",
        json=booking_payload(split={"online": "150", "cash": "100"}),
        headers=rider_headers,
    )
    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "amount_mismatch"


@pytest.mark.asyncio
async def test_create_booking_invalid_pricing(client: AsyncClient, rider_headers):
    payload = booking_payload()
    payload["pricing"]["totalAmount"] = "0"
    response = await client.post("/api/v1/bookings/", json=payload, headers=rider_headers)
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_status_flow_and_stale_version(client: AsyncClient, rider_headers, driver_headers):
    booking = await create(client, rider_headers)
    url = f"/api/v1/bookings/{booking['id']}/status"

    response = await client.post(url, json={"targetStatus": "accepted", "version": 1}, headers=driver_headers)
    assert response.status_code == 200
    assert response.json()["version"] == 2

    stale = await client.post(url, json={"targetStatus": "started", "version": 1}, headers=driver_headers)
    assert stale.status_code == 409
    assert stale.json()["detail"]["code"] == "conflict"


@pytest.mark.asyncio
async def test_illegal_edge(client: AsyncClient, rider_headers, driver_headers):
    booking = await create(client, rider_headers)
    response = await client.post(
        f"/api/v1/bookings/{booking['id']}/status",
        json={"targetStatus": "completed", "version": 1},
        headers=driver_headers,
    )
    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "invalid_transition"


@pytest.mark.asyncio
async def test_rider_cannot_approve(client: AsyncClient, rider_headers, admin_headers):
    booking = await create(client, rider_headers)
    requested = await client.post(
        f"/api/v1/bookings/{booking['id']}/cancellation/request",
        json={"reason": "Plans changed", "version": 1},
        headers=rider_headers,
    )
    assert requested.status_code == 200
    assert requested.json()["status"] == "cancellation_requested"

    response = await client.post(
        f"/api/v1/bookings/{booking['id']}/cancellation/approve",
        json={"version": 2},
        headers=rider_headers,
    )
    assert response.status_code == 403

    approved = await client.post(
        f"/api/v1/bookings/{booking['id']}/cancellation/approve",
        json={"version": 2},
        headers=admin_headers,
    )
    assert approved.status_code == 200
    assert approved.json()["status"] == "cancelled"
    assert approved.json()["cancellation"]["request_status"] == "approved"


@pytest.mark.asyncio
async def test_webhook_replay(client: AsyncClient, rider_headers):
    booking = await create(client, rider_headers)
    payload = {
        "idempotencyKey": "evt_1",
        "transactionId": "pay_1",
        "bookingId": booking["id"],
        "outcome": "completed",
    }

    first = await client.post("/api/v1/webhooks/payment", json=payload)
    assert first.status_code == 200
    assert first.json()["replayed"] is False
    assert first.json()["overall_payment_status"] == "completed"

    second = await client.post("/api/v1/webhooks/payment", json=payload)
    assert second.status_code == 200
    assert second.json()["replayed"] is True
    assert second.json()["version"] == first.json()["version"]


@pytest.mark.asyncio
async def test_webhook_signature(client: AsyncClient, rider_headers, gateway):
    booking = await create(client, rider_headers)
    gateway.webhook_secret = "whsec_test"
    body = json.dumps({
        "idempotencyKey": "evt_sig",
        "transactionId": "pay_sig",
        "bookingId": booking["id"],
        "outcome": "completed",
    }).encode()

    bad = await client.post(
        "/api/v1/webhooks/payment",
        content=body,
        headers={"Content-Type": "application/json", "X-Gateway-Signature": "nope"},
    )
    assert bad.status_code == 401

    signature = hmac.new(b"whsec_test", body, hashlib.sha256).hexdigest()
    good = await client.post(
        "/api/v1/webhooks/payment",
        content=body,
        headers={"Content-Type": "application/json", "X-Gateway-Signature": signature},
    )
    assert good.status_code == 200


@pytest.mark.asyncio
async def test_webhook_malformed(client: AsyncClient):
    response = await client.post("/api/v1/webhooks/payment", json={"bookingId": "x"})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_cash_collected_idempotency_header(client: AsyncClient, rider_headers, driver_headers):
    booking = await create(client, rider_headers, split={"online": "150", "cash": "88"})
    url = f"/api/v1/bookings/{booking['id']}/payment/cash-collected"
    body = {"collectedBy": DRIVER.id, "collectedByModel": "Driver", "version": 1}
    headers = {**driver_headers, "Idempotency-Key": "tap-1"}

    first = await client.post(url, json=body, headers=headers)
    assert first.status_code == 200
    assert first.json()["payment"]["partial_payment_details"]["cash_payment_status"] == "collected"

    second = await client.post(url, json=body, headers=headers)
    assert second.status_code == 200
    assert second.json()["replayed"] is True


@pytest.mark.asyncio
async def test_cache_invalidated_after_commit(client: AsyncClient, db_session: AsyncSession, rider_headers, driver_headers):
    """A listing read racing the invalidation must not be able to re-cache uncommitted rows."""
    seen = []

    async def invalidate():
        seen.append(db_session.in_transaction())

    with patch("booking_core.api.deps.invalidate_booking_cache", invalidate):
        booking = await create(client, rider_headers)
        accepted = await client.post(
            f"/api/v1/bookings/{booking['id']}/status",
            json={"targetStatus": "accepted", "version": 1},
            headers=driver_headers,
        )
        assert accepted.status_code == 200
        webhook = await client.post("/api/v1/webhooks/payment", json={
            "idempotencyKey": "evt_c1",
            "transactionId": "pay_c1",
            "bookingId": booking["id"],
            "outcome": "completed",
        })
        assert webhook.status_code == 200

    assert seen == [False, False, False]


@pytest.mark.asyncio
async def test_listing_is_scoped(client: AsyncClient, rider_headers, admin_headers):
    await create(client, rider_headers)
    await create(client, headers_for(OTHER_RIDER))

    mine = await client.get("/api/v1/bookings/", headers=rider_headers)
    assert mine.status_code == 200
    assert mine.json()["total"] == 1

    everything = await client.get("/api/v1/bookings/?status=pending", headers=admin_headers)
    assert everything.json()["total"] == 2
    assert everything.json()["cached"] is False

    none = await client.get("/api/v1/bookings/?status=completed", headers=admin_headers)
    assert none.json()["total"] == 0


@pytest.mark.asyncio
async def test_history_and_ledger(client: AsyncClient, rider_headers, driver_headers):
    booking = await create(client, rider_headers)
    await client.post(
        f"/api/v1/bookings/{booking['id']}/status",
        json={"targetStatus": "accepted", "version": 1},
        headers=driver_headers,
    )
    await client.post("/api/v1/webhooks/payment", json={
        "idempotencyKey": "evt_h",
        "transactionId": "pay_h",
        "bookingId": booking["id"],
        "outcome": "completed",
    })

    history = await client.get(f"/api/v1/bookings/{booking['id']}/history", headers=rider_headers)
    assert [e["status"] for e in history.json()["entries"]] == ["pending", "accepted"]

    ledger = await client.get(f"/api/v1/bookings/{booking['id']}/ledger", headers=rider_headers)
    assert Decimal(ledger.json()["balance"]) == Decimal("238")
    assert ledger.json()["entries"][0]["idempotency_key"] == "evt_h"


@pytest.mark.asyncio
async def test_refund_gateway_outage(client: AsyncClient, rider_headers, admin_headers, gateway):
    booking = await create(client, rider_headers)
    booking_id = booking["id"]
    await client.post("/api/v1/webhooks/payment", json={
        "idempotencyKey": "evt_r",
        "transactionId": "pay_r",
        "bookingId": booking_id,
        "outcome": "completed",
    })
    current = (await client.get(f"/api/v1/bookings/{booking_id}", headers=admin_headers)).json()
    cancelled = await client.post(
        f"/api/v1/bookings/{booking_id}/status",
        json={"targetStatus": "cancelled", "version": current["version"], "reason": "Duplicate"},
        headers=admin_headers,
    )
    assert cancelled.status_code == 200
    version = cancelled.json()["version"]

    gateway.fail = True
    response = await client.post(
        f"/api/v1/bookings/{booking_id}/refund/initiate",
        json={"method": "gateway", "version": version},
        headers=admin_headers,
    )
    assert response.status_code == 503
    assert response.json()["detail"]["code"] == "gateway_unavailable"

    after = (await client.get(f"/api/v1/bookings/{booking_id}", headers=admin_headers)).json()
    assert after["cancellation"]["refund_status"] == "pending"
    assert after["version"] == version


@pytest.mark.asyncio
async def test_booking_not_found(client: AsyncClient, admin_headers):
    response = await client.get("/api/v1/bookings/99999", headers=admin_headers)
    assert response.status_code == 404
    assert response.json()["detail"]["code"] == "not_found"


@pytest.mark.asyncio
async def test_other_rider_forbidden(client: AsyncClient, rider_headers):
    booking = await create(client, rider_headers)
    response = await client.get(f"/api/v1/bookings/{booking['id']}", headers=headers_for(OTHER_RIDER))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_health_and_metrics(client: AsyncClient):
    health = await client.get("/health")
    assert health.status_code == 200
    assert health.json()["cache"] == {"status": "disabled"}

    metrics = await client.get("/metrics")
    assert metrics.status_code == 200
    assert "booking_transitions_total" in metrics.text
