"""
Integration tests for the REST API endpoints.

Routes run against the per-test SQLite database from ``conftest`` with the
notification dispatcher replaced by an ``AsyncMock``.  Callers authenticate
with the seeded bearer tokens.
"""

from __future__ import annotations

import pytest
from httpx import AsyncClient

from loadboard.config import settings
from loadboard.services.notifications import NotificationEvent

SHIPPER = {"Authorization": "Bearer shipper-token"}
CARRIER = {"Authorization": "Bearer carrier-token"}
OTHER_CARRIER = {"Authorization": "Bearer other-carrier-token"}
ADMIN = {"Authorization": "Bearer admin-token"}


async def request_load(client: AsyncClient, world, **extra) -> dict:
    resp = await client.post(
        "/api/v1/load-requests",
        json={"load_id": world.load_id, "truck_id": world.truck_id, **extra},
        headers=CARRIER,
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


async def approve(client: AsyncClient, request_id: int) -> dict:
    resp = await client.post(
        f"/api/v1/requests/{request_id}/respond",
        json={"action": "APPROVE"},
        headers=SHIPPER,
    )
    assert resp.status_code == 200, resp.text
    return resp.json()


@pytest.mark.asyncio
async def test_health(client: AsyncClient):
    resp = await client.get("/api/v1/admin/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


@pytest.mark.asyncio
async def test_missing_token_is_401(client: AsyncClient):
    resp = await client.get("/api/v1/requests")
    assert resp.status_code == 401
    assert resp.json() == {"detail": "Authentication required"}


@pytest.mark.asyncio
async def test_unknown_token_is_401(client: AsyncClient):
    resp = await client.get(
        "/api/v1/requests", headers={"Authorization": "Bearer nope"}
    )
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_create_load(client: AsyncClient):
    resp = await client.post(
        "/api/v1/loads",
        json={
            "pickup_city": "Addis Ababa",
            "delivery_city": "Dire Dawa",
            "distance_km": 453,
            "post": True,
        },
        headers=SHIPPER,
    )
    assert resp.status_code == 201
    data = resp.json()
    assert data["status"] == "POSTED"
    assert data["posted_at"] is not None


@pytest.mark.asyncio
async def test_rule_violation_carries_rule_tag(client: AsyncClient, world):
    resp = await client.post(
        "/api/v1/load-requests",
        json={"load_id": world.load_id, "truck_id": world.truck_id},
        headers=SHIPPER,
    )
    assert resp.status_code == 403
    body = resp.json()
    assert body["detail"] == "Only carriers can request loads"
    assert body["rule"] == "CARRIER_FINAL_AUTHORITY"


@pytest.mark.asyncio
async def test_duplicate_request_is_409(client: AsyncClient, world):
    await request_load(client, world)
    resp = await client.post(
        "/api/v1/load-requests",
        json={"load_id": world.load_id, "truck_id": world.truck_id},
        headers=CARRIER,
    )
    assert resp.status_code == 409
    assert "already exists" in resp.json()["detail"]


@pytest.mark.asyncio
async def test_expiry_window_validated_by_schema(client: AsyncClient, world):
    resp = await client.post(
        "/api/v1/load-requests",
        json={"load_id": world.load_id, "truck_id": world.truck_id, "expires_in_hours": 100},
        headers=CARRIER,
    )
    assert resp.status_code == 400
    body = resp.json()
    assert body["detail"] == "Invalid request data"
    assert "expires_in_hours" in body["details"]


@pytest.mark.asyncio
async def test_missing_field_is_400_with_field_detail(client: AsyncClient, world):
    resp = await client.post(
        "/api/v1/load-requests", json={"load_id": world.load_id}, headers=CARRIER
    )
    assert resp.status_code == 400
    body = resp.json()
    assert body["detail"] == "Invalid request data"
    assert list(body["details"]) == ["truck_id"]


@pytest.mark.asyncio
async def test_unknown_action_is_400(client: AsyncClient, world):
    created = await request_load(client, world)
    resp = await client.post(
        f"/api/v1/requests/{created['id']}/respond",
        json={"action": "MAYBE"},
        headers=SHIPPER,
    )
    assert resp.status_code == 400
    assert "action" in resp.json()["details"]

    resp = await client.get(f"/api/v1/requests/{created['id']}", headers=CARRIER)
    assert resp.json()["status"] == "PENDING"


@pytest.mark.asyncio
async def test_invalid_transition_details(client: AsyncClient, world):
    resp = await client.patch(
        f"/api/v1/loads/{world.draft_load_id}/status",
        json={"status": "COMPLETED"},
        headers=SHIPPER,
    )
    assert resp.status_code == 400
    details = resp.json()["details"]
    assert details["current"] == "DRAFT"
    assert details["allowed_transitions"] == ["CANCELLED", "POSTED"]


@pytest.mark.asyncio
async def test_list_requests_with_status_filter(client: AsyncClient, world):
    created = await request_load(client, world)

    resp = await client.get("/api/v1/requests", params={"status": "PENDING"}, headers=SHIPPER)
    assert resp.status_code == 200
    assert [r["id"] for r in resp.json()] == [created["id"]]

    resp = await client.get("/api/v1/requests", params={"status": "APPROVED"}, headers=SHIPPER)
    assert resp.json() == []

    resp = await client.get(f"/api/v1/requests/{created['id']}", headers=OTHER_CARRIER)
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_full_marketplace_flow(client: AsyncClient, world, notifier):
    created = await request_load(client, world, notes="Ready at 7am")
    assert created["status"] == "PENDING"
    assert created["effective_status"] == "PENDING"

    approved = await approve(client, created["id"])
    assert approved["request"]["status"] == "APPROVED"
    assert approved["load"]["status"] == "ASSIGNED"
    assert approved["idempotent"] is False
    trip_id = approved["trip"]["id"]

    replay = await approve(client, created["id"])
    assert replay["idempotent"] is True
    assert replay["trip"]["id"] == trip_id

    for status in ("PICKUP_PENDING", "IN_TRANSIT", "DELIVERED"):
        resp = await client.patch(
            f"/api/v1/trips/{trip_id}", json={"status": status}, headers=CARRIER
        )
        assert resp.status_code == 200, resp.text
        assert resp.json()["load"]["status"] == status

    resp = await client.patch(
        f"/api/v1/trips/{trip_id}", json={"status": "COMPLETED"}, headers=CARRIER
    )
    assert resp.status_code == 400
    assert resp.json()["details"] == {"requires_pod": True}

    resp = await client.post(
        f"/api/v1/loads/{world.load_id}/pod",
        json={"pod_url": "https://files.example/pod/1.pdf"},
        headers=CARRIER,
    )
    assert resp.status_code == 200
    assert resp.json()["pod_submitted"] is True

    resp = await client.put(f"/api/v1/loads/{world.load_id}/pod", headers=SHIPPER)
    assert resp.status_code == 200
    verified = resp.json()
    assert verified["trip_completed"] is False
    assert verified["settlement"] is None
    assert verified["fees"] == {"shipper_fee": 150.0, "carrier_fee": 100.0, "total": 250.0}

    resp = await client.patch(
        f"/api/v1/trips/{trip_id}", json={"status": "COMPLETED"}, headers=CARRIER
    )
    assert resp.status_code == 200
    done = resp.json()
    assert done["trip"]["status"] == "COMPLETED"
    assert done["load"]["status"] == "COMPLETED"
    assert done["settlement"]["outcome"] == "SETTLED"

    resp = await client.patch(
        f"/api/v1/trips/{trip_id}", json={"status": "ASSIGNED"}, headers=CARRIER
    )
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Invalid status transition from COMPLETED to ASSIGNED"

    sent = {c.args[0] for c in notifier.notify.await_args_list}
    assert {
        NotificationEvent.LOAD_REQUEST_RECEIVED,
        NotificationEvent.REQUEST_APPROVED,
        NotificationEvent.TRIP_STATUS_CHANGED,
        NotificationEvent.POD_SUBMITTED,
        NotificationEvent.POD_VERIFIED,
    } <= sent

    resp = await client.get(f"/api/v1/admin/loads/{world.load_id}/events", headers=ADMIN)
    assert resp.status_code == 200
    types = [e["event_type"] for e in resp.json()]
    assert types[0] == "LOAD_REQUEST_CREATED"
    assert "ASSIGNED" in types and "POD_VERIFIED" in types


@pytest.mark.asyncio
async def test_verify_pod_reports_settlement_when_auto_completing(
    client: AsyncClient, world, monkeypatch
):
    monkeypatch.setattr(settings, "auto_complete_on_pod_verification", True)
    created = await request_load(client, world)
    trip_id = (await approve(client, created["id"]))["trip"]["id"]
    for status in ("PICKUP_PENDING", "IN_TRANSIT", "DELIVERED"):
        resp = await client.patch(
            f"/api/v1/trips/{trip_id}", json={"status": status}, headers=CARRIER
        )
        assert resp.status_code == 200, resp.text
    resp = await client.post(
        f"/api/v1/loads/{world.load_id}/pod",
        json={"pod_url": "https://files.example/pod/2.pdf"},
        headers=CARRIER,
    )
    assert resp.status_code == 200

    resp = await client.put(f"/api/v1/loads/{world.load_id}/pod", headers=SHIPPER)

    assert resp.status_code == 200, resp.text
    verified = resp.json()
    assert verified["trip_completed"] is True
    assert verified["load"]["status"] == "COMPLETED"
    assert verified["settlement"] == {
        "outcome": "SETTLED",
        "fees": {"shipper_fee": 150.0, "carrier_fee": 100.0, "total": 250.0},
    }


@pytest.mark.asyncio
async def test_shipper_cannot_advance_trip(client: AsyncClient, world):
    created = await request_load(client, world)
    trip_id = (await approve(client, created["id"]))["trip"]["id"]

    resp = await client.patch(
        f"/api/v1/trips/{trip_id}", json={"status": "PICKUP_PENDING"}, headers=SHIPPER
    )
    assert resp.status_code == 403
    assert resp.json()["rule"] == "CARRIER_FINAL_AUTHORITY"


@pytest.mark.asyncio
async def test_shipper_cannot_browse_fleet(client: AsyncClient):
    resp = await client.get("/api/v1/trucks", headers=SHIPPER)
    assert resp.status_code == 403
    assert resp.json()["rule"] == "SHIPPER_DEMAND_FOCUS"

    resp = await client.get("/api/v1/truck-postings", headers=SHIPPER)
    assert resp.status_code == 200
    assert len(resp.json()) == 1


@pytest.mark.asyncio
async def test_admin_events_require_permission(client: AsyncClient, world):
    resp = await client.get(f"/api/v1/admin/loads/{world.load_id}/events", headers=CARRIER)
    assert resp.status_code == 403
    resp = await client.get("/api/v1/admin/loads/9999/events", headers=ADMIN)
    assert resp.status_code == 404
