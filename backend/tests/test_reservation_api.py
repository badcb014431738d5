"""
Reservation API tests.

Every engine error reaches the client with its own status and error code.
"""

import pytest

from conftest import auth_headers, add_vehicle
from backend.app.models.reservation_enums import VehicleStatus

BASE = "/v1/reservations"


def reservation_body(vehicle_id=None, start="2025-01-10T09:00:00Z", end="2025-01-10T11:00:00Z"):
    body = {"origin": "HQ", "destination": "Airport", "start_at": start, "end_at": end}
    if vehicle_id:
        body["vehicle_id"] = vehicle_id
    return body


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


@pytest.mark.asyncio
async def test_requires_bearer_token(client):
    response = await client.get(BASE)
    assert response.status_code in (401, 403)

    response = await client.get(BASE, headers={"Authorization": "Bearer not-a-token"})
    assert response.status_code == 401
    assert response.json()["error_code"] == "ERR_UNAUTHORIZED"


@pytest.mark.asyncio
async def test_full_lifecycle_over_http(client, requester, approver, admin, vehicle):
    response = await client.post(
        "/v1/checklists/templates",
        json={
            "name": "Van return",
            "vehicle_id": vehicle.id,
            "items": [{"label": "Fuel level (%)", "type": "NUMBER"}, {"label": "Damage?", "type": "BOOLEAN"}]
        },
        headers=auth_headers(admin)
    )
    assert response.status_code == 201
    template_id = response.json()["id"]

    response = await client.post(BASE, json=reservation_body(vehicle.id), headers=auth_headers(requester))
    assert response.status_code == 201
    reservation = response.json()
    assert reservation["status"] == "PENDING"
    assert response.headers["X-Correlation-ID"]

    response = await client.patch(
        f"{BASE}/{reservation['id']}/approve", json={"notes": "go"}, headers=auth_headers(approver)
    )
    assert response.status_code == 200
    assert response.json()["status"] == "APPROVED"
    assert response.json()["vehicle_id"] == vehicle.id

    response = await client.post(
        f"{BASE}/{reservation['id']}/documents",
        json={"type": "FUEL_RECEIPT", "file_name": "receipt.pdf"},
        headers=auth_headers(requester)
    )
    assert response.status_code == 201
    document_id = response.json()["id"]

    response = await client.patch(
        f"/v1/documents/{document_id}/validate", json={"result": "APPROVED"}, headers=auth_headers(approver)
    )
    assert response.status_code == 200
    assert response.json()["reservation_completed"] is False

    response = await client.post(
        f"{BASE}/{reservation['id']}/checklists",
        json={"kind": "USER_RETURN", "template_id": template_id, "payload": {"fuel": "full"}},
        headers=auth_headers(requester)
    )
    assert response.status_code == 201

    response = await client.get(f"{BASE}/{reservation['id']}/checklist-template", headers=auth_headers(requester))
    assert response.json()["id"] == template_id
    assert [item["position"] for item in response.json()["items"]] == [0, 1]

    response = await client.get("/v1/checklists/pending", headers=auth_headers(approver))
    assert response.status_code == 200
    assert response.json()["items"][0]["validation_status"] == "Pending"

    response = await client.get(f"{BASE}/{reservation['id']}/completion", headers=auth_headers(approver))
    assert response.json()["eligible"] is False
    assert response.json()["document_status"] == "Validated"

    response = await client.post(
        f"{BASE}/{reservation['id']}/checklists",
        json={"kind": "APPROVER_VALIDATION", "template_id": template_id, "decision": "APPROVED"},
        headers=auth_headers(approver)
    )
    assert response.status_code == 201
    assert response.json()["reservation_completed"] is True

    response = await client.get(f"{BASE}/{reservation['id']}", headers=auth_headers(requester))
    assert response.json()["status"] == "COMPLETED"

    response = await client.get(f"{BASE}/{reservation['id']}/audit", headers=auth_headers(approver))
    assert response.status_code == 200
    actions = [entry["action"] for entry in response.json()]
    assert "reservation.completed" in actions
    assert "reservation.approved" in actions


@pytest.mark.asyncio
async def test_error_codes(client, db_session, requester, other_requester, approver, admin, vehicle):
    response = await client.post(
        BASE,
        json=reservation_body(start="2025-01-10T11:00:00Z", end="2025-01-10T09:00:00Z"),
        headers=auth_headers(requester)
    )
    assert response.status_code == 422
    assert response.json()["error_code"] == "ERR_RES_INVALID_WINDOW"

    in_maintenance = await add_vehicle(db_session, status=VehicleStatus.MAINTENANCE)
    response = await client.post(BASE, json=reservation_body(in_maintenance.id), headers=auth_headers(requester))
    assert response.status_code == 409
    assert response.json()["error_code"] == "ERR_RES_UNAVAILABLE"

    response = await client.post(BASE, json=reservation_body(vehicle.id), headers=auth_headers(requester))
    reservation_id = response.json()["id"]

    response = await client.post(
        BASE,
        json=reservation_body(vehicle.id, start="2025-01-10T10:00:00Z", end="2025-01-10T12:00:00Z"),
        headers=auth_headers(other_requester)
    )
    assert response.status_code == 409
    assert response.json()["error_code"] == "ERR_RES_SCHEDULE_CONFLICT"

    response = await client.get(f"{BASE}/{reservation_id}", headers=auth_headers(other_requester))
    assert response.status_code == 403
    assert response.json()["error_code"] == "ERR_PERM_001"

    response = await client.get(f"{BASE}/missing", headers=auth_headers(admin))
    assert response.status_code == 404
    assert response.json()["error_code"] == "ERR_NOT_FOUND_001"

    response = await client.patch(f"{BASE}/{reservation_id}/complete", headers=auth_headers(approver))
    assert response.status_code == 400
    assert response.json()["error_code"] == "ERR_RES_INVALID_TRANSITION"

    response = await client.patch(f"{BASE}/{reservation_id}/cancel", headers=auth_headers(requester))
    assert response.status_code == 200

    response = await client.patch(f"{BASE}/{reservation_id}/cancel", headers=auth_headers(requester))
    assert response.status_code == 409
    assert response.json()["error_code"] == "ERR_RES_ALREADY_FINALIZED"

    response = await client.delete(f"{BASE}/{reservation_id}", headers=auth_headers(approver))
    assert response.status_code == 403

    response = await client.delete(f"{BASE}/{reservation_id}", headers=auth_headers(admin))
    assert response.status_code == 200
    assert response.json() == {"id": reservation_id, "deleted": True}


@pytest.mark.asyncio
async def test_listing(client, requester, other_requester, approver):
    await client.post(BASE, json=reservation_body(), headers=auth_headers(requester))
    await client.post(
        BASE,
        json=reservation_body(start="2025-01-11T09:00:00Z", end="2025-01-11T11:00:00Z"),
        headers=auth_headers(other_requester)
    )

    response = await client.get(f"{BASE}/me", headers=auth_headers(requester))
    assert response.json()["total"] == 1

    response = await client.get(BASE, headers=auth_headers(approver))
    assert response.json()["total"] == 2

    response = await client.get(
        BASE,
        params={"from": "2025-01-11T00:00:00Z", "to": "2025-01-12T00:00:00Z"},
        headers=auth_headers(approver)
    )
    assert response.json()["total"] == 1

    response = await client.get(
        BASE,
        params={"from": "2025-01-12T00:00:00Z", "to": "2025-01-11T00:00:00Z"},
        headers=auth_headers(approver)
    )
    assert response.status_code == 422
    assert response.json()["error_code"] == "ERR_RES_INVALID_WINDOW"

    response = await client.get(f"{BASE}/some-id/audit", headers=auth_headers(requester))
    assert response.status_code == 403
