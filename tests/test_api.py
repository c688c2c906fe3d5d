"""Tests for the HTTP API."""

import pytest
from httpx import AsyncClient

from conftest import CLIENT_ID, MONDAY, THERAPIST_ID
from therapy_booking.core.firebase import CallerIdentity
from therapy_booking.dependencies import get_current_user
from therapy_booking.main import app

THERAPIST = CallerIdentity(uid=THERAPIST_ID, email="therapist@example.com", role="therapist")
ADMIN = CallerIdentity(uid="admin-1", email="admin@example.com", role="admin")
STRANGER = CallerIdentity(uid="someone-else", email="other@example.com")


def booking_body(time_slot_id: str, **overrides) -> dict:
    return {
        "therapist_id": THERAPIST_ID,
        "time_slot_id": time_slot_id,
        "date": MONDAY.isoformat(),
        "duration": 60,
        "session_type": "individual",
        **overrides,
    }


# ============================================================================
# Health
# ============================================================================


@pytest.mark.asyncio
async def test_health_check(client: AsyncClient):
    """Test basic health check endpoint."""
    response = await client.get("/api/v1/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert "version" in data


@pytest.mark.asyncio
async def test_detailed_health_reports_catalog(client: AsyncClient, time_slots):
    """Redis is disabled under test and does not degrade readiness."""
    response = await client.get("/api/v1/health/detailed")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["redis"] == "disabled"
    assert data["cache_enabled"] is False
    assert data["catalog_slots"] == len(time_slots)


@pytest.mark.asyncio
async def test_detailed_health_degraded_without_catalog(client: AsyncClient):
    response = await client.get("/api/v1/health/detailed")

    assert response.json()["status"] == "degraded"
    assert response.json()["catalog_slots"] == 0


@pytest.mark.asyncio
async def test_ping(client: AsyncClient):
    """Test ping endpoint."""
    response = await client.get("/api/v1/ping")

    assert response.status_code == 200
    assert response.json() == {"message": "pong"}


@pytest.mark.asyncio
async def test_missing_credentials(client: AsyncClient):
    """Endpoints that need a caller reject anonymous requests."""
    app.dependency_overrides.pop(get_current_user)

    response = await client.get("/api/v1/appointments")

    assert response.status_code in (401, 403)


# ============================================================================
# Catalog and schedules
# ============================================================================


@pytest.mark.asyncio
async def test_list_time_slots(client: AsyncClient, time_slots):
    response = await client.get("/api/v1/time-slots")

    assert response.status_code == 200
    assert [slot["start_time"] for slot in response.json()][:2] == ["09:00", "10:00"]


@pytest.mark.asyncio
async def test_generate_time_slots_requires_admin(client: AsyncClient, caller, auth_headers):
    body = {"start_time": "09:00", "end_time": "11:00"}

    response = await client.post("/api/v1/time-slots/generate", json=body, headers=auth_headers)
    assert response.status_code == 403
    assert response.json()["message"] == "Admin access required"

    caller["identity"] = ADMIN
    response = await client.post("/api/v1/time-slots/generate", json=body, headers=auth_headers)
    assert response.status_code == 201
    assert len(response.json()) == 2


@pytest.mark.asyncio
async def test_set_schedule_for_other_therapist(client: AsyncClient, time_slots, auth_headers):
    response = await client.put(
        f"/api/v1/therapists/{THERAPIST_ID}/availability",
        json={"schedule": {"1": [time_slots[0].id]}},
        headers=auth_headers,
    )

    assert response.status_code == 403
    assert response.json()["message"] == "You can only manage your own schedule"


@pytest.mark.asyncio
async def test_therapist_manages_schedule(client: AsyncClient, caller, time_slots, auth_headers):
    caller["identity"] = THERAPIST

    response = await client.put(
        f"/api/v1/therapists/{THERAPIST_ID}/availability",
        json={"schedule": {"1": [time_slots[0].id, time_slots[1].id]}},
        headers=auth_headers,
    )
    assert response.status_code == 200
    assert len(response.json()) == 2

    response = await client.post(
        f"/api/v1/therapists/{THERAPIST_ID}/overrides",
        json={"date": MONDAY.isoformat(), "type": "time_off", "affected_slots": [time_slots[0].id]},
        headers=auth_headers,
    )
    assert response.status_code == 201

    response = await client.get(
        f"/api/v1/therapists/{THERAPIST_ID}/availability/{MONDAY.isoformat()}",
        headers=auth_headers,
    )
    assert response.status_code == 200
    assert response.json()["effective_slots"] == [time_slots[1].id]


@pytest.mark.asyncio
async def test_override_validation(client: AsyncClient, caller, time_slots, auth_headers):
    caller["identity"] = THERAPIST

    response = await client.post(
        f"/api/v1/therapists/{THERAPIST_ID}/overrides",
        json={"date": MONDAY.isoformat(), "type": "custom_hours"},
        headers=auth_headers,
    )

    assert response.status_code == 422
    assert response.json()["error"] == "ValidationError"


@pytest.mark.asyncio
async def test_patch_with_null_required_field(
    client: AsyncClient, caller, time_slots, weekly_schedule, auth_headers
):
    caller["identity"] = THERAPIST

    response = await client.patch(
        f"/api/v1/availability/{weekly_schedule[0].id}",
        json={"day_of_week": None},
        headers=auth_headers,
    )
    assert response.status_code == 400
    assert response.json()["message"] == "Fields cannot be null: day_of_week"

    created = await client.post(
        f"/api/v1/therapists/{THERAPIST_ID}/overrides",
        json={"date": MONDAY.isoformat(), "type": "time_off", "affected_slots": [time_slots[0].id]},
        headers=auth_headers,
    )
    response = await client.patch(
        f"/api/v1/overrides/{created.json()['id']}",
        json={"type": None},
        headers=auth_headers,
    )
    assert response.status_code == 400
    assert response.json()["error"] == "BadRequestException"


# ============================================================================
# Slots
# ============================================================================


@pytest.mark.asyncio
async def test_slot_endpoints(client: AsyncClient, time_slots, weekly_schedule, auth_headers):
    response = await client.get(
        f"/api/v1/therapists/{THERAPIST_ID}/slots",
        params={"start_date": "2026-03-09", "end_date": "2026-03-10"},
        headers=auth_headers,
    )
    assert response.status_code == 200
    assert response.json()["total_slots"] == 6

    response = await client.get(
        f"/api/v1/therapists/{THERAPIST_ID}/slots/next", headers=auth_headers
    )
    assert response.status_code == 200
    assert response.json()["time_slot_id"] == time_slots[0].id

    response = await client.get(
        f"/api/v1/therapists/{THERAPIST_ID}/slots/check",
        params={"time_slot_id": time_slots[0].id, "date": "2026-03-09"},
        headers=auth_headers,
    )
    assert response.json() == {
        "available": True,
        "reason": None,
        "conflicting_appointment_id": None,
    }

    response = await client.get(
        f"/api/v1/therapists/{THERAPIST_ID}/slots/2026-03-10",
        params={"client_timezone": "Asia/Tokyo"},
        headers=auth_headers,
    )
    assert [slot["local_start_time"] for slot in response.json()] == ["18:00", "19:00", "20:00"]


@pytest.mark.asyncio
async def test_inverted_slot_range(client: AsyncClient, weekly_schedule, auth_headers):
    response = await client.get(
        f"/api/v1/therapists/{THERAPIST_ID}/slots/calendar",
        params={"start_date": "2026-03-10", "end_date": "2026-03-09"},
        headers=auth_headers,
    )

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_slots_for_several_therapists(client: AsyncClient, weekly_schedule, auth_headers):
    response = await client.post(
        "/api/v1/slots/therapists",
        json={
            "therapist_ids": [THERAPIST_ID, "therapist-2"],
            "start_date": "2026-03-09",
            "end_date": "2026-03-10",
        },
        headers=auth_headers,
    )

    assert response.status_code == 200
    assert [(r["therapist_id"], r["total_slots"]) for r in response.json()] == [
        (THERAPIST_ID, 6),
        ("therapist-2", 0),
    ]


# ============================================================================
# Appointments
# ============================================================================


@pytest.mark.asyncio
async def test_book_and_double_book(client: AsyncClient, time_slots, weekly_schedule, auth_headers):
    response = await client.post(
        "/api/v1/appointments", json=booking_body(time_slots[0].id), headers=auth_headers
    )
    assert response.status_code == 201
    appointment_id = response.json()["appointment_id"]

    response = await client.post(
        "/api/v1/appointments", json=booking_body(time_slots[0].id), headers=auth_headers
    )
    assert response.status_code == 409
    assert response.json()["success"] is False
    assert response.json()["conflicts"][0]["type"] == "overlap"

    response = await client.get(f"/api/v1/appointments/{appointment_id}", headers=auth_headers)
    assert response.status_code == 200
    assert response.json()["client_id"] == CLIENT_ID
    assert response.json()["scheduled_for"].startswith("2026-03-09T09:00:00")


@pytest.mark.asyncio
async def test_conflict_precheck(client: AsyncClient, time_slots, weekly_schedule, auth_headers):
    response = await client.post(
        "/api/v1/appointments/conflicts",
        json=booking_body(time_slots[0].id, date="2026-03-08"),
        headers=auth_headers,
    )

    assert response.status_code == 200
    assert [c["message"] for c in response.json()] == ["The requested time slot is not available"]


@pytest.mark.asyncio
async def test_cannot_book_for_someone_else(client: AsyncClient, time_slots, weekly_schedule, auth_headers):
    response = await client.post(
        "/api/v1/appointments",
        json=booking_body(time_slots[0].id, client_id="client-2"),
        headers=auth_headers,
    )

    assert response.status_code == 403


@pytest.mark.asyncio
async def test_status_endpoint(client: AsyncClient, caller, time_slots, weekly_schedule, auth_headers):
    response = await client.post(
        "/api/v1/appointments", json=booking_body(time_slots[0].id), headers=auth_headers
    )
    appointment_id = response.json()["appointment_id"]

    # Clients cannot change status
    response = await client.patch(
        f"/api/v1/appointments/{appointment_id}/status",
        json={"status": "confirmed"},
        headers=auth_headers,
    )
    assert response.status_code == 403

    caller["identity"] = THERAPIST
    response = await client.patch(
        f"/api/v1/appointments/{appointment_id}/status",
        json={"status": "completed"},
        headers=auth_headers,
    )
    assert response.status_code == 409
    assert response.json()["error"] == "InvalidStatusTransitionException"

    response = await client.patch(
        f"/api/v1/appointments/{appointment_id}/status",
        json={"status": "confirmed"},
        headers=auth_headers,
    )
    assert response.status_code == 200
    assert response.json()["status"] == "confirmed"

    caller["identity"] = STRANGER
    response = await client.get(f"/api/v1/appointments/{appointment_id}", headers=auth_headers)
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_cancel_and_reschedule_endpoints(
    client: AsyncClient, caller, time_slots, weekly_schedule, auth_headers
):
    first = await client.post(
        "/api/v1/appointments", json=booking_body(time_slots[0].id), headers=auth_headers
    )
    second = await client.post(
        "/api/v1/appointments", json=booking_body(time_slots[1].id), headers=auth_headers
    )

    response = await client.post(
        f"/api/v1/appointments/{first.json()['appointment_id']}/reschedule",
        json={"time_slot_id": time_slots[2].id, "date": "2026-03-10"},
        headers=auth_headers,
    )
    assert response.status_code == 200
    assert response.json()["success"] is True

    caller["identity"] = THERAPIST
    response = await client.post(
        f"/api/v1/appointments/{second.json()['appointment_id']}/cancel",
        json={"reason": "Therapist unavailable"},
        headers=auth_headers,
    )
    assert response.status_code == 200
    assert response.json()["status"] == "cancelled"
    assert response.json()["internal_notes"] == "Cancelled by therapist: Therapist unavailable"

    response = await client.get("/api/v1/appointments/stats", headers=auth_headers)
    assert response.json()["total"] == 2
    assert response.json()["cancelled"] == 1


@pytest.mark.asyncio
async def test_payment_events_require_admin(client: AsyncClient, auth_headers):
    response = await client.post(
        "/api/v1/payments/events",
        json={"transaction_id": "pi_1", "status": "failed"},
        headers=auth_headers,
    )

    assert response.status_code == 403
