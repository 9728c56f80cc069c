"""
Tests for the user-facing claim endpoints.
"""

from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from app.db.helpers import DatabaseError
from app.main import app
from app.models.domain.claim_domain import CreateClaimResult
from app.services.claim_service import (
    InvalidStateError,
    TripNotFoundError,
    UnsupportedOperatorError,
)

client = TestClient(app)

TRIP_ID = "11111111-1111-4111-8111-111111111111"
CLAIM_ID = "22222222-2222-4222-8222-222222222222"


@pytest.fixture(autouse=True)
def authenticated(apply_auth_override):
    apply_auth_override(app)
    yield
    app.dependency_overrides.clear()


def test_start_claim_creates_claim():
    created = CreateClaimResult(
        claim_id=CLAIM_ID, status="pending", reused=False, provider="avanti", queue_id="q-1",
        queue_status="queued",
    )
    with patch("app.routes.claims.create_claim", new_callable=AsyncMock, return_value=created) as create:
        response = client.post("/claims/start", json={"trip_id": TRIP_ID})

    assert response.status_code == 200
    data = response.json()
    assert data["ok"] is True
    assert data["claim_id"] == CLAIM_ID
    assert data["reused"] is False
    assert data["queue_status"] == "queued"
    assert response.headers["cache-control"].startswith("no-store")
    create.assert_awaited_once_with(TRIP_ID, "rider@example.com")


def test_start_claim_reused():
    reused = CreateClaimResult(claim_id=CLAIM_ID, status="submitted", reused=True, provider="avanti")
    with patch("app.routes.claims.create_claim", new_callable=AsyncMock, return_value=reused):
        response = client.post("/claims/start", json={"trip_id": TRIP_ID})

    assert response.status_code == 200
    assert response.json()["reused"] is True
    assert response.json()["status"] == "submitted"


def test_start_claim_rejects_invalid_trip_id():
    response = client.post("/claims/start", json={"trip_id": "not-a-uuid"})

    assert response.status_code == 422


def test_start_claim_trip_not_found():
    with patch(
        "app.routes.claims.create_claim",
        new_callable=AsyncMock,
        side_effect=TripNotFoundError("Trip not found"),
    ):
        response = client.post("/claims/start", json={"trip_id": TRIP_ID})

    assert response.status_code == 404
    assert response.json()["detail"] == {"ok": False, "error": "Trip not found"}


def test_start_claim_unsupported_operator():
    with patch(
        "app.routes.claims.create_claim",
        new_callable=AsyncMock,
        side_effect=UnsupportedOperatorError("ScotRail"),
    ):
        response = client.post("/claims/start", json={"trip_id": TRIP_ID})

    assert response.status_code == 400
    detail = response.json()["detail"]
    assert detail["error"] == "Operator not supported for auto-claim yet"
    assert detail["operator"] == "ScotRail"


def test_start_claim_database_error():
    with patch(
        "app.routes.claims.create_claim",
        new_callable=AsyncMock,
        side_effect=DatabaseError("Query failed", operation="fetch_one"),
    ):
        response = client.post("/claims/start", json={"trip_id": TRIP_ID})

    assert response.status_code == 500


def test_queue_claim():
    queued = {
        "claim_id": CLAIM_ID,
        "provider": "avanti",
        "queue_id": "q-1",
        "queue_status": "queued",
        "created": True,
    }
    with patch("app.routes.claims.queue_existing", new_callable=AsyncMock, return_value=queued) as queue:
        response = client.post(f"/claims/{CLAIM_ID}/queue")

    assert response.status_code == 200
    assert response.json()["created"] is True
    queue.assert_awaited_once_with(CLAIM_ID, "rider@example.com")


def test_queue_claim_not_pending():
    with patch(
        "app.routes.claims.queue_existing",
        new_callable=AsyncMock,
        side_effect=InvalidStateError("submitted"),
    ):
        response = client.post(f"/claims/{CLAIM_ID}/queue")

    assert response.status_code == 409
    assert response.json()["detail"]["error"] == "Claim is submitted"


def test_queue_claim_rejects_malformed_claim_id():
    with patch("app.routes.claims.queue_existing", new_callable=AsyncMock) as queue:
        response = client.post("/claims/not-a-uuid/queue")

    assert response.status_code == 422
    queue.assert_not_awaited()


def test_claims_require_authentication():
    app.dependency_overrides.clear()

    response = client.post("/claims/start", json={"trip_id": TRIP_ID})

    assert response.status_code in (401, 403)
