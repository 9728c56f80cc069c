"""
Tests for health check endpoints.
"""

from unittest.mock import AsyncMock, patch

from fastapi.testclient import TestClient

from app.main import app

client = TestClient(app)

HEALTHY_DB = {
    "healthy": True,
    "connection_time_ms": 3.2,
    "pool_stats": {"pool_size": 3, "pool_available": 2, "pool_utilization_percent": 33.3},
}


def test_healthz_endpoint():
    """Test the basic health check endpoint."""
    response = client.get("/healthz")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["service"] == "delay-repay-backend"


def test_readyz_endpoint_all_healthy():
    """Database up and every required setting present."""
    with (
        patch("app.routes.health.db_health_check", new_callable=AsyncMock, return_value=HEALTHY_DB),
        patch("app.routes.health.settings.ADMIN_API_KEY", "test-admin-key"),
        patch("app.routes.health.settings.RESEND_API_KEY", "re_test"),
        patch("app.routes.health.settings.EMAIL_FROM", "noreply@example.com"),
    ):
        response = client.get("/readyz")

    assert response.status_code == 200
    data = response.json()
    assert data["overall_ok"] is True
    checks = data["checks"]
    assert checks["database"]["ok"] is True
    assert checks["database"]["pool_size"] == 3
    assert checks["configuration"]["ok"] is True
    assert checks["configuration"]["submit_live"] is False


def test_readyz_endpoint_database_unhealthy():
    """Unhealthy pool is reported with its error."""
    with (
        patch(
            "app.routes.health.db_health_check",
            new_callable=AsyncMock,
            return_value={"healthy": False, "error": "Pool not initialized"},
        ),
        patch("app.routes.health.settings.ADMIN_API_KEY", "test-admin-key"),
    ):
        response = client.get("/readyz")

    data = response.json()
    assert data["overall_ok"] is False
    assert data["checks"]["database"]["ok"] is False
    assert data["checks"]["database"]["error"] == "Pool not initialized"


def test_readyz_endpoint_database_raises():
    """A raising health check becomes a failed check, not a 500."""
    with patch(
        "app.routes.health.db_health_check",
        new_callable=AsyncMock,
        side_effect=ConnectionError("refused"),
    ):
        response = client.get("/readyz")

    assert response.status_code == 200
    data = response.json()
    assert data["overall_ok"] is False
    assert "ConnectionError" in data["checks"]["database"]["error"]


def test_readyz_endpoint_missing_configuration():
    """Missing admin key and email settings are listed as issues."""
    with (
        patch("app.routes.health.db_health_check", new_callable=AsyncMock, return_value=HEALTHY_DB),
        patch("app.routes.health.settings.ADMIN_API_KEY", None),
        patch("app.routes.health.settings.RESEND_API_KEY", None),
    ):
        response = client.get("/readyz")

    data = response.json()
    assert data["overall_ok"] is False
    issues = data["checks"]["configuration"]["issues"]
    assert "ADMIN_API_KEY not set" in issues
    assert "RESEND_API_KEY / EMAIL_FROM not set" in issues


def test_database_health_endpoint():
    with patch("app.routes.health.db_health_check", new_callable=AsyncMock, return_value=HEALTHY_DB):
        response = client.get("/health/database")

    assert response.status_code == 200
    assert response.json()["healthy"] is True
