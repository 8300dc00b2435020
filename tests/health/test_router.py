"""Tests for health domain router."""

from unittest.mock import MagicMock

from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError
from sqlmodel import Session

from shield.db.engine import get_session
from shield.main import app
from shield.session.bootstrap import get_registry


def test_health_endpoint_database_healthy(client: TestClient):
    """Release builds report strict OTP mode alongside the database status."""
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {
        "status": "ok",
        "database": "ok",
        "otp_mode": "production",
        "live_sessions": 0,
    }


def test_health_counts_live_sessions(client: TestClient):
    client.post("/sessions/device-1/evaluate", json={"path": "/home"})

    assert client.get("/health").json()["live_sessions"] == 1


def test_health_endpoint_database_unhealthy(registry):
    """Test GET /health returns 503 when database is unreachable."""
    mock_session = MagicMock(spec=Session)
    mock_session.exec.side_effect = OperationalError(
        "SELECT 1", {}, Exception("Connection refused")
    )

    app.dependency_overrides[get_session] = lambda: mock_session
    app.dependency_overrides[get_registry] = lambda: registry

    client = TestClient(app, raise_server_exceptions=False)
    response = client.get("/health")

    app.dependency_overrides.clear()

    assert response.status_code == 503
    assert response.json() == {
        "status": "unhealthy",
        "database": "error",
        "otp_mode": "production",
    }
