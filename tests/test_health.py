from unittest.mock import MagicMock

from sqlalchemy.exc import OperationalError

from spraylog.api import deps
from spraylog.api.main import app


def test_health_endpoint_returns_ok(client):
    response = client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["database"] == "ok"
    assert "service" in body
    assert "version" in body
    assert "environment" in body
    assert body["email_provider"] == "log"
    assert body["jurisdictions"] == ["CA", "FL", "TX"]


def test_health_reports_degraded_database(client):
    broken = MagicMock()
    broken.execute.side_effect = OperationalError("SELECT 1", {}, Exception("connection refused"))

    def _broken_db():
        yield broken

    app.dependency_overrides[deps.get_db] = _broken_db
    try:
        body = client.get("/health").json()
    finally:
        app.dependency_overrides.pop(deps.get_db, None)

    assert body["status"] == "degraded"
    assert body["database"] == "unavailable"
