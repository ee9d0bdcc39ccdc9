# backend/tests/integration/test_api.py
from unittest.mock import AsyncMock

from chathub.config.settings import settings


def test_root(test_client):
    response = test_client.get("/")
    assert response.status_code == 200
    assert response.json()["status"] == "operational"
    assert response.json()["environment"] == "test"


def test_health_and_liveness(test_client):
    assert test_client.get("/health").json()["status"] == "healthy"
    assert test_client.get("/health/live").json() == {"status": "alive"}


def test_readiness_follows_database(test_client, mocker):
    check = mocker.patch("chathub.routes.public.db_service.health_check", new_callable=AsyncMock, return_value=True)
    assert test_client.get("/health/ready").status_code == 200

    check.return_value = False
    response = test_client.get("/health/ready")
    assert response.status_code == 503


def test_detailed_health_reports_services_and_runtime_config(test_client, mocker):
    mocker.patch("chathub.routes.public.db_service.health_check", new_callable=AsyncMock, return_value=True)
    mocker.patch("chathub.routes.public.cache_service.ping", new_callable=AsyncMock, side_effect=ConnectionError("down"))

    response = test_client.get("/health/detailed")

    assert response.status_code == 200
    body = response.json()
    assert body["version"] == settings.api_version
    data = body["data"]
    assert data["services"]["database"] == "connected"
    assert data["services"]["cache"] == "error"
    assert data["status"] == "degraded"
    assert isinstance(data["connections"], int)
    assert "https://widget.example.com" in data["runtime_config"]["allowed_origins"]


def test_metrics_require_api_key(test_client):
    assert test_client.get("/metrics").status_code == 403
    assert test_client.get("/metrics", headers={"X-API-KEY": "wrong"}).status_code == 403

    response = test_client.get("/metrics", headers={"X-API-KEY": settings.api_key})
    assert response.status_code == 200
    assert "chat_turn_duration_seconds" in response.text


def test_process_time_header(test_client):
    response = test_client.get("/health/live")
    assert "x-process-time" in response.headers
