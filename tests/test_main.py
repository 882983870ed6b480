"""
Tests for application wiring: lifespan, validation errors, metrics endpoint.
"""

from unittest.mock import AsyncMock, MagicMock, patch

from fastapi.testclient import TestClient

from app.config import settings


class TestValidationHandler:
    def test_validation_errors_are_sanitized(self, client, api_headers):
        response = client.post(
            "/v1/ledger/precharges",
            json={"user_id": "user-1", "amount": "lots", "reason": "chat.precharge"},
            headers=api_headers,
        )

        assert response.status_code == 422
        errors = response.json()["detail"]
        assert errors[0]["loc"] == ["body", "amount"]
        assert set(errors[0]) <= {"type", "loc", "msg", "ctx"}


class TestMetricsEndpoint:
    def test_disabled_metrics_are_404(self, client):
        with patch.object(settings, "metrics_enabled", False):
            response = client.get("/metrics")

        assert response.status_code == 404


class TestLifespan:
    def test_migrations_run_when_enabled(self, app):
        with (
            patch.object(settings, "run_migrations_on_startup", True),
            patch("app.main.run_migrations", MagicMock()) as mock_migrate,
            patch("app.main.close_engines", AsyncMock()) as mock_close,
        ):
            with TestClient(app):
                pass

        mock_migrate.assert_called_once_with()
        mock_close.assert_awaited_once()

    def test_migrations_skipped_when_disabled(self, app):
        with (
            patch.object(settings, "run_migrations_on_startup", False),
            patch("app.main.run_migrations", MagicMock()) as mock_migrate,
            patch("app.main.close_engines", AsyncMock()),
        ):
            with TestClient(app):
                pass

        mock_migrate.assert_not_called()
