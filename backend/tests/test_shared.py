from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from certvault.ca.auth import ApiKeyAuth, ServiceKeyAuth
from shared.config import ConfigurationError, Settings, settings
from shared.logging import setup_logging
from shared.metrics import setup_metrics
from main import app

client = TestClient(app)


def test_setup_logging():
    """Test that setup_logging configures OTel provider."""
    with patch("shared.logging.set_logger_provider") as mock_set_provider, \
         patch("shared.logging.LoggerProvider") as mock_provider_cls, \
         patch("shared.logging.BatchLogRecordProcessor"), \
         patch("shared.logging.ConsoleLogRecordExporter"):

        setup_logging()

        mock_provider_cls.assert_called_once()
        mock_set_provider.assert_called_once()


def test_setup_metrics():
    """Test that setup_metrics configures OTel meter provider."""
    with patch("shared.metrics.MeterProvider") as mock_provider_cls, \
         patch("shared.metrics.metrics.set_meter_provider") as mock_set_provider, \
         patch("shared.metrics.PrometheusMetricReader"), \
         patch("shared.metrics.PeriodicExportingMetricReader"), \
         patch("shared.metrics.ConsoleMetricExporter"):

        provider = setup_metrics("test-app")

        mock_provider_cls.assert_called_once()
        mock_set_provider.assert_called_once_with(provider)


def test_build_auth_service_key():
    config = Settings(CA_SERVICE_KEY="v1.0-service", CA_AUTH_EMAIL=None, CA_AUTH_KEY=None)
    assert config.build_auth() == ServiceKeyAuth(token="v1.0-service")


def test_build_auth_api_key_pair():
    config = Settings(CA_SERVICE_KEY=None, CA_AUTH_EMAIL="ops@example.com", CA_AUTH_KEY="k")
    assert config.build_auth() == ApiKeyAuth(email="ops@example.com", key="k")


def test_build_auth_rejects_both_schemes():
    config = Settings(CA_SERVICE_KEY="s", CA_AUTH_EMAIL="ops@example.com", CA_AUTH_KEY="k")
    with pytest.raises(ConfigurationError, match="not both"):
        config.build_auth()


def test_build_auth_requires_credentials():
    config = Settings(CA_SERVICE_KEY=None, CA_AUTH_EMAIL=None, CA_AUTH_KEY=None)
    with pytest.raises(ConfigurationError):
        config.build_auth()


def test_health_check():
    """Test the /health endpoint."""
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"
    assert response.json()["service"] == settings.APP_NAME


def test_app_startup_and_lifespan(tmp_path, monkeypatch):
    """Lifespan initializes the vault, wires the routers and tears down cleanly."""
    monkeypatch.setattr(settings, "VAULT_KEYS_DIR", str(tmp_path / "keys"))
    monkeypatch.setattr(settings, "CA_SERVICE_KEY", "v1.0-service")
    monkeypatch.setattr(settings, "CA_AUTH_EMAIL", None)
    monkeypatch.setattr(settings, "CA_AUTH_KEY", None)

    with patch("main.Resource"), \
         patch("main.TracerProvider"), \
         patch("main.BatchSpanProcessor"), \
         patch("main.ConsoleSpanExporter"), \
         patch("main.trace"), \
         patch("main.LoggingInstrumentor"), \
         patch("main.HTTPXClientInstrumentor"), \
         patch("shared.logging.LoggerProvider"), \
         patch("shared.logging.BatchLogRecordProcessor"), \
         patch("shared.logging.set_logger_provider"), \
         patch("shared.logging.ConsoleLogRecordExporter"), \
         patch("shared.metrics.MeterProvider"), \
         patch("shared.metrics.PrometheusMetricReader"), \
         patch("shared.metrics.PeriodicExportingMetricReader"), \
         patch("shared.metrics.metrics.set_meter_provider"):

        with TestClient(app) as local_client:
            assert local_client.get("/health").status_code == 200
            response = local_client.get("/api/vault/entries")
            assert response.status_code == 200
            assert response.json() == {"items": [], "total": 0}

    assert (tmp_path / "keys" / "master.key").exists()


def test_build_auth_ignores_incomplete_api_key_pair():
    config = Settings(CA_SERVICE_KEY=None, CA_AUTH_EMAIL="ops@example.com", CA_AUTH_KEY=None)
    with pytest.raises(ConfigurationError, match="No CA credentials"):
        config.build_auth()

    config = Settings(CA_SERVICE_KEY="s", CA_AUTH_EMAIL="ops@example.com", CA_AUTH_KEY=None)
    assert config.build_auth() == ServiceKeyAuth(token="s")
