"""Tests for configuration validation."""

import pytest

from src import settings
from src.errors import ConfigError


@pytest.fixture
def valid_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "RABBITMQ_ERP_HOST", "rabbit")
    monkeypatch.setattr(settings, "RABBITMQ_ERP_PORT", "5672")
    monkeypatch.setattr(settings, "PACT_COMPANY_ID", "1001")
    monkeypatch.setattr(settings, "PACT_API_KEY", "secret")
    monkeypatch.setattr(settings, "PACT_LISTEN_PORT", "8080")
    monkeypatch.setattr(settings, "PACT_HTTP_TIMEOUT", 30.0)
    monkeypatch.setattr(settings, "LOGTOEMAIL_SMTP_HOST", None)


def test_valid_config_passes(valid_settings) -> None:
    settings.validate_config()


def test_missing_values_are_reported_together(valid_settings, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "RABBITMQ_ERP_HOST", None)
    monkeypatch.setattr(settings, "PACT_API_KEY", "")

    with pytest.raises(ConfigError) as excinfo:
        settings.validate_config()

    assert "RABBITMQ_ERP_HOST is required" in str(excinfo.value)
    assert "PACT_API_KEY is required" in str(excinfo.value)


def test_invalid_port(valid_settings, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "PACT_LISTEN_PORT", "http")

    with pytest.raises(ConfigError, match="PACT_LISTEN_PORT"):
        settings.validate_config()


def test_mail_alerts_need_addresses(valid_settings, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "LOGTOEMAIL_SMTP_HOST", "smtp.example.com")
    monkeypatch.setattr(settings, "LOGTOEMAIL_SMTP_FROM", None)

    with pytest.raises(ConfigError, match="LOGTOEMAIL_SMTP_FROM"):
        settings.validate_config()


def test_unparsable_number_falls_back_and_is_reported(valid_settings, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "_invalid", [])
    monkeypatch.setenv("WORKER_BACKOFF_MAX", "soon")

    assert settings._get_number("WORKER_BACKOFF_MAX", "60") == 60.0
    with pytest.raises(ConfigError, match="WORKER_BACKOFF_MAX must be a number: soon"):
        settings.validate_config()


def test_unparsable_integer_is_reported(valid_settings, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "_invalid", [])
    monkeypatch.setenv("PACT_MAX_RETRIES", "2.5")

    assert settings._get_number("PACT_MAX_RETRIES", "3", int) == 3
    with pytest.raises(ConfigError, match="PACT_MAX_RETRIES"):
        settings.validate_config()
