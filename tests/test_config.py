import pytest

from faultline.config import Settings, get_settings, reset_settings
from faultline.exceptions import FaultlineConfigError
from faultline.models import ClientConfig


def test_defaults(monkeypatch):
    for name in (
        "FAULTLINE_SOCKET_TIMEOUT_MS",
        "FAULTLINE_RETRY_BACKOFF_MS",
        "FAULTLINE_SOCKET_MAX_FAILS",
        "FAULTLINE_DELAY_MS",
    ):
        monkeypatch.delenv(name, raising=False)
    settings = Settings()

    assert settings.socket_timeout_ms == 1000
    assert settings.retry_backoff_ms == 5000
    assert settings.socket_max_fails == 3
    assert settings.delay_ms == 3000
    assert settings.ack_timeout_ms == 3000  # set by conftest


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("FAULTLINE_SOCKET_TIMEOUT_MS", "250")
    monkeypatch.setenv("FAULTLINE_LOG_LEVEL", "debug")
    reset_settings()

    settings = get_settings()
    assert settings.socket_timeout_ms == 250
    assert settings.log_level == "DEBUG"
    assert get_settings() is settings


def test_invalid_integer(monkeypatch):
    monkeypatch.setenv("FAULTLINE_RETRY_BACKOFF_MS", "soon")
    with pytest.raises(FaultlineConfigError) as exc_info:
        Settings()
    assert exc_info.value.details["name"] == "FAULTLINE_RETRY_BACKOFF_MS"


def test_client_config_disables_handshake():
    config = Settings().client_config()
    assert isinstance(config, ClientConfig)
    assert config.api_version_request is False


def test_client_config_validation():
    with pytest.raises(ValueError):
        ClientConfig(socket_timeout_ms=0)
    with pytest.raises(ValueError):
        ClientConfig(unknown_field=1)
