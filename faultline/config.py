"""
Harness configuration from environment variables.

Usage:
    from faultline.config import get_settings

    settings = get_settings()
    print(settings.socket_timeout_ms, settings.retry_backoff_ms)
"""

from functools import lru_cache
import os

from faultline.exceptions import FaultlineConfigError
from faultline.models import ClientConfig


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise FaultlineConfigError(
            f"{name} must be an integer",
            code="invalid_setting",
            details={"name": name, "value": raw},
        ) from None


class Settings:
    """Harness configuration loaded from environment variables."""

    def __init__(self) -> None:
        # Client under test
        self.socket_timeout_ms: int = _int_env("FAULTLINE_SOCKET_TIMEOUT_MS", 1000)
        self.retry_backoff_ms: int = _int_env("FAULTLINE_RETRY_BACKOFF_MS", 5000)
        self.socket_max_fails: int = _int_env("FAULTLINE_SOCKET_MAX_FAILS", 3)
        self.bootstrap_url: str = os.getenv(
            "FAULTLINE_BOOTSTRAP_URL", "http://broker.local:9092"
        )

        # Fault injection
        self.delay_ms: int = _int_env("FAULTLINE_DELAY_MS", 3000)
        self.ack_timeout_ms: int = _int_env("FAULTLINE_ACK_TIMEOUT_MS", 30000)
        self.scheduler_poll_ms: int = _int_env("FAULTLINE_SCHEDULER_POLL_MS", 1000)
        self.connect_timeout_ms: int = _int_env("FAULTLINE_CONNECT_TIMEOUT_MS", 10000)

        # Logging
        self.log_level: str = os.getenv("FAULTLINE_LOG_LEVEL", "INFO").upper()

    def client_config(self) -> ClientConfig:
        """Client settings for a harness run (handshake disabled)."""
        return ClientConfig(
            socket_timeout_ms=self.socket_timeout_ms,
            retry_backoff_ms=self.retry_backoff_ms,
            socket_max_fails=self.socket_max_fails,
            api_version_request=False,
            bootstrap_url=self.bootstrap_url,
        )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def reset_settings() -> None:
    """Clear settings cache. For testing only."""
    get_settings.cache_clear()
