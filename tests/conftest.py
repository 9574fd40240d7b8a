"""Pytest configuration and shared fixtures."""

import sys
from pathlib import Path

import pytest

# Ensure the project root is in sys.path for proper imports with pytest-xdist
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from faultline.config import reset_settings  # noqa: E402
from faultline.models import ClientConfig  # noqa: E402


class FakeClock:
    """Manually advanced millisecond clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms

    def sleep(self, seconds: float) -> None:
        self.now += seconds * 1000.0


@pytest.fixture(autouse=True)
def _fresh_settings(monkeypatch: pytest.MonkeyPatch):
    # Short waits so a broken scheduler fails fast instead of hanging a test.
    monkeypatch.setenv("FAULTLINE_ACK_TIMEOUT_MS", "3000")
    monkeypatch.setenv("FAULTLINE_SCHEDULER_POLL_MS", "200")
    monkeypatch.setenv("FAULTLINE_CONNECT_TIMEOUT_MS", "2000")
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fast_config() -> ClientConfig:
    """Client timings scaled down so a three-attempt run takes ~1.3s."""
    return ClientConfig(
        socket_timeout_ms=200,
        retry_backoff_ms=400,
        socket_max_fails=3,
        api_version_request=False,
    )
