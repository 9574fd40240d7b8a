"""Tests for the retrying metadata client, driven by a fake clock."""

import httpx
import pytest

import faultline.retry as retry_module
from faultline.broker import MetadataBroker
from faultline.client import MetadataClient
from faultline.control import ControlState
from faultline.exceptions import MetadataError
from faultline.gate import ConnectionGate
from faultline.link import LinkControl
from faultline.models import ClientConfig
from faultline.retry import connectivity_errors_nonfatal, retry_tracking_context
from faultline.transport import FaultTransport

# Full-scale timings: the fake clock makes them free.
CONFIG = ClientConfig(
    socket_timeout_ms=1000,
    retry_backoff_ms=5000,
    socket_max_fails=3,
    api_version_request=False,
)
WINDOW_MS = (1000 + 5000) * 2


@pytest.fixture
def rig(monkeypatch: pytest.MonkeyPatch, fake_clock):
    """Client, gate and transport sharing one fake clock."""
    hooks = []

    def _sleep(seconds: float) -> None:
        fake_clock.sleep(seconds)
        for hook in hooks:
            hook()

    monkeypatch.setattr(retry_module.time, "sleep", _sleep)

    def build(config: ClientConfig = CONFIG, broker: MetadataBroker = None):
        state = ControlState()
        gate = ConnectionGate(state)
        transport = FaultTransport(
            httpx.MockTransport(broker or MetadataBroker()),
            connect_cb=gate,
            sleep=_sleep,
        )
        client = MetadataClient(
            config,
            transport,
            is_fatal=connectivity_errors_nonfatal,
            clock=fake_clock,
        )
        return client, state, gate, transport

    build.hooks = hooks
    return build


class TestMetadataClient:
    def test_start_admits_single_connection(self, rig):
        client, state, gate, transport = rig()
        with client:
            md = client.metadata(timeout_ms=2000)

        assert md.brokers[0].host == "broker.local"
        assert state.connection is not None
        assert transport.connections_opened == 1
        assert gate.admitted == 1
        assert client.attempts == 1

    def test_handshake_when_enabled(self, rig):
        broker = MetadataBroker()
        config = CONFIG.model_copy(update={"api_version_request": True})
        client, _, _, _ = rig(config, broker)
        with client:
            assert client.api_versions["handshake"] == [0]
        assert broker.requests == 1

    def test_no_handshake_when_disabled(self, rig):
        broker = MetadataBroker()
        client, _, _, _ = rig(CONFIG, broker)
        with client:
            assert client.api_versions is None
        assert broker.requests == 0

    def test_token_sent(self, rig):
        broker = MetadataBroker(require_token="s3cret")
        config = CONFIG.model_copy(update={"token": "s3cret"})
        client, _, _, _ = rig(config, broker)
        with client:
            assert client.metadata(timeout_ms=2000).topics

    def test_topic_query(self, rig):
        client, _, _, _ = rig(CONFIG, MetadataBroker(topics=["orders", "payments"]))
        with client:
            md = client.metadata(timeout_ms=2000, topic="payments")
        assert md.topic("payments") is not None
        assert md.topic("orders") is None

    def test_unknown_topic_is_fatal(self, rig):
        client, _, _, _ = rig()
        with client:
            with pytest.raises(MetadataError) as exc_info:
                client.metadata(timeout_ms=WINDOW_MS, topic="missing")

        assert exc_info.value.fatal is True
        assert client.attempts == 1

    def test_start_refused(self, rig):
        client, _, gate, _ = rig()
        # Another connection already holds the slot.
        gate("elsewhere:1/1", LinkControl("elsewhere:1/1"))

        with pytest.raises(MetadataError) as exc_info:
            client.start()
        client.close()
        assert exc_info.value.error_code == "all_brokers_down"
        assert gate.rejected == 1


class TestRetryTiming:
    def test_delay_cleared_before_third_attempt(self, rig, fake_clock):
        client, state, _, transport = rig()
        with client:
            client.metadata(timeout_ms=2000)
            transport.link.set("delay", 3000)
            clear_at = fake_clock() + WINDOW_MS - 100

            def clear_delay():
                if fake_clock() >= clear_at:
                    transport.link.set("delay", 0)

            rig.hooks.append(clear_delay)

            with retry_tracking_context() as tracker:
                started = fake_clock()
                client.metadata(timeout_ms=WINDOW_MS + 100)
                elapsed = fake_clock() - started

        assert client.attempts == 3
        assert tracker.retries_by_code() == {"timed_out": 2}
        assert WINDOW_MS <= elapsed <= WINDOW_MS + 100
        starts = [a.started_ms - started for a in tracker.attempts]
        assert starts == [0, 6000, 12000]

    def test_delay_never_cleared(self, rig, fake_clock):
        client, _, _, transport = rig()
        with client:
            client.metadata(timeout_ms=2000)
            transport.link.set("delay", 3000)

            with pytest.raises(MetadataError) as exc_info:
                client.metadata(timeout_ms=WINDOW_MS + 100)

        assert exc_info.value.error_code == "timed_out"
        assert client.attempts == 3

    def test_reconnect_after_max_fails_is_refused(self, rig):
        config = CONFIG.model_copy(update={"socket_max_fails": 2})
        client, state, gate, transport = rig(config)
        with client:
            client.metadata(timeout_ms=2000)
            first = transport.link
            first.set("delay", 3000)

            with retry_tracking_context() as tracker:
                with pytest.raises(MetadataError):
                    client.metadata(timeout_ms=WINDOW_MS + 100)

        # Two timeouts, then the reconnect is refused by the gate.
        assert tracker.retries_by_code() == {"timed_out": 2}
        assert tracker.attempts[-1].error_code.value == "all_brokers_down"
        assert gate.rejected == 1
        assert state.connection is first
