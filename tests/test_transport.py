"""Tests for the fault-injecting transport and the in-process broker."""

import errno

import httpx
import pytest

from faultline.broker import MetadataBroker
from faultline.control import ControlState
from faultline.gate import ConnectionGate
from faultline.transport import FaultTransport

BASE_URL = "http://broker.local:9092"


def make_transport(sleeps, connect_cb=None, broker=None):
    inner = httpx.MockTransport(broker or MetadataBroker())
    return FaultTransport(inner, connect_cb=connect_cb, sleep=sleeps.append)


class TestFaultTransport:
    def test_undelayed_request_forwarded(self):
        sleeps = []
        transport = make_transport(sleeps)
        with httpx.Client(transport=transport, base_url=BASE_URL) as client:
            response = client.get("/metadata", timeout=1.0)

        assert response.status_code == 200
        assert response.json()["brokers"][0]["port"] == 9092
        assert sleeps == []

    def test_delay_below_timeout_is_paid(self):
        sleeps = []
        transport = make_transport(sleeps)
        with httpx.Client(transport=transport, base_url=BASE_URL) as client:
            client.get("/metadata", timeout=1.0)
            transport.link.set("delay", 250)
            response = client.get("/metadata", timeout=1.0)

        assert response.status_code == 200
        assert sleeps == [0.25]

    def test_delay_above_timeout_times_out(self):
        sleeps = []
        broker = MetadataBroker()
        transport = make_transport(sleeps, broker=broker)
        with httpx.Client(transport=transport, base_url=BASE_URL) as client:
            client.get("/metadata", timeout=1.0)
            transport.link.set("delay", 3000)
            with pytest.raises(httpx.ReadTimeout):
                client.get("/metadata", timeout=1.0)

        # Waited exactly the read timeout; the broker never saw the request.
        assert sleeps == [1.0]
        assert broker.requests == 1

    def test_refused_connection_raises_connect_error(self):
        refusals = []

        def refuse(connection_id, link):
            refusals.append(connection_id)
            return errno.ECONNREFUSED

        transport = make_transport([], connect_cb=refuse)
        with httpx.Client(transport=transport, base_url=BASE_URL) as client:
            with pytest.raises(httpx.ConnectError):
                client.get("/metadata", timeout=1.0)

        assert refusals == ["broker.local:9092/1"]
        assert transport.link is None

    def test_connection_reused(self):
        state = ControlState()
        gate = ConnectionGate(state)
        transport = make_transport([], connect_cb=gate)
        with httpx.Client(transport=transport, base_url=BASE_URL) as client:
            for _ in range(3):
                client.get("/metadata", timeout=1.0)

        assert transport.connections_opened == 1
        assert gate.rejected == 0

    def test_reconnect_after_drop_goes_through_gate(self):
        state = ControlState()
        gate = ConnectionGate(state)
        transport = make_transport([], connect_cb=gate)
        with httpx.Client(transport=transport, base_url=BASE_URL) as client:
            client.get("/metadata", timeout=1.0)
            first = transport.link
            transport.drop_connection()

            assert first.closed
            with pytest.raises(httpx.ConnectError):
                client.get("/metadata", timeout=1.0)

        assert transport.connections_opened == 2
        assert gate.rejected_ids == ["broker.local:9092/2"]
        assert state.connection is first


class TestMetadataBroker:
    def test_topic_filter(self):
        broker = MetadataBroker(topics=["orders", "payments"])
        transport = httpx.MockTransport(broker)
        with httpx.Client(transport=transport, base_url=BASE_URL) as client:
            body = client.get("/metadata", params={"topic": "orders"}).json()
            missing = client.get("/metadata", params={"topic": "nope"})

        assert [t["name"] for t in body["topics"]] == ["orders"]
        assert missing.status_code == 404

    def test_handshake(self):
        transport = httpx.MockTransport(MetadataBroker())
        with httpx.Client(transport=transport, base_url=BASE_URL) as client:
            body = client.get("/handshake").json()
        assert "metadata" in body["api_versions"]

    def test_token_required(self):
        transport = httpx.MockTransport(MetadataBroker(require_token="s3cret"))
        with httpx.Client(transport=transport, base_url=BASE_URL) as client:
            denied = client.get("/metadata")
            allowed = client.get(
                "/metadata", headers={"authorization": "Bearer s3cret"}
            )

        assert denied.status_code == 401
        assert allowed.status_code == 200
