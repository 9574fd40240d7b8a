"""
In-process metadata responder.

Stands in for the broker side so the harness can run without a network.
Use it as the handler of an httpx.MockTransport:

    transport = httpx.MockTransport(MetadataBroker(topics=["orders"]))
"""

from __future__ import annotations

import threading
from typing import Iterable, Optional

import httpx

API_VERSIONS = {"metadata": [0, 1, 2], "handshake": [0]}


class MetadataBroker:
    """
    Answers GET /metadata and GET /handshake with JSON.

    Attributes:
        requests: Number of requests served (any path).
    """

    def __init__(
        self,
        *,
        node_id: int = 1,
        host: str = "broker.local",
        port: int = 9092,
        topics: Iterable[str] = ("faultline-test",),
        require_token: Optional[str] = None,
    ) -> None:
        self._broker = {"node_id": node_id, "host": host, "port": port}
        self._topics = list(topics)
        self._require_token = require_token
        self._lock = threading.Lock()
        self._requests = 0

    @property
    def requests(self) -> int:
        with self._lock:
            return self._requests

    def __call__(self, request: httpx.Request) -> httpx.Response:
        with self._lock:
            self._requests += 1

        if self._require_token is not None:
            auth = request.headers.get("authorization", "")
            if auth != f"Bearer {self._require_token}":
                return httpx.Response(401, json={"error": "authentication failed"})

        if request.method != "GET":
            return httpx.Response(405, json={"error": "method not allowed"})

        if request.url.path == "/handshake":
            return httpx.Response(200, json={"api_versions": API_VERSIONS})

        if request.url.path == "/metadata":
            wanted = request.url.params.get("topic")
            topics = [
                {"name": name, "partitions": 1}
                for name in self._topics
                if wanted is None or name == wanted
            ]
            if wanted is not None and not topics:
                return httpx.Response(
                    404, json={"error": f"unknown topic: {wanted}"}
                )
            return httpx.Response(
                200, json={"brokers": [self._broker], "topics": topics}
            )

        return httpx.Response(404, json={"error": "not found"})
