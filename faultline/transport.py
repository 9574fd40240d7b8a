"""
httpx transport that emulates one degradable network connection.

FaultTransport wraps another transport and models a single connection
to the broker. Opening the connection passes it through the admission
callback; every request then pays the link's current "delay" before it
is forwarded. A delay longer than the request's read timeout surfaces
as httpx.ReadTimeout after the timeout, the way a slow peer would.

Usage:
    state = ControlState()
    transport = FaultTransport(
        httpx.MockTransport(MetadataBroker()),
        connect_cb=ConnectionGate(state),
    )
    client = httpx.Client(transport=transport, base_url="http://broker.local:9092")
"""

from __future__ import annotations

import logging
import os
import threading
import time
from typing import Callable, Optional

import httpx

from faultline.link import LinkControl

logger = logging.getLogger(__name__)

ConnectCallback = Callable[[str, LinkControl], int]


class FaultTransport(httpx.BaseTransport):
    """
    Wrap a transport with per-connection latency and admission control.

    Args:
        inner: Transport that actually produces responses.
        connect_cb: Called as connect_cb(connection_id, link) whenever a new
            connection is opened. A non-zero errno refuses the connection.
        sleep: Sleep function, replaceable in tests.
    """

    def __init__(
        self,
        inner: httpx.BaseTransport,
        *,
        connect_cb: Optional[ConnectCallback] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._inner = inner
        self._connect_cb = connect_cb
        self._sleep = sleep
        self._lock = threading.Lock()
        self._link: Optional[LinkControl] = None
        self._attempts = 0

    @property
    def link(self) -> Optional[LinkControl]:
        with self._lock:
            return self._link

    @property
    def connections_opened(self) -> int:
        """Connection attempts made, refused ones included."""
        with self._lock:
            return self._attempts

    def connect(self, url: httpx.URL) -> LinkControl:
        """
        Return the live connection, opening one if needed.

        Raises:
            httpx.ConnectError: The admission callback refused the connection.
        """
        with self._lock:
            if self._link is not None and not self._link.closed:
                return self._link
            self._attempts += 1
            port = url.port or (443 if url.scheme == "https" else 80)
            link = LinkControl(f"{url.host}:{port}/{self._attempts}")

        if self._connect_cb is not None:
            err = self._connect_cb(link.connection_id, link)
            if err:
                link.close()
                logger.debug("connect to %s refused: errno %d", link.connection_id, err)
                raise httpx.ConnectError(
                    f"Connection to {link.connection_id} refused: {os.strerror(err)}"
                )

        with self._lock:
            self._link = link
        logger.debug("connected %s", link.connection_id)
        return link

    def drop_connection(self) -> None:
        """Close the live connection; the next request reconnects."""
        with self._lock:
            link, self._link = self._link, None
        if link is not None:
            link.close()
            logger.debug("dropped connection %s", link.connection_id)

    def handle_request(self, request: httpx.Request) -> httpx.Response:
        try:
            link = self.connect(request.url)
        except httpx.ConnectError as e:
            e.request = request
            raise

        delay_s = link.delay_ms / 1000.0
        read_timeout = request.extensions.get("timeout", {}).get("read")
        if delay_s and read_timeout is not None and delay_s > read_timeout:
            self._sleep(read_timeout)
            raise httpx.ReadTimeout(
                f"No response within {read_timeout * 1000:.0f}ms "
                f"({link.connection_id} delay {link.delay_ms}ms)",
                request=request,
            )
        if delay_s:
            self._sleep(delay_s)
        return self._inner.handle_request(request)

    def close(self) -> None:
        self.drop_connection()
        self._inner.close()
