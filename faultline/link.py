"""
Per-connection fault controls.

A LinkControl stands for one emulated network connection. The transport
reads its properties on every request, so a change made through set()
takes effect on the next traffic over that connection.
"""

from __future__ import annotations

import logging
import threading
from typing import Dict

from faultline.exceptions import FaultlineConfigError

logger = logging.getLogger(__name__)

SUPPORTED_PROPERTIES = ("delay",)


class LinkControl:
    """
    Fault-injection handle for a single connection.

    Properties are plain integers in milliseconds. Only "delay" is
    supported: the latency added to each request sent over the link.

    Thread-safe: the scheduler thread sets properties while client threads
    read them.
    """

    def __init__(self, connection_id: str) -> None:
        self.connection_id = connection_id
        self._props: Dict[str, int] = {name: 0 for name in SUPPORTED_PROPERTIES}
        self._lock = threading.Lock()
        self._closed = False

    def set(self, name: str, value: int) -> None:
        """Set a named property, effective for subsequent traffic."""
        if name not in SUPPORTED_PROPERTIES:
            raise FaultlineConfigError(
                f"Unknown link property: {name}",
                code="unknown_property",
                details={"name": name, "supported": list(SUPPORTED_PROPERTIES)},
            )
        if value < 0:
            raise FaultlineConfigError(
                f"Link property {name} must be >= 0",
                code="invalid_property",
                details={"name": name, "value": value},
            )
        with self._lock:
            self._props[name] = int(value)
        logger.info("link %s: %s=%dms", self.connection_id, name, value)

    def get(self, name: str) -> int:
        with self._lock:
            try:
                return self._props[name]
            except KeyError:
                raise FaultlineConfigError(
                    f"Unknown link property: {name}",
                    code="unknown_property",
                    details={"name": name},
                ) from None

    @property
    def delay_ms(self) -> int:
        return self.get("delay")

    @property
    def closed(self) -> bool:
        with self._lock:
            return self._closed

    def close(self) -> None:
        with self._lock:
            self._closed = True

    def __repr__(self) -> str:
        return f"LinkControl({self.connection_id!r}, delay={self.delay_ms})"
