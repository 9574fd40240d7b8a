"""
Connection gate: admit exactly one connection per run.

Install the gate as the transport's connect callback. It is invoked
synchronously from whatever thread the client opens connections on, and
never blocks.
"""

from __future__ import annotations

import errno
import logging
import threading
from typing import List

from faultline.control import ControlState
from faultline.link import LinkControl

logger = logging.getLogger(__name__)

ACCEPT = 0


class ConnectionGate:
    """
    Admission callback enforcing a single live connection.

    The first connection is recorded in the shared ControlState and
    accepted; every later attempt is refused with ECONNREFUSED, which the
    client sees as a refused connect. A rejection is expected behavior,
    not an error.

    Usage:
        state = ControlState()
        gate = ConnectionGate(state)
        transport = FaultTransport(inner, connect_cb=gate)
    """

    def __init__(self, state: ControlState) -> None:
        self._state = state
        self._lock = threading.Lock()
        self._rejected_ids: List[str] = []

    def __call__(self, connection_id: str, link: LinkControl) -> int:
        if self._state.record_connection(link):
            logger.info("gate: admitted connection %s", connection_id)
            return ACCEPT

        with self._lock:
            self._rejected_ids.append(connection_id)
        logger.info("gate: refused connection %s", connection_id)
        return errno.ECONNREFUSED

    @property
    def admitted(self) -> int:
        """Connections admitted so far (0 or 1)."""
        with self._state.cond:
            return 0 if self._state.connection is None else 1

    @property
    def rejected(self) -> int:
        with self._lock:
            return len(self._rejected_ids)

    @property
    def rejected_ids(self) -> List[str]:
        with self._lock:
            return list(self._rejected_ids)
