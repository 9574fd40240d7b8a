"""
Shared control state for one fault-injection run.

ControlState is the only object shared between the connection gate
(called from client threads), the delay scheduler (its own thread) and
the controller (the orchestration thread). Every field is guarded by a
single condition variable; the same condition wakes the scheduler on any
change, wakes blocking controller calls on acknowledgment, and wakes
callers waiting for the first connection.

Create one instance per run and pass it explicitly. Nothing here is
module-global, so concurrent runs stay isolated.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import List, Optional, Tuple, cast

from faultline.clock import Clock, now_ms
from faultline.exceptions import FaultlineTimeoutError
from faultline.link import LinkControl

logger = logging.getLogger(__name__)


@dataclass
class ControlState:
    """
    Guarded record of the intercepted connection and any pending delay.

    Attributes:
        connection: Fault controls of the admitted connection. Set once.
        activation_deadline_ms: When set, a delay change is pending and takes
            effect at or after this monotonic timestamp.
        pending_delay_ms: Delay to apply when the deadline fires.
        acknowledged: Set by the scheduler after every evaluation, cleared by
            the controller on each new request.
        terminating: Shutdown flag, only ever goes False -> True.
        applied: (timestamp_ms, delay_ms) for every delay actually applied.

    Read or write fields only while holding ``cond``.
    """

    connection: Optional[LinkControl] = None
    activation_deadline_ms: Optional[float] = None
    pending_delay_ms: int = 0
    acknowledged: bool = False
    terminating: bool = False
    applied: List[Tuple[float, int]] = field(default_factory=list)
    cond: threading.Condition = field(
        default_factory=threading.Condition, repr=False, compare=False
    )

    def record_connection(self, link: LinkControl) -> bool:
        """
        Record link as the admitted connection if none is recorded yet.

        Returns:
            True if link was recorded, False if another connection holds
            the slot.
        """
        with self.cond:
            if self.connection is not None:
                return False
            self.connection = link
            self.cond.notify_all()
            return True

    def wait_for_connection(
        self, timeout_ms: float, clock: Clock = now_ms
    ) -> LinkControl:
        """
        Block until the first connection has been admitted.

        Raises:
            FaultlineTimeoutError: No connection within timeout_ms.
        """
        started = clock()
        with self.cond:
            ok = self.cond.wait_for(
                lambda: self.connection is not None, timeout=timeout_ms / 1000.0
            )
            if not ok:
                raise FaultlineTimeoutError(
                    "No connection was admitted",
                    code="connect_timeout",
                    waited_ms=clock() - started,
                )
            return cast(LinkControl, self.connection)

    def request_termination(self) -> None:
        """Ask the scheduler to exit. Safe to call any number of times."""
        with self.cond:
            if not self.terminating:
                logger.debug("termination requested")
            self.terminating = True
            self.cond.notify_all()

    def has_pending_change(self) -> bool:
        with self.cond:
            return self.activation_deadline_ms is not None

    def applied_delays(self) -> List[Tuple[float, int]]:
        with self.cond:
            return list(self.applied)
