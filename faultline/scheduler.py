"""
Delay scheduler: apply a link delay at a precisely chosen instant.

The scheduler is a background thread that sleeps on the shared
ControlState condition. It wakes when the controller changes state, when
the pending activation deadline is reached, or on a periodic idle poll,
and then:

1. applies the pending delay to the admitted connection if its deadline
   has been reached,
2. sets ``acknowledged`` and notifies waiters,
3. goes back to sleep until the next deadline.

Usage:
    state = ControlState()
    with DelayScheduler(state) as scheduler:
        scheduler.schedule_delay(0, 3000)      # blocks until active
        scheduler.schedule_delay(11900, 0)     # returns immediately
        ...                                    # run the operation under test

schedule_delay(0, ...) guarantees the delay is active when it returns.
schedule_delay(T, ...) with T > 0 guarantees the delay is not active
before T ms have passed; the exact activation latency is bounded by
thread wake-up granularity, so timing windows need some slack.
"""

from __future__ import annotations

import logging
import threading
from typing import Optional

from faultline.clock import Clock, now_ms
from faultline.config import get_settings
from faultline.control import ControlState
from faultline.exceptions import (
    AckTimeoutError,
    FaultlineConfigError,
    FaultlineSetupError,
)

logger = logging.getLogger(__name__)


class DelayScheduler:
    """
    Background worker that applies scheduled delay changes.

    States: idle (waiting on the condition), evaluating (woken, checking
    the deadline), terminated (loop exited). Termination is cooperative:
    terminate() sets the flag and wakes the thread, which exits without
    applying anything further.
    """

    def __init__(
        self,
        state: ControlState,
        *,
        clock: Clock = now_ms,
        idle_poll_ms: Optional[float] = None,
        name: str = "faultline-delay-scheduler",
    ) -> None:
        if idle_poll_ms is None:
            idle_poll_ms = get_settings().scheduler_poll_ms
        if idle_poll_ms <= 0:
            raise FaultlineConfigError(
                "idle_poll_ms must be > 0", details={"idle_poll_ms": idle_poll_ms}
            )
        self._state = state
        self._clock = clock
        self._idle_poll_ms = idle_poll_ms
        self._name = name
        self._thread: Optional[threading.Thread] = None
        self._evaluations = 0

    @property
    def state(self) -> ControlState:
        return self._state

    @property
    def evaluations(self) -> int:
        """Number of wake-and-evaluate cycles completed."""
        with self._state.cond:
            return self._evaluations

    def start(self) -> None:
        """
        Spawn the scheduler thread. Starting twice is a no-op.

        Raises:
            FaultlineSetupError: The thread could not be created.
        """
        if self._thread is not None:
            return
        thread = threading.Thread(target=self._run, name=self._name, daemon=True)
        try:
            thread.start()
        except RuntimeError as e:
            raise FaultlineSetupError(
                "Failed to start delay scheduler thread", code="thread_start"
            ) from e
        self._thread = thread
        logger.info("Delay scheduler started")

    def terminate(self) -> None:
        """Signal the thread to exit. Idempotent, safe before start()."""
        self._state.request_termination()

    def join(self, timeout_s: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout_s)

    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def stop(self, timeout_s: Optional[float] = None) -> None:
        """Terminate and join."""
        self.terminate()
        self.join(timeout_s)
        logger.info("Delay scheduler stopped")

    def schedule_delay(
        self,
        after_ms: float,
        delay_ms: int,
        *,
        ack_timeout_ms: Optional[float] = None,
        poll_ms: float = 1000.0,
    ) -> None:
        """Shortcut for schedule_delay() bound to this scheduler's state."""
        schedule_delay(
            self._state,
            after_ms,
            delay_ms,
            ack_timeout_ms=ack_timeout_ms,
            poll_ms=poll_ms,
            clock=self._clock,
        )

    def __enter__(self) -> "DelayScheduler":
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.stop()

    def _run(self) -> None:
        state = self._state
        with state.cond:
            while not state.terminating:
                self._evaluate()
                self._evaluations += 1
                state.acknowledged = True
                state.cond.notify_all()
                state.cond.wait(timeout=self._next_wait_ms() / 1000.0)
        logger.debug("Delay scheduler loop exited")

    def _evaluate(self) -> None:
        # Caller holds state.cond.
        state = self._state
        deadline = state.activation_deadline_ms
        if deadline is None:
            return
        now = self._clock()
        if now < deadline:
            return
        link = state.connection
        if link is None:
            logger.warning(
                "Delay %dms is due but no connection has been admitted",
                state.pending_delay_ms,
            )
            return
        logger.info(
            "Setting delay %dms on %s (%.1fms late)",
            state.pending_delay_ms,
            link.connection_id,
            now - deadline,
        )
        link.set("delay", state.pending_delay_ms)
        state.applied.append((now, state.pending_delay_ms))
        state.activation_deadline_ms = None

    def _next_wait_ms(self) -> float:
        state = self._state
        deadline = state.activation_deadline_ms
        if deadline is None or state.connection is None:
            return self._idle_poll_ms
        return max(0.0, min(deadline - self._clock(), self._idle_poll_ms))


def schedule_delay(
    state: ControlState,
    after_ms: float,
    delay_ms: int,
    *,
    ack_timeout_ms: Optional[float] = None,
    poll_ms: float = 1000.0,
    clock: Clock = now_ms,
) -> None:
    """
    Request a delay change on the admitted connection.

    Args:
        state: Control state shared with the scheduler and gate.
        after_ms: Offset from now before the delay takes effect. 0 applies
            it on the scheduler's next evaluation and blocks until done.
        delay_ms: Delay to apply, in milliseconds. 0 clears the delay.
        ack_timeout_ms: Upper bound on the blocking wait (after_ms == 0).
            Defaults to FAULTLINE_ACK_TIMEOUT_MS.
        poll_ms: Length of each wait slice while blocking.
        clock: Monotonic millisecond clock, shared with the scheduler.

    Raises:
        FaultlineConfigError: Negative offset or delay.
        AckTimeoutError: Blocking mode and the change was not applied within
            ack_timeout_ms (scheduler not running, or no connection).
    """
    if after_ms < 0 or delay_ms < 0:
        raise FaultlineConfigError(
            "after_ms and delay_ms must be >= 0",
            code="invalid_schedule",
            details={"after_ms": after_ms, "delay_ms": delay_ms},
        )
    if ack_timeout_ms is None:
        ack_timeout_ms = get_settings().ack_timeout_ms

    logger.info("Set delay to %dms (after %dms)", delay_ms, after_ms)

    with state.cond:
        state.activation_deadline_ms = clock() + after_ms
        state.pending_delay_ms = delay_ms
        state.acknowledged = False
        state.cond.notify_all()

        if after_ms:
            return

        started = clock()
        while not (state.acknowledged and state.activation_deadline_ms is None):
            waited = clock() - started
            if waited >= ack_timeout_ms:
                raise AckTimeoutError(
                    f"Delay {delay_ms}ms was not applied",
                    code="ack_timeout",
                    waited_ms=waited,
                    details={
                        "delay_ms": delay_ms,
                        "terminating": state.terminating,
                        "connected": state.connection is not None,
                    },
                )
            state.cond.wait(timeout=min(poll_ms, ack_timeout_ms - waited) / 1000.0)
            logger.debug(
                "ack is %s after %.0fms", state.acknowledged, clock() - started
            )
