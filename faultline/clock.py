"""Monotonic millisecond clock used for scheduling and deadline arithmetic."""

from __future__ import annotations

import time
from typing import Callable

Clock = Callable[[], float]


def now_ms() -> float:
    return time.monotonic() * 1000.0


def remaining_ms(deadline_ms: float, clock: Clock = now_ms) -> float:
    """Milliseconds left until deadline_ms, never negative."""
    return max(0.0, deadline_ms - clock())
