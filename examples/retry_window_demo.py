"""
Retry Window Demo: drive the delay scheduler by hand.

Pins a metadata client to one connection, makes that connection slow
immediately, and schedules the slowdown to end just before the client's
third attempt. The request should succeed on that attempt.

Run:
    FAULTLINE_SOCKET_TIMEOUT_MS=200 FAULTLINE_RETRY_BACKOFF_MS=400 \\
        python examples/retry_window_demo.py
"""

import logging
import sys
import time
from pathlib import Path

import httpx
from dotenv import load_dotenv

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))
ROOT = Path(__file__).resolve().parents[1]
load_dotenv(ROOT / ".env")

from faultline import (  # noqa: E402
    ConnectionGate,
    ControlState,
    DelayScheduler,
    FaultTransport,
    MetadataBroker,
    MetadataClient,
    connectivity_errors_nonfatal,
    retry_tracking_context,
)
from faultline.config import get_settings  # noqa: E402


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(relativeCreated)6d %(message)s")
    settings = get_settings()
    config = settings.client_config()
    window_ms = (config.socket_timeout_ms + config.retry_backoff_ms) * 2

    state = ControlState()
    transport = FaultTransport(
        httpx.MockTransport(MetadataBroker()), connect_cb=ConnectionGate(state)
    )

    with MetadataClient(config, transport, is_fatal=connectivity_errors_nonfatal) as client:
        state.wait_for_connection(settings.connect_timeout_ms)
        client.metadata(timeout_ms=config.socket_timeout_ms * 2)

        with DelayScheduler(state) as scheduler:
            scheduler.schedule_delay(0, max(settings.delay_ms, config.socket_timeout_ms + 1))
            scheduler.schedule_delay(window_ms - 100, 0)

            with retry_tracking_context() as tracker:
                started = time.monotonic()
                md = client.metadata(timeout_ms=window_ms + 100)
                elapsed = (time.monotonic() - started) * 1000

    print(f"metadata() returned {len(md.topics)} topic(s) after {elapsed:.0f}ms")
    print(f"attempts={len(tracker.attempts)} retries={tracker.retries_by_code()}")


if __name__ == "__main__":
    main()
