"""
Retry harness: run the client under test through timed link degradation.

A run owns one ControlState, one ConnectionGate, one DelayScheduler and
one client, and sequences them:

1. install the gate and a "connectivity errors are non-fatal" classifier,
2. start the client and wait until the gate has admitted its connection,
3. make one undelayed request to confirm the connection is up,
4. start the scheduler, apply the scenario's delay immediately and
   schedule its removal,
5. run the operation under test and record outcome, attempts and timing,
6. terminate and join the scheduler, close the client.

Usage:
    from faultline.harness import RetryHarness, standard_scenarios, format_report

    config = get_settings().client_config()
    harness = RetryHarness(config)
    reports = [harness.run(s) for s in standard_scenarios(config)]
    print(format_report(reports))
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

import httpx

from faultline.broker import MetadataBroker
from faultline.client import MetadataClient
from faultline.clock import Clock, now_ms
from faultline.config import Settings, get_settings
from faultline.control import ControlState
from faultline.exceptions import FaultlineConfigError, FaultlineSetupError, MetadataError
from faultline.gate import ConnectionGate
from faultline.models import ClientConfig
from faultline.retry import connectivity_errors_nonfatal, retry_tracking_context
from faultline.scheduler import DelayScheduler
from faultline.transport import FaultTransport

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryScenario:
    """
    One degradation pattern and its expected outcome.

    Attributes:
        name: Human-readable scenario name.
        request_timeout_ms: Overall deadline of the operation under test.
        expect_success: Whether the operation should succeed.
        initial_delay_ms: Delay applied immediately before the operation.
            None leaves the link undelayed.
        clear_after_ms: Offset at which the delay is cleared. None never
            clears it.
        expected_attempts: Exact number of attempts the client should make,
            if the scenario pins it down.
        extra_connections: Additional connection attempts made after the
            first connection was admitted.
    """

    name: str
    request_timeout_ms: float
    expect_success: bool = True
    initial_delay_ms: Optional[int] = None
    clear_after_ms: Optional[float] = None
    expected_attempts: Optional[int] = None
    extra_connections: int = 0


@dataclass
class ScenarioReport:
    """
    Results from running a scenario.

    Attributes:
        scenario_name: Name of the scenario.
        success: Whether the operation under test succeeded.
        expected_success: What the scenario expected.
        elapsed_ms: Wall time of the operation under test.
        attempts: Attempts the client made.
        expected_attempts: Attempts the scenario expected, if pinned.
        retries_by_code: Failed attempts followed by a retry, per error code.
        connections_admitted: Connections the gate admitted.
        connections_rejected: Connections the gate refused.
        client_connections: Connections the client itself opened.
        extra_connections: Extra connection attempts the scenario made.
        extra_connections_refused: Extra attempts whose connect was refused.
        delays_applied: Delay values the scheduler applied, in order.
        error: Serialized MetadataError if the operation failed.
    """

    scenario_name: str
    success: bool
    expected_success: bool
    elapsed_ms: float
    attempts: int
    expected_attempts: Optional[int] = None
    retries_by_code: Dict[str, int] = field(default_factory=dict)
    connections_admitted: int = 0
    connections_rejected: int = 0
    client_connections: int = 0
    extra_connections: int = 0
    extra_connections_refused: int = 0
    delays_applied: List[int] = field(default_factory=list)
    error: Optional[Dict[str, object]] = None

    @property
    def passed(self) -> bool:
        if self.success != self.expected_success:
            return False
        if self.connections_admitted != 1 or self.client_connections != 1:
            return False
        if self.extra_connections_refused != self.extra_connections:
            return False
        if self.expected_attempts is not None and self.attempts != self.expected_attempts:
            return False
        return True


def standard_scenarios(
    config: ClientConfig,
    *,
    delay_ms: Optional[int] = None,
    margin_ms: float = 100.0,
) -> List[RetryScenario]:
    """
    Scenarios A-D for a client configuration.

    With timeout t and backoff b the client attempts at 0, t+b and
    2(t+b). The operation deadline is 2(t+b) + margin, so exactly three
    attempts fit. Clearing the delay at 2(t+b) - margin lands strictly
    between the second and the third attempt.

    Raises:
        FaultlineConfigError: The delay would not make attempts time out,
            or the margin does not fit inside the backoff window.
    """
    timeout = config.socket_timeout_ms
    backoff = config.retry_backoff_ms
    delay = delay_ms if delay_ms is not None else get_settings().delay_ms
    if delay <= timeout:
        raise FaultlineConfigError(
            "delay_ms must exceed socket_timeout_ms",
            details={"delay_ms": delay, "socket_timeout_ms": timeout},
        )
    if not 0 < margin_ms < backoff:
        raise FaultlineConfigError(
            "margin_ms must be > 0 and smaller than retry_backoff_ms",
            details={"margin_ms": margin_ms, "retry_backoff_ms": backoff},
        )

    window = (timeout + backoff) * 2
    deadline = window + margin_ms
    return [
        RetryScenario(name="baseline", request_timeout_ms=deadline, expected_attempts=1),
        RetryScenario(
            name="delay_never_cleared",
            request_timeout_ms=deadline,
            expect_success=False,
            initial_delay_ms=delay,
        ),
        RetryScenario(
            name="delay_cleared_before_third_attempt",
            request_timeout_ms=deadline,
            initial_delay_ms=delay,
            clear_after_ms=window - margin_ms,
            expected_attempts=3,
        ),
        RetryScenario(
            name="second_connection_refused",
            request_timeout_ms=deadline,
            expected_attempts=1,
            extra_connections=1,
        ),
    ]


class RetryHarness:
    """
    Runs scenarios against a fresh client, gate and scheduler each time.

    Args:
        config: Client configuration under test.
        broker_factory: Builds the in-process responder for a run.
        settings: Harness settings (ack timeout, poll interval, connect
            timeout). Defaults to get_settings().
        clock: Monotonic millisecond clock shared by all components.
    """

    def __init__(
        self,
        config: ClientConfig,
        *,
        broker_factory: Callable[[], MetadataBroker] = MetadataBroker,
        settings: Optional[Settings] = None,
        clock: Clock = now_ms,
    ) -> None:
        self._config = config
        self._broker_factory = broker_factory
        self._settings = settings or get_settings()
        self._clock = clock

    def run(self, scenario: RetryScenario) -> ScenarioReport:
        """
        Run one scenario end to end.

        Raises:
            FaultlineSetupError: The client could not connect, or the
                undelayed baseline request failed.
            AckTimeoutError: The immediate delay was never applied.
        """
        settings = self._settings
        logger.info("Scenario %s: starting", scenario.name)

        state = ControlState()
        gate = ConnectionGate(state)
        broker = self._broker_factory()
        transport = FaultTransport(httpx.MockTransport(broker), connect_cb=gate)
        client = MetadataClient(
            self._config,
            transport,
            is_fatal=connectivity_errors_nonfatal,
            clock=self._clock,
        )
        scheduler = DelayScheduler(
            state, clock=self._clock, idle_poll_ms=settings.scheduler_poll_ms
        )

        try:
            try:
                client.start()
                state.wait_for_connection(settings.connect_timeout_ms, self._clock)
                client.metadata(timeout_ms=self._config.socket_timeout_ms * 2)
            except MetadataError as e:
                raise FaultlineSetupError(
                    f"Baseline connectivity check failed: {e.message}",
                    code="baseline_failed",
                    details=e.details,
                ) from e

            extra_refused = sum(
                self._attempt_extra_connection(broker, gate)
                for _ in range(scenario.extra_connections)
            )

            scheduler.start()
            if scenario.initial_delay_ms is not None:
                scheduler.schedule_delay(
                    0, scenario.initial_delay_ms, ack_timeout_ms=settings.ack_timeout_ms
                )
            if scenario.clear_after_ms is not None:
                scheduler.schedule_delay(scenario.clear_after_ms, 0)

            error = None
            with retry_tracking_context() as tracker:
                started = self._clock()
                try:
                    client.metadata(timeout_ms=scenario.request_timeout_ms)
                except MetadataError as e:
                    error = e
                elapsed = self._clock() - started
        finally:
            scheduler.stop()
            client.close()

        if error is not None:
            logger.info("Scenario %s: metadata() failed: %s", scenario.name, error)
        else:
            logger.info("Scenario %s: metadata() succeeded", scenario.name)

        return ScenarioReport(
            scenario_name=scenario.name,
            success=error is None,
            expected_success=scenario.expect_success,
            elapsed_ms=elapsed,
            attempts=client.attempts,
            expected_attempts=scenario.expected_attempts,
            retries_by_code=tracker.retries_by_code(),
            connections_admitted=gate.admitted,
            connections_rejected=gate.rejected,
            client_connections=transport.connections_opened,
            extra_connections=scenario.extra_connections,
            extra_connections_refused=extra_refused,
            delays_applied=[delay for _, delay in state.applied_delays()],
            error=error.to_dict() if error is not None else None,
        )

    def _attempt_extra_connection(
        self, broker: MetadataBroker, gate: ConnectionGate
    ) -> bool:
        """Open one more connection through the gate. True if it was refused."""
        extra = FaultTransport(httpx.MockTransport(broker), connect_cb=gate)
        try:
            extra.connect(httpx.URL(self._config.bootstrap_url))
        except httpx.ConnectError as e:
            logger.info("Extra connection refused as expected: %s", e)
            return True
        else:
            logger.error("Extra connection was admitted")
            return False
        finally:
            extra.close()


def run_scenarios(
    config: ClientConfig,
    scenarios: Sequence[RetryScenario],
    **harness_kwargs,
) -> List[ScenarioReport]:
    """Run each scenario with a fresh harness run and collect reports."""
    harness = RetryHarness(config, **harness_kwargs)
    return [harness.run(scenario) for scenario in scenarios]


def format_report(reports: Sequence[ScenarioReport]) -> str:
    """
    Format scenario reports as human-readable text.

    Args:
        reports: List of ScenarioReport from run_scenarios.

    Returns:
        Formatted string suitable for printing.
    """
    lines = []

    for report in reports:
        lines.append("=" * 60)
        lines.append(f"SCENARIO: {report.scenario_name}")
        lines.append("=" * 60)
        lines.append(f"Result: {'PASS' if report.passed else 'FAIL'}")
        expected = "success" if report.expected_success else "failure"
        actual = "success" if report.success else "failure"
        lines.append(f"  Outcome: {actual} (expected {expected})")
        lines.append(f"  Elapsed: {report.elapsed_ms:.0f}ms")

        attempts = f"  Attempts: {report.attempts}"
        if report.expected_attempts is not None:
            attempts += f" (expected {report.expected_attempts})"
        lines.append(attempts)
        for code, count in sorted(report.retries_by_code.items()):
            lines.append(f"    retried after {code}: {count}")

        lines.append(
            f"  Connections: admitted={report.connections_admitted} "
            f"rejected={report.connections_rejected} "
            f"client={report.client_connections}"
        )
        if report.extra_connections:
            lines.append(
                f"  Extra connections refused: "
                f"{report.extra_connections_refused}/{report.extra_connections}"
            )
        if report.delays_applied:
            applied = ", ".join(f"{d}ms" for d in report.delays_applied)
            lines.append(f"  Delays applied: {applied}")
        if report.error:
            lines.append(f"  Error: {report.error['message']}")
        lines.append("")

    return "\n".join(lines)
