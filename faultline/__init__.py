"""
faultline - Check retry and backoff logic against a precisely degraded link.

The harness pins the client under test to a single connection and changes
that connection's latency at chosen instants:

    from faultline import ControlState, ConnectionGate, DelayScheduler

    state = ControlState()
    gate = ConnectionGate(state)              # install as connect callback
    with DelayScheduler(state) as scheduler:
        state.wait_for_connection(10000)
        scheduler.schedule_delay(0, 3000)     # active when this returns
        scheduler.schedule_delay(11900, 0)    # cleared ~11.9s from now
        ...                                   # run the operation under test

Ready-made scenarios against the bundled metadata client:

    from faultline import RetryHarness, standard_scenarios, format_report
"""

from faultline.control import ControlState  # noqa: F401
from faultline.gate import ConnectionGate  # noqa: F401
from faultline.link import LinkControl  # noqa: F401
from faultline.scheduler import DelayScheduler, schedule_delay  # noqa: F401
from faultline.transport import FaultTransport  # noqa: F401
from faultline.broker import MetadataBroker  # noqa: F401
from faultline.client import MetadataClient  # noqa: F401
from faultline.models import ClientConfig, Metadata  # noqa: F401
from faultline.retry import (  # noqa: F401
    ErrorCode,
    RetryTracker,
    connectivity_errors_nonfatal,
    retry_tracking_context,
)
from faultline.harness import (  # noqa: F401
    RetryHarness,
    RetryScenario,
    ScenarioReport,
    format_report,
    run_scenarios,
    standard_scenarios,
)
from faultline.exceptions import (
    FaultlineError,
    FaultlineConfigError,
    FaultlineSetupError,
    FaultlineTimeoutError,
    AckTimeoutError,
    MetadataError,
)

__all__ = [
    "ControlState",
    "ConnectionGate",
    "LinkControl",
    "DelayScheduler",
    "schedule_delay",
    "FaultTransport",
    "MetadataBroker",
    "MetadataClient",
    "ClientConfig",
    "Metadata",
    "ErrorCode",
    "RetryTracker",
    "connectivity_errors_nonfatal",
    "retry_tracking_context",
    "RetryHarness",
    "RetryScenario",
    "ScenarioReport",
    "format_report",
    "run_scenarios",
    "standard_scenarios",
    "FaultlineError",
    "FaultlineConfigError",
    "FaultlineSetupError",
    "FaultlineTimeoutError",
    "AckTimeoutError",
    "MetadataError",
]
