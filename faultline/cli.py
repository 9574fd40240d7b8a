from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import sys
from typing import List, Optional, Sequence

from dotenv import load_dotenv
from pydantic import ValidationError

from faultline.config import get_settings
from faultline.exceptions import FaultlineConfigError, FaultlineError
from faultline.harness import RetryHarness, format_report, standard_scenarios
from faultline.models import ClientConfig


def _parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    settings = get_settings()
    parser = argparse.ArgumentParser(
        description="Check a client's retry and backoff under timed link delays."
    )
    parser.add_argument(
        "--scenario",
        action="append",
        help="Scenario name to run (repeatable). Default: all standard scenarios.",
    )
    parser.add_argument(
        "--list", action="store_true", help="List scenario names and exit."
    )
    parser.add_argument(
        "--socket-timeout-ms",
        type=int,
        default=settings.socket_timeout_ms,
        help="Per-attempt request timeout.",
    )
    parser.add_argument(
        "--retry-backoff-ms",
        type=int,
        default=settings.retry_backoff_ms,
        help="Wait between attempts.",
    )
    parser.add_argument(
        "--socket-max-fails",
        type=int,
        default=settings.socket_max_fails,
        help="Consecutive timeouts before reconnecting (0 disables).",
    )
    parser.add_argument(
        "--delay-ms", type=int, default=settings.delay_ms, help="Injected delay."
    )
    parser.add_argument(
        "--margin-ms",
        type=float,
        default=100.0,
        help="Slack around the third attempt.",
    )
    parser.add_argument("--json", action="store_true", help="Emit JSON reports.")
    parser.add_argument("--log-level", default=settings.log_level)
    return parser.parse_args(argv)


def _client_config(args: argparse.Namespace) -> ClientConfig:
    try:
        base = get_settings().client_config()
        return ClientConfig.model_validate(
            {
                **base.model_dump(),
                "socket_timeout_ms": args.socket_timeout_ms,
                "retry_backoff_ms": args.retry_backoff_ms,
                "socket_max_fails": args.socket_max_fails,
            }
        )
    except ValidationError as e:
        raise FaultlineConfigError(
            f"Invalid client configuration: {e}",
            code="invalid_config",
            details={"errors": e.errors(include_url=False)},
        ) from e


def main(argv: Optional[Sequence[str]] = None) -> int:
    load_dotenv()
    args = _parse_args(argv)
    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    try:
        config = _client_config(args)
        scenarios = standard_scenarios(
            config, delay_ms=args.delay_ms, margin_ms=args.margin_ms
        )
        if args.list:
            for scenario in scenarios:
                print(scenario.name)
            return 0
        if args.scenario:
            known = {s.name for s in scenarios}
            unknown = [name for name in args.scenario if name not in known]
            if unknown:
                raise FaultlineConfigError(
                    f"Unknown scenario(s): {', '.join(unknown)}",
                    code="unknown_scenario",
                    details={"unknown": unknown},
                )
            scenarios = [s for s in scenarios if s.name in args.scenario]

        harness = RetryHarness(config)
        reports = [harness.run(scenario) for scenario in scenarios]
    except FaultlineError as exc:
        print(str(exc), file=sys.stderr)
        return 1

    if args.json:
        payload: List[dict] = []
        for report in reports:
            item = dataclasses.asdict(report)
            item["passed"] = report.passed
            payload.append(item)
        print(json.dumps(payload, ensure_ascii=True))
    else:
        print(format_report(reports))
    return 0 if all(report.passed for report in reports) else 1


if __name__ == "__main__":
    raise SystemExit(main())
