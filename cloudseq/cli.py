#!/usr/bin/env python3
"""
cloudseq command line.

Runs the VPC walkthrough against the in-memory simulated cloud, with
failure injection, so the provisioning and rollback behaviour can be
watched end to end without an AWS account.

Usage:
    cloudseq demo
    cloudseq demo --fail-at nat-gateway --fail-mode poll
    cloudseq demo --cleanup never --report reports/run.json
    cloudseq policies

Exit codes:
    0  provisioning succeeded (and any requested cleanup was complete)
    1  provisioning failed and everything was rolled back
    2  resources were left behind and need manual cleanup
"""

import argparse
import sys
import threading
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_MANUAL_CLEANUP = 2


def build_parser() -> argparse.ArgumentParser:
    from cloudseq.demo.fixtures import VPC_TUTORIAL_STEP_NAMES

    parser = argparse.ArgumentParser(
        prog="cloudseq",
        description="Provision resources in order and roll them back on failure.",
    )
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    parser.add_argument("--log-format", choices=["json", "text"], default=None,
                        help="Override LOG_FORMAT")
    parser.add_argument("--log-file", default=None, help="Also write logs to this file")

    sub = parser.add_subparsers(dest="command", required=True)

    demo = sub.add_parser("demo", help="Run the VPC walkthrough against the simulator")
    demo.add_argument("--fail-at", choices=VPC_TUTORIAL_STEP_NAMES, default=None,
                      help="Step whose resource should fail")
    demo.add_argument("--fail-mode", choices=["create", "poll", "timeout"], default="create",
                      help="How the --fail-at step fails")
    demo.add_argument("--fail-preflight", action="store_true",
                      help="Fail the credential check before anything is created")
    demo.add_argument("--blocked-deletes", type=int, default=0,
                      help="DependencyViolation responses before the security group deletes")
    demo.add_argument("--cleanup", choices=["ask", "always", "never"], default="ask",
                      help="Teardown after a successful run")
    demo.add_argument("--interval", type=float, default=0.2,
                      help="Seconds between readiness checks")
    demo.add_argument("--report", default=None, help="Write a JSON run report here")

    sub.add_parser("policies", help="List configured readiness poll policies")

    return parser


def _check_demo_args(parser: argparse.ArgumentParser, args: argparse.Namespace) -> None:
    """Reject failure modes the chosen step cannot exhibit."""
    from cloudseq.demo.fixtures import VPC_TUTORIAL

    if not args.fail_at or args.fail_mode == "create":
        return
    waits = next(w for name, *_, w in VPC_TUTORIAL if name == args.fail_at)
    if not waits:
        parser.error(
            f"--fail-mode {args.fail_mode} needs a step that waits for readiness; "
            f"{args.fail_at} does not (use --fail-mode create)"
        )


def _failure_plan(args: argparse.Namespace):
    from cloudseq.demo.fixtures import VPC_TUTORIAL
    from cloudseq.demo.simulator import FailurePlan

    plan = FailurePlan()
    if args.blocked_deletes:
        plan.blocked_deletes["security-group"] = args.blocked_deletes
    if args.fail_at:
        kind = next(k for name, k, *_ in VPC_TUTORIAL if name == args.fail_at)
        if args.fail_mode == "create":
            plan.fail_create.add(kind)
        elif args.fail_mode == "poll":
            plan.fail_ready.add(kind)
        else:
            plan.never_ready.add(kind)
    return plan


def _cleanup_decider(mode: str):
    from cloudseq.provisioning.session import always_cleanup, interactive_cleanup

    if mode == "always":
        return always_cleanup
    if mode == "never":
        return None
    return interactive_cleanup()


def run_demo(args: argparse.Namespace) -> int:
    from config.settings import get_settings
    from cloudseq.demo.fixtures import vpc_tutorial_plan
    from cloudseq.demo.simulator import SimulatedCloud
    from cloudseq.provisioning import (
        CompositeObserver,
        LoggingObserver,
        RecordingObserver,
        RollbackExecutor,
        WorkflowEngine,
        format_summary,
        write_report,
    )
    from cloudseq.provisioning.session import cancel_on_interrupt

    settings = get_settings()
    cloud = SimulatedCloud(_failure_plan(args))
    plan = vpc_tutorial_plan(cloud, interval_seconds=args.interval)

    def verify_credentials():
        if args.fail_preflight:
            raise PermissionError("Unable to verify identity: ExpiredToken")

    recorder = RecordingObserver()
    observer = CompositeObserver(LoggingObserver(), recorder)
    engine = WorkflowEngine(
        RollbackExecutor(
            delete_retries=settings.rollback.delete_retries,
            delete_retry_interval=min(settings.rollback.delete_retry_interval, args.interval),
        )
    )

    with cancel_on_interrupt(threading.Event()) as cancel_event:
        result = engine.run(
            plan,
            observer,
            cancel_event=cancel_event,
            cleanup=_cleanup_decider(args.cleanup),
            preflight=[verify_credentials],
        )

    print()
    print(format_summary(result))

    report_path = args.report
    if not report_path and settings.report_dir:
        report_path = str(Path(settings.report_dir) / f"{result.correlation_id}.json")
    if report_path:
        write_report(result, report_path, events=recorder.to_list())

    if result.needs_manual_cleanup or (not result.succeeded and not result.rollback_performed):
        return EXIT_MANUAL_CLEANUP
    if not result.succeeded:
        return EXIT_FAILED
    return EXIT_OK


def list_policies(args: argparse.Namespace) -> int:
    from config.poll_policies import get_policies

    policies = get_policies().all_policies()
    if not policies:
        print("No poll policies configured")
        return EXIT_FAILED

    width = max(len(kind) for kind in policies)
    for kind in sorted(policies):
        policy = policies[kind]
        print(
            f"{kind:<{width}}  attempts={policy.max_attempts:<3} "
            f"interval={policy.interval_seconds:g}s  "
            f"max_wait={policy.max_wait_seconds:g}s  "
            f"ready={','.join(sorted(policy.success_states))}"
        )
    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv()

    from cloudseq.logging_config import configure_logging

    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command == "demo":
        _check_demo_args(parser, args)
    configure_logging(args.log_level, args.log_format, args.log_file)

    if args.command == "demo":
        return run_demo(args)
    if args.command == "policies":
        return list_policies(args)
    parser.error(f"Unknown command: {args.command}")
    return EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())
