"""
Provisioning with rollback.

This package sequences the creation of external resources and tears them
down again when something goes wrong:
- Ordered, fail-fast execution of caller-supplied steps
- Bounded readiness polling per resource kind
- An append-only ledger of everything created in the run
- Reverse-order, best-effort rollback that reports what it could not delete

Usage:
    from cloudseq.provisioning import LoggingObserver, PollPolicy, Ref, Step, WorkflowEngine

    steps = [
        Step.from_provider("vpc", vpc_provider, params={"cidr": "10.0.0.0/16"},
                           policy=vpc_policy),
        Step.from_provider("subnet", subnet_provider,
                           params={"vpc_id": Ref("vpc")}, policy=subnet_policy),
    ]

    engine = WorkflowEngine()
    result = engine.run(steps, LoggingObserver())

    if result.needs_manual_cleanup:
        for error in result.rollback_errors:
            print(error)
"""

from cloudseq.provisioning.state import (
    ProvisioningLedger,
    ResourceHandle,
    RunState,
    WorkflowResult,
)
from cloudseq.provisioning.steps import (
    PollPolicy,
    Ref,
    ResourceProvider,
    Step,
    StepGroup,
)
from cloudseq.provisioning.poller import PollOutcome, PollResult, Poller
from cloudseq.provisioning.observer import (
    CompositeObserver,
    LoggingObserver,
    ProgressObserver,
    RecordingObserver,
)
from cloudseq.provisioning.rollback import RollbackExecutor, RollbackReport
from cloudseq.provisioning.executor import (
    WorkflowEngine,
    WorkflowRun,
    rollback_on_failure,
)
from cloudseq.provisioning.report import format_summary, write_report

__all__ = [
    "ProvisioningLedger",
    "ResourceHandle",
    "RunState",
    "WorkflowResult",
    "PollPolicy",
    "Ref",
    "ResourceProvider",
    "Step",
    "StepGroup",
    "PollOutcome",
    "PollResult",
    "Poller",
    "CompositeObserver",
    "LoggingObserver",
    "ProgressObserver",
    "RecordingObserver",
    "RollbackExecutor",
    "RollbackReport",
    "WorkflowEngine",
    "WorkflowRun",
    "rollback_on_failure",
    "format_summary",
    "write_report",
]
