"""
Provisioning execution.

Runs an ordered plan of steps with fail-fast semantics, records every
created resource in the run's ledger before waiting for its readiness, and
hands the ledger to the rollback executor on failure or on request.
"""

import logging
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from cloudseq.errors import (
    CreationError,
    ProvisioningError,
    ReadinessFailure,
    ReadinessTimeout,
    UnexpectedStepError,
    WorkflowCancelled,
)
from cloudseq.provisioning.observer import ProgressObserver, safe_notify
from cloudseq.provisioning.poller import PollOutcome, Poller
from cloudseq.provisioning.rollback import RollbackExecutor
from cloudseq.provisioning.state import (
    ProvisioningLedger,
    ResourceHandle,
    RunState,
    RunStateMachine,
    WorkflowResult,
)
from cloudseq.provisioning.steps import PlanItem, Step, StepGroup, flatten, validate_plan
from cloudseq.timestamps import isonow

logger = logging.getLogger(__name__)

# cleanup(result) -> True to tear down what the run created
CleanupDecider = Callable[[WorkflowResult], bool]


def rollback_on_failure(result: WorkflowResult) -> bool:
    """Default cleanup decision: tear down only failed runs."""
    return not result.succeeded


class WorkflowRun:
    """
    State of a single provisioning run.

    Owns the run's ledger, creation counter, state machine and cancellation
    event. Nothing is shared between runs.

    Usage:
        run = WorkflowRun(rollback_executor, observer)
        result = run.provision(steps)
        if not result.succeeded or user_wants_cleanup():
            result = run.rollback()
    """

    def __init__(
        self,
        rollback_executor: RollbackExecutor,
        observer: Optional[ProgressObserver] = None,
        cancel_event: Optional[threading.Event] = None,
        correlation_id: Optional[str] = None,
    ):
        self.correlation_id = correlation_id or f"run-{uuid.uuid4().hex[:8]}"
        self.observer = observer or ProgressObserver()
        self.cancel_event = cancel_event or threading.Event()
        self.rollback_executor = rollback_executor

        self.ledger = ProvisioningLedger(self.correlation_id)
        self._machine = RunStateMachine(self.correlation_id)
        self._poller = Poller(self.cancel_event)
        self._next_index = 0
        self._index_lock = threading.Lock()

        self._current_step: Optional[Step] = None
        self._completed = 0
        self._failed_step: Optional[Step] = None
        self._failure: Optional[ProvisioningError] = None
        self._warnings: List[ProvisioningError] = []
        self._started_at = ""
        self._provisioned: Optional[WorkflowResult] = None

    @property
    def state(self) -> RunState:
        return self._machine.state

    @property
    def log_prefix(self) -> str:
        return f"[{self.correlation_id}]"

    # =========================================================================
    # Provisioning
    # =========================================================================

    def provision(
        self,
        plan: Iterable[PlanItem],
        preflight: Sequence[Callable[[], Any]] = (),
    ) -> WorkflowResult:
        """
        Execute the plan in order until it completes or a fatal step fails.

        Args:
            plan: Steps and step groups, in dependency order
            preflight: Callables run before any create (credential checks)

        Returns:
            WorkflowResult in state SUCCEEDED or FAILING
        """
        items = validate_plan(plan)
        self._machine.transition(RunState.PROVISIONING)
        self._started_at = isonow()
        safe_notify(self.observer, "on_run_start", self.correlation_id, len(flatten(items)))

        try:
            self._run_preflight(preflight)
            position = 0
            for item in items:
                if isinstance(item, StepGroup):
                    self._run_group(item, position)
                    position += len(item)
                else:
                    position += 1
                    self._run_step(item, position)
        except ProvisioningError as e:
            self._fail(e)
        except Exception as e:
            logger.exception(f"{self.log_prefix} Unexpected error during provisioning")
            self._fail(UnexpectedStepError(self._current_step, e))

        if self._failure is None:
            self._machine.transition(RunState.SUCCEEDED)
        else:
            self._machine.transition(RunState.FAILING)

        self._provisioned = self._result()
        return self._provisioned

    def _fail(self, error: ProvisioningError) -> None:
        self._failure = error
        self._failed_step = error.step
        safe_notify(self.observer, "on_step_failure", error.step, error, True)
        logger.error(f"{self.log_prefix} Provisioning failed: {error}")

    def _run_preflight(self, preflight: Sequence[Callable[[], Any]]) -> None:
        for check in preflight:
            try:
                check()
            except Exception as e:
                raise CreationError(None, e, message=f"Preflight check failed: {e}")

    def _check_cancelled(self, step: Step) -> None:
        if self.cancel_event.is_set():
            raise WorkflowCancelled(step)

    def _allocate_index(self) -> int:
        with self._index_lock:
            index = self._next_index
            self._next_index += 1
            return index

    def _run_step(self, step: Step, position: int) -> None:
        """Create one step's resource, record it and wait for readiness."""
        self._current_step = step
        self._check_cancelled(step)
        safe_notify(self.observer, "on_step_start", step, position)

        try:
            handle = self._create(step, self._allocate_index(), self.ledger.resource_ids())
            self.ledger.append(handle)
            if step.depends_on_readiness:
                self._await_ready(step, handle)
        except ProvisioningError as e:
            if step.fatal or isinstance(e, WorkflowCancelled):
                raise
            self._warn(step, e)
            return
        except Exception as e:
            raise UnexpectedStepError(step, e) from e

        self._completed += 1
        safe_notify(self.observer, "on_step_success", step, handle)

    def _create(self, step: Step, index: int, resource_ids: Dict[str, str]) -> ResourceHandle:
        """Invoke create() and build the handle. No ledger side effects."""
        try:
            resource_id = step.invoke_create(resource_ids)
        except Exception as e:
            raise CreationError(step, e)

        if not resource_id:
            raise CreationError(step, message=f"Failed to create {step.kind}: provider returned no identifier")

        return ResourceHandle(
            resource_id=str(resource_id),
            kind=step.kind,
            creation_index=index,
            depends_on_readiness=step.depends_on_readiness,
            name=step.name,
            step=step,
        )

    def _await_ready(self, step: Step, handle: ResourceHandle) -> None:
        """Poll until ready; raise the matching readiness error otherwise."""

        def on_attempt(attempt, status, error):
            safe_notify(self.observer, "on_poll_attempt", step, handle, attempt, status, error)

        result = self._poller.wait(
            lambda: step.poll(handle.resource_id), step.policy, on_attempt=on_attempt
        )

        if result.outcome is PollOutcome.READY:
            return
        if result.outcome is PollOutcome.CANCELLED:
            raise WorkflowCancelled(step)
        if result.outcome is PollOutcome.TIMED_OUT:
            raise ReadinessTimeout(step, handle, result.attempts, result.status)
        raise ReadinessFailure(step, handle, status=result.status, last_error=result.last_error)

    def _run_group(self, group: StepGroup, position: int) -> None:
        """
        Run a group of independent steps concurrently.

        Indexes are allocated in declaration order before dispatch; handles
        are appended in that same order after all creates have returned.
        Created siblings of a fatally failed create are not awaited; they get
        on_step_abandoned and are left for rollback.
        """
        for step in group:
            self._current_step = step
            self._check_cancelled(step)

        indexed: List[Tuple[Step, int]] = []
        for offset, step in enumerate(group, start=1):
            safe_notify(self.observer, "on_step_start", step, position + offset)
            indexed.append((step, self._allocate_index()))

        ids_before = self.ledger.resource_ids()

        def create(item: Tuple[Step, int]):
            step, index = item
            try:
                return self._create(step, index, ids_before), None
            except ProvisioningError as e:
                return None, e
            except Exception as e:
                return None, UnexpectedStepError(step, e)

        with ThreadPoolExecutor(max_workers=group.max_workers) as pool:
            created = list(pool.map(create, indexed))

        ready_candidates: List[Tuple[Step, ResourceHandle]] = []
        fatal_error: Optional[ProvisioningError] = None
        for (step, _), (handle, error) in zip(indexed, created):
            if handle is not None:
                self.ledger.append(handle)
                ready_candidates.append((step, handle))
            elif self._is_fatal(step, error):
                fatal_error = self._first_fatal(fatal_error, step, error)
            else:
                self._warn(step, error)

        if fatal_error is not None:
            reason = f"{fatal_error.step.name} failed; left for rollback"
            for step, handle in ready_candidates:
                safe_notify(self.observer, "on_step_abandoned", step, handle, reason)
            raise fatal_error

        def await_ready(item: Tuple[Step, ResourceHandle]):
            step, handle = item
            if not step.depends_on_readiness:
                return None
            try:
                self._await_ready(step, handle)
                return None
            except ProvisioningError as e:
                return e
            except Exception as e:
                return UnexpectedStepError(step, e)

        with ThreadPoolExecutor(max_workers=group.max_workers) as pool:
            outcomes = list(pool.map(await_ready, ready_candidates))

        for (step, handle), error in zip(ready_candidates, outcomes):
            if error is None:
                self._completed += 1
                safe_notify(self.observer, "on_step_success", step, handle)
            elif self._is_fatal(step, error):
                fatal_error = self._first_fatal(fatal_error, step, error)
            else:
                self._warn(step, error)

        if fatal_error is not None:
            raise fatal_error

    @staticmethod
    def _is_fatal(step: Step, error: ProvisioningError) -> bool:
        return step.fatal or isinstance(error, (WorkflowCancelled, UnexpectedStepError))

    def _first_fatal(
        self,
        current: Optional[ProvisioningError],
        step: Step,
        error: ProvisioningError,
    ) -> ProvisioningError:
        """Keep the first fatal error; later ones are reported as they occur."""
        if current is None:
            return error
        logger.error(f"{self.log_prefix} {step.name} also failed: {error}")
        safe_notify(self.observer, "on_step_failure", step, error, True)
        return current

    def _warn(self, step: Step, error: ProvisioningError) -> None:
        self._warnings.append(error)
        logger.warning(f"{self.log_prefix} Non-fatal step {step.name} failed: {error}")
        safe_notify(self.observer, "on_step_failure", step, error, False)

    # =========================================================================
    # Rollback
    # =========================================================================

    def rollback(self) -> WorkflowResult:
        """
        Tear down everything the run created, newest first.

        Legal after a failed run, or after a successful one when the caller
        explicitly asks for cleanup.

        Raises:
            InvalidStateTransition: provision() has not finished
        """
        self._machine.transition(RunState.ROLLING_BACK)
        report = self.rollback_executor.execute(
            self.ledger, correlation_id=self.correlation_id, observer=self.observer
        )

        if report.errors:
            self._machine.transition(RunState.ROLLED_BACK_WITH_ERRORS)
            logger.error(
                f"{self.log_prefix} Rollback left {len(report.errors)} resources behind"
            )
        else:
            self._machine.transition(RunState.ROLLED_BACK)
            logger.info(f"{self.log_prefix} Rollback complete")

        result = self._result(
            rollback_performed=True,
            rollback_errors=tuple(report.errors),
            rolled_back=tuple(report.deleted),
        )
        safe_notify(self.observer, "on_run_end", result)
        return result

    def _result(self, **rollback_fields: Any) -> WorkflowResult:
        snapshot = (
            self._provisioned.ledger_snapshot if self._provisioned is not None
            else self.ledger.snapshot()
        )
        return WorkflowResult(
            completed_steps=self._completed,
            failed_step=self._failed_step,
            ledger_snapshot=snapshot,
            state=self.state,
            failure=self._failure,
            warnings=tuple(self._warnings),
            correlation_id=self.correlation_id,
            started_at=self._started_at,
            finished_at=isonow(),
            **rollback_fields,
        )


class WorkflowEngine:
    """
    Executes provisioning plans.

    Each call to run() builds a fresh WorkflowRun; the engine itself holds
    no per-run state and can be reused.

    Usage:
        engine = WorkflowEngine()
        result = engine.run(steps, LoggingObserver())
        if result.needs_manual_cleanup:
            print(format_summary(result))
    """

    def __init__(self, rollback_executor: Optional[RollbackExecutor] = None, settings=None):
        self.rollback_executor = rollback_executor or RollbackExecutor(settings=settings)

    def start(
        self,
        observer: Optional[ProgressObserver] = None,
        cancel_event: Optional[threading.Event] = None,
        correlation_id: Optional[str] = None,
    ) -> WorkflowRun:
        """Create a run without executing it (for two-phase callers)."""
        return WorkflowRun(
            self.rollback_executor,
            observer=observer,
            cancel_event=cancel_event,
            correlation_id=correlation_id,
        )

    def run(
        self,
        steps: Iterable[PlanItem],
        observer: Optional[ProgressObserver] = None,
        *,
        cancel_event: Optional[threading.Event] = None,
        cleanup: Optional[CleanupDecider] = None,
        preflight: Sequence[Callable[[], Any]] = (),
        correlation_id: Optional[str] = None,
    ) -> WorkflowResult:
        """
        Provision the plan, then roll back if the cleanup decider says so.

        Args:
            steps: Steps and step groups, in dependency order
            observer: Receives progress events
            cancel_event: Set it to stop provisioning and roll back
            cleanup: Decides on teardown (default: only after failure)
            preflight: Callables run before any resource is created
            correlation_id: Run identifier for logs (generated if omitted)

        Returns:
            Final WorkflowResult
        """
        run = self.start(observer, cancel_event, correlation_id)
        result = run.provision(steps, preflight=preflight)

        decide = cleanup or rollback_on_failure
        try:
            wants_cleanup = decide(result)
        except Exception as e:
            # A broken decider still tears down failed runs
            logger.error(f"{run.log_prefix} Cleanup decision failed: {e}")
            wants_cleanup = not result.succeeded

        if wants_cleanup:
            return run.rollback()

        if not result.succeeded:
            logger.warning(
                f"{run.log_prefix} Rollback skipped by caller; "
                f"{len(result.ledger_snapshot)} resources left in place"
            )
        safe_notify(run.observer, "on_run_end", result)
        return result
