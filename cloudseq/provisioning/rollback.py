"""
Best-effort teardown of a run's ledger.

Deletes every recorded resource in reverse creation order. A failed
deletion is recorded and the walk continues; execute() never raises.
"""

import logging
import threading
from dataclasses import dataclass, field, replace
from typing import List, Optional

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_fixed,
)

from cloudseq.errors import DeletionError, ResourceNotFound
from cloudseq.provisioning.observer import ProgressObserver, safe_notify
from cloudseq.provisioning.poller import PollOutcome, Poller
from cloudseq.provisioning.state import ProvisioningLedger, ResourceHandle

logger = logging.getLogger(__name__)

# Status reported while confirming deletion once the provider raises ResourceNotFound
NOT_FOUND = "not-found"


@dataclass
class RollbackReport:
    """What a teardown did."""

    deleted: List[ResourceHandle] = field(default_factory=list)
    errors: List[DeletionError] = field(default_factory=list)

    @property
    def clean(self) -> bool:
        return not self.errors


class RollbackExecutor:
    """
    Executes rollback of a provisioning ledger.

    Retries a deletion only when the originating step classifies the error
    as retryable (by default RetryableDeletionError, e.g. a security group
    that still has dependents). Other errors are recorded after one attempt.

    Usage:
        executor = RollbackExecutor(observer, delete_retries=5, delete_retry_interval=30)
        report = executor.execute(ledger, correlation_id="run-1")
        for error in report.errors:
            print(f"Delete manually: {error.handle.resource_id}")
    """

    def __init__(
        self,
        observer: Optional[ProgressObserver] = None,
        delete_retries: Optional[int] = None,
        delete_retry_interval: Optional[float] = None,
        settings=None,
    ):
        if delete_retries is None or delete_retry_interval is None:
            if settings is None:
                from config.settings import get_settings

                settings = get_settings()
            if delete_retries is None:
                delete_retries = settings.rollback.delete_retries
            if delete_retry_interval is None:
                delete_retry_interval = settings.rollback.delete_retry_interval

        if delete_retries < 0:
            raise ValueError("delete_retries must be >= 0")
        if delete_retry_interval < 0:
            raise ValueError("delete_retry_interval must be >= 0")

        self.observer = observer
        self.delete_retries = delete_retries
        self.delete_retry_interval = delete_retry_interval

    def execute(
        self,
        ledger: ProvisioningLedger,
        correlation_id: str = "",
        observer: Optional[ProgressObserver] = None,
    ) -> RollbackReport:
        """
        Drain the ledger and delete every resource, newest first.

        Args:
            ledger: Ledger to drain
            correlation_id: For log tracing
            observer: Overrides the executor's observer for this call

        Returns:
            RollbackReport with deleted handles and per-resource errors
        """
        observer = observer or self.observer
        log_prefix = f"[{correlation_id}]"
        report = RollbackReport()

        handles = ledger.drain_reverse()
        safe_notify(observer, "on_rollback_start", len(handles))

        if not handles:
            logger.info(f"{log_prefix} No rollback actions to execute")
            return report

        logger.warning(f"{log_prefix} Executing {len(handles)} rollback actions")

        for handle in handles:
            error: Optional[DeletionError] = None
            try:
                self._delete(handle, log_prefix)
                report.deleted.append(handle)
            except DeletionError as e:
                error = e
            except Exception as e:
                error = DeletionError(handle, e)

            if error is not None:
                report.errors.append(error)
                logger.error(f"{log_prefix} Rollback action failed: {error}")

            safe_notify(observer, "on_rollback_item", handle, error)

        return report

    def _delete(self, handle: ResourceHandle, log_prefix: str) -> None:
        """Delete one resource, retrying retryable errors, then confirm."""
        step = handle.step
        if step is None:
            raise DeletionError(handle, None, attempts=0,
                                message=f"No delete operation recorded for {handle.kind} {handle.resource_id}")

        logger.info(f"{log_prefix} Rollback: delete {handle.kind} {handle.resource_id}")

        def _log_retry(retry_state: RetryCallState) -> None:
            logger.warning(
                f"{log_prefix} {handle.kind} {handle.resource_id} still has dependencies, "
                f"retrying in {self.delete_retry_interval}s "
                f"(attempt {retry_state.attempt_number} of {self.delete_retries})"
            )

        retrying = Retrying(
            stop=stop_after_attempt(self.delete_retries + 1),
            wait=wait_fixed(self.delete_retry_interval),
            retry=retry_if_exception(step.is_retryable_deletion),
            before_sleep=_log_retry,
            reraise=True,
        )

        attempts = 0
        try:
            for attempt in retrying:
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    step.delete(handle.resource_id)
        except Exception as e:
            raise DeletionError(handle, e, attempts=attempts)

        if step.deletion_policy is not None:
            self._confirm_deleted(handle, attempts)

    def _confirm_deleted(self, handle: ResourceHandle, attempts: int) -> None:
        """
        Wait for the provider to report the resource as gone.

        A success state from poll() confirms the deletion, and so does a
        ResourceNotFound raised by it. Any other exception is a failed check.
        """
        step = handle.step
        policy = replace(
            step.deletion_policy,
            success_states=step.deletion_policy.success_states | {NOT_FOUND},
            failure_states=step.deletion_policy.failure_states - {NOT_FOUND},
        )

        def check():
            try:
                return step.poll(handle.resource_id)
            except ResourceNotFound:
                return NOT_FOUND

        # Teardown must finish even when the run was cancelled
        result = Poller(threading.Event()).wait(check, policy)
        if result.outcome is not PollOutcome.READY:
            raise DeletionError(
                handle,
                result.last_error,
                attempts=attempts,
                message=(
                    f"Deletion of {handle.kind} {handle.resource_id} was not confirmed: "
                    f"{result.outcome.value} (last status: {result.status})"
                ),
            )
