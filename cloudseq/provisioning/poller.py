"""
Bounded readiness polling.

Replaces the per-script ``while [ $attempt -le $max_attempts ]; do ...;
sleep 10; done`` loops with one loop driven by a PollPolicy.
"""

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from cloudseq.provisioning.steps import PollPolicy

logger = logging.getLogger(__name__)


class PollOutcome(Enum):
    """Terminal results of a readiness wait."""

    READY = "ready"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class PollResult:
    """Result of Poller.wait()."""

    outcome: PollOutcome
    status: Optional[str]
    attempts: int
    last_error: Optional[BaseException] = None
    elapsed: float = 0.0

    @property
    def ready(self) -> bool:
        return self.outcome is PollOutcome.READY


# on_attempt(attempt_number, status, error)
AttemptCallback = Callable[[int, Optional[str], Optional[BaseException]], None]


class Poller:
    """
    Waits for a status check to reach a terminal state.

    Sleeps through threading.Event.wait(), so a set cancellation event ends
    the wait immediately instead of after the current interval.

    Usage:
        poller = Poller(cancel_event)
        result = poller.wait(lambda: provider.poll_status(cluster_id), policy)
        if result.outcome is PollOutcome.READY:
            ...
    """

    def __init__(self, cancel_event: Optional[threading.Event] = None):
        self._cancel_event = cancel_event or threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def wait(
        self,
        check: Callable[[], str],
        policy: PollPolicy,
        on_attempt: Optional[AttemptCallback] = None,
    ) -> PollResult:
        """
        Poll until a success or failure state, or until attempts run out.

        A check that raises counts as an attempt and as a consecutive check
        error; more than policy.max_check_errors of those in a row fails the
        wait. A check that returns resets the consecutive count.

        Args:
            check: Returns the resource's current status
            policy: States and timing
            on_attempt: Called after every check

        Returns:
            PollResult with the outcome, last status and attempts used
        """
        started = time.monotonic()
        status: Optional[str] = None
        last_error: Optional[BaseException] = None
        consecutive_errors = 0
        attempts = 0

        def result(outcome: PollOutcome) -> PollResult:
            return PollResult(
                outcome=outcome,
                status=status,
                attempts=attempts,
                last_error=last_error,
                elapsed=time.monotonic() - started,
            )

        while attempts < policy.max_attempts:
            if self.cancelled:
                return result(PollOutcome.CANCELLED)

            attempts += 1
            error: Optional[BaseException] = None
            ready = failed = False
            try:
                status = check()
                ready = status in policy.success_states
                failed = status in policy.failure_states
                consecutive_errors = 0
            except Exception as e:
                # Includes statuses that cannot be classified (e.g. raw dicts)
                error = e
                last_error = e
                status = None
                consecutive_errors += 1

            self._notify(on_attempt, attempts, status, error)

            if error is not None:
                logger.debug(
                    f"Status check {attempts}/{policy.max_attempts} failed "
                    f"({consecutive_errors} in a row): {error}"
                )
                if consecutive_errors > policy.max_check_errors:
                    return result(PollOutcome.FAILED)
            elif ready:
                return result(PollOutcome.READY)
            elif failed:
                return result(PollOutcome.FAILED)

            if attempts < policy.max_attempts:
                if self._cancel_event.wait(policy.interval_seconds):
                    return result(PollOutcome.CANCELLED)

        return result(PollOutcome.TIMED_OUT)

    @staticmethod
    def _notify(
        callback: Optional[AttemptCallback],
        attempt: int,
        status: Optional[str],
        error: Optional[BaseException],
    ) -> None:
        if callback is None:
            return
        try:
            callback(attempt, status, error)
        except Exception as e:
            logger.warning(f"Poll attempt callback failed: {e}")
