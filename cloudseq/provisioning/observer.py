"""
Progress observers.

The engine and rollback executor perform no console or file I/O of their
own. Every event is pushed to a ProgressObserver; the LoggingObserver turns
them into log records, the RecordingObserver keeps them for inspection.

Usage:
    from cloudseq.provisioning.observer import LoggingObserver, RecordingObserver

    recorder = RecordingObserver()
    observer = CompositeObserver(LoggingObserver(correlation_id="run-1"), recorder)
    result = engine.run(steps, observer)
    print([e.kind for e in recorder.events])
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from cloudseq.timestamps import isonow

logger = logging.getLogger(__name__)


class ProgressObserver:
    """Receives provisioning progress events. All hooks default to no-ops."""

    def on_run_start(self, correlation_id: str, total_steps: int) -> None:
        pass

    def on_step_start(self, step, position: int) -> None:
        pass

    def on_step_success(self, step, handle) -> None:
        pass

    def on_step_failure(self, step, error: BaseException, fatal: bool) -> None:
        pass

    def on_step_abandoned(self, step, handle, reason: str) -> None:
        """A created resource was left unawaited because a sibling failed."""
        pass

    def on_poll_attempt(self, step, handle, attempt: int, status: Optional[str],
                        error: Optional[BaseException]) -> None:
        pass

    def on_rollback_start(self, count: int) -> None:
        pass

    def on_rollback_item(self, handle, error: Optional[BaseException]) -> None:
        pass

    def on_run_end(self, result) -> None:
        pass


class LoggingObserver(ProgressObserver):
    """Writes progress events to a logger with a correlation prefix."""

    def __init__(self, logger: Optional[logging.Logger] = None, correlation_id: str = ""):
        self.logger = logger or logging.getLogger("cloudseq.progress")
        self.correlation_id = correlation_id

    @property
    def _prefix(self) -> str:
        return f"[{self.correlation_id}] " if self.correlation_id else ""

    def on_run_start(self, correlation_id: str, total_steps: int) -> None:
        if not self.correlation_id:
            self.correlation_id = correlation_id
        self.logger.info(f"{self._prefix}Starting provisioning run with {total_steps} steps")

    def on_step_start(self, step, position: int) -> None:
        self.logger.info(
            f"{self._prefix}Step {position}: creating {step.kind}",
            extra={"step": step.name, "kind": step.kind, "event": "step_start"},
        )

    def on_step_success(self, step, handle) -> None:
        self.logger.info(
            f"{self._prefix}{step.kind} created with ID: {handle.resource_id}",
            extra={
                "step": step.name,
                "kind": step.kind,
                "resource_id": handle.resource_id,
                "creation_index": handle.creation_index,
                "event": "step_success",
            },
        )

    def on_step_failure(self, step, error: BaseException, fatal: bool) -> None:
        if fatal:
            self.logger.error(f"{self._prefix}ERROR: {error}", extra={"event": "step_failure"})
        else:
            self.logger.warning(
                f"{self._prefix}WARNING: {error} (continuing)", extra={"event": "step_failure"}
            )

    def on_step_abandoned(self, step, handle, reason: str) -> None:
        self.logger.warning(
            f"{self._prefix}{step.kind} {handle.resource_id} created but not awaited: {reason}",
            extra={
                "step": step.name,
                "kind": step.kind,
                "resource_id": handle.resource_id,
                "event": "step_abandoned",
            },
        )

    def on_poll_attempt(self, step, handle, attempt: int, status: Optional[str],
                        error: Optional[BaseException]) -> None:
        max_attempts = step.policy.max_attempts if step.policy else "?"
        if error is not None:
            self.logger.debug(
                f"{self._prefix}Attempt {attempt}/{max_attempts}: status check for "
                f"{handle.resource_id} failed: {error}",
                extra={"attempt": attempt, "event": "poll_attempt"},
            )
        else:
            self.logger.info(
                f"{self._prefix}Attempt {attempt}/{max_attempts}: {step.kind} "
                f"{handle.resource_id} is in state: {status}",
                extra={"attempt": attempt, "status": status, "event": "poll_attempt"},
            )

    def on_rollback_start(self, count: int) -> None:
        if count:
            self.logger.warning(f"{self._prefix}Cleaning up {count} resources in reverse order...")
        else:
            self.logger.info(f"{self._prefix}No resources to clean up")

    def on_rollback_item(self, handle, error: Optional[BaseException]) -> None:
        if error is None:
            self.logger.info(
                f"{self._prefix}Deleted {handle.kind}: {handle.resource_id}",
                extra={"resource_id": handle.resource_id, "event": "rollback_item"},
            )
        else:
            self.logger.error(
                f"{self._prefix}Failed to delete {handle.kind}: {handle.resource_id}: {error}",
                extra={"resource_id": handle.resource_id, "event": "rollback_item"},
            )

    def on_run_end(self, result) -> None:
        self.logger.info(
            f"{self._prefix}Run finished: state={result.state.value}, "
            f"completed_steps={result.completed_steps}, "
            f"rollback_errors={len(result.rollback_errors)}"
        )


@dataclass
class ProgressEvent:
    """One recorded observer event."""

    kind: str
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=isonow)


class RecordingObserver(ProgressObserver):
    """Keeps every event in memory, in the order received."""

    def __init__(self):
        self.events: List[ProgressEvent] = []
        self._lock = threading.Lock()

    def _record(self, kind: str, **data: Any) -> None:
        with self._lock:
            self.events.append(ProgressEvent(kind=kind, data=data))

    def of_kind(self, kind: str) -> List[ProgressEvent]:
        with self._lock:
            return [e for e in self.events if e.kind == kind]

    def on_run_start(self, correlation_id: str, total_steps: int) -> None:
        self._record("run_start", correlation_id=correlation_id, total_steps=total_steps)

    def on_step_start(self, step, position: int) -> None:
        self._record("step_start", step=step.name, position=position)

    def on_step_success(self, step, handle) -> None:
        self._record("step_success", step=step.name, resource_id=handle.resource_id)

    def on_step_failure(self, step, error: BaseException, fatal: bool) -> None:
        self._record(
            "step_failure",
            step=step.name if step is not None else None,
            error=str(error),
            fatal=fatal,
        )

    def on_step_abandoned(self, step, handle, reason: str) -> None:
        self._record(
            "step_abandoned", step=step.name, resource_id=handle.resource_id, reason=reason
        )

    def on_poll_attempt(self, step, handle, attempt: int, status: Optional[str],
                        error: Optional[BaseException]) -> None:
        self._record(
            "poll_attempt",
            step=step.name,
            resource_id=handle.resource_id,
            attempt=attempt,
            status=status,
            error=str(error) if error else None,
        )

    def on_rollback_start(self, count: int) -> None:
        self._record("rollback_start", count=count)

    def on_rollback_item(self, handle, error: Optional[BaseException]) -> None:
        self._record(
            "rollback_item",
            resource_id=handle.resource_id,
            resource_kind=handle.kind,
            error=str(error) if error else None,
        )

    def on_run_end(self, result) -> None:
        self._record("run_end", state=result.state.value)

    def to_list(self) -> List[Dict[str, Any]]:
        with self._lock:
            return [
                {"kind": e.kind, "timestamp": e.timestamp, **e.data} for e in self.events
            ]


class CompositeObserver(ProgressObserver):
    """Fans every event out to several observers."""

    def __init__(self, *observers: ProgressObserver):
        self.observers = list(observers)

    def _dispatch(self, hook: str, *args: Any) -> None:
        for observer in self.observers:
            try:
                getattr(observer, hook)(*args)
            except Exception as e:
                logger.warning(f"Observer {type(observer).__name__}.{hook} failed: {e}")

    def on_run_start(self, correlation_id, total_steps):
        self._dispatch("on_run_start", correlation_id, total_steps)

    def on_step_start(self, step, position):
        self._dispatch("on_step_start", step, position)

    def on_step_success(self, step, handle):
        self._dispatch("on_step_success", step, handle)

    def on_step_failure(self, step, error, fatal):
        self._dispatch("on_step_failure", step, error, fatal)

    def on_step_abandoned(self, step, handle, reason):
        self._dispatch("on_step_abandoned", step, handle, reason)

    def on_poll_attempt(self, step, handle, attempt, status, error):
        self._dispatch("on_poll_attempt", step, handle, attempt, status, error)

    def on_rollback_start(self, count):
        self._dispatch("on_rollback_start", count)

    def on_rollback_item(self, handle, error):
        self._dispatch("on_rollback_item", handle, error)

    def on_run_end(self, result):
        self._dispatch("on_run_end", result)


def safe_notify(observer: Optional[ProgressObserver], hook: str, *args: Any) -> None:
    """Call an observer hook; observer errors are logged, never raised."""
    if observer is None:
        return
    try:
        getattr(observer, hook)(*args)
    except Exception as e:
        logger.warning(f"Observer {type(observer).__name__}.{hook} failed: {e}")
