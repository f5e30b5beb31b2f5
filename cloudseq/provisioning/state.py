"""
Provisioning run state.

Holds the per-run records: resource handles, the append-only ledger that
drives rollback, the run state machine and the immutable result handed back
to the caller. Nothing here is process-wide; every run builds its own.
"""

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from cloudseq.errors import InvalidStateTransition, ProvisioningError
from cloudseq.timestamps import elapsed_seconds, isonow

logger = logging.getLogger(__name__)


class RunState(Enum):
    """Provisioning run states."""

    IDLE = "idle"
    PROVISIONING = "provisioning"
    SUCCEEDED = "succeeded"
    FAILING = "failing"
    ROLLING_BACK = "rolling_back"
    ROLLED_BACK = "rolled_back"
    ROLLED_BACK_WITH_ERRORS = "rolled_back_with_errors"

    @property
    def is_terminal(self) -> bool:
        return self in (
            RunState.SUCCEEDED,
            RunState.ROLLED_BACK,
            RunState.ROLLED_BACK_WITH_ERRORS,
        )


# SUCCEEDED -> ROLLING_BACK is only taken on an explicit cleanup request
_TRANSITIONS: Dict[RunState, FrozenSet[RunState]] = {
    RunState.IDLE: frozenset({RunState.PROVISIONING}),
    RunState.PROVISIONING: frozenset({RunState.SUCCEEDED, RunState.FAILING}),
    RunState.SUCCEEDED: frozenset({RunState.ROLLING_BACK}),
    RunState.FAILING: frozenset({RunState.ROLLING_BACK}),
    RunState.ROLLING_BACK: frozenset({RunState.ROLLED_BACK, RunState.ROLLED_BACK_WITH_ERRORS}),
    RunState.ROLLED_BACK: frozenset(),
    RunState.ROLLED_BACK_WITH_ERRORS: frozenset(),
}


class RunStateMachine:
    """Tracks one run's state and rejects illegal transitions."""

    def __init__(self, correlation_id: str = ""):
        self.correlation_id = correlation_id
        self._state = RunState.IDLE
        self._lock = threading.Lock()

    @property
    def state(self) -> RunState:
        return self._state

    def transition(self, target: RunState) -> RunState:
        with self._lock:
            if target not in _TRANSITIONS[self._state]:
                raise InvalidStateTransition(
                    f"Illegal run transition {self._state.value} -> {target.value}"
                )
            logger.debug(
                f"[{self.correlation_id}] Run state {self._state.value} -> {target.value}"
            )
            self._state = target
            return target


@dataclass(frozen=True)
class ResourceHandle:
    """
    One provisioned resource.

    Attributes:
        resource_id: Provider-assigned identifier
        kind: Resource kind tag
        creation_index: Position in creation order (monotonic per run)
        depends_on_readiness: Whether later steps waited for readiness
        name: Name of the step that created it
        created_at: Creation timestamp (ISO format)
        step: Originating Step (used by rollback to find delete())
    """

    resource_id: str
    kind: str
    creation_index: int
    depends_on_readiness: bool = True
    name: str = ""
    created_at: str = field(default_factory=isonow)
    step: Any = field(default=None, compare=False, repr=False)

    def __post_init__(self):
        if not self.resource_id:
            raise ValueError("ResourceHandle requires a non-empty resource_id")
        if not self.name:
            object.__setattr__(self, "name", self.kind)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "resource_id": self.resource_id,
            "kind": self.kind,
            "name": self.name,
            "creation_index": self.creation_index,
            "depends_on_readiness": self.depends_on_readiness,
            "created_at": self.created_at,
        }


class ProvisioningLedger:
    """
    Ordered record of resources created during one run.

    A handle is appended as soon as its create() returned an identifier,
    before readiness polling, so a resource that never became ready is still
    rolled back. Entries are never reordered: append() only accepts
    increasing creation indexes, and drain_reverse() hands them back
    last-to-first.

    Thread-safe: concurrent step groups append through the same lock.
    """

    def __init__(self, correlation_id: str = ""):
        self.correlation_id = correlation_id
        self._entries: List[ResourceHandle] = []
        self._lock = threading.RLock()

    def append(self, handle: ResourceHandle) -> None:
        """
        Record a created resource.

        Raises:
            ValueError: creation_index is not greater than the last entry's
        """
        with self._lock:
            if self._entries and handle.creation_index <= self._entries[-1].creation_index:
                raise ValueError(
                    f"Ledger order violation: index {handle.creation_index} after "
                    f"{self._entries[-1].creation_index}"
                )
            self._entries.append(handle)

        logger.debug(
            f"[{self.correlation_id}] Ledger +{handle.kind} {handle.resource_id} "
            f"(#{handle.creation_index})"
        )

    def snapshot(self) -> Tuple[ResourceHandle, ...]:
        """Immutable copy in creation order."""
        with self._lock:
            return tuple(self._entries)

    def drain_reverse(self) -> List[ResourceHandle]:
        """Remove and return every entry, last-created first."""
        with self._lock:
            drained = list(reversed(self._entries))
            self._entries.clear()
            return drained

    def resource_ids(self) -> Dict[str, str]:
        """Step name -> resource id for everything recorded so far."""
        with self._lock:
            return {h.name: h.resource_id for h in self._entries}

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __bool__(self) -> bool:
        return len(self) > 0


@dataclass(frozen=True)
class WorkflowResult:
    """
    Outcome of one provisioning run, never mutated after it is returned.

    Attributes:
        completed_steps: Steps whose create (and readiness wait) succeeded
        failed_step: Step that ended provisioning, or None
        ledger_snapshot: Resources created, in creation order
        rollback_performed: Whether a teardown ran
        rollback_errors: Deletions that failed during teardown
        state: Run state at the time the result was produced
        failure: Error that ended provisioning, or None
        warnings: Failures of non-fatal steps
        rolled_back: Handles deleted during teardown, in deletion order
        correlation_id: Run identifier used in logs
        started_at: Run start timestamp (ISO format)
        finished_at: Result timestamp (ISO format)
    """

    completed_steps: int
    failed_step: Any
    ledger_snapshot: Tuple[ResourceHandle, ...]
    rollback_performed: bool = False
    rollback_errors: Tuple[ProvisioningError, ...] = ()
    state: RunState = RunState.IDLE
    failure: Optional[ProvisioningError] = None
    warnings: Tuple[ProvisioningError, ...] = ()
    rolled_back: Tuple[ResourceHandle, ...] = ()
    correlation_id: str = ""
    started_at: str = ""
    finished_at: str = ""

    @property
    def succeeded(self) -> bool:
        """Provisioning finished without a fatal failure."""
        return self.failed_step is None and self.failure is None

    @property
    def resources_remaining(self) -> Tuple[ResourceHandle, ...]:
        """Resources that may still exist after this result."""
        if not self.rollback_performed:
            return self.ledger_snapshot
        return tuple(e.handle for e in self.rollback_errors if getattr(e, "handle", None) is not None)

    @property
    def needs_manual_cleanup(self) -> bool:
        """True when a teardown ran but left resources behind."""
        return self.rollback_performed and bool(self.rollback_errors)

    @property
    def duration_seconds(self) -> float:
        return elapsed_seconds(self.started_at, self.finished_at)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        failed = self.failed_step
        return {
            "correlation_id": self.correlation_id,
            "state": self.state.value,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "completed_steps": self.completed_steps,
            "failed_step": (
                {"name": failed.name, "kind": failed.kind} if failed is not None else None
            ),
            "failure": str(self.failure) if self.failure else None,
            "warnings": [str(w) for w in self.warnings],
            "ledger": [h.to_dict() for h in self.ledger_snapshot],
            "rollback_performed": self.rollback_performed,
            "rolled_back": [h.to_dict() for h in self.rolled_back],
            "rollback_errors": [
                {
                    "resource": e.handle.to_dict() if getattr(e, "handle", None) else None,
                    "error": str(e),
                }
                for e in self.rollback_errors
            ],
            "needs_manual_cleanup": self.needs_manual_cleanup,
        }
