"""
Error taxonomy for provisioning runs.

Error Hierarchy:
- ProvisioningError: base class for everything the engine raises or records
  - CreationError: a step's create() failed outright (fatal, no handle)
  - ReadinessFailure: poll reported a terminal failure status (fatal)
    - ReadinessTimeout: polling exhausted max_attempts (fatal)
  - WorkflowCancelled: external cancellation observed (fatal)
  - UnexpectedStepError: any other exception raised while running a step (fatal)
  - DeletionError: a rollback deletion failed (recorded, never propagated)
  - InvalidStateTransition: run state machine misuse (programming error)

Provider-side signals:
- TransientCheckError: a single failed status check; retried by the poller
  - ResourceNotFound: the resource does not exist (yet, or any more); transient
    while waiting for readiness, confirms deletion during rollback
- RetryableDeletionError: deletion blocked by dependents; retried by rollback

Usage:
    from cloudseq.errors import CreationError, RetryableDeletionError

    # Inside a provider's delete()
    if "DependencyViolation" in output:
        raise RetryableDeletionError(f"{group_id} still has dependents")
"""

from typing import Any, Optional


# =============================================================================
# Provider Signals
# =============================================================================

class TransientCheckError(Exception):
    """A status check failed in a way that is worth retrying."""
    pass


class ResourceNotFound(TransientCheckError):
    """The provider has no record of the resource."""
    pass


class RetryableDeletionError(Exception):
    """Deletion failed because the resource still has dependents."""
    pass


# =============================================================================
# Run Errors
# =============================================================================

class ProvisioningError(Exception):
    """Base class for provisioning run errors."""

    def __init__(self, message: str, step: Any = None):
        super().__init__(message)
        self.step = step


class CreationError(ProvisioningError):
    """A step's create() failed or returned an empty identifier."""

    def __init__(self, step: Any, cause: Optional[BaseException] = None, message: str = ""):
        if not message:
            label = _step_label(step)
            message = f"Failed to create {label}: {cause}" if cause else f"Failed to create {label}"
        super().__init__(message, step)
        self.cause = cause


class ReadinessFailure(ProvisioningError):
    """A created resource reached a terminal failure state."""

    def __init__(
        self,
        step: Any,
        handle: Any,
        status: Optional[str] = None,
        last_error: Optional[BaseException] = None,
        message: str = "",
    ):
        if not message:
            resource_id = getattr(handle, "resource_id", "?")
            if status is not None:
                message = f"{_step_label(step)} {resource_id} entered failure state '{status}'"
            else:
                message = f"{_step_label(step)} {resource_id} status checks kept failing: {last_error}"
        super().__init__(message, step)
        self.handle = handle
        self.status = status
        self.last_error = last_error


class ReadinessTimeout(ReadinessFailure):
    """Polling ran out of attempts before a terminal state was reached."""

    def __init__(self, step: Any, handle: Any, attempts: int, status: Optional[str] = None):
        resource_id = getattr(handle, "resource_id", "?")
        message = (
            f"Timed out waiting for {_step_label(step)} {resource_id} "
            f"after {attempts} attempts (last status: {status})"
        )
        super().__init__(step, handle, status=status, message=message)
        self.attempts = attempts


class WorkflowCancelled(ProvisioningError):
    """Provisioning was interrupted by an external cancellation signal."""

    def __init__(self, step: Any = None):
        if step is not None:
            message = f"Cancelled at {_step_label(step)}"
        else:
            message = "Cancelled"
        super().__init__(message, step)


class UnexpectedStepError(ProvisioningError):
    """A step raised something other than a ProvisioningError."""

    def __init__(self, step: Any, cause: BaseException):
        super().__init__(f"Unexpected error in {_step_label(step)}: {cause!r}", step)
        self.cause = cause


class DeletionError(ProvisioningError):
    """A resource could not be deleted during rollback."""

    def __init__(self, handle: Any, cause: Optional[BaseException], attempts: int = 1, message: str = ""):
        if not message:
            message = (
                f"Failed to delete {getattr(handle, 'kind', '?')} "
                f"{getattr(handle, 'resource_id', '?')} after {attempts} attempt(s): {cause}"
            )
        super().__init__(message, getattr(handle, "step", None))
        self.handle = handle
        self.cause = cause
        self.attempts = attempts


class InvalidStateTransition(ProvisioningError):
    """Run state machine was driven through an illegal transition."""
    pass


def _step_label(step: Any) -> str:
    """Human-readable step label for error messages."""
    if step is None:
        return "preflight"
    name = getattr(step, "name", None)
    kind = getattr(step, "kind", None)
    if name and kind and name != kind:
        return f"{kind} '{name}'"
    return str(kind or name or step)
