"""Shared pytest fixtures for cloudseq tests."""
import os
import sys
from typing import Any, Dict, Iterable, List, Optional

import pytest

# Add project root to path
_PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, _PROJECT_ROOT)


# =============================================================================
# Settings / Registry Isolation
# =============================================================================

@pytest.fixture(autouse=True)
def _reset_config_singletons():
    """Reset cached settings and the poll policy registry between tests."""
    from config.settings import get_settings
    import config.poll_policies as poll_policies

    get_settings.cache_clear()
    poll_policies._policies = None
    yield
    get_settings.cache_clear()
    poll_policies._policies = None


# =============================================================================
# Fake Providers
# =============================================================================

class FakeProvider:
    """
    Instrumented ResourceProvider.

    Every call is appended to the shared call log as (operation, kind, arg)
    so tests can assert ordering across providers.
    """

    def __init__(
        self,
        kind: str,
        calls: List[tuple],
        statuses: Optional[Iterable[Any]] = None,
        create_error: Optional[Exception] = None,
        resource_id: Optional[str] = None,
        delete_errors: Optional[Iterable[Exception]] = None,
    ):
        self.kind = kind
        self.calls = calls
        self._statuses = list(statuses) if statuses is not None else ["available"]
        self.create_error = create_error
        self.resource_id = resource_id if resource_id is not None else f"{kind}-0001"
        self._delete_errors = list(delete_errors or [])
        self.created_with: Optional[Dict[str, Any]] = None
        self.poll_count = 0
        self.delete_count = 0

    def create(self, params=None):
        self.calls.append(("create", self.kind, params))
        self.created_with = params
        if self.create_error is not None:
            raise self.create_error
        return self.resource_id

    def poll_status(self, resource_id):
        self.calls.append(("poll", self.kind, resource_id))
        self.poll_count += 1
        # Repeat the last scripted status once the script runs out
        index = min(self.poll_count - 1, len(self._statuses) - 1)
        status = self._statuses[index]
        if isinstance(status, Exception):
            raise status
        return status

    def delete(self, resource_id):
        self.calls.append(("delete", self.kind, resource_id))
        self.delete_count += 1
        if self._delete_errors:
            error = self._delete_errors.pop(0)
            if error is not None:
                raise error


@pytest.fixture
def call_log() -> List[tuple]:
    """Ordered record of every fake provider call in a test."""
    return []


@pytest.fixture
def make_provider(call_log):
    """Factory for FakeProvider instances sharing the test's call log."""

    def _make(kind: str, **kwargs) -> FakeProvider:
        return FakeProvider(kind, call_log, **kwargs)

    return _make


@pytest.fixture
def make_policy():
    """Factory for PollPolicy objects that never sleep."""
    from cloudseq.provisioning.steps import PollPolicy

    def _make(
        max_attempts: int = 5,
        success=("available",),
        failure=("failed",),
        max_check_errors: int = 3,
        interval_seconds: float = 0,
    ) -> PollPolicy:
        return PollPolicy(
            success_states=frozenset(success),
            failure_states=frozenset(failure),
            max_attempts=max_attempts,
            interval_seconds=interval_seconds,
            max_check_errors=max_check_errors,
        )

    return _make


@pytest.fixture
def make_step(make_provider, make_policy):
    """Factory for Steps bound to FakeProviders: returns (step, provider)."""
    from cloudseq.provisioning.steps import Step

    def _make(kind: str, name: str = "", policy=None, provider_kwargs=None, **step_kwargs):
        provider = make_provider(kind, **(provider_kwargs or {}))
        if step_kwargs.get("depends_on_readiness", True) and policy is None:
            policy = make_policy()
        step = Step.from_provider(kind, provider, name=name, policy=policy, **step_kwargs)
        return step, provider

    return _make


@pytest.fixture
def rollback_executor():
    """Rollback executor with fast retries."""
    from cloudseq.provisioning.rollback import RollbackExecutor

    return RollbackExecutor(delete_retries=2, delete_retry_interval=0)


@pytest.fixture
def engine(rollback_executor):
    """Workflow engine wired to the fast rollback executor."""
    from cloudseq.provisioning.executor import WorkflowEngine

    return WorkflowEngine(rollback_executor)


@pytest.fixture
def recorder():
    """Observer that records every progress event."""
    from cloudseq.provisioning.observer import RecordingObserver

    return RecordingObserver()
