"""
Tests for the rollback executor.

Deletions run newest-first, retryable errors are retried with tenacity,
and no failure ever escapes execute().
"""

import pytest

from cloudseq.errors import (
    DeletionError,
    ResourceNotFound,
    RetryableDeletionError,
    TransientCheckError,
)
from cloudseq.provisioning.rollback import RollbackExecutor
from cloudseq.provisioning.state import ProvisioningLedger, ResourceHandle


@pytest.fixture
def ledger_for(make_step):
    """Build a ledger from (kind, provider_kwargs, step_kwargs) specs."""

    def _build(*specs):
        ledger = ProvisioningLedger("run-test")
        providers = []
        for index, (kind, provider_kwargs, step_kwargs) in enumerate(specs):
            step, provider = make_step(
                kind,
                depends_on_readiness=False,
                provider_kwargs=provider_kwargs,
                **step_kwargs,
            )
            ledger.append(ResourceHandle(
                resource_id=provider.resource_id,
                kind=kind,
                creation_index=index,
                step=step,
            ))
            providers.append(provider)
        return ledger, providers

    return _build


class TestRollbackOrder:
    """Deletion order and bookkeeping."""

    def test_deletes_newest_first(self, rollback_executor, ledger_for, call_log):
        ledger, _ = ledger_for(("vpc", {}, {}), ("subnet", {}, {}), ("instance", {}, {}))

        report = rollback_executor.execute(ledger, correlation_id="run-test")

        assert [c[1] for c in call_log if c[0] == "delete"] == ["instance", "subnet", "vpc"]
        assert [h.kind for h in report.deleted] == ["instance", "subnet", "vpc"]
        assert report.clean
        assert len(ledger) == 0

    def test_empty_ledger(self, rollback_executor, recorder):
        report = rollback_executor.execute(ProvisioningLedger(), observer=recorder)

        assert report.clean
        assert report.deleted == []
        assert recorder.of_kind("rollback_start")[0].data["count"] == 0

    def test_continues_after_failure(self, rollback_executor, ledger_for, call_log):
        ledger, _ = ledger_for(
            ("a", {}, {}),
            ("b", {"delete_errors": [RuntimeError("AccessDenied")]}, {}),
            ("c", {}, {}),
        )

        report = rollback_executor.execute(ledger)

        assert [c[1] for c in call_log if c[0] == "delete"] == ["c", "b", "a"]
        assert len(report.errors) == 1
        assert report.errors[0].handle.kind == "b"
        assert [h.kind for h in report.deleted] == ["c", "a"]
        assert not report.clean

    def test_every_deletion_failing(self, rollback_executor, ledger_for):
        boom = {"delete_errors": [RuntimeError("boom")]}
        ledger, _ = ledger_for(("a", boom, {}), ("b", boom, {}))

        report = rollback_executor.execute(ledger)

        assert [e.handle.kind for e in report.errors] == ["b", "a"]
        assert report.deleted == []

    def test_handle_without_step(self, rollback_executor):
        ledger = ProvisioningLedger()
        ledger.append(ResourceHandle(resource_id="vpc-1", kind="vpc", creation_index=0))

        report = rollback_executor.execute(ledger)

        assert len(report.errors) == 1
        assert report.errors[0].attempts == 0
        assert "No delete operation" in str(report.errors[0])

    def test_observer_notified_per_item(self, rollback_executor, ledger_for, recorder):
        ledger, _ = ledger_for(
            ("a", {}, {}),
            ("b", {"delete_errors": [RuntimeError("AccessDenied")]}, {}),
        )

        rollback_executor.execute(ledger, observer=recorder)

        items = recorder.of_kind("rollback_item")
        assert [i.data["resource_kind"] for i in items] == ["b", "a"]
        assert "AccessDenied" in items[0].data["error"]
        assert items[1].data["error"] is None


class TestDeletionRetries:
    """Retry behaviour for blocked deletions."""

    def test_retryable_error_retried_until_success(self, ledger_for):
        blocked = RetryableDeletionError("DependencyViolation")
        ledger, (provider,) = ledger_for(("security-group", {"delete_errors": [blocked, blocked]}, {}))

        report = RollbackExecutor(delete_retries=3, delete_retry_interval=0).execute(ledger)

        assert report.clean
        assert provider.delete_count == 3

    def test_retries_exhausted(self, ledger_for):
        blocked = RetryableDeletionError("DependencyViolation")
        ledger, (provider,) = ledger_for(("security-group", {"delete_errors": [blocked] * 5}, {}))

        report = RollbackExecutor(delete_retries=2, delete_retry_interval=0).execute(ledger)

        assert provider.delete_count == 3
        error = report.errors[0]
        assert isinstance(error, DeletionError)
        assert error.attempts == 3
        assert isinstance(error.cause, RetryableDeletionError)

    def test_non_retryable_error_not_retried(self, ledger_for):
        ledger, (provider,) = ledger_for(("vpc", {"delete_errors": [RuntimeError("AccessDenied")]}, {}))

        report = RollbackExecutor(delete_retries=5, delete_retry_interval=0).execute(ledger)

        assert provider.delete_count == 1
        assert report.errors[0].attempts == 1

    def test_zero_retries(self, ledger_for):
        blocked = RetryableDeletionError("DependencyViolation")
        ledger, (provider,) = ledger_for(("security-group", {"delete_errors": [blocked]}, {}))

        report = RollbackExecutor(delete_retries=0, delete_retry_interval=0).execute(ledger)

        assert provider.delete_count == 1
        assert len(report.errors) == 1

    def test_custom_retry_classifier(self, ledger_for):
        def classify(exc):
            return "DependencyViolation" in str(exc)

        ledger, (provider,) = ledger_for((
            "security-group",
            {"delete_errors": [RuntimeError("DependencyViolation: in use")]},
            {"is_retryable_deletion": classify},
        ))

        report = RollbackExecutor(delete_retries=2, delete_retry_interval=0).execute(ledger)

        assert report.clean
        assert provider.delete_count == 2


class TestDeletionConfirmation:
    """Optional polling after delete()."""

    def test_confirmed_deletion(self, ledger_for, make_policy):
        ledger, (provider,) = ledger_for((
            "nat-gateway",
            {"statuses": ["deleting", "deleted"]},
            {"deletion_policy": make_policy(success=("deleted",), failure=("failed",))},
        ))

        report = RollbackExecutor(delete_retries=0, delete_retry_interval=0).execute(ledger)

        assert report.clean
        assert provider.poll_count == 2

    def test_unconfirmed_deletion_is_an_error(self, ledger_for, make_policy):
        ledger, (provider,) = ledger_for((
            "nat-gateway",
            {"statuses": ["deleting"]},
            {"deletion_policy": make_policy(max_attempts=2, success=("deleted",), failure=())},
        ))

        report = RollbackExecutor(delete_retries=0, delete_retry_interval=0).execute(ledger)

        assert provider.poll_count == 2
        assert "was not confirmed" in str(report.errors[0])
        assert report.deleted == []

    def test_not_found_confirms_deletion(self, ledger_for, make_policy):
        ledger, (provider,) = ledger_for((
            "nat-gateway",
            {"statuses": ["deleting", ResourceNotFound("NatGatewayNotFound")]},
            {"deletion_policy": make_policy(success=("deleted",), failure=(), max_check_errors=0)},
        ))

        report = RollbackExecutor(delete_retries=0, delete_retry_interval=0).execute(ledger)

        assert report.clean
        assert [h.kind for h in report.deleted] == ["nat-gateway"]
        assert provider.poll_count == 2

    def test_other_check_errors_still_unconfirmed(self, ledger_for, make_policy):
        ledger, (provider,) = ledger_for((
            "nat-gateway",
            {"statuses": [TransientCheckError("Throttling")]},
            {"deletion_policy": make_policy(success=("deleted",), failure=(), max_check_errors=1)},
        ))

        report = RollbackExecutor(delete_retries=0, delete_retry_interval=0).execute(ledger)

        assert provider.poll_count == 2
        assert isinstance(report.errors[0].cause, TransientCheckError)
        assert not report.clean


class TestExecutorConfiguration:
    """Constructor defaults and validation."""

    def test_defaults_from_settings(self, monkeypatch):
        monkeypatch.setenv("ROLLBACK_DELETE_RETRIES", "7")
        monkeypatch.setenv("ROLLBACK_DELETE_RETRY_INTERVAL", "1.5")

        executor = RollbackExecutor()

        assert executor.delete_retries == 7
        assert executor.delete_retry_interval == 1.5

    def test_explicit_values_win(self, monkeypatch):
        monkeypatch.setenv("ROLLBACK_DELETE_RETRIES", "7")

        executor = RollbackExecutor(delete_retries=1, delete_retry_interval=0)

        assert executor.delete_retries == 1

    @pytest.mark.parametrize("kwargs", [
        {"delete_retries": -1, "delete_retry_interval": 0},
        {"delete_retries": 0, "delete_retry_interval": -0.5},
    ])
    def test_negative_values_rejected(self, kwargs):
        with pytest.raises(ValueError):
            RollbackExecutor(**kwargs)
