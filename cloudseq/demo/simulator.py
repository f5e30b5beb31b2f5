"""
Stateful in-memory cloud simulator for demo mode.

Behaves like an eventually-consistent cloud API without touching a real
account: resources take a few polls to become ready, may be "not found"
right after creation, and refuse deletion while other resources still
reference them. Failures can be injected per kind to exercise rollback.
All state is held in memory and discarded with the SimulatedCloud.
"""

import itertools
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Set

from cloudseq.errors import ResourceNotFound, RetryableDeletionError

PENDING = "pending"
DELETED = "deleted"


class SimulatedAPIError(Exception):
    """Non-retryable error returned by the simulated API."""
    pass


@dataclass
class FailurePlan:
    """
    Failures to inject, keyed by resource kind.

    Attributes:
        fail_create: Kinds whose create() raises
        empty_id: Kinds whose create() returns an empty identifier
        fail_ready: Kinds that end up in their failure state
        never_ready: Kinds that stay pending forever
        not_found_polls: Kind -> number of initial polls that raise
        blocked_deletes: Kind -> deletions rejected with DependencyViolation
        fail_delete: Kinds whose delete() always raises
    """

    fail_create: Set[str] = field(default_factory=set)
    empty_id: Set[str] = field(default_factory=set)
    fail_ready: Set[str] = field(default_factory=set)
    never_ready: Set[str] = field(default_factory=set)
    not_found_polls: Dict[str, int] = field(default_factory=dict)
    blocked_deletes: Dict[str, int] = field(default_factory=dict)
    fail_delete: Set[str] = field(default_factory=set)


@dataclass
class SimulatedResource:
    resource_id: str
    kind: str
    params: Dict[str, Any]
    state: str = PENDING
    polls: int = 0
    references: Set[str] = field(default_factory=set)


class SimulatedCloud:
    """
    In-memory resource store shared by all simulated providers.

    Usage:
        cloud = SimulatedCloud(FailurePlan(fail_ready={"ec2-instance"}))
        vpc = cloud.provider("vpc", ready_state="available")
        vpc_id = vpc.create({"cidr": "10.0.0.0/16"})
    """

    def __init__(self, failures: Optional[FailurePlan] = None):
        self.failures = failures or FailurePlan()
        self.resources: Dict[str, SimulatedResource] = {}
        self.calls: List[tuple] = []
        self._counter = itertools.count(1)
        self._blocked_remaining = dict(self.failures.blocked_deletes)
        self._lock = threading.RLock()

    def provider(
        self,
        kind: str,
        ready_state: str = "available",
        failure_state: str = "failed",
        polls_until_ready: int = 2,
        id_prefix: Optional[str] = None,
    ) -> "SimulatedProvider":
        return SimulatedProvider(
            self, kind, ready_state, failure_state, polls_until_ready, id_prefix
        )

    def live(self) -> List[SimulatedResource]:
        """Resources that have not been deleted, in creation order."""
        with self._lock:
            return [r for r in self.resources.values() if r.state != DELETED]

    def _record(self, *call: Any) -> None:
        with self._lock:
            self.calls.append(call)

    def _next_id(self, prefix: str) -> str:
        with self._lock:
            return f"{prefix}-{next(self._counter):08x}"

    def _references(self, params: Mapping[str, Any]) -> Set[str]:
        """Ids of live resources mentioned anywhere in params."""
        found: Set[str] = set()

        def walk(value):
            if isinstance(value, str) and value in self.resources:
                found.add(value)
            elif isinstance(value, Mapping):
                for v in value.values():
                    walk(v)
            elif isinstance(value, (list, tuple)):
                for v in value:
                    walk(v)

        walk(params)
        return found


class SimulatedProvider:
    """ResourceProvider for one kind, backed by a SimulatedCloud."""

    def __init__(
        self,
        cloud: SimulatedCloud,
        kind: str,
        ready_state: str,
        failure_state: str,
        polls_until_ready: int,
        id_prefix: Optional[str],
    ):
        self.cloud = cloud
        self.kind = kind
        self.ready_state = ready_state
        self.failure_state = failure_state
        self.polls_until_ready = polls_until_ready
        self.id_prefix = id_prefix or kind.split("-")[0]

    def create(self, params: Mapping[str, Any]) -> str:
        cloud = self.cloud
        cloud._record("create", self.kind)

        if self.kind in cloud.failures.fail_create:
            raise SimulatedAPIError(f"An error occurred (LimitExceeded) creating {self.kind}")
        if self.kind in cloud.failures.empty_id:
            return ""

        resource_id = cloud._next_id(self.id_prefix)
        with cloud._lock:
            cloud.resources[resource_id] = SimulatedResource(
                resource_id=resource_id,
                kind=self.kind,
                params=dict(params or {}),
                references=cloud._references(params or {}),
            )
        return resource_id

    def poll_status(self, resource_id: str) -> str:
        cloud = self.cloud
        cloud._record("poll", self.kind, resource_id)

        with cloud._lock:
            resource = cloud.resources.get(resource_id)
            if resource is None:
                raise ResourceNotFound(f"InvalidID.NotFound: {resource_id}")

            resource.polls += 1
            not_found = cloud.failures.not_found_polls.get(self.kind, 0)
            if resource.state == PENDING and resource.polls <= not_found:
                raise ResourceNotFound(f"InvalidID.NotFound: {resource_id}")

            if resource.state == PENDING and self.kind not in cloud.failures.never_ready:
                if resource.polls - not_found >= self.polls_until_ready:
                    if self.kind in cloud.failures.fail_ready:
                        resource.state = self.failure_state
                    else:
                        resource.state = self.ready_state
            return resource.state

    def delete(self, resource_id: str) -> None:
        cloud = self.cloud
        cloud._record("delete", self.kind, resource_id)

        with cloud._lock:
            resource = cloud.resources.get(resource_id)
            if resource is None or resource.state == DELETED:
                raise SimulatedAPIError(f"InvalidID.NotFound: {resource_id}")

            if self.kind in cloud.failures.fail_delete:
                raise SimulatedAPIError(f"An error occurred (UnauthorizedOperation) deleting {resource_id}")

            if cloud._blocked_remaining.get(self.kind, 0) > 0:
                cloud._blocked_remaining[self.kind] -= 1
                raise RetryableDeletionError(
                    f"DependencyViolation: {resource_id} has a dependent object"
                )

            dependents = [
                r.resource_id for r in cloud.resources.values()
                if r.state != DELETED and resource_id in r.references
            ]
            if dependents:
                raise RetryableDeletionError(
                    f"DependencyViolation: {resource_id} is used by {', '.join(dependents)}"
                )

            resource.state = DELETED
