"""
Provisioning step definitions.

A Step is pure data plus injected callables: how to create one resource,
how to ask for its status and how to delete it. The engine never knows
what kind of resource it is handling.

Usage:
    from cloudseq.provisioning.steps import PollPolicy, Ref, Step

    vpc_policy = PollPolicy(
        success_states={"available"},
        failure_states={"failed"},
        max_attempts=30,
        interval_seconds=10,
    )

    steps = [
        Step.from_provider("vpc", vpc_provider, params={"cidr": "10.0.0.0/16"},
                           policy=vpc_policy),
        Step.from_provider("subnet", subnet_provider,
                           params={"vpc_id": Ref("vpc"), "cidr": "10.0.0.0/24"},
                           depends_on_readiness=False),
    ]
"""

from dataclasses import dataclass, field
from typing import (
    Any,
    Callable,
    FrozenSet,
    Iterable,
    List,
    Mapping,
    Optional,
    Protocol,
    Union,
    runtime_checkable,
)

from cloudseq.errors import RetryableDeletionError


@runtime_checkable
class ResourceProvider(Protocol):
    """Create / poll / delete operations for one resource kind."""

    def create(self, params: Mapping[str, Any]) -> str:
        """Create the resource and return its identifier."""
        ...

    def poll_status(self, resource_id: str) -> str:
        """Return the current status string; raise on a failed check."""
        ...

    def delete(self, resource_id: str) -> None:
        """Delete the resource; raise RetryableDeletionError if blocked."""
        ...


@dataclass(frozen=True)
class PollPolicy:
    """
    Readiness polling parameters for one resource kind.

    max_attempts and interval_seconds have no defaults: readiness latency
    ranges from seconds (IAM role) to tens of minutes (managed clusters).

    Attributes:
        success_states: Statuses meaning the resource is usable
        failure_states: Statuses meaning the resource will never be usable
        max_attempts: Maximum number of status checks
        interval_seconds: Sleep between checks
        max_check_errors: Consecutive failed checks tolerated before failing
    """

    success_states: FrozenSet[str]
    failure_states: FrozenSet[str]
    max_attempts: int
    interval_seconds: float
    max_check_errors: int = 3

    def __post_init__(self):
        object.__setattr__(self, "success_states", frozenset(self.success_states))
        object.__setattr__(self, "failure_states", frozenset(self.failure_states))

        if not self.success_states:
            raise ValueError("PollPolicy needs at least one success state")
        overlap = self.success_states & self.failure_states
        if overlap:
            raise ValueError(f"States cannot be both success and failure: {sorted(overlap)}")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.interval_seconds < 0:
            raise ValueError("interval_seconds must be >= 0")
        if self.max_check_errors < 0:
            raise ValueError("max_check_errors must be >= 0")

    @property
    def max_wait_seconds(self) -> float:
        """Upper bound on time spent sleeping between checks."""
        return (self.max_attempts - 1) * self.interval_seconds

    def to_dict(self) -> dict:
        return {
            "success_states": sorted(self.success_states),
            "failure_states": sorted(self.failure_states),
            "max_attempts": self.max_attempts,
            "interval_seconds": self.interval_seconds,
            "max_check_errors": self.max_check_errors,
        }


@dataclass(frozen=True)
class Ref:
    """Placeholder for the identifier of an earlier step's resource."""

    step_name: str


class UnresolvedReference(KeyError):
    """A Ref points at a step that has not produced a resource."""
    pass


def resolve_refs(value: Any, resource_ids: Mapping[str, str]) -> Any:
    """
    Replace Ref placeholders with resource identifiers.

    Walks dicts, lists and tuples to any depth; other values are returned
    unchanged.

    Raises:
        UnresolvedReference: A Ref names no created resource
    """
    if isinstance(value, Ref):
        if value.step_name not in resource_ids:
            raise UnresolvedReference(value.step_name)
        return resource_ids[value.step_name]
    if isinstance(value, Mapping):
        return {k: resolve_refs(v, resource_ids) for k, v in value.items()}
    if isinstance(value, list):
        return [resolve_refs(v, resource_ids) for v in value]
    if isinstance(value, tuple):
        return tuple(resolve_refs(v, resource_ids) for v in value)
    return value


def is_retryable_deletion_error(exc: BaseException) -> bool:
    """Default classifier: only RetryableDeletionError is retried."""
    return isinstance(exc, RetryableDeletionError)


@dataclass(eq=False)
class Step:
    """
    One resource to provision.

    Attributes:
        kind: Opaque resource kind tag ("vpc", "kafka-cluster", ...)
        create: create() or create(params) -> resource id
        delete: delete(resource_id)
        poll: poll(resource_id) -> status string
        name: Unique name within a run, used by Ref (defaults to kind)
        params: Parameters passed to create, Ref placeholders resolved
        depends_on_readiness: Wait for readiness before the next step
        policy: Readiness polling policy (required when waiting)
        fatal: A failure halts the run (False = warn and continue)
        deletion_policy: Optional policy to confirm deletion via poll
        is_retryable_deletion: Classifies delete errors worth retrying
    """

    kind: str
    create: Callable[..., str]
    delete: Callable[[str], Any]
    poll: Optional[Callable[[str], str]] = None
    name: str = ""
    params: Optional[Mapping[str, Any]] = None
    depends_on_readiness: bool = True
    policy: Optional[PollPolicy] = None
    fatal: bool = True
    deletion_policy: Optional[PollPolicy] = None
    is_retryable_deletion: Callable[[BaseException], bool] = field(
        default=is_retryable_deletion_error, repr=False
    )

    def __post_init__(self):
        if not self.kind:
            raise ValueError("Step kind is required")
        if not self.name:
            self.name = self.kind
        if self.depends_on_readiness:
            if self.poll is None:
                raise ValueError(f"Step '{self.name}' waits for readiness but has no poll()")
            if self.policy is None:
                raise ValueError(f"Step '{self.name}' waits for readiness but has no PollPolicy")
        if self.deletion_policy is not None and self.poll is None:
            raise ValueError(f"Step '{self.name}' confirms deletion but has no poll()")

    @classmethod
    def from_provider(
        cls,
        kind: str,
        provider: ResourceProvider,
        params: Optional[Mapping[str, Any]] = None,
        **options: Any,
    ) -> "Step":
        """Build a step bound to a ResourceProvider's operations."""
        return cls(
            kind=kind,
            create=provider.create,
            delete=provider.delete,
            poll=provider.poll_status,
            params=params if params is not None else {},
            **options,
        )

    def invoke_create(self, resource_ids: Mapping[str, str]) -> str:
        """Call create(), resolving Ref placeholders against earlier ids."""
        if self.params is None:
            return self.create()
        return self.create(resolve_refs(self.params, resource_ids))

    def __repr__(self) -> str:
        return f"Step(kind={self.kind!r}, name={self.name!r})"


class StepGroup:
    """
    Steps with no dependencies on each other, created concurrently.

    Members are created in a thread pool; their handles are appended to the
    ledger in declaration order once every create has returned, so rollback
    order does not depend on thread scheduling.
    """

    def __init__(self, steps: Iterable[Step], max_workers: Optional[int] = None):
        self.steps: List[Step] = list(steps)
        if not self.steps:
            raise ValueError("StepGroup needs at least one step")
        names = [s.name for s in self.steps]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate step names in group: {names}")
        self.max_workers = max_workers or len(self.steps)

    def __len__(self) -> int:
        return len(self.steps)

    def __iter__(self):
        return iter(self.steps)

    def __repr__(self) -> str:
        return f"StepGroup({[s.name for s in self.steps]!r})"


PlanItem = Union[Step, StepGroup]


def flatten(plan: Iterable[PlanItem]) -> List[Step]:
    """All steps of a plan in execution order."""
    flat: List[Step] = []
    for item in plan:
        if isinstance(item, StepGroup):
            flat.extend(item.steps)
        else:
            flat.append(item)
    return flat


def validate_plan(plan: Iterable[PlanItem]) -> List[PlanItem]:
    """
    Check a plan before running it.

    Raises:
        ValueError: Duplicate step names
        TypeError: Item is neither a Step nor a StepGroup
    """
    items = list(plan)
    for item in items:
        if not isinstance(item, (Step, StepGroup)):
            raise TypeError(f"Plan items must be Step or StepGroup, got {type(item).__name__}")
    names = [s.name for s in flatten(items)]
    seen = set()
    for name in names:
        if name in seen:
            raise ValueError(f"Duplicate step name: {name}")
        seen.add(name)
    return items
