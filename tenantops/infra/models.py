from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, FrozenSet, List, Literal, Optional, Set, Tuple

# Canonical resource classification shared by the planner, the engine, the
# naming rules and every control-plane adapter.
ResourceKind = Literal[
    "resource-group",
    "storage-account",
    "data-store-account",
    "data-store-database",
    "data-store-collection",
    "compute-plan",
    "deployed-function-unit",
]
RESOURCE_KIND_VALUES: Tuple[str, ...] = (
    "resource-group",
    "storage-account",
    "data-store-account",
    "data-store-database",
    "data-store-collection",
    "compute-plan",
    "deployed-function-unit",
)


StepOutcome = Literal["created", "already-existed", "failed"]
SUCCESS_OUTCOMES: Tuple[str, ...] = ("created", "already-existed")

BLOCKED_BY_DEPENDENCY = "blocked-by-dependency"

# Provisioning states reported by the control plane, compared lowercase.
READY_STATES: Tuple[str, ...] = ("succeeded", "running")
FAILED_STATES: Tuple[str, ...] = ("failed", "canceled")


@dataclass(frozen=True)
class ResourceSpec:
    """Everything a control plane needs to look up or create one resource.

    ``parents`` names the enclosing resources for nested kinds, e.g.
    ``{"account": ..., "database": ...}`` for a collection, or
    ``{"plan": ..., "storage_account": ..., "data_store_account": ...}`` for a
    function unit.
    """

    kind: ResourceKind
    name: str
    resource_group: str
    location: str = ""
    parents: Dict[str, str] = field(default_factory=dict)
    settings: Dict[str, Any] = field(default_factory=dict)

    @property
    def address(self) -> str:
        """Name qualified by its parents, unique per kind within a subscription."""
        if self.kind == "data-store-database":
            return f"{self.parents['account']}/{self.name}"
        if self.kind == "data-store-collection":
            return f"{self.parents['account']}/{self.parents['database']}/{self.name}"
        return self.name


@dataclass(frozen=True)
class ResourceState:
    kind: str
    name: str
    state: str
    properties: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_ready(self) -> bool:
        return self.state.strip().lower() in READY_STATES

    @property
    def is_failed(self) -> bool:
        return self.state.strip().lower() in FAILED_STATES


@dataclass(frozen=True)
class ProvisioningStep:
    index: int
    kind: ResourceKind
    name: str
    depends_on: FrozenSet[int]
    spec: ResourceSpec


@dataclass(frozen=True)
class ProvisioningPlan:
    """Steps for one (client, environment), in a valid topological order.

    Built fresh per invocation and never persisted.
    """

    client_key: str
    env_key: str
    steps: Tuple[ProvisioningStep, ...]

    def __post_init__(self) -> None:
        for pos, step in enumerate(self.steps):
            if step.kind not in RESOURCE_KIND_VALUES:
                raise ValueError(f"step {step.name!r} has unknown kind {step.kind!r}")
            if step.index != pos:
                raise ValueError(f"step {step.name!r} has index {step.index}, expected {pos}")
            for dep in step.depends_on:
                if not 0 <= dep < pos:
                    raise ValueError(f"step {pos} ({step.name!r}) depends on {dep}, which does not precede it")
        if self.steps and self.steps[0].kind != "resource-group":
            raise ValueError("the first step of a plan must be the resource group")

    def dependents(self) -> Dict[int, Set[int]]:
        out: Dict[int, Set[int]] = {s.index: set() for s in self.steps}
        for s in self.steps:
            for dep in s.depends_on:
                out[dep].add(s.index)
        return out

    def steps_of_kind(self, kind: str) -> List[ProvisioningStep]:
        return [s for s in self.steps if s.kind == kind]


@dataclass(frozen=True)
class StepResult:
    index: int
    kind: str
    name: str
    outcome: StepOutcome
    error: str = ""
    attempts: int = 0

    @property
    def ok(self) -> bool:
        return self.outcome in SUCCESS_OUTCOMES


@dataclass(frozen=True)
class DeploymentReport:
    client_key: str
    env_key: str
    results: Tuple[StepResult, ...]

    @property
    def ok(self) -> bool:
        return all(r.ok for r in self.results)

    def with_outcome(self, outcome: str) -> List[StepResult]:
        return [r for r in self.results if r.outcome == outcome]

    @property
    def failed(self) -> List[StepResult]:
        return self.with_outcome("failed")

    def as_dict(self) -> Dict[str, Any]:
        return {
            "client": self.client_key,
            "environment": self.env_key,
            "ok": self.ok,
            "created": len(self.with_outcome("created")),
            "already_existed": len(self.with_outcome("already-existed")),
            "failed": len(self.failed),
            "steps": [asdict(r) for r in self.results],
        }


@dataclass(frozen=True)
class SeedResult:
    collection: str
    created_count: int = 0
    already_existed_count: int = 0
    failed_ids: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed_ids

    def as_dict(self) -> Dict[str, Any]:
        return {
            "collection": self.collection,
            "ok": self.ok,
            "created_count": self.created_count,
            "already_existed_count": self.already_existed_count,
            "failed_ids": dict(self.failed_ids),
        }


@dataclass(frozen=True)
class ValidationResult:
    collection: str
    present: Tuple[str, ...] = ()
    missing: Tuple[str, ...] = ()
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return not self.missing and self.error is None

    def as_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "collection": self.collection,
            "ok": self.ok,
            "present": list(self.present),
            "missing": list(self.missing),
        }
        if self.error is not None:
            out["error"] = self.error
        return out
