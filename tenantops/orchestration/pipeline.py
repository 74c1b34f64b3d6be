from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

from ..common.retry import DEFAULT_RETRY_POLICY, RetryPolicy
from ..config.models import SolutionConfig
from ..config.store import lookup_environment
from ..data.seeder import seed_environment
from ..data.validator import validate_environment
from ..infra.errors import InfraError
from ..infra.factory import InfraBundle
from ..infra.models import DeploymentReport, SeedResult, ValidationResult
from .engine import DEFAULT_MAX_WORKERS, Observer, apply_plan
from .planner import build_plan
from .status_reducer import StatusInputs, reduce_environment_status

DATA_STORE_KINDS = ("data-store-account", "data-store-database", "data-store-collection")


@dataclass(frozen=True)
class EnvironmentRun:
    client_key: str
    env_key: str
    report: DeploymentReport
    seeds: Tuple[SeedResult, ...] = ()
    validations: Tuple[ValidationResult, ...] = ()
    skipped: str = ""

    @property
    def status(self) -> str:
        return reduce_environment_status(StatusInputs(report=self.report, seeds=self.seeds, validations=self.validations))

    @property
    def ok(self) -> bool:
        return (
            self.report.ok
            and not self.skipped
            and all(s.ok for s in self.seeds)
            and all(v.ok for v in self.validations)
        )

    def as_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "client": self.client_key,
            "environment": self.env_key,
            "status": self.status,
            "ok": self.ok,
            "deployment": self.report.as_dict(),
            "seed": [s.as_dict() for s in self.seeds],
            "validation": [v.as_dict() for v in self.validations],
        }
        if self.skipped:
            out["skipped"] = self.skipped
        return out


def data_store_ready(report: DeploymentReport) -> bool:
    return all(r.ok for r in report.results if r.kind in DATA_STORE_KINDS)


def run_environment(
    config: SolutionConfig,
    client_key: str,
    env_key: str,
    infra: InfraBundle,
    *,
    policy: RetryPolicy = DEFAULT_RETRY_POLICY,
    max_workers: int = DEFAULT_MAX_WORKERS,
    sleep: Callable[[float], None] = time.sleep,
    observer: Optional[Observer] = None,
) -> EnvironmentRun:
    """Build, apply, seed and validate one (client, environment).

    Seeding and validation only run when every data-store step is ready; a
    failed function unit does not prevent the baseline data from landing.
    Failing to open the data store is reported as ``skipped``, never raised.
    """
    env = lookup_environment(config, client_key, env_key)
    plan = build_plan(config, client_key, env_key)
    report = apply_plan(plan, infra.control_plane, policy=policy, max_workers=max_workers, sleep=sleep, observer=observer)
    if not data_store_ready(report):
        return EnvironmentRun(client_key=client_key, env_key=env_key, report=report, skipped="data store not provisioned")

    try:
        store = infra.open_data_store(env)
    except InfraError as e:
        return EnvironmentRun(
            client_key=client_key,
            env_key=env_key,
            report=report,
            skipped=f"data store unavailable: {e.__class__.__name__}: {e}",
        )
    seeds = seed_environment(store, env, policy=policy, sleep=sleep)
    validations = validate_environment(store, env)
    return EnvironmentRun(client_key=client_key, env_key=env_key, report=report, seeds=seeds, validations=validations)
