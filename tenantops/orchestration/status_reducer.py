from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Tuple

from ..infra.models import DeploymentReport, SeedResult, ValidationResult

UNCONFIGURED = "UNCONFIGURED"
PLANNED = "PLANNED"
PROVISIONED_PARTIAL = "PROVISIONED_PARTIAL"
PROVISIONED_COMPLETE = "PROVISIONED_COMPLETE"
SEEDED_PARTIAL = "SEEDED_PARTIAL"
SEEDED_COMPLETE = "SEEDED_COMPLETE"
VALIDATED_PASS = "VALIDATED_PASS"
VALIDATED_FAIL = "VALIDATED_FAIL"

ENVIRONMENT_STATUSES: Tuple[str, ...] = (
    UNCONFIGURED,
    PLANNED,
    PROVISIONED_PARTIAL,
    PROVISIONED_COMPLETE,
    SEEDED_PARTIAL,
    SEEDED_COMPLETE,
    VALIDATED_PASS,
    VALIDATED_FAIL,
)


@dataclass(frozen=True)
class StatusInputs:
    configured: bool = True
    report: Optional[DeploymentReport] = None
    seeds: Tuple[SeedResult, ...] = field(default_factory=tuple)
    validations: Tuple[ValidationResult, ...] = field(default_factory=tuple)


def reduce_environment_status(inputs: StatusInputs) -> str:
    """Compute the lifecycle status of one (client, environment).

    Nothing is persisted; the status is recomputed from whatever the current
    run observed.

    Canonical outputs:
      - UNCONFIGURED: the environment is not in the registry
      - PLANNED: a plan exists but no resource is ready
      - PROVISIONED_PARTIAL: some but not all steps ready
      - PROVISIONED_COMPLETE: every step ready, nothing seeded or validated
      - SEEDED_PARTIAL / SEEDED_COMPLETE: seeding ran, with / without failed ids
      - VALIDATED_PASS / VALIDATED_FAIL: validation ran (takes precedence over seeding)
    """
    if not inputs.configured:
        return UNCONFIGURED

    report = inputs.report
    if report is None or not any(r.ok for r in report.results):
        return PLANNED

    if not report.ok:
        return PROVISIONED_PARTIAL

    if inputs.validations:
        return VALIDATED_PASS if all(v.ok for v in inputs.validations) else VALIDATED_FAIL

    if inputs.seeds:
        return SEEDED_COMPLETE if all(s.ok for s in inputs.seeds) else SEEDED_PARTIAL

    return PROVISIONED_COMPLETE
