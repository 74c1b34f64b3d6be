from __future__ import annotations

from .models import (
    ResourceSpec,
    ResourceState,
    ProvisioningStep,
    ProvisioningPlan,
    StepResult,
    DeploymentReport,
    SeedResult,
    ValidationResult,
)

from .errors import (
    InfraError,
    NotFoundError,
    ValidationError,
    RetryableError,
    ConflictError,
    NotConfiguredError,
    TransientProvisionError,
    PermanentProvisionError,
    RecordWriteError,
)

from .contracts import (
    ControlPlane,
    DataStore,
)

from .config import (
    RuntimeProfile,
    AdapterSpec,
    load_runtime_profile,
    parse_runtime_profile,
    resolve_runtime_profile_path,
)

from .factory import (
    InfraBundle,
    build_infra,
)

__all__ = [
    "ResourceSpec",
    "ResourceState",
    "ProvisioningStep",
    "ProvisioningPlan",
    "StepResult",
    "DeploymentReport",
    "SeedResult",
    "ValidationResult",
    "InfraError",
    "NotFoundError",
    "ValidationError",
    "RetryableError",
    "ConflictError",
    "NotConfiguredError",
    "TransientProvisionError",
    "PermanentProvisionError",
    "RecordWriteError",
    "ControlPlane",
    "DataStore",
    "RuntimeProfile",
    "AdapterSpec",
    "load_runtime_profile",
    "parse_runtime_profile",
    "resolve_runtime_profile_path",
    "InfraBundle",
    "build_infra",
]
