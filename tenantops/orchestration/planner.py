from __future__ import annotations

from typing import Any, Dict, FrozenSet, Iterable, List

from ..common.naming import NAMING_VERSION, compute_plan_name, function_unit_name, storage_account_name
from ..config.errors import InvalidFunctionReference
from ..config.models import EnvironmentConfig, SolutionConfig
from ..config.store import lookup_environment
from ..infra.models import ProvisioningPlan, ProvisioningStep, ResourceKind, ResourceSpec

FUNCTION_RUNTIME = "dotnet"
STORAGE_SKU = "Standard_LRS"
COMPUTE_PLAN_SKU = "B1"


def _tags(config: SolutionConfig, env: EnvironmentConfig) -> Dict[str, str]:
    return {
        "solution": config.name,
        "client": env.client_key,
        "environment": env.env_key,
        "naming-version": str(NAMING_VERSION),
    }


class _PlanWriter:
    def __init__(self, env: EnvironmentConfig) -> None:
        self.env = env
        self.steps: List[ProvisioningStep] = []

    def add(
        self,
        kind: ResourceKind,
        name: str,
        depends_on: Iterable[int] = (),
        *,
        parents: Dict[str, str] | None = None,
        settings: Dict[str, Any] | None = None,
    ) -> int:
        index = len(self.steps)
        deps: FrozenSet[int] = frozenset(depends_on)
        spec = ResourceSpec(
            kind=kind,
            name=name,
            resource_group=self.env.resource_group,
            location=self.env.location,
            parents=dict(parents or {}),
            settings=dict(settings or {}),
        )
        self.steps.append(ProvisioningStep(index=index, kind=kind, name=name, depends_on=deps, spec=spec))
        return index


def build_plan(config: SolutionConfig, client_key: str, env_key: str) -> ProvisioningPlan:
    """Expand one (client, environment) into dependency-ordered provisioning steps.

    resource group
      -> storage account, data-store account -> database -> collections
      -> compute plan
    function units depend on the compute plan, the storage account and the
    database. Independent steps carry no edge between them and may run
    concurrently.

    Raises ClientNotFound / EnvironmentNotFound from the lookup and
    InvalidFunctionReference when a function has no mapping.
    """
    env = lookup_environment(config, client_key, env_key)

    functions = env.functions.ordered()
    for fn in functions:
        if fn not in config.function_mappings:
            raise InvalidFunctionReference(f"{client_key}/{env_key}: function {fn!r} has no entry in functionMappings")

    w = _PlanWriter(env)
    ds = env.data_store

    rg = w.add("resource-group", env.resource_group, settings={"tags": _tags(config, env)})

    storage_name = storage_account_name(config.name, client_key, env_key)
    storage = w.add("storage-account", storage_name, [rg], settings={"sku": STORAGE_SKU})
    account = w.add("data-store-account", ds.account_name, [rg])
    database = w.add("data-store-database", ds.database_name, [account], parents={"account": ds.account_name})
    for coll in ds.collections:
        w.add(
            "data-store-collection",
            coll.name,
            [database],
            parents={"account": ds.account_name, "database": ds.database_name},
            settings={"partition_key": coll.partition_key},
        )

    plan_name = compute_plan_name(config.name, client_key, env_key)
    plan = w.add("compute-plan", plan_name, [rg], settings={"sku": COMPUTE_PLAN_SKU})

    for fn in functions:
        mapping = config.function_mappings[fn]
        app_settings = {
            "TENANTOPS_CLIENT": client_key,
            "TENANTOPS_ENVIRONMENT": env_key,
            "COSMOS_ACCOUNT": ds.account_name,
            "COSMOS_DATABASE": ds.database_name,
            "FUNCTION_SOURCE_PATH": mapping.path,
        }
        if mapping.type:
            app_settings["FUNCTION_TYPE"] = mapping.type
        w.add(
            "deployed-function-unit",
            function_unit_name(fn, client_key, env_key),
            [plan, storage, database],
            parents={
                "plan": plan_name,
                "storage_account": storage_name,
                "data_store_account": ds.account_name,
                "database": ds.database_name,
            },
            settings={"function": fn, "runtime": FUNCTION_RUNTIME, "app_settings": app_settings},
        )

    return ProvisioningPlan(client_key=client_key, env_key=env_key, steps=tuple(w.steps))
