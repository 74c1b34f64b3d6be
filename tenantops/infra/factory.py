from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict

from ..config.models import EnvironmentConfig
from .config import RuntimeProfile
from .contracts import ControlPlane, DataStore
from .errors import NotConfiguredError, ValidationError

DEFAULT_COSMOS_KEY_ENV = "TENANTOPS_COSMOS_KEY"


@dataclass
class InfraBundle:
    profile: RuntimeProfile
    control_plane: ControlPlane
    data_store_kind: str
    data_store_settings: Dict[str, Any] = field(default_factory=dict)

    def open_data_store(self, env: EnvironmentConfig) -> DataStore:
        """Record access for the database provisioned for ``env``."""
        account = env.data_store.account_name
        database = env.data_store.database_name

        if self.data_store_kind == "local":
            from .adapters.local_cloud import LocalCloud

            if not isinstance(self.control_plane, LocalCloud):
                raise NotConfiguredError("data_store kind 'local' requires control_plane kind 'local'")
            return self.control_plane.open_data_store(account, database)

        if self.data_store_kind == "cosmos_rest":
            from .adapters.cosmos_rest import CosmosRestDataStore, CosmosRestSettings

            s = self.data_store_settings
            key = self._resolve_key(env)
            return CosmosRestDataStore(
                settings=CosmosRestSettings(
                    account=account,
                    database=database,
                    key=key,
                    endpoint=str(s.get("endpoint", "") or "").strip(),
                    timeout_s=float(s.get("timeout_s", 30.0) or 30.0),
                )
            )

        raise ValidationError(f"unknown data_store adapter kind: {self.data_store_kind!r}")

    def _resolve_key(self, env: EnvironmentConfig) -> str:
        # Precedence: env var named in settings, then the control plane (az cosmosdb keys list).
        key_env = str(self.data_store_settings.get("key_env", "") or DEFAULT_COSMOS_KEY_ENV).strip()
        key = str(os.environ.get(key_env, "") or "").strip()
        if key:
            return key
        lookup = getattr(self.control_plane, "data_store_key", None)
        if callable(lookup):
            return str(lookup(env.data_store.account_name, env.resource_group))
        raise NotConfiguredError(f"no Cosmos DB key: set {key_env} or use control_plane kind 'azure_cli'")

    def describe(self) -> Dict[str, Any]:
        def _d(x: Any) -> Dict[str, Any]:
            if hasattr(x, "describe") and callable(getattr(x, "describe")):
                return dict(getattr(x, "describe")())
            return {"class": x.__class__.__name__}

        return {
            "profile_name": self.profile.profile_name,
            "adapters": {
                "control_plane": _d(self.control_plane),
                "data_store": {"kind": self.data_store_kind},
            },
        }


def build_infra(*, repo_root: Path, profile: RuntimeProfile, subscription: str = "") -> InfraBundle:
    """Build concrete adapter instances from a runtime profile.

    ``subscription`` (CLI argument) takes precedence over the profile's
    ``control_plane.settings.subscription``.
    """
    repo_root = repo_root.resolve()

    cp = profile.adapters["control_plane"]
    if cp.kind == "local":
        from .adapters.local_cloud import LocalCloud

        state_path = str(cp.settings.get("state_path", "") or "").strip()
        if state_path:
            p = Path(state_path).expanduser()
            control_plane: ControlPlane = LocalCloud(p if p.is_absolute() else repo_root / p)
        else:
            control_plane = LocalCloud()
    elif cp.kind == "azure_cli":
        from .adapters.azure_cli import AzureCliControlPlane, AzureCliSettings

        control_plane = AzureCliControlPlane(
            settings=AzureCliSettings(
                subscription=subscription.strip() or str(cp.settings.get("subscription", "") or "").strip(),
                az_cli=str(cp.settings.get("az_cli", "") or "az").strip(),
                timeout_s=float(cp.settings.get("timeout_s", 900.0) or 900.0),
            )
        )
    else:
        raise ValidationError(f"unknown control_plane adapter kind: {cp.kind!r}")

    ds = profile.adapters["data_store"]
    if ds.kind not in ("local", "cosmos_rest"):
        raise ValidationError(f"unknown data_store adapter kind: {ds.kind!r}")
    if ds.kind == "local" and cp.kind != "local":
        raise ValidationError("data_store kind 'local' requires control_plane kind 'local'")

    return InfraBundle(profile=profile, control_plane=control_plane, data_store_kind=ds.kind, data_store_settings=dict(ds.settings))
