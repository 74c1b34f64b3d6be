"""Runtime profile: which control plane and data store a run talks to.

The profile file holds named profiles; one is selected per invocation::

    default_profile: local
    profiles:
      azure:
        adapters:
          control_plane: {kind: azure_cli, settings: {timeout_s: 900}}
          data_store: {kind: cosmos_rest, settings: {key_env: TENANTOPS_COSMOS_KEY}}

Validation runs in two passes: the file shape (roles and kinds), then the
``settings`` of every adapter against the schema of its kind, so a typo in a
setting name is reported with the profile and role it belongs to.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import jsonschema
import yaml

from ..utils.yamlio import read_yaml
from .errors import ValidationError

PROFILE_PATH_ENV = "TENANTOPS_RUNTIME_PROFILE"
PROFILE_NAME_ENV = "TENANTOPS_PROFILE_NAME"

_POSITIVE_NUMBER = {"type": "number", "exclusiveMinimum": 0}
_NAME = {"type": "string", "minLength": 1}

# role -> kind -> schema of that adapter's ``settings`` mapping.
ADAPTER_SETTINGS: Dict[str, Dict[str, Dict[str, Any]]] = {
    "control_plane": {
        "local": {"state_path": {"type": "string"}},
        "azure_cli": {"subscription": {"type": "string"}, "az_cli": _NAME, "timeout_s": _POSITIVE_NUMBER},
    },
    "data_store": {
        "local": {},
        "cosmos_rest": {"key_env": _NAME, "endpoint": {"type": "string"}, "timeout_s": _POSITIVE_NUMBER},
    },
}

# data_store kind -> control_plane kinds it can be paired with.
DATA_STORE_PAIRING: Dict[str, Tuple[str, ...]] = {
    "local": ("local",),
    "cosmos_rest": ("local", "azure_cli"),
}


@dataclass(frozen=True)
class AdapterSpec:
    kind: str
    settings: Dict[str, Any]


@dataclass(frozen=True)
class RuntimeProfile:
    profile_name: str
    adapters: Dict[str, AdapterSpec]

    def adapter(self, role: str) -> AdapterSpec:
        return self.adapters[role]


def resolve_runtime_profile_path(repo_root: Path, cli_path: Optional[str] = None) -> Path:
    """``--runtime-profile``, else ``$TENANTOPS_RUNTIME_PROFILE``, else ``config/runtime_profile.yml``."""
    for candidate in (cli_path, os.environ.get(PROFILE_PATH_ENV)):
        if candidate and str(candidate).strip():
            return Path(str(candidate).strip()).expanduser().resolve()
    return (repo_root / "config" / "runtime_profile.yml").resolve()


def _file_schema() -> Dict[str, Any]:
    roles = {
        role: {
            "type": "object",
            "required": ["kind"],
            "properties": {"kind": {"enum": sorted(kinds)}, "settings": {"type": "object"}},
            "additionalProperties": False,
        }
        for role, kinds in ADAPTER_SETTINGS.items()
    }
    profile = {
        "type": "object",
        "required": ["adapters"],
        "properties": {
            "description": {"type": "string"},
            "adapters": {
                "type": "object",
                "required": sorted(roles),
                "properties": roles,
                "additionalProperties": False,
            },
        },
        "additionalProperties": False,
    }
    return {
        "$schema": "https://json-schema.org/draft/2020-12/schema",
        "type": "object",
        "required": ["profiles"],
        "properties": {
            "default_profile": {"type": "string"},
            "profiles": {"type": "object", "minProperties": 1, "additionalProperties": profile},
        },
        "additionalProperties": False,
    }


def _settings_schema(role: str, kind: str) -> Dict[str, Any]:
    return {"type": "object", "properties": ADAPTER_SETTINGS[role][kind], "additionalProperties": False}


def _check(instance: Any, schema: Dict[str, Any], where: str) -> None:
    try:
        jsonschema.validate(instance=instance, schema=schema)
    except jsonschema.ValidationError as e:
        at = "/".join(str(p) for p in e.absolute_path)
        raise ValidationError(f"{where}{'/' + at if at else ''}: {e.message}") from e


def _profile_name(data: Dict[str, Any], path: Path) -> str:
    profiles = data["profiles"]
    for source, name in ((PROFILE_NAME_ENV, os.environ.get(PROFILE_NAME_ENV)), ("default_profile", data.get("default_profile"))):
        name = str(name or "").strip()
        if not name:
            continue
        if name not in profiles:
            raise ValidationError(f"{source}={name!r} is not one of {sorted(profiles)} in {path}")
        return name
    return sorted(profiles)[0]


def parse_runtime_profile(data: Any, path: Path) -> RuntimeProfile:
    """Validate an already-parsed profile document and select one profile."""
    _check(data, _file_schema(), f"runtime profile {path}")
    name = _profile_name(data, path)

    adapters: Dict[str, AdapterSpec] = {}
    for role, raw in data["profiles"][name]["adapters"].items():
        kind = str(raw["kind"])
        settings = dict(raw.get("settings") or {})
        _check(settings, _settings_schema(role, kind), f"runtime profile {path}: profiles/{name}/adapters/{role}/settings")
        adapters[role] = AdapterSpec(kind=kind, settings=settings)

    ds, cp = adapters["data_store"].kind, adapters["control_plane"].kind
    if cp not in DATA_STORE_PAIRING[ds]:
        raise ValidationError(f"runtime profile {path}: profile {name!r} pairs data_store {ds!r} with control_plane {cp!r}")
    return RuntimeProfile(profile_name=name, adapters=adapters)


def load_runtime_profile(repo_root: Path, cli_path: Optional[str] = None) -> RuntimeProfile:
    path = resolve_runtime_profile_path(repo_root, cli_path)
    if not path.is_file():
        raise ValidationError(f"runtime profile not found: {path}")
    try:
        data = read_yaml(path)
    except (yaml.YAMLError, UnicodeDecodeError) as e:
        raise ValidationError(f"runtime profile is not valid YAML: {path}: {e}") from e
    return parse_runtime_profile(data, path)
