from __future__ import annotations

import copy
import json
import sys
from pathlib import Path
from typing import Any, Dict, List


def ensure_repo_on_path() -> Path:
    repo_root = Path(__file__).resolve().parents[1]
    if str(repo_root) not in sys.path:
        sys.path.insert(0, str(repo_root))
    return repo_root


def _environment(client: str, env: str, core: List[str], plugins: List[str]) -> Dict[str, Any]:
    return {
        "resourceGroup": f"rg-witag-{client}-{env}",
        "location": "eastus",
        "cosmosDb": {
            "accountName": f"witag-{client}-{env}",
            "databaseName": "witagdb",
            "collections": [
                {
                    "name": "usuarios",
                    "partitionKey": "/id",
                    "defaultData": [
                        {"id": "usuario1", "nombre": "Ana"},
                        {"id": "usuario2", "nombre": "Luis"},
                        {"id": "usuario3", "nombre": "Marta"},
                    ],
                },
                {
                    "name": "animales",
                    "partitionKey": "/id",
                    "defaultData": [
                        {"id": "perro"},
                        {"id": "gato"},
                        {"id": "raton"},
                    ],
                },
            ],
        },
        "functions": {"core": list(core), "plugins": list(plugins)},
    }


_SAMPLE: Dict[str, Any] = {
    "solution": {
        "name": "witag",
        "azureSubscription": "00000000-0000-0000-0000-000000000000",
        "defaultLocation": "eastus",
        "resourceGroupPrefix": "rg",
    },
    "clients": {
        "elite": {
            "displayName": "Elite",
            "environments": {
                "testing": _environment("elite", "testing", ["functionUsuarios", "functionAnimales"], ["functionRandomUsuario"]),
                "main": _environment("elite", "main", ["functionUsuarios", "functionAnimales"], ["functionRandomUsuario"]),
            },
        },
        "ght": {
            "displayName": "GHT",
            "environments": {
                "testing": _environment("ght", "testing", ["functionAnimales"], []),
            },
        },
    },
    "functionMappings": {
        "functionUsuarios": {"path": "UsersFunction", "type": "core"},
        "functionAnimales": {"path": "AnimalsFunction", "type": "core"},
        "functionRandomUsuario": {"path": "PlugginsRandomFunctionOne", "type": "plugin"},
    },
}


def sample_document() -> Dict[str, Any]:
    """Fresh copy of a two-client registry document (elite: testing+main, ght: testing)."""
    return copy.deepcopy(_SAMPLE)


def write_document(dir_path: Path, doc: Dict[str, Any] | None = None, name: str = "clients.json") -> Path:
    p = Path(dir_path) / name
    p.write_text(json.dumps(doc if doc is not None else sample_document(), indent=2), encoding="utf-8")
    return p


def write_local_profile(dir_path: Path, state_path: Path | None = None) -> Path:
    """Runtime profile selecting the local adapters, optionally persisted to ``state_path``."""
    lines = [
        "default_profile: local",
        "profiles:",
        "  local:",
        "    adapters:",
        "      control_plane:",
        "        kind: local",
    ]
    if state_path is not None:
        lines += ["        settings:", f"          state_path: {json.dumps(str(state_path))}"]
    lines += ["      data_store:", "        kind: local", ""]
    p = Path(dir_path) / "runtime_profile.yml"
    p.write_text("\n".join(lines), encoding="utf-8")
    return p


def no_sleep(_seconds: float) -> None:
    return None
