"""Client/environment registry: load, look up, extend and persist.

The registry is a single JSON document (see ``config/clients.json``). It is
read once per invocation into an immutable ``SolutionConfig``; the only
mutation is ``add_client`` which returns a new value the caller must persist
with ``save_solution_config``. That save is a whole-document read-modify-write
without locking, so concurrent writers must be serialized by the caller.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple

from ..common.naming import data_store_account_name, function_unit_name, resource_group_name
from ..utils.jsonio import write_json
from .errors import (
    ClientNotFound,
    ConfigNotFound,
    ConfigParseError,
    DuplicateClient,
    EnvironmentNotFound,
)
from .models import (
    ENVIRONMENT_KEYS,
    ClientConfig,
    CollectionConfig,
    DataStoreConfig,
    EnvironmentConfig,
    FunctionMapping,
    FunctionSet,
    SolutionConfig,
)
from .validate import validate_client_document, validate_document


@dataclass(frozen=True)
class FunctionTarget:
    """A deployed function app that hosts a given logical function."""

    client_key: str
    env_key: str
    function_name: str
    function_app: str
    resource_group: str


# ---------------------------------------------------------------------------
# Document <-> model
# ---------------------------------------------------------------------------


def _environment_from_document(solution: Dict[str, Any], client_key: str, env_key: str, raw: Dict[str, Any]) -> EnvironmentConfig:
    name = str(solution["name"])
    prefix = str(solution.get("resourceGroupPrefix") or "rg")
    cosmos = raw["cosmosDb"]
    functions = raw.get("functions") or {}
    collections = tuple(
        CollectionConfig(
            name=str(c["name"]),
            partition_key=str(c["partitionKey"]),
            default_data=tuple(dict(r) for r in (c.get("defaultData") or [])),
        )
        for c in cosmos["collections"]
    )
    return EnvironmentConfig(
        client_key=client_key,
        env_key=env_key,
        resource_group=resource_group_name(name, client_key, env_key, prefix),
        location=str(raw.get("location") or solution["defaultLocation"]),
        data_store=DataStoreConfig(
            account_name=data_store_account_name(name, client_key, env_key),
            database_name=str(cosmos["databaseName"]),
            collections=collections,
        ),
        functions=FunctionSet(
            core=tuple(functions.get("core") or ()),
            plugins=tuple(functions.get("plugins") or ()),
        ),
    )


def _environment_to_document(env: EnvironmentConfig) -> Dict[str, Any]:
    collections: List[Dict[str, Any]] = []
    for c in env.data_store.collections:
        col: Dict[str, Any] = {"name": c.name, "partitionKey": c.partition_key}
        if c.default_data:
            col["defaultData"] = [dict(r) for r in c.default_data]
        collections.append(col)
    return {
        "resourceGroup": env.resource_group,
        "location": env.location,
        "cosmosDb": {
            "accountName": env.data_store.account_name,
            "databaseName": env.data_store.database_name,
            "collections": collections,
        },
        "functions": {"core": list(env.functions.core), "plugins": list(env.functions.plugins)},
    }


def _client_to_document(client: ClientConfig) -> Dict[str, Any]:
    envs = {k: _environment_to_document(client.environments[k]) for k in ENVIRONMENT_KEYS if k in client.environments}
    return {"displayName": client.display_name, "environments": envs}


def _solution_header(config: SolutionConfig) -> Dict[str, Any]:
    return {
        "name": config.name,
        "azureSubscription": config.azure_subscription,
        "defaultLocation": config.default_location,
        "resourceGroupPrefix": config.resource_group_prefix,
    }


def from_document(data: Dict[str, Any]) -> SolutionConfig:
    validate_document(data)
    solution = data["solution"]
    clients: Dict[str, ClientConfig] = {}
    for key, raw in data["clients"].items():
        envs = {
            env_key: _environment_from_document(solution, key, env_key, raw_env)
            for env_key, raw_env in raw["environments"].items()
        }
        clients[key] = ClientConfig(key=key, display_name=str(raw["displayName"]), environments=envs)
    mappings = {
        name: FunctionMapping(name=name, path=str(m["path"]), type=str(m.get("type") or ""))
        for name, m in data["functionMappings"].items()
    }
    return SolutionConfig(
        name=str(solution["name"]),
        default_location=str(solution["defaultLocation"]),
        resource_group_prefix=str(solution.get("resourceGroupPrefix") or "rg"),
        azure_subscription=str(solution.get("azureSubscription") or ""),
        clients=clients,
        function_mappings=mappings,
    )


def to_document(config: SolutionConfig) -> Dict[str, Any]:
    """Serialize back to the persisted JSON shape (clients in insertion order)."""
    mappings: Dict[str, Any] = {}
    for name, m in config.function_mappings.items():
        entry: Dict[str, Any] = {"path": m.path}
        if m.type:
            entry["type"] = m.type
        mappings[name] = entry
    return {
        "solution": _solution_header(config),
        "clients": {key: _client_to_document(c) for key, c in config.clients.items()},
        "functionMappings": mappings,
    }


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------


def load_solution_config(path: Path) -> SolutionConfig:
    """Load and validate the registry document.

    Raises:
        ConfigNotFound: the file does not exist.
        ConfigParseError: the file is not valid JSON or fails validation.
        InvalidFunctionReference: an environment lists an unmapped function.
    """
    p = Path(path)
    try:
        raw = p.read_bytes()
    except FileNotFoundError as e:
        raise ConfigNotFound(f"registry not found: {p}") from e
    except OSError as e:
        raise ConfigParseError(f"registry cannot be read: {p}: {e.strerror or e}") from e
    try:
        data = json.loads(raw.decode("utf-8"))
    except ValueError as e:
        # JSONDecodeError and UnicodeDecodeError
        raise ConfigParseError(f"registry is not valid UTF-8 JSON: {p}: {e}") from e
    return from_document(data)


def save_solution_config(path: Path, config: SolutionConfig) -> None:
    write_json(Path(path), to_document(config))


def lookup_client(config: SolutionConfig, client_key: str) -> ClientConfig:
    client = config.clients.get(client_key)
    if client is None:
        raise ClientNotFound(f"client {client_key!r} is not registered (known: {sorted(config.clients)})")
    return client


def lookup_environment(config: SolutionConfig, client_key: str, env_key: str) -> EnvironmentConfig:
    client = lookup_client(config, client_key)
    env = client.environments.get(env_key)
    if env is None:
        raise EnvironmentNotFound(
            f"client {client_key!r} has no environment {env_key!r} (known: {sorted(client.environments)})"
        )
    return env


def add_client(config: SolutionConfig, client: ClientConfig) -> SolutionConfig:
    """Return a new SolutionConfig with ``client`` appended. Does not persist."""
    if client.key in config.clients:
        raise DuplicateClient(f"client {client.key!r} is already registered")
    for env_key, env in client.environments.items():
        where = f"clients.{client.key}.environments.{env_key}"
        if env_key not in ENVIRONMENT_KEYS:
            raise ConfigParseError(f"{where}: unknown environment (allowed {list(ENVIRONMENT_KEYS)})")
        if (env.client_key, env.env_key) != (client.key, env_key):
            raise ConfigParseError(f"{where}: environment is for {env.client_key}/{env.env_key}")
    mappings = {name: {"path": m.path} for name, m in config.function_mappings.items()}
    validate_client_document(_solution_header(config), client.key, _client_to_document(client), mappings)
    clients = dict(config.clients)
    clients[client.key] = client
    return replace(config, clients=clients)


def new_client_config(
    config: SolutionConfig,
    key: str,
    display_name: str,
    env_keys: Iterable[str],
    template: Optional[str] = None,
) -> ClientConfig:
    """Build a ClientConfig with derived names for ``env_keys``.

    Collections, database name and functions are copied from the matching
    environment of ``template`` when given (falling back to its other
    environment); otherwise the environment starts with no collections and
    no functions.
    """
    source: Optional[ClientConfig] = lookup_client(config, template) if template else None
    envs: Dict[str, EnvironmentConfig] = {}
    for env_key in env_keys:
        if env_key not in ENVIRONMENT_KEYS:
            raise EnvironmentNotFound(f"unknown environment {env_key!r} (allowed {list(ENVIRONMENT_KEYS)})")
        base: Optional[EnvironmentConfig] = None
        if source is not None:
            base = source.environments.get(env_key) or next(iter(source.environments.values()), None)
        envs[env_key] = EnvironmentConfig(
            client_key=key,
            env_key=env_key,
            resource_group=resource_group_name(config.name, key, env_key, config.resource_group_prefix),
            location=base.location if base is not None else config.default_location,
            data_store=DataStoreConfig(
                account_name=data_store_account_name(config.name, key, env_key),
                database_name=base.data_store.database_name if base is not None else f"{config.name}db",
                collections=base.data_store.collections if base is not None else (),
            ),
            functions=base.functions if base is not None else FunctionSet(),
        )
    return ClientConfig(key=key, display_name=display_name, environments=envs)


def iter_environments(
    config: SolutionConfig,
    client_key: Optional[str] = None,
    env_key: Optional[str] = None,
) -> Iterator[EnvironmentConfig]:
    """Registered environments, clients sorted by key, ``testing`` before ``main``.

    A given ``client_key`` must exist, and so must ``env_key`` for that
    client. ``env_key`` alone skips clients that do not declare it.
    """
    if client_key is not None:
        keys: List[str] = [lookup_client(config, client_key).key]
    else:
        keys = sorted(config.clients)
    for key in keys:
        client = config.clients[key]
        if env_key is not None:
            if client_key is not None:
                yield lookup_environment(config, key, env_key)
            elif env_key in client.environments:
                yield client.environments[env_key]
            continue
        for ek in ENVIRONMENT_KEYS:
            if ek in client.environments:
                yield client.environments[ek]


def clients_using_function(config: SolutionConfig, function_name: str, env_key: str) -> List[FunctionTarget]:
    """Every environment of kind ``env_key`` that hosts ``function_name``."""
    out: List[FunctionTarget] = []
    for key in sorted(config.clients):
        env = config.clients[key].environments.get(env_key)
        if env is None or function_name not in env.functions.ordered():
            continue
        out.append(
            FunctionTarget(
                client_key=key,
                env_key=env_key,
                function_name=function_name,
                function_app=function_unit_name(function_name, key, env_key),
                resource_group=env.resource_group,
            )
        )
    return out


def expand_environment_selector(selector: str) -> Tuple[str, ...]:
    """``both`` expands to every environment key; anything else is taken as-is."""
    if selector == "both":
        return ENVIRONMENT_KEYS
    if selector not in ENVIRONMENT_KEYS:
        raise EnvironmentNotFound(f"unknown environment {selector!r} (allowed {list(ENVIRONMENT_KEYS)} or 'both')")
    return (selector,)
