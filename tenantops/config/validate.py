from __future__ import annotations

import re
from typing import Any, Dict, Iterable, List, Mapping, Set

import jsonschema

from ..common.naming import data_store_account_name, resource_group_name
from .errors import ConfigParseError, InvalidFunctionReference
from .models import ENVIRONMENT_KEYS

CLIENT_KEY_RE = re.compile(r"^[a-z][a-z0-9]*$")

# Derived names must fit the tightest platform limit (storage account, 24
# chars) with the solution and environment around the client key; 15 leaves
# room for the hash suffix on long combinations. Recompute for other backends.
MAX_CLIENT_KEY_LENGTH = 15


def _string_list() -> Dict[str, Any]:
    return {"type": "array", "items": {"type": "string", "minLength": 1}}


def _collection_schema() -> Dict[str, Any]:
    return {
        "type": "object",
        "required": ["name", "partitionKey"],
        "properties": {
            "name": {"type": "string", "minLength": 1},
            "partitionKey": {"type": "string", "minLength": 2},
            "defaultData": {"type": "array", "items": {"type": "object"}},
        },
        "additionalProperties": False,
    }


def _environment_schema() -> Dict[str, Any]:
    return {
        "type": "object",
        "required": ["cosmosDb", "functions"],
        "properties": {
            "resourceGroup": {"type": "string"},
            "location": {"type": "string", "minLength": 1},
            "cosmosDb": {
                "type": "object",
                "required": ["databaseName", "collections"],
                "properties": {
                    "accountName": {"type": "string"},
                    "databaseName": {"type": "string", "minLength": 1},
                    "collections": {"type": "array", "items": _collection_schema()},
                },
                "additionalProperties": False,
            },
            "functions": {
                "type": "object",
                "properties": {"core": _string_list(), "plugins": _string_list()},
                "additionalProperties": False,
            },
        },
        "additionalProperties": False,
    }


def document_schema() -> Dict[str, Any]:
    return {
        "$schema": "https://json-schema.org/draft/2020-12/schema",
        "type": "object",
        "required": ["solution", "clients", "functionMappings"],
        "properties": {
            "solution": {
                "type": "object",
                "required": ["name", "defaultLocation"],
                "properties": {
                    "name": {"type": "string", "pattern": "^[a-z][a-z0-9]*$", "maxLength": 12},
                    "azureSubscription": {"type": "string"},
                    "defaultLocation": {"type": "string", "minLength": 1},
                    "resourceGroupPrefix": {"type": "string", "pattern": "^[a-z][a-z0-9]*$"},
                },
                "additionalProperties": False,
            },
            "clients": {
                "type": "object",
                "additionalProperties": {
                    "type": "object",
                    "required": ["displayName", "environments"],
                    "properties": {
                        "displayName": {"type": "string", "minLength": 1},
                        "environments": {"type": "object", "additionalProperties": _environment_schema()},
                    },
                    "additionalProperties": False,
                },
            },
            "functionMappings": {
                "type": "object",
                "additionalProperties": {
                    "type": "object",
                    "required": ["path"],
                    "properties": {"path": {"type": "string", "minLength": 1}, "type": {"type": "string"}},
                    "additionalProperties": False,
                },
            },
        },
        "additionalProperties": False,
    }


def validate_client_key(key: str) -> None:
    if not CLIENT_KEY_RE.match(key or ""):
        raise ConfigParseError(f"Invalid client key {key!r}: must match {CLIENT_KEY_RE.pattern}")
    if len(key) > MAX_CLIENT_KEY_LENGTH:
        raise ConfigParseError(f"Invalid client key {key!r}: longer than {MAX_CLIENT_KEY_LENGTH} characters")


def _check_records(records: Iterable[Any], where: str) -> None:
    seen: Set[str] = set()
    for i, rec in enumerate(records):
        rid = rec.get("id") if isinstance(rec, Mapping) else None
        if not isinstance(rid, str) or not rid.strip():
            raise ConfigParseError(f"{where}.defaultData[{i}]: 'id' must be a non-empty string")
        if rid in seen:
            raise ConfigParseError(f"{where}.defaultData: duplicate id {rid!r}")
        seen.add(rid)


def _check_environment(doc_solution: Mapping[str, Any], client_key: str, env_key: str, env: Mapping[str, Any], mappings: Mapping[str, Any]) -> None:
    where = f"clients.{client_key}.environments.{env_key}"
    solution = str(doc_solution["name"])
    prefix = str(doc_solution.get("resourceGroupPrefix") or "rg")

    expected_rg = resource_group_name(solution, client_key, env_key, prefix)
    rg = str(env.get("resourceGroup") or "")
    if rg and rg != expected_rg:
        raise ConfigParseError(f"{where}.resourceGroup is {rg!r}, derived name is {expected_rg!r}")

    cosmos = env["cosmosDb"]
    expected_account = data_store_account_name(solution, client_key, env_key)
    account = str(cosmos.get("accountName") or "")
    if account and account != expected_account:
        raise ConfigParseError(f"{where}.cosmosDb.accountName is {account!r}, derived name is {expected_account!r}")

    names: Set[str] = set()
    for col in cosmos["collections"]:
        name = col["name"]
        if name in names:
            raise ConfigParseError(f"{where}.cosmosDb.collections: duplicate collection {name!r}")
        names.add(name)
        if not str(col["partitionKey"]).startswith("/"):
            raise ConfigParseError(f"{where}.cosmosDb.collections.{name}.partitionKey must start with '/'")
        _check_records(col.get("defaultData") or [], f"{where}.cosmosDb.collections.{name}")

    functions = env.get("functions") or {}
    listed: List[str] = list(functions.get("core") or []) + list(functions.get("plugins") or [])
    if len(set(listed)) != len(listed):
        raise ConfigParseError(f"{where}.functions: a function is listed more than once")
    for fn in listed:
        if fn not in mappings:
            raise InvalidFunctionReference(f"{where}.functions references {fn!r} with no entry in functionMappings")


def validate_client_document(doc_solution: Mapping[str, Any], key: str, client: Mapping[str, Any], mappings: Mapping[str, Any]) -> None:
    validate_client_key(key)
    for env_key, env in (client.get("environments") or {}).items():
        if env_key not in ENVIRONMENT_KEYS:
            raise ConfigParseError(f"clients.{key}.environments: unknown environment {env_key!r} (allowed {list(ENVIRONMENT_KEYS)})")
        _check_environment(doc_solution, key, env_key, env, mappings)


def validate_document(data: Any) -> None:
    """Validate a registry document.

    Raises:
        ConfigParseError: on schema violations or semantic problems.
        InvalidFunctionReference: when an environment lists an unmapped function.
    """
    try:
        jsonschema.validate(instance=data, schema=document_schema())
    except jsonschema.ValidationError as e:
        where = "/".join(str(p) for p in e.absolute_path) or "<root>"
        raise ConfigParseError(f"registry schema validation failed at {where}: {e.message}") from e

    mappings = data["functionMappings"]
    for key, client in data["clients"].items():
        validate_client_document(data["solution"], key, client, mappings)
