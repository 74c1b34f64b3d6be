"""Client/environment registry.

The registry JSON document is the single source of truth for which clients
exist, which environments they run and what each environment contains.
"""

from __future__ import annotations

from .errors import (
    ClientNotFound,
    ConfigError,
    ConfigNotFound,
    ConfigParseError,
    DuplicateClient,
    EnvironmentNotFound,
    InvalidFunctionReference,
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
from .store import (
    FunctionTarget,
    add_client,
    clients_using_function,
    expand_environment_selector,
    iter_environments,
    load_solution_config,
    lookup_client,
    lookup_environment,
    new_client_config,
    save_solution_config,
    to_document,
)

__all__ = [
    "ClientNotFound",
    "ConfigError",
    "ConfigNotFound",
    "ConfigParseError",
    "DuplicateClient",
    "EnvironmentNotFound",
    "InvalidFunctionReference",
    "ENVIRONMENT_KEYS",
    "ClientConfig",
    "CollectionConfig",
    "DataStoreConfig",
    "EnvironmentConfig",
    "FunctionMapping",
    "FunctionSet",
    "SolutionConfig",
    "FunctionTarget",
    "add_client",
    "clients_using_function",
    "expand_environment_selector",
    "iter_environments",
    "load_solution_config",
    "lookup_client",
    "lookup_environment",
    "new_client_config",
    "save_solution_config",
    "to_document",
]
