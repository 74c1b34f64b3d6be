from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Tuple

# Environment keys a client may declare. Order is the enumeration order used
# by status and "both" selectors.
EnvironmentKey = Literal["testing", "main"]
ENVIRONMENT_KEYS: Tuple[str, ...] = ("testing", "main")


@dataclass(frozen=True)
class CollectionConfig:
    """A document collection and its baseline records.

    ``default_data`` is the contract the seeder and validator work against;
    ``id`` is the only identity key of a record.
    """

    name: str
    partition_key: str
    default_data: Tuple[Dict[str, Any], ...] = ()

    @property
    def expected_ids(self) -> List[str]:
        return [str(r["id"]) for r in self.default_data]


@dataclass(frozen=True)
class DataStoreConfig:
    account_name: str
    database_name: str
    collections: Tuple[CollectionConfig, ...] = ()


@dataclass(frozen=True)
class FunctionSet:
    core: Tuple[str, ...] = ()
    plugins: Tuple[str, ...] = ()

    def ordered(self) -> List[str]:
        """Core functions first, then plugins, each in declaration order."""
        return list(self.core) + list(self.plugins)


@dataclass(frozen=True)
class EnvironmentConfig:
    client_key: str
    env_key: str
    resource_group: str
    location: str
    data_store: DataStoreConfig
    functions: FunctionSet = field(default_factory=FunctionSet)


@dataclass(frozen=True)
class ClientConfig:
    key: str
    display_name: str
    environments: Dict[str, EnvironmentConfig] = field(default_factory=dict)


@dataclass(frozen=True)
class FunctionMapping:
    name: str
    path: str
    type: str = ""


@dataclass(frozen=True)
class SolutionConfig:
    """Root of the client/environment registry.

    Immutable: ``add_client`` returns a new value and persistence is an
    explicit ``save_solution_config`` call.
    """

    name: str
    default_location: str
    resource_group_prefix: str = "rg"
    azure_subscription: str = ""
    clients: Dict[str, ClientConfig] = field(default_factory=dict)
    function_mappings: Dict[str, FunctionMapping] = field(default_factory=dict)
