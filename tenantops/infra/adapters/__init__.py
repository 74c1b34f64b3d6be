from __future__ import annotations

from .azure_cli import AzureCliControlPlane, AzureCliSettings
from .cosmos_rest import CosmosRestDataStore, CosmosRestSettings
from .local_cloud import LocalCloud, LocalDataStore

__all__ = [
    "AzureCliControlPlane",
    "AzureCliSettings",
    "CosmosRestDataStore",
    "CosmosRestSettings",
    "LocalCloud",
    "LocalDataStore",
]
