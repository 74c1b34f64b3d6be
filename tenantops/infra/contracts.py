from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol

from ..config.models import CollectionConfig
from .models import ResourceSpec, ResourceState


class ControlPlane(Protocol):
    """Cloud control plane: look up and create resources.

    Implementations classify every failure: ``TransientProvisionError`` for
    timeouts, throttling and not-yet-visible dependencies,
    ``PermanentProvisionError`` for everything retrying cannot fix.
    """

    def resource_exists(self, spec: ResourceSpec) -> Optional[ResourceState]:
        """Current state of the resource, or None when it does not exist."""
        raise NotImplementedError

    def create_resource(self, spec: ResourceSpec) -> ResourceState:
        raise NotImplementedError

    def configure_resource(self, spec: ResourceSpec) -> None:
        """Apply the mutable settings of ``spec`` (e.g. function app settings) to a ready resource.

        Called on every apply, whether the resource was just created or
        already existed, so it must be idempotent.
        """
        raise NotImplementedError


class DataStore(Protocol):
    """Record access to one provisioned database (account + database bound at open time)."""

    def list_records(self, collection: CollectionConfig) -> List[Dict[str, Any]]:
        raise NotImplementedError

    def insert_record(self, collection: CollectionConfig, record: Dict[str, Any]) -> None:
        """Insert keyed by ``record["id"]``.

        Raises ConflictError when a record with that id already exists and
        another InfraError for any other failure.
        """
        raise NotImplementedError
