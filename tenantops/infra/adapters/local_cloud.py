from __future__ import annotations

import copy
import json
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from ...config.models import CollectionConfig
from ...utils.jsonio import read_json, write_json
from ...utils.time import utcnow_iso
from ..contracts import ControlPlane, DataStore
from ..errors import ConflictError, NotFoundError, RecordWriteError, TransientProvisionError
from ..models import ResourceSpec, ResourceState


def _required_parents(spec: ResourceSpec) -> List[Tuple[str, str]]:
    """(kind, address) pairs that must exist before ``spec`` can be created."""
    rg = ("resource-group", spec.resource_group)
    if spec.kind == "resource-group":
        return []
    if spec.kind == "data-store-database":
        return [rg, ("data-store-account", spec.parents["account"])]
    if spec.kind == "data-store-collection":
        return [rg, ("data-store-database", f"{spec.parents['account']}/{spec.parents['database']}")]
    if spec.kind == "deployed-function-unit":
        out = [
            rg,
            ("compute-plan", spec.parents["plan"]),
            ("storage-account", spec.parents["storage_account"]),
        ]
        if spec.parents.get("database"):
            out.append(("data-store-database", f"{spec.parents['data_store_account']}/{spec.parents['database']}"))
        return out
    return [rg]


class LocalCloud(ControlPlane):
    """In-process control plane and document store.

    Used by the ``local`` runtime profile and by tests. With ``state_path``
    the whole state is persisted as JSON after every mutation, so separate
    CLI invocations (deploy, then seed, then validate) see each other's work.

    Creating a resource whose parent does not exist raises a transient
    ``dependency-not-visible`` error, mirroring what a real control plane does
    when a dependency has not propagated yet.
    """

    def __init__(self, state_path: Optional[Path] = None):
        self.state_path = Path(state_path) if state_path else None
        self._lock = threading.RLock()
        self._resources: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._records: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.calls: List[Tuple[str, str, str]] = []
        if self.state_path is not None and self.state_path.exists():
            raw = read_json(self.state_path)
            self._resources = dict(raw.get("resources") or {})
            self._records = dict(raw.get("records") or {})

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _persist(self) -> None:
        if self.state_path is None:
            return
        write_json(self.state_path, {"resources": self._resources, "records": self._records})

    # ------------------------------------------------------------------
    # ControlPlane
    # ------------------------------------------------------------------

    def _lookup(self, kind: str, address: str) -> Optional[Dict[str, Any]]:
        return self._resources.get(kind, {}).get(address)

    def resource_exists(self, spec: ResourceSpec) -> Optional[ResourceState]:
        with self._lock:
            self.calls.append(("exists", spec.kind, spec.address))
            entry = self._lookup(spec.kind, spec.address)
            if entry is None:
                return None
            return ResourceState(kind=spec.kind, name=spec.name, state=entry["state"], properties=dict(entry["properties"]))

    def create_resource(self, spec: ResourceSpec) -> ResourceState:
        with self._lock:
            self.calls.append(("create", spec.kind, spec.address))
            for kind, address in _required_parents(spec):
                if self._lookup(kind, address) is None:
                    raise TransientProvisionError("dependency-not-visible", f"{kind} {address!r} not found")

            properties: Dict[str, Any] = {"resourceGroup": spec.resource_group, "location": spec.location, "createdAt": utcnow_iso()}
            state = "Succeeded"
            if spec.kind == "deployed-function-unit":
                state = "Running"
                properties["defaultHostName"] = f"{spec.name}.azurewebsites.net"
            if spec.kind == "data-store-collection":
                properties["partitionKey"] = spec.settings.get("partition_key", "/id")
                self._records.setdefault(spec.address, {})

            entry = self._lookup(spec.kind, spec.address)
            if entry is None or entry["state"].lower() in ("failed", "canceled"):
                entry = {"state": state, "properties": properties}
                self._resources.setdefault(spec.kind, {})[spec.address] = entry
                self._persist()
            return ResourceState(kind=spec.kind, name=spec.name, state=entry["state"], properties=dict(entry["properties"]))

    def configure_resource(self, spec: ResourceSpec) -> None:
        with self._lock:
            self.calls.append(("configure", spec.kind, spec.address))
            if spec.kind != "deployed-function-unit":
                return
            entry = self._lookup(spec.kind, spec.address)
            if entry is None:
                raise TransientProvisionError("dependency-not-visible", f"{spec.kind} {spec.address!r} not found")
            wanted = dict(spec.settings.get("app_settings") or {})
            if entry["properties"].get("appSettings") != wanted:
                entry["properties"]["appSettings"] = wanted
                self._persist()

    def set_state(self, kind: str, address: str, state: str) -> None:
        """Force a provisioning state (e.g. ``Creating`` or ``Failed``) on an existing resource."""
        with self._lock:
            entry = self._lookup(kind, address)
            if entry is None:
                raise NotFoundError(f"{kind} {address!r} not found")
            entry["state"] = state
            self._persist()

    def resource_addresses(self, kind: str) -> List[str]:
        with self._lock:
            return sorted(self._resources.get(kind, {}).keys())

    # ------------------------------------------------------------------
    # DataStore
    # ------------------------------------------------------------------

    def open_data_store(self, account: str, database: str) -> "LocalDataStore":
        return LocalDataStore(self, account=account, database=database)

    def _collection_records(self, address: str) -> Dict[str, Dict[str, Any]]:
        records = self._records.get(address)
        if records is None:
            raise NotFoundError(f"collection {address!r} not found")
        return records

    def list_records(self, address: str) -> List[Dict[str, Any]]:
        with self._lock:
            records = self._collection_records(address)
            return [copy.deepcopy(r) for _, r in sorted(records.items())]

    def insert_record(self, address: str, record: Dict[str, Any]) -> None:
        with self._lock:
            records = self._collection_records(address)
            rid = record.get("id")
            if not isinstance(rid, str) or not rid:
                raise RecordWriteError(f"record in {address!r} has no string id")
            if rid in records:
                raise ConflictError(f"record {rid!r} already exists in {address!r}")
            try:
                records[rid] = json.loads(json.dumps(record))
            except (TypeError, ValueError) as e:
                raise RecordWriteError(f"record {rid!r} is not JSON-serializable: {e}") from e
            self._persist()

    def delete_record(self, address: str, record_id: str) -> None:
        with self._lock:
            records = self._collection_records(address)
            if records.pop(record_id, None) is None:
                raise NotFoundError(f"record {record_id!r} not found in {address!r}")
            self._persist()


class LocalDataStore(DataStore):
    """Handle on one database of a LocalCloud."""

    def __init__(self, cloud: LocalCloud, *, account: str, database: str):
        self.cloud = cloud
        self.account = account
        self.database = database

    def _address(self, collection: CollectionConfig) -> str:
        return f"{self.account}/{self.database}/{collection.name}"

    def list_records(self, collection: CollectionConfig) -> List[Dict[str, Any]]:
        return self.cloud.list_records(self._address(collection))

    def insert_record(self, collection: CollectionConfig, record: Dict[str, Any]) -> None:
        self.cloud.insert_record(self._address(collection), record)
