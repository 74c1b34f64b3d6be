from __future__ import annotations

import json
import re
import subprocess
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

from ..contracts import ControlPlane
from ..errors import NotConfiguredError, PermanentProvisionError, TransientProvisionError
from ..models import ResourceSpec, ResourceState


@dataclass(frozen=True)
class AzureCliSettings:
    """Settings for AzureCliControlPlane.

    Credentials come from the ambient ``az login`` session (OIDC in CI).
    ``subscription`` is passed to every command when set.
    """

    subscription: str = ""
    az_cli: str = "az"
    timeout_s: float = 900.0


@dataclass(frozen=True)
class CliResult:
    returncode: int
    stdout: str
    stderr: str


Runner = Callable[[List[str], float], CliResult]


def subprocess_runner(cmd: List[str], timeout_s: float) -> CliResult:
    proc = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout_s, check=False)
    return CliResult(returncode=proc.returncode, stdout=proc.stdout or "", stderr=proc.stderr or "")


# Azure error codes as printed by az ("(Code) message" or "Code: X").
NOT_FOUND_CODES = frozenset({
    "ResourceNotFound",
    "ResourceGroupNotFound",
    "ParentResourceNotFound",
    "NotFound",
    "ResourceNotFoundError",
})

TRANSIENT_CODES: Dict[str, str] = {
    "TooManyRequests": "rate-limited",
    "RetryableError": "rate-limited",
    "AnotherOperationInProgress": "rate-limited",
    "Conflict": "rate-limited",
    "ServiceUnavailable": "timeout",
    "GatewayTimeout": "timeout",
    "InternalServerError": "timeout",
    "RequestTimeout": "timeout",
    "ResourceGroupNotFound": "dependency-not-visible",
    "ParentResourceNotFound": "dependency-not-visible",
    "ResourceNotFound": "dependency-not-visible",
    "NotFound": "dependency-not-visible",
}

PERMANENT_CODES: Dict[str, str] = {
    "QuotaExceeded": "quota-exceeded",
    "SubscriptionQuotaExceeded": "quota-exceeded",
    "RegionalQuotaExceeded": "quota-exceeded",
    "ServiceQuotaExceeded": "quota-exceeded",
    "StorageAccountAlreadyTaken": "naming-conflict",
    "StorageAccountAlreadyExists": "naming-conflict",
    "NameNotAvailable": "naming-conflict",
    "NameUnavailable": "naming-conflict",
    "WebsiteAlreadyExists": "naming-conflict",
    "InvalidTemplate": "malformed-spec",
    "InvalidParameter": "malformed-spec",
    "InvalidRequestContent": "malformed-spec",
    "InvalidResourceName": "malformed-spec",
    "BadRequest": "malformed-spec",
    "LocationNotAvailableForResourceType": "malformed-spec",
}

_CODE_RES = (
    re.compile(r"Code:\s*([A-Za-z]+)"),
    re.compile(r"^(?:ERROR:\s*)?\(([A-Za-z]+)\)", re.MULTILINE),
    re.compile(r"^([A-Za-z]+Error):", re.MULTILINE),
)


def error_code(stderr: str) -> str:
    for rx in _CODE_RES:
        m = rx.search(stderr or "")
        if m:
            return m.group(1)
    return ""


def classify_create_failure(stderr: str) -> Exception:
    """Map a failed create command to a typed provisioning error."""
    code = error_code(stderr)
    detail = (stderr or "").strip().splitlines()[-1:] or [""]
    detail_s = f"{code or 'az'}: {detail[0][:300]}"
    if code in TRANSIENT_CODES:
        return TransientProvisionError(TRANSIENT_CODES[code], detail_s)  # type: ignore[arg-type]
    if code in PERMANENT_CODES:
        return PermanentProvisionError(PERMANENT_CODES[code], detail_s)  # type: ignore[arg-type]
    return PermanentProvisionError("malformed-spec", detail_s)


def _state_from_payload(kind: str, payload: Dict[str, Any]) -> str:
    if kind == "deployed-function-unit" and payload.get("state"):
        return str(payload["state"])
    props = payload.get("properties") or {}
    return str(props.get("provisioningState") or payload.get("provisioningState") or "Succeeded")


def _tags_args(settings: Dict[str, Any]) -> List[str]:
    tags = settings.get("tags") or {}
    if not tags:
        return []
    return ["--tags"] + [f"{k}={v}" for k, v in sorted(tags.items())]


class AzureCliControlPlane(ControlPlane):
    """ControlPlane backed by the Azure CLI (``az``)."""

    def __init__(self, *, settings: AzureCliSettings, runner: Optional[Runner] = None):
        self.settings = settings
        self._runner: Runner = runner or subprocess_runner

    def _run(self, args: Sequence[str]) -> CliResult:
        cmd = [self.settings.az_cli, *args, "--output", "json"]
        if self.settings.subscription:
            cmd += ["--subscription", self.settings.subscription]
        try:
            return self._runner(cmd, self.settings.timeout_s)
        except subprocess.TimeoutExpired as e:
            raise TransientProvisionError("timeout", f"{' '.join(args[:3])} exceeded {self.settings.timeout_s:.0f}s") from e
        except FileNotFoundError as e:
            raise NotConfiguredError(f"Azure CLI executable {self.settings.az_cli!r} was not found on PATH") from e

    @staticmethod
    def _payload(res: CliResult) -> Dict[str, Any]:
        try:
            data = json.loads(res.stdout) if res.stdout.strip() else {}
        except json.JSONDecodeError:
            return {}
        return data if isinstance(data, dict) else {}

    # ------------------------------------------------------------------
    # Command tables
    # ------------------------------------------------------------------

    @staticmethod
    def show_args(spec: ResourceSpec) -> List[str]:
        rg = ["--resource-group", spec.resource_group]
        if spec.kind == "resource-group":
            return ["group", "show", "--name", spec.name]
        if spec.kind == "storage-account":
            return ["storage", "account", "show", "--name", spec.name, *rg]
        if spec.kind == "data-store-account":
            return ["cosmosdb", "show", "--name", spec.name, *rg]
        if spec.kind == "data-store-database":
            return ["cosmosdb", "sql", "database", "show", "--account-name", spec.parents["account"], *rg, "--name", spec.name]
        if spec.kind == "data-store-collection":
            return [
                "cosmosdb", "sql", "container", "show",
                "--account-name", spec.parents["account"], *rg,
                "--database-name", spec.parents["database"], "--name", spec.name,
            ]
        if spec.kind == "compute-plan":
            return ["functionapp", "plan", "show", "--name", spec.name, *rg]
        if spec.kind == "deployed-function-unit":
            return ["functionapp", "show", "--name", spec.name, *rg]
        raise PermanentProvisionError("malformed-spec", f"unsupported resource kind {spec.kind!r}")

    @staticmethod
    def create_args(spec: ResourceSpec) -> List[str]:
        s = spec.settings
        rg = ["--resource-group", spec.resource_group]
        if spec.kind == "resource-group":
            return ["group", "create", "--name", spec.name, "--location", spec.location, *_tags_args(s)]
        if spec.kind == "storage-account":
            return [
                "storage", "account", "create", "--name", spec.name, *rg,
                "--location", spec.location, "--sku", str(s.get("sku") or "Standard_LRS"), "--kind", "StorageV2",
            ]
        if spec.kind == "data-store-account":
            return [
                "cosmosdb", "create", "--name", spec.name, *rg,
                "--locations", f"regionName={spec.location}", "failoverPriority=0", "isZoneRedundant=False",
                "--default-consistency-level", str(s.get("consistency") or "Session"),
            ]
        if spec.kind == "data-store-database":
            return ["cosmosdb", "sql", "database", "create", "--account-name", spec.parents["account"], *rg, "--name", spec.name]
        if spec.kind == "data-store-collection":
            return [
                "cosmosdb", "sql", "container", "create",
                "--account-name", spec.parents["account"], *rg,
                "--database-name", spec.parents["database"], "--name", spec.name,
                "--partition-key-path", str(s.get("partition_key") or "/id"),
            ]
        if spec.kind == "compute-plan":
            return [
                "functionapp", "plan", "create", "--name", spec.name, *rg,
                "--location", spec.location, "--sku", str(s.get("sku") or "B1"),
            ]
        if spec.kind == "deployed-function-unit":
            return [
                "functionapp", "create", "--name", spec.name, *rg,
                "--plan", spec.parents["plan"], "--storage-account", spec.parents["storage_account"],
                "--runtime", str(s.get("runtime") or "dotnet"), "--functions-version", "4",
            ]
        raise PermanentProvisionError("malformed-spec", f"unsupported resource kind {spec.kind!r}")

    # ------------------------------------------------------------------
    # ControlPlane
    # ------------------------------------------------------------------

    def resource_exists(self, spec: ResourceSpec) -> Optional[ResourceState]:
        res = self._run(self.show_args(spec))
        if res.returncode != 0:
            code = error_code(res.stderr)
            if code in NOT_FOUND_CODES or "could not be found" in res.stderr or "was not found" in res.stderr:
                return None
            raise classify_create_failure(res.stderr)
        payload = self._payload(res)
        return ResourceState(
            kind=spec.kind,
            name=spec.name,
            state=_state_from_payload(spec.kind, payload),
            properties={"defaultHostName": payload.get("defaultHostName", ""), "id": payload.get("id", "")},
        )

    def create_resource(self, spec: ResourceSpec) -> ResourceState:
        res = self._run(self.create_args(spec))
        if res.returncode != 0:
            raise classify_create_failure(res.stderr)
        payload = self._payload(res)
        return ResourceState(
            kind=spec.kind,
            name=spec.name,
            state=_state_from_payload(spec.kind, payload),
            properties={"defaultHostName": payload.get("defaultHostName", ""), "id": payload.get("id", "")},
        )

    def configure_resource(self, spec: ResourceSpec) -> None:
        # appsettings set merges: keys are overwritten, unrelated keys are kept.
        app_settings = spec.settings.get("app_settings") or {}
        if spec.kind != "deployed-function-unit" or not app_settings:
            return
        res = self._run([
            "functionapp", "config", "appsettings", "set", "--name", spec.name,
            "--resource-group", spec.resource_group,
            "--settings", *[f"{k}={v}" for k, v in sorted(app_settings.items())],
        ])
        if res.returncode != 0:
            raise classify_create_failure(res.stderr)

    def data_store_key(self, account: str, resource_group: str) -> str:
        """Primary master key of a Cosmos DB account, used by the REST data store."""
        res = self._run(["cosmosdb", "keys", "list", "--name", account, "--resource-group", resource_group, "--type", "keys"])
        if res.returncode != 0:
            raise classify_create_failure(res.stderr)
        key = str(self._payload(res).get("primaryMasterKey") or "")
        if not key:
            raise NotConfiguredError(f"no primaryMasterKey returned for Cosmos DB account {account!r}")
        return key
