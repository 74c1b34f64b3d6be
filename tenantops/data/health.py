"""Post-deploy function health checks.

For every function unit of an environment: the control plane must report
the app as ``Running`` and an HTTPS GET of its default host name must answer
with a non-error status.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, Optional, Tuple

import requests

from ..common.naming import function_unit_name
from ..config.models import SolutionConfig
from ..config.store import lookup_environment
from ..infra.contracts import ControlPlane
from ..infra.errors import InfraError
from ..infra.models import ResourceSpec

HttpGet = Callable[..., Any]


@dataclass(frozen=True)
class FunctionHealth:
    function: str
    function_app: str
    state: str
    running: bool
    url: str = ""
    http_status: Optional[int] = None
    error: str = ""

    @property
    def ok(self) -> bool:
        return self.running and self.http_status is not None and self.http_status < 400


@dataclass(frozen=True)
class HealthReport:
    client_key: str
    env_key: str
    functions: Tuple[FunctionHealth, ...]

    @property
    def ok(self) -> bool:
        return all(f.ok for f in self.functions)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "client": self.client_key,
            "environment": self.env_key,
            "ok": self.ok,
            "functions": [dict(asdict(f), ok=f.ok) for f in self.functions],
        }


def _http_status(url: str, http_get: HttpGet, timeout_s: float) -> Tuple[Optional[int], str]:
    try:
        resp = http_get(url, timeout=timeout_s)
    except requests.RequestException as e:
        return None, f"{e.__class__.__name__}: {e}"
    return int(resp.status_code), ""


def check_functions(
    config: SolutionConfig,
    client_key: str,
    env_key: str,
    control_plane: ControlPlane,
    *,
    http_get: Optional[HttpGet] = None,
    timeout_s: float = 10.0,
) -> HealthReport:
    env = lookup_environment(config, client_key, env_key)
    get = http_get or requests.get
    out = []
    for fn in env.functions.ordered():
        app = function_unit_name(fn, client_key, env_key)
        spec = ResourceSpec(kind="deployed-function-unit", name=app, resource_group=env.resource_group, location=env.location)
        try:
            state = control_plane.resource_exists(spec)
        except InfraError as e:
            out.append(FunctionHealth(function=fn, function_app=app, state="unknown", running=False, error=str(e)))
            continue
        if state is None:
            out.append(FunctionHealth(function=fn, function_app=app, state="absent", running=False, error="function app not found"))
            continue

        running = state.state.strip().lower() == "running"
        host = str(state.properties.get("defaultHostName") or "").strip()
        if not running or not host:
            err = "" if host else "no default host name"
            out.append(FunctionHealth(function=fn, function_app=app, state=state.state, running=running, error=err))
            continue

        url = f"https://{host}"
        status, err = _http_status(url, get, timeout_s)
        out.append(FunctionHealth(function=fn, function_app=app, state=state.state, running=True, url=url, http_status=status, error=err))
    return HealthReport(client_key=client_key, env_key=env_key, functions=tuple(out))
