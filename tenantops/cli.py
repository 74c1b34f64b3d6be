from __future__ import annotations

import argparse
import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .common.retry import DEFAULT_RETRY_POLICY
from .config.errors import ConfigError, EnvironmentNotFound
from .config.models import SolutionConfig
from .config.store import (
    add_client,
    clients_using_function,
    expand_environment_selector,
    iter_environments,
    load_solution_config,
    lookup_client,
    lookup_environment,
    new_client_config,
    save_solution_config,
)
from .data.health import check_functions
from .data.seeder import seed_environment
from .data.validator import validate_environment
from .infra.config import load_runtime_profile
from .infra.errors import InfraError, NotConfiguredError, ValidationError
from .infra.factory import InfraBundle, build_infra
from .infra.models import ProvisioningStep, StepResult, ValidationResult
from .orchestration.engine import DEFAULT_MAX_WORKERS, inspect_plan
from .orchestration.pipeline import data_store_ready, run_environment
from .orchestration.planner import build_plan
from .orchestration.status_reducer import StatusInputs, reduce_environment_status
from .utils.jsonio import write_json

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2


def _repo_root() -> Path:
    # Assume this file is at repo_root/tenantops/cli.py
    return Path(__file__).resolve().parents[1]


def _say(tag: str, level: str, msg: str) -> None:
    print(f"[{tag}][{level}] {msg}")


def _config_path(args: argparse.Namespace) -> Path:
    if args.config:
        return Path(args.config).expanduser().resolve()
    return _repo_root() / "config" / "clients.json"


def _load(args: argparse.Namespace) -> SolutionConfig:
    return load_solution_config(_config_path(args))


def _infra(args: argparse.Namespace, subscription: str = "") -> InfraBundle:
    repo_root = _repo_root()
    profile = load_runtime_profile(repo_root, args.runtime_profile)
    return build_infra(repo_root=repo_root, profile=profile, subscription=subscription)


def _emit(args: argparse.Namespace, result: Dict[str, Any]) -> None:
    if args.report:
        write_json(Path(args.report), result)
    print(json.dumps(result, indent=2, ensure_ascii=False))


def _step_observer(client_key: str, env_key: str):
    def _observe(event: str, step: ProvisioningStep, result: Optional[StepResult]) -> None:
        where = f"{client_key}/{env_key} {step.kind} {step.name}"
        if event == "started":
            _say("deploy", "RUN", where)
        elif event == "blocked":
            _say("deploy", "BLOCKED", f"{where}: {result.error if result else ''}")
        elif result is not None and result.ok:
            _say("deploy", "OK", f"{where} {result.outcome}")
        elif result is not None:
            _say("deploy", "FAILED", f"{where}: {result.error}")

    return _observe


def _deploy_targets(config: SolutionConfig, client_sel: str, env_sel: str) -> List[Tuple[str, str]]:
    env_keys = expand_environment_selector(env_sel)
    client_keys = sorted(config.clients) if client_sel == "all" else [lookup_client(config, client_sel).key]
    out: List[Tuple[str, str]] = []
    for key in client_keys:
        for env_key in env_keys:
            if env_sel != "both" and client_sel != "all":
                lookup_environment(config, key, env_key)
            if env_key in config.clients[key].environments:
                out.append((key, env_key))
    if not out:
        raise EnvironmentNotFound(f"no registered environment matches client={client_sel!r} environment={env_sel!r}")
    return out


def cmd_deploy(args: argparse.Namespace) -> int:
    config = _load(args)
    targets = _deploy_targets(config, args.client, args.environment)
    infra = _infra(args, subscription=args.subscription)
    _say("deploy", "INFO", f"profile={infra.profile.profile_name} targets={', '.join(f'{c}/{e}' for c, e in targets)}")

    runs = []
    for client_key, env_key in targets:
        run = run_environment(
            config,
            client_key,
            env_key,
            infra,
            policy=DEFAULT_RETRY_POLICY,
            max_workers=args.workers,
            observer=_step_observer(client_key, env_key),
        )
        level = "OK" if run.ok else "FAILED"
        _say("deploy", level, f"{client_key}/{env_key} status={run.status}" + (f" ({run.skipped})" if run.skipped else ""))
        runs.append(run)

    ok = all(r.ok for r in runs)
    _emit(args, {"command": "deploy", "ok": ok, "runs": [r.as_dict() for r in runs]})
    return EXIT_OK if ok else EXIT_FAILED


def cmd_add_client(args: argparse.Namespace) -> int:
    path = _config_path(args)
    config = load_solution_config(path)
    client = new_client_config(
        config,
        args.key,
        args.display_name,
        expand_environment_selector(args.environment),
        template=args.template,
    )
    updated = add_client(config, client)
    save_solution_config(path, updated)
    _say("add-client", "OK", f"registered {client.key!r} in {path}")
    _emit(
        args,
        {
            "command": "add-client",
            "ok": True,
            "client": client.key,
            "environments": {
                k: {"resourceGroup": e.resource_group, "cosmosAccount": e.data_store.account_name}
                for k, e in client.environments.items()
            },
        },
    )
    return EXIT_OK


def cmd_seed(args: argparse.Namespace) -> int:
    config = _load(args)
    env = lookup_environment(config, args.client, args.environment)
    infra = _infra(args)
    seeds = seed_environment(infra.open_data_store(env), env)
    for s in seeds:
        level = "OK" if s.ok else "FAILED"
        _say("seed", level, f"{args.client}/{args.environment} {s.collection}: created={s.created_count} already_existed={s.already_existed_count} failed={len(s.failed_ids)}")
    ok = all(s.ok for s in seeds)
    _emit(args, {"command": "seed", "ok": ok, "client": args.client, "environment": args.environment, "collections": [s.as_dict() for s in seeds]})
    return EXIT_OK if ok else EXIT_FAILED


def cmd_validate(args: argparse.Namespace) -> int:
    config = _load(args)
    env = lookup_environment(config, args.client, args.environment)
    infra = _infra(args)
    results = validate_environment(infra.open_data_store(env), env)
    for v in results:
        if v.ok:
            _say("validate", "OK", f"{args.client}/{args.environment} {v.collection}: {len(v.present)} present")
        else:
            _say("validate", "FAILED", f"{args.client}/{args.environment} {v.collection}: missing={list(v.missing)}" + (f" error={v.error}" if v.error else ""))
    ok = all(v.ok for v in results)
    _emit(args, {"command": "validate", "ok": ok, "client": args.client, "environment": args.environment, "collections": [v.as_dict() for v in results]})
    return EXIT_OK if ok else EXIT_FAILED


def cmd_status(args: argparse.Namespace) -> int:
    config = _load(args)
    infra = _infra(args)
    rows: List[Dict[str, Any]] = []
    for env in iter_environments(config, args.client, args.environment):
        report = inspect_plan(build_plan(config, env.client_key, env.env_key), infra.control_plane)
        validations: Tuple[ValidationResult, ...] = ()
        error = ""
        if data_store_ready(report):
            try:
                validations = validate_environment(infra.open_data_store(env), env)
            except InfraError as e:
                error = f"data store unavailable: {e.__class__.__name__}: {e}"
                _say("status", "WARNING", f"{env.client_key}/{env.env_key} {error}")
        status = reduce_environment_status(StatusInputs(report=report, validations=validations))
        ready = len([r for r in report.results if r.ok])
        _say("status", "INFO", f"{env.client_key}/{env.env_key} {status} ({ready}/{len(report.results)} resources ready)")
        row: Dict[str, Any] = {
            "client": env.client_key,
            "environment": env.env_key,
            "status": status,
            "resources": [{"kind": r.kind, "name": r.name, "ready": r.ok, "detail": r.error} for r in report.results],
            "validation": [v.as_dict() for v in validations],
        }
        if error:
            row["error"] = error
        rows.append(row)
    _emit(args, {"command": "status", "ok": True, "environments": rows})
    return EXIT_OK


def cmd_verify(args: argparse.Namespace) -> int:
    config = _load(args)
    infra = _infra(args)
    report = check_functions(config, args.client, args.environment, infra.control_plane)
    for f in report.functions:
        if f.ok:
            _say("verify", "OK", f"{f.function_app} {f.state} {f.url} -> {f.http_status}")
        else:
            _say("verify", "WARNING", f"{f.function_app} state={f.state} http={f.http_status} {f.error}".rstrip())
    _emit(args, dict(report.as_dict(), command="verify"))
    return EXIT_OK if report.ok else EXIT_FAILED


def cmd_targets(args: argparse.Namespace) -> int:
    config = _load(args)
    targets = clients_using_function(config, args.function, args.environment)
    if args.function not in config.function_mappings:
        _say("targets", "WARNING", f"function {args.function!r} has no entry in functionMappings")
    for t in targets:
        _say("targets", "INFO", f"{t.client_key}/{t.env_key} {t.function_app} ({t.resource_group})")
    _emit(
        args,
        {
            "command": "targets",
            "ok": True,
            "function": args.function,
            "environment": args.environment,
            "targets": [
                {"client": t.client_key, "functionApp": t.function_app, "resourceGroup": t.resource_group}
                for t in targets
            ],
        },
    )
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="tenantops", description="Multi-tenant infrastructure deployment orchestrator")
    p.add_argument("--config", default="", help="Client registry JSON (default: config/clients.json)")
    p.add_argument("--runtime-profile", default=None, help="Runtime profile YAML (default: $TENANTOPS_RUNTIME_PROFILE or config/runtime_profile.yml)")
    p.add_argument("--workers", type=int, default=DEFAULT_MAX_WORKERS, help="Concurrent provisioning steps per plan")
    p.add_argument("--report", default="", help="Also write the JSON result to this path")
    sub = p.add_subparsers(dest="cmd", required=True)

    sp = sub.add_parser("deploy", help="Provision, seed and validate client environments")
    sp.add_argument("client", help="Client key or 'all'")
    sp.add_argument("environment", choices=["testing", "main", "both"])
    sp.add_argument("subscription", help="Azure subscription id")
    sp.set_defaults(func=cmd_deploy)

    sp = sub.add_parser("add-client", help="Register a new client in the registry")
    sp.add_argument("key")
    sp.add_argument("display_name")
    sp.add_argument("environment", choices=["testing", "main", "both"])
    sp.add_argument("--template", default=None, help="Copy collections and functions from this client")
    sp.set_defaults(func=cmd_add_client)

    sp = sub.add_parser("seed", help="Insert baseline records")
    sp.add_argument("client")
    sp.add_argument("environment", choices=["testing", "main"])
    sp.set_defaults(func=cmd_seed)

    sp = sub.add_parser("validate", help="Check baseline records are present")
    sp.add_argument("client")
    sp.add_argument("environment", choices=["testing", "main"])
    sp.set_defaults(func=cmd_validate)

    sp = sub.add_parser("status", help="Live lifecycle status, without creating anything")
    sp.add_argument("client", nargs="?", default=None)
    sp.add_argument("environment", nargs="?", default=None, choices=["testing", "main"])
    sp.set_defaults(func=cmd_status)

    sp = sub.add_parser("verify", help="Function app health checks")
    sp.add_argument("client")
    sp.add_argument("environment", choices=["testing", "main"])
    sp.set_defaults(func=cmd_verify)

    sp = sub.add_parser("targets", help="Client environments hosting a function")
    sp.add_argument("function")
    sp.add_argument("environment", choices=["testing", "main"])
    sp.set_defaults(func=cmd_targets)

    return p


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        return int(args.func(args) or 0)
    except ConfigError as e:
        _say(args.cmd, "ERROR", f"{e.__class__.__name__}: {e}")
        return EXIT_CONFIG
    except (ValidationError, NotConfiguredError) as e:
        _say(args.cmd, "ERROR", f"runtime: {e}")
        return EXIT_CONFIG
    except InfraError as e:
        _say(args.cmd, "ERROR", f"{e.__class__.__name__}: {e}")
        return EXIT_FAILED


if __name__ == "__main__":
    raise SystemExit(main())
