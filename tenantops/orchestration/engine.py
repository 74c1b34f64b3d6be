"""Apply a provisioning plan against a control plane.

Scheduling: a step is submitted to the worker pool once every step it
depends on has reached a terminal result. A failed step marks all of its
transitive dependents ``blocked-by-dependency`` without touching the control
plane; siblings on unrelated branches keep going.

Per step:
  1. look the resource up; a ready resource is ``already-existed``
  2. absent (or in a failed state) -> create it
  3. not ready yet -> poll until it is
  4. ready -> configure_resource (app settings), on both paths
Transient errors and readiness polls share the retry budget of the step.
"""

from __future__ import annotations

import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Callable, Dict, List, Optional, Set

from ..common.retry import DEFAULT_RETRY_POLICY, RetryPolicy
from ..infra.contracts import ControlPlane
from ..infra.errors import InfraError, PermanentProvisionError, TransientProvisionError
from ..infra.models import (
    BLOCKED_BY_DEPENDENCY,
    DeploymentReport,
    ProvisioningPlan,
    ProvisioningStep,
    StepResult,
)

DEFAULT_MAX_WORKERS = 4

# observer(event, step, result): event is "started", "finished" or "blocked";
# result is None for "started". Always invoked from the scheduling thread.
Observer = Callable[[str, ProvisioningStep, Optional[StepResult]], None]


def _failed(step: ProvisioningStep, error: str, attempts: int) -> StepResult:
    return StepResult(index=step.index, kind=step.kind, name=step.name, outcome="failed", error=error, attempts=attempts)


def apply_step(
    step: ProvisioningStep,
    control_plane: ControlPlane,
    *,
    policy: RetryPolicy = DEFAULT_RETRY_POLICY,
    sleep: Callable[[float], None] = time.sleep,
) -> StepResult:
    """Bring one resource to a ready state. Never raises for control-plane failures."""
    created = False
    last_error = ""
    attempt = 0
    while True:
        attempt += 1
        try:
            state = control_plane.resource_exists(step.spec)
            if state is not None and state.is_ready:
                control_plane.configure_resource(step.spec)
                outcome = "created" if created else "already-existed"
                return StepResult(index=step.index, kind=step.kind, name=step.name, outcome=outcome, attempts=attempt)  # type: ignore[arg-type]

            if state is not None and state.is_failed and created:
                return _failed(step, f"provisioning-failed: state {state.state!r} after create", attempt)

            if state is None and created:
                last_error = "dependency-not-visible: created resource is not visible yet"
            elif state is None or state.is_failed:
                state = control_plane.create_resource(step.spec)
                created = True
                if state.is_ready:
                    control_plane.configure_resource(step.spec)
                    return StepResult(index=step.index, kind=step.kind, name=step.name, outcome="created", attempts=attempt)
                if state.is_failed:
                    return _failed(step, f"provisioning-failed: state {state.state!r} after create", attempt)
                last_error = f"timeout: resource still in state {state.state!r}"
            else:
                last_error = f"timeout: resource still in state {state.state!r}"
        except TransientProvisionError as e:
            last_error = str(e)
        except PermanentProvisionError as e:
            return _failed(step, str(e), attempt)
        except InfraError as e:
            return _failed(step, f"{e.__class__.__name__}: {e}", attempt)
        except Exception as e:  # noqa: BLE001
            return _failed(step, f"unexpected {e.__class__.__name__}: {e}", attempt)

        if attempt >= policy.max_attempts:
            return _failed(step, f"{last_error} (gave up after {attempt} attempts)", attempt)
        sleep(policy.delay(attempt))


def apply_plan(
    plan: ProvisioningPlan,
    control_plane: ControlPlane,
    *,
    policy: RetryPolicy = DEFAULT_RETRY_POLICY,
    max_workers: int = DEFAULT_MAX_WORKERS,
    sleep: Callable[[float], None] = time.sleep,
    observer: Optional[Observer] = None,
) -> DeploymentReport:
    """Apply every step of ``plan``; step failures are reported, never raised.

    ``KeyboardInterrupt`` stops scheduling and propagates. Steps already
    created are left in place.
    """
    steps = {s.index: s for s in plan.steps}
    dependents = plan.dependents()
    waiting: Dict[int, Set[int]] = {s.index: set(s.depends_on) for s in plan.steps}
    results: Dict[int, StepResult] = {}
    ready: List[int] = [i for i, deps in waiting.items() if not deps]

    def _notify(event: str, step: ProvisioningStep, result: Optional[StepResult]) -> None:
        if observer is not None:
            observer(event, step, result)

    def _block(index: int, cause: ProvisioningStep) -> None:
        stack = [index]
        while stack:
            i = stack.pop()
            if i in results:
                continue
            step = steps[i]
            res = _failed(step, f"{BLOCKED_BY_DEPENDENCY}: {cause.kind} {cause.name!r} failed", 0)
            results[i] = res
            _notify("blocked", step, res)
            stack.extend(sorted(dependents[i], reverse=True))

    def _finish(index: int, res: StepResult) -> None:
        results[index] = res
        _notify("finished", steps[index], res)
        for child in sorted(dependents[index]):
            if child in results:
                continue
            if not res.ok:
                _block(child, steps[index])
                continue
            waiting[child].discard(index)
            if not waiting[child]:
                ready.append(child)

    executor = ThreadPoolExecutor(max_workers=max(1, int(max_workers)), thread_name_prefix="provision")
    running: Dict[Future, int] = {}
    interrupted = False
    try:
        while ready or running:
            for index in sorted(ready):
                step = steps[index]
                _notify("started", step, None)
                running[executor.submit(apply_step, step, control_plane, policy=policy, sleep=sleep)] = index
            ready.clear()

            done, _ = wait(list(running), return_when=FIRST_COMPLETED)
            for fut in sorted(done, key=lambda f: running[f]):
                index = running.pop(fut)
                try:
                    res = fut.result()
                except Exception as e:  # noqa: BLE001
                    res = _failed(steps[index], f"unexpected {e.__class__.__name__}: {e}", 0)
                _finish(index, res)
    except KeyboardInterrupt:
        interrupted = True
        raise
    finally:
        # Pending steps never start; running ones finish unless interrupted.
        executor.shutdown(wait=not interrupted, cancel_futures=True)

    return DeploymentReport(
        client_key=plan.client_key,
        env_key=plan.env_key,
        results=tuple(results[s.index] for s in plan.steps),
    )


def inspect_plan(plan: ProvisioningPlan, control_plane: ControlPlane) -> DeploymentReport:
    """Live state of every step, without creating anything.

    A ready resource reports ``already-existed``; an absent, unready or
    unreadable one reports ``failed`` with the observed state as detail.
    """
    out: List[StepResult] = []
    for step in plan.steps:
        try:
            state = control_plane.resource_exists(step.spec)
        except InfraError as e:
            out.append(_failed(step, f"{e.__class__.__name__}: {e}", 1))
            continue
        if state is None:
            out.append(_failed(step, "absent", 1))
        elif state.is_ready:
            out.append(StepResult(index=step.index, kind=step.kind, name=step.name, outcome="already-existed", attempts=1))
        else:
            out.append(_failed(step, f"state {state.state!r}", 1))
    return DeploymentReport(client_key=plan.client_key, env_key=plan.env_key, results=tuple(out))
