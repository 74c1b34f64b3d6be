from __future__ import annotations

import threading
import unittest
from typing import Dict, List, Optional, Tuple

from _testutil import ensure_repo_on_path, no_sleep, sample_document

ensure_repo_on_path()

from tenantops.common.retry import RetryPolicy  # noqa: E402
from tenantops.config.store import from_document  # noqa: E402
from tenantops.infra.adapters.local_cloud import LocalCloud  # noqa: E402
from tenantops.infra.errors import PermanentProvisionError, TransientProvisionError  # noqa: E402
from tenantops.infra.models import BLOCKED_BY_DEPENDENCY, ProvisioningStep, ResourceSpec, ResourceState, StepResult  # noqa: E402
from tenantops.orchestration.engine import apply_plan, inspect_plan  # noqa: E402
from tenantops.orchestration.planner import build_plan  # noqa: E402


class FlakyCloud(LocalCloud):
    """Fails ``create_resource`` for chosen kinds a fixed number of times."""

    def __init__(self, failures: Dict[str, int], error=None) -> None:
        super().__init__()
        self.remaining = dict(failures)
        self.error = error or (lambda spec: TransientProvisionError("rate-limited", spec.name))
        self._flaky_lock = threading.Lock()

    def create_resource(self, spec: ResourceSpec) -> ResourceState:
        with self._flaky_lock:
            left = self.remaining.get(spec.kind, 0)
            if left:
                self.remaining[spec.kind] = left - 1
                raise self.error(spec)
        return super().create_resource(spec)


class SlowCloud(LocalCloud):
    """Newly created resources report ``Creating`` for ``polls`` lookups before turning ready."""

    def __init__(self, polls: int) -> None:
        super().__init__()
        self.polls = polls
        self.pending: Dict[Tuple[str, str], int] = {}

    def create_resource(self, spec: ResourceSpec) -> ResourceState:
        super().create_resource(spec)
        with self._lock:
            self.pending[(spec.kind, spec.address)] = self.polls
        return ResourceState(kind=spec.kind, name=spec.name, state="Creating")

    def resource_exists(self, spec: ResourceSpec) -> Optional[ResourceState]:
        state = super().resource_exists(spec)
        with self._lock:
            left = self.pending.get((spec.kind, spec.address), 0)
            if state is not None and left:
                self.pending[(spec.kind, spec.address)] = left - 1
                return ResourceState(kind=spec.kind, name=spec.name, state="Creating")
        return state


class TestRetryPolicy(unittest.TestCase):
    def test_delays(self) -> None:
        p = RetryPolicy()
        self.assertEqual([p.delay(n) for n in range(1, 7)], [2, 4, 8, 16, 32, 60])
        self.assertEqual(p.max_attempts, 5)

    def test_invalid(self) -> None:
        with self.assertRaises(ValueError):
            RetryPolicy(max_attempts=0)


class TestApplyPlan(unittest.TestCase):
    def setUp(self) -> None:
        self.config = from_document(sample_document())
        self.plan = build_plan(self.config, "elite", "main")

    def test_fresh_apply_creates_everything(self) -> None:
        cloud = LocalCloud()
        report = apply_plan(self.plan, cloud, sleep=no_sleep)
        self.assertTrue(report.ok)
        self.assertEqual([r.outcome for r in report.results], ["created"] * len(self.plan.steps))
        self.assertEqual([r.index for r in report.results], list(range(len(self.plan.steps))))

    def test_second_apply_is_idempotent(self) -> None:
        cloud = LocalCloud()
        apply_plan(self.plan, cloud, sleep=no_sleep)
        cloud.calls.clear()

        report = apply_plan(self.plan, cloud, sleep=no_sleep)
        self.assertTrue(report.ok)
        self.assertEqual({r.outcome for r in report.results}, {"already-existed"})
        self.assertFalse([c for c in cloud.calls if c[0] == "create"])

    def test_dependencies_finish_before_dependents_start(self) -> None:
        events: List[Tuple[str, int]] = []

        def observer(event: str, step: ProvisioningStep, result: Optional[StepResult]) -> None:
            events.append((event, step.index))

        apply_plan(self.plan, LocalCloud(), sleep=no_sleep, max_workers=8, observer=observer)
        for step in self.plan.steps:
            started = events.index(("started", step.index))
            for dep in step.depends_on:
                self.assertLess(events.index(("finished", dep)), started, f"{step.name} started before dep {dep}")

    def test_transient_failure_is_retried(self) -> None:
        sleeps: List[float] = []
        cloud = FlakyCloud({"compute-plan": 2})
        report = apply_plan(self.plan, cloud, sleep=sleeps.append)

        self.assertTrue(report.ok)
        plan_result = next(r for r in report.results if r.kind == "compute-plan")
        self.assertEqual(plan_result.outcome, "created")
        self.assertEqual(plan_result.attempts, 3)
        self.assertEqual(sorted(sleeps), [2.0, 4.0])

    def test_transient_failure_gives_up_after_max_attempts(self) -> None:
        sleeps: List[float] = []
        cloud = FlakyCloud({"compute-plan": 100})
        report = apply_plan(self.plan, cloud, sleep=sleeps.append)

        plan_result = next(r for r in report.results if r.kind == "compute-plan")
        self.assertEqual(plan_result.outcome, "failed")
        self.assertEqual(plan_result.attempts, 5)
        self.assertIn("rate-limited", plan_result.error)
        self.assertEqual(sleeps, [2.0, 4.0, 8.0, 16.0])

    def test_permanent_failure_isolates_branch(self) -> None:
        cloud = FlakyCloud(
            {"storage-account": 1},
            error=lambda spec: PermanentProvisionError("naming-conflict", f"{spec.name} is taken"),
        )
        report = apply_plan(self.plan, cloud, sleep=no_sleep)
        self.assertFalse(report.ok)

        by_kind: Dict[str, List[StepResult]] = {}
        for r in report.results:
            by_kind.setdefault(r.kind, []).append(r)

        storage = by_kind["storage-account"][0]
        self.assertEqual(storage.outcome, "failed")
        self.assertEqual(storage.attempts, 1)
        self.assertIn("naming-conflict", storage.error)

        for r in by_kind["deployed-function-unit"]:
            self.assertEqual(r.outcome, "failed")
            self.assertTrue(r.error.startswith(BLOCKED_BY_DEPENDENCY))
            self.assertEqual(r.attempts, 0)
        self.assertFalse([c for c in cloud.calls if c[1] == "deployed-function-unit"])

        # Unrelated branches still complete.
        for kind in ("resource-group", "data-store-account", "data-store-database", "data-store-collection", "compute-plan"):
            for r in by_kind[kind]:
                self.assertEqual(r.outcome, "created", kind)

    def test_blocking_is_transitive(self) -> None:
        cloud = FlakyCloud({"data-store-account": 1}, error=lambda spec: PermanentProvisionError("quota-exceeded"))
        report = apply_plan(self.plan, cloud, sleep=no_sleep)
        blocked = [r for r in report.results if r.error.startswith(BLOCKED_BY_DEPENDENCY)]
        self.assertEqual(
            sorted({r.kind for r in blocked}),
            ["data-store-collection", "data-store-database", "deployed-function-unit"],
        )
        self.assertEqual(next(r for r in report.results if r.kind == "storage-account").outcome, "created")

    def test_unexpected_error_fails_step(self) -> None:
        cloud = FlakyCloud({"compute-plan": 1}, error=lambda spec: RuntimeError("boom"))
        report = apply_plan(self.plan, cloud, sleep=no_sleep)
        plan_result = next(r for r in report.results if r.kind == "compute-plan")
        self.assertEqual(plan_result.outcome, "failed")
        self.assertIn("unexpected RuntimeError", plan_result.error)
        self.assertEqual(plan_result.attempts, 1)

    def test_readiness_is_polled(self) -> None:
        sleeps: List[float] = []
        report = apply_plan(self.plan, SlowCloud(polls=2), sleep=sleeps.append, max_workers=1)
        self.assertTrue(report.ok)
        self.assertEqual({r.outcome for r in report.results}, {"created"})
        self.assertEqual({r.attempts for r in report.results}, {4})
        self.assertEqual(sleeps[:3], [2.0, 4.0, 8.0])

    def test_never_ready_fails(self) -> None:
        report = apply_plan(self.plan, SlowCloud(polls=100), sleep=no_sleep)
        rg = report.results[0]
        self.assertEqual(rg.outcome, "failed")
        self.assertIn("Creating", rg.error)
        self.assertTrue(all(r.error.startswith(BLOCKED_BY_DEPENDENCY) for r in report.results[1:]))

    def test_observer_error_releases_workers(self) -> None:
        def observer(event: str, step: ProvisioningStep, result: Optional[StepResult]) -> None:
            if event == "finished" and step.kind == "storage-account":
                raise RuntimeError("observer broke")

        with self.assertRaises(RuntimeError):
            apply_plan(self.plan, LocalCloud(), sleep=no_sleep, observer=observer)
        self.assertFalse([t for t in threading.enumerate() if t.name.startswith("provision")])

    def test_ready_resources_are_configured(self) -> None:
        cloud = LocalCloud()
        apply_plan(self.plan, cloud, sleep=no_sleep)
        cloud.calls.clear()

        apply_plan(self.plan, cloud, sleep=no_sleep)
        configured = sorted(c[2] for c in cloud.calls if c[0] == "configure" and c[1] == "deployed-function-unit")
        self.assertEqual(configured, ["functionanimales-elite-main", "functionrandomusuario-elite-main", "functionusuarios-elite-main"])

    def test_failed_resource_is_recreated(self) -> None:
        cloud = LocalCloud()
        apply_plan(self.plan, cloud, sleep=no_sleep)
        cloud.set_state("compute-plan", "plan-witag-elite-main", "Failed")

        report = apply_plan(self.plan, cloud, sleep=no_sleep)
        self.assertTrue(report.ok)
        self.assertEqual(next(r for r in report.results if r.kind == "compute-plan").outcome, "created")
        self.assertEqual(len(report.with_outcome("created")), 1)


class TestInspectPlan(unittest.TestCase):
    def test_inspect_never_creates(self) -> None:
        config = from_document(sample_document())
        plan = build_plan(config, "ght", "testing")
        cloud = LocalCloud()

        before = inspect_plan(plan, cloud)
        self.assertTrue(all(r.outcome == "failed" and r.error == "absent" for r in before.results))
        self.assertFalse([c for c in cloud.calls if c[0] == "create"])

        apply_plan(plan, cloud, sleep=no_sleep)
        after = inspect_plan(plan, cloud)
        self.assertTrue(after.ok)


if __name__ == "__main__":
    unittest.main()
