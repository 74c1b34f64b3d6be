from __future__ import annotations

import io
import json
import os
import tempfile
import unittest
from contextlib import redirect_stdout
from pathlib import Path
from typing import Any, Dict, List, Tuple
from unittest import mock

from _testutil import ensure_repo_on_path, write_document, write_local_profile

ensure_repo_on_path()

from tenantops.cli import main  # noqa: E402
from tenantops.infra.adapters.local_cloud import LocalCloud  # noqa: E402
from tenantops.infra.errors import RetryableError  # noqa: E402


def _json_tail(out: str) -> Dict[str, Any]:
    lines = out.splitlines()
    start = lines.index("{")
    return json.loads("\n".join(lines[start:]))


class TestCli(unittest.TestCase):
    def setUp(self) -> None:
        self._td = tempfile.TemporaryDirectory()
        self.root = Path(self._td.name)
        self.registry = write_document(self.root)
        self.state = self.root / "state" / "cloud.json"
        self.profile = write_local_profile(self.root, self.state)
        self._env = mock.patch.dict(os.environ, {}, clear=False)
        self._env.start()
        os.environ.pop("TENANTOPS_PROFILE_NAME", None)

    def tearDown(self) -> None:
        self._env.stop()
        self._td.cleanup()

    def run_cli(self, *argv: str) -> Tuple[int, str]:
        buf = io.StringIO()
        with redirect_stdout(buf):
            code = main(["--config", str(self.registry), "--runtime-profile", str(self.profile), *argv])
        return code, buf.getvalue()

    def test_deploy_then_status(self) -> None:
        code, out = self.run_cli("deploy", "elite", "main", "sub-1")
        self.assertEqual(code, 0, out)
        result = _json_tail(out)
        self.assertTrue(result["ok"])
        self.assertEqual(result["runs"][0]["status"], "VALIDATED_PASS")
        self.assertIn("[deploy][OK] elite/main resource-group rg-witag-elite-main created", out)
        self.assertTrue(self.state.exists())

        code, out = self.run_cli("status")
        self.assertEqual(code, 0)
        rows = {(r["client"], r["environment"]): r["status"] for r in _json_tail(out)["environments"]}
        self.assertEqual(
            rows,
            {("elite", "testing"): "PLANNED", ("elite", "main"): "VALIDATED_PASS", ("ght", "testing"): "PLANNED"},
        )

    def test_rerun_reports_already_existed(self) -> None:
        self.run_cli("deploy", "elite", "main", "sub-1")
        code, out = self.run_cli("deploy", "elite", "main", "sub-1")
        self.assertEqual(code, 0)
        deployment = _json_tail(out)["runs"][0]["deployment"]
        self.assertEqual((deployment["created"], deployment["already_existed"]), (0, 10))

    def test_deploy_all_both(self) -> None:
        code, out = self.run_cli("deploy", "all", "both", "sub-1")
        self.assertEqual(code, 0)
        pairs = [(r["client"], r["environment"]) for r in _json_tail(out)["runs"]]
        self.assertEqual(pairs, [("elite", "testing"), ("elite", "main"), ("ght", "testing")])

    def test_seed_and_validate(self) -> None:
        self.run_cli("deploy", "ght", "testing", "sub-1")
        LocalCloud(self.state).delete_record("witag-ght-testing/witagdb/usuarios", "usuario1")

        code, out = self.run_cli("validate", "ght", "testing")
        self.assertEqual(code, 1)
        self.assertEqual(_json_tail(out)["collections"][0]["missing"], ["usuario1"])

        code, out = self.run_cli("seed", "ght", "testing")
        self.assertEqual(code, 0)
        self.assertEqual(_json_tail(out)["collections"][0]["created_count"], 1)

        code, _ = self.run_cli("validate", "ght", "testing")
        self.assertEqual(code, 0)

    def test_validate_before_deploy_fails(self) -> None:
        code, out = self.run_cli("validate", "ght", "testing")
        self.assertEqual(code, 1)
        self.assertIn("error", _json_tail(out)["collections"][0])

    def test_add_client(self) -> None:
        code, out = self.run_cli("add-client", "acme", "Acme Corp", "both", "--template", "elite")
        self.assertEqual(code, 0, out)
        self.assertEqual(_json_tail(out)["environments"]["main"]["resourceGroup"], "rg-witag-acme-main")
        doc = json.loads(self.registry.read_text(encoding="utf-8"))
        self.assertEqual(list(doc["clients"]), ["elite", "ght", "acme"])

        code, _ = self.run_cli("add-client", "acme", "Acme Corp", "main")
        self.assertEqual(code, 2)

    def test_add_client_bad_name(self) -> None:
        before = self.registry.read_text(encoding="utf-8")
        code, out = self.run_cli("add-client", "Bad Name!", "Bad", "main")
        self.assertEqual(code, 2)
        self.assertIn("[add-client][ERROR] ConfigParseError", out)
        self.assertEqual(self.registry.read_text(encoding="utf-8"), before)

    def test_config_errors_exit_2(self) -> None:
        self.assertEqual(self.run_cli("deploy", "nobody", "main", "sub-1")[0], 2)
        self.assertEqual(self.run_cli("deploy", "ght", "main", "sub-1")[0], 2)
        self.assertEqual(self.run_cli("seed", "elite", "main")[0], 1)

        self.registry.unlink()
        code, out = self.run_cli("status")
        self.assertEqual(code, 2)
        self.assertIn("ConfigNotFound", out)

    def test_targets(self) -> None:
        code, out = self.run_cli("targets", "functionAnimales", "testing")
        self.assertEqual(code, 0)
        targets: List[Dict[str, str]] = _json_tail(out)["targets"]
        self.assertEqual([t["functionApp"] for t in targets], ["functionanimales-elite-testing", "functionanimales-ght-testing"])

    def test_verify(self) -> None:
        self.run_cli("deploy", "ght", "testing", "sub-1")
        fake = mock.Mock(return_value=mock.Mock(status_code=200))
        with mock.patch("tenantops.data.health.requests.get", fake):
            code, out = self.run_cli("verify", "ght", "testing")
        self.assertEqual(code, 0, out)
        fake.assert_called_once_with("https://functionanimales-ght-testing.azurewebsites.net", timeout=10.0)

    def test_report_file(self) -> None:
        report = self.root / "out" / "report.json"
        code, out = self.run_cli("--report", str(report), "targets", "functionUsuarios", "main")
        self.assertEqual(code, 0)
        self.assertEqual(json.loads(report.read_text(encoding="utf-8")), _json_tail(out))

    def test_bad_runtime_profile_exits_2(self) -> None:
        self.profile.write_text("profiles: {}\n", encoding="utf-8")
        code, out = self.run_cli("status")
        self.assertEqual(code, 2)
        self.assertIn("[status][ERROR] runtime:", out)


    def test_unreachable_data_store_exits_1_with_report(self) -> None:
        self.profile.write_text(
            "profiles:\n"
            "  local:\n"
            "    adapters:\n"
            "      control_plane:\n"
            "        kind: local\n"
            "        settings:\n"
            f"          state_path: {json.dumps(str(self.state))}\n"
            "      data_store:\n"
            "        kind: cosmos_rest\n"
            "        settings: {key_env: TENANTOPS_TEST_UNSET_COSMOS_KEY}\n",
            encoding="utf-8",
        )
        os.environ.pop("TENANTOPS_TEST_UNSET_COSMOS_KEY", None)

        code, out = self.run_cli("deploy", "all", "both", "sub-1")
        self.assertEqual(code, 1, out)
        runs = _json_tail(out)["runs"]
        self.assertEqual(len(runs), 3)
        for run in runs:
            self.assertTrue(run["deployment"]["ok"])
            self.assertTrue(run["skipped"].startswith("data store unavailable: NotConfiguredError"))

    def test_infra_error_exits_1(self) -> None:
        self.run_cli("deploy", "ght", "testing", "sub-1")
        with mock.patch("tenantops.cli.seed_environment", side_effect=RetryableError("throttled")):
            code, out = self.run_cli("seed", "ght", "testing")
        self.assertEqual(code, 1)
        self.assertIn("[seed][ERROR] RetryableError: throttled", out)


if __name__ == "__main__":
    unittest.main()
