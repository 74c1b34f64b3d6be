from __future__ import annotations

import os
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from _testutil import ensure_repo_on_path, write_local_profile


class TestRuntimeProfileLoad(unittest.TestCase):
    def test_load_repo_default_profile(self) -> None:
        repo_root = ensure_repo_on_path()

        from tenantops.infra.config import load_runtime_profile

        p = repo_root / "config" / "runtime_profile.yml"
        self.assertTrue(p.exists())

        with mock.patch.dict(os.environ, {}, clear=False):
            os.environ.pop("TENANTOPS_RUNTIME_PROFILE", None)
            os.environ.pop("TENANTOPS_PROFILE_NAME", None)
            prof = load_runtime_profile(repo_root, cli_path=str(p))

        self.assertEqual(prof.profile_name, "local")
        self.assertEqual(prof.adapters["control_plane"].kind, "local")
        self.assertEqual(prof.adapters["data_store"].kind, "local")

    def test_profile_name_env_selects_azure(self) -> None:
        repo_root = ensure_repo_on_path()

        from tenantops.infra.config import load_runtime_profile

        with mock.patch.dict(os.environ, {"TENANTOPS_PROFILE_NAME": "azure"}):
            os.environ.pop("TENANTOPS_RUNTIME_PROFILE", None)
            prof = load_runtime_profile(repo_root)

        self.assertEqual(prof.profile_name, "azure")
        self.assertEqual(prof.adapters["control_plane"].kind, "azure_cli")
        self.assertEqual(prof.adapters["data_store"].kind, "cosmos_rest")
        self.assertEqual(prof.adapters["data_store"].settings["key_env"], "TENANTOPS_COSMOS_KEY")

    def test_env_path_override(self) -> None:
        repo_root = ensure_repo_on_path()

        from tenantops.infra.config import resolve_runtime_profile_path

        with tempfile.TemporaryDirectory() as td:
            p = write_local_profile(Path(td))
            with mock.patch.dict(os.environ, {"TENANTOPS_RUNTIME_PROFILE": str(p)}):
                self.assertEqual(resolve_runtime_profile_path(repo_root), p.resolve())
                # CLI flag wins over the environment.
                self.assertEqual(resolve_runtime_profile_path(repo_root, "/x/y.yml"), Path("/x/y.yml").resolve())

    def test_unknown_adapter_kind_rejected(self) -> None:
        repo_root = ensure_repo_on_path()

        from tenantops.infra.config import load_runtime_profile
        from tenantops.infra.errors import ValidationError

        with tempfile.TemporaryDirectory() as td:
            p = Path(td) / "bad.yml"
            p.write_text(
                "profiles:\n"
                "  x:\n"
                "    adapters:\n"
                "      control_plane: {kind: terraform}\n"
                "      data_store: {kind: local}\n",
                encoding="utf-8",
            )
            with self.assertRaises(ValidationError):
                load_runtime_profile(repo_root, cli_path=str(p))

    def test_missing_profile_file(self) -> None:
        repo_root = ensure_repo_on_path()

        from tenantops.infra.config import load_runtime_profile
        from tenantops.infra.errors import ValidationError

        with self.assertRaises(ValidationError):
            load_runtime_profile(repo_root, cli_path="/nonexistent/profile.yml")

    def test_unknown_profile_name(self) -> None:
        repo_root = ensure_repo_on_path()

        from tenantops.infra.config import load_runtime_profile
        from tenantops.infra.errors import ValidationError

        with tempfile.TemporaryDirectory() as td:
            p = write_local_profile(Path(td))
            with mock.patch.dict(os.environ, {"TENANTOPS_PROFILE_NAME": "prod"}):
                with self.assertRaises(ValidationError):
                    load_runtime_profile(repo_root, cli_path=str(p))


    def _write(self, td: str, text: str) -> Path:
        p = Path(td) / "profile.yml"
        p.write_text(text, encoding="utf-8")
        return p

    def test_malformed_yaml(self) -> None:
        repo_root = ensure_repo_on_path()

        from tenantops.infra.config import load_runtime_profile
        from tenantops.infra.errors import ValidationError

        with tempfile.TemporaryDirectory() as td:
            p = self._write(td, "profiles:\n  local: [unclosed\n")
            with self.assertRaises(ValidationError) as cm:
                load_runtime_profile(repo_root, cli_path=str(p))
        self.assertIn("not valid YAML", str(cm.exception))

    def test_unknown_setting_names_its_adapter(self) -> None:
        repo_root = ensure_repo_on_path()

        from tenantops.infra.config import load_runtime_profile
        from tenantops.infra.errors import ValidationError

        with tempfile.TemporaryDirectory() as td:
            p = self._write(
                td,
                "profiles:\n"
                "  azure:\n"
                "    adapters:\n"
                "      control_plane: {kind: azure_cli, settings: {timeout: 30}}\n"
                "      data_store: {kind: cosmos_rest}\n",
            )
            with self.assertRaises(ValidationError) as cm:
                load_runtime_profile(repo_root, cli_path=str(p))
        self.assertIn("profiles/azure/adapters/control_plane/settings", str(cm.exception))

    def test_non_positive_timeout_rejected(self) -> None:
        repo_root = ensure_repo_on_path()

        from tenantops.infra.config import parse_runtime_profile
        from tenantops.infra.errors import ValidationError

        data = {
            "profiles": {
                "azure": {
                    "adapters": {
                        "control_plane": {"kind": "azure_cli"},
                        "data_store": {"kind": "cosmos_rest", "settings": {"timeout_s": 0}},
                    }
                }
            }
        }
        with self.assertRaises(ValidationError):
            parse_runtime_profile(data, repo_root / "inline.yml")

    def test_local_data_store_needs_local_control_plane(self) -> None:
        repo_root = ensure_repo_on_path()

        from tenantops.infra.config import parse_runtime_profile
        from tenantops.infra.errors import ValidationError

        data = {
            "profiles": {
                "mixed": {
                    "adapters": {
                        "control_plane": {"kind": "azure_cli"},
                        "data_store": {"kind": "local"},
                    }
                }
            }
        }
        with self.assertRaises(ValidationError) as cm:
            parse_runtime_profile(data, repo_root / "inline.yml")
        self.assertIn("pairs data_store 'local'", str(cm.exception))


if __name__ == "__main__":
    unittest.main()
