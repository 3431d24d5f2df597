import json
import logging
import os
import sys
import unittest
from pathlib import Path
from tempfile import TemporaryDirectory
from unittest import mock

ROOT_DIR = Path(__file__).resolve().parents[1]
SRC_DIR = ROOT_DIR / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from edgeprov.common.run_summary import ResourceResultData, RunSummaryBuilder
from edgeprov.core.config import DEFAULT_CONFIG
from edgeprov.core.logging import SecretScrubberFilter
from edgeprov.core.secrets import SecretNotFoundError, SecretsConfigError, load_secrets, resolve_api_credentials
from edgeprov.core.storage import (
    FALLBACK_STATE_DIR,
    StateFileError,
    list_states,
    load_state,
    remove_state,
    resolve_state_dir,
    save_state,
)


class StateStorageTests(unittest.TestCase):
    def test_save_load_and_remove(self) -> None:
        with TemporaryDirectory() as tmpdir:
            state_dir = Path(tmpdir) / "state"
            snapshot = {"uuid": "p-1", "notifications": ["ops@example.com"], "secondary_device": []}

            path = save_state(state_dir, "edge", snapshot)

            self.assertEqual(state_dir / "edge.json", path)
            self.assertFalse((state_dir / "edge.tmp").exists())
            self.assertEqual(snapshot, load_state(state_dir, "edge"))
            self.assertEqual(["edge"], list_states(state_dir))

            self.assertTrue(remove_state(state_dir, "edge"))
            self.assertIsNone(load_state(state_dir, "edge"))
            self.assertFalse(remove_state(state_dir, "edge"))
            self.assertEqual([], list_states(state_dir))

    def test_corrupted_state_is_reported(self) -> None:
        with TemporaryDirectory() as tmpdir:
            state_dir = Path(tmpdir)
            (state_dir / "edge.json").write_text("{not json", encoding="utf-8")

            with self.assertRaises(StateFileError):
                load_state(state_dir, "edge")

    def test_summary_directory_is_not_listed(self) -> None:
        with TemporaryDirectory() as tmpdir:
            state_dir = Path(tmpdir)
            save_state(state_dir, "b-edge", {"uuid": "b"})
            save_state(state_dir, "a-edge", {"uuid": "a"})
            (state_dir / "summary").mkdir()
            (state_dir / "summary" / "run_1.json").write_text("{}", encoding="utf-8")

            self.assertEqual(["a-edge", "b-edge"], list_states(state_dir))

    def test_cli_state_dir_wins(self) -> None:
        with TemporaryDirectory() as tmpdir:
            cli_dir = Path(tmpdir) / "cli"
            local_dir = Path(tmpdir) / "local"
            logger = logging.getLogger("edgeprov.test.storage")

            resolved = resolve_state_dir(cli_dir, {"state": {"directory": str(local_dir)}}, logger)
            self.assertEqual(cli_dir, resolved)

            resolved = resolve_state_dir(None, {"state": {"directory": str(local_dir)}}, logger)
            self.assertEqual(local_dir, resolved)

    def test_fallback_directory_follows_default_paths(self) -> None:
        self.assertEqual(ROOT_DIR / DEFAULT_CONFIG.state, FALLBACK_STATE_DIR)
        self.assertEqual(Path("state"), DEFAULT_CONFIG.state)


class RunSummaryTests(unittest.TestCase):
    def test_counts_and_saves_summary(self) -> None:
        summary = RunSummaryBuilder(run_id="2026-01-01_000000_abcd", timestamp="2026-01-01_000000", command="apply")
        summary.set_resources_total(4)
        summary.add_resource(ResourceResultData(label="a", action="create", status="ok", uuid="p-1"))
        summary.add_resource(
            ResourceResultData(label="b", action="update", status="ok", uuid="p-2", changed_fields=["name"])
        )
        summary.add_resource(ResourceResultData(label="c", action="update", status="ok", uuid="p-3"))
        summary.add_resource(ResourceResultData(label="d", action="create", status="failed", error="boom"))

        self.assertTrue(summary.has_failures)

        with TemporaryDirectory() as tmpdir:
            path = summary.save(Path(tmpdir), logging.getLogger("edgeprov.test.summary"))
            data = json.loads(path.read_text(encoding="utf-8"))

        self.assertEqual("run_2026-01-01_000000_abcd.json", path.name)
        self.assertEqual("summary", path.parent.name)
        self.assertEqual(
            {"resources_total": 4, "created": 1, "updated": 1, "deleted": 0, "unchanged": 1, "failed": 1},
            data["totals"],
        )
        self.assertEqual(["name"], data["resources"][1]["changed_fields"])
        self.assertEqual("boom", data["resources"][3]["error"])


class SecretsTests(unittest.TestCase):
    def _write_secrets(self, directory: str, content: str) -> Path:
        path = Path(directory) / "secrets.yml"
        path.write_text(content, encoding="utf-8")
        return path

    def test_credentials_from_file(self) -> None:
        with TemporaryDirectory() as tmpdir:
            path = self._write_secrets(
                tmpdir, "secrets:\n  network_edge:\n    client_id: id-1\n    client_secret: secret-1\n"
            )
            with mock.patch.dict(os.environ, {}, clear=True):
                credentials = resolve_api_credentials(secrets=load_secrets(path))

        self.assertEqual("id-1", credentials.client_id)
        self.assertEqual("secret-1", credentials.client_secret)
        self.assertNotIn("secret-1", repr(credentials))

    def test_environment_overrides_file(self) -> None:
        with TemporaryDirectory() as tmpdir:
            path = self._write_secrets(
                tmpdir, "secrets:\n  network_edge:\n    client_id: id-1\n    client_secret: secret-1\n"
            )
            env = {"EDGEPROV_SECRET_NETWORK_EDGE_CLIENT_SECRET": "from-env"}
            with mock.patch.dict(os.environ, env, clear=True):
                credentials = resolve_api_credentials(secrets=load_secrets(path))

        self.assertEqual("id-1", credentials.client_id)
        self.assertEqual("from-env", credentials.client_secret)

    def test_missing_credentials(self) -> None:
        with TemporaryDirectory() as tmpdir:
            with mock.patch.dict(os.environ, {}, clear=True):
                secrets = load_secrets(Path(tmpdir) / "missing.yml")
                with self.assertRaises(SecretNotFoundError):
                    resolve_api_credentials(secrets=secrets)

    def test_malformed_file(self) -> None:
        with TemporaryDirectory() as tmpdir:
            path = self._write_secrets(tmpdir, "secrets:\n  network_edge:\n    client_id: id-1\n")

            with self.assertRaises(SecretsConfigError):
                load_secrets(path)


class SecretScrubberTests(unittest.TestCase):
    def test_masks_client_secret(self) -> None:
        record = logging.LogRecord(
            "edgeprov", logging.INFO, __file__, 1, "login client_secret=%s token=abc", ("s3cr3t",), None
        )

        SecretScrubberFilter().filter(record)

        self.assertEqual("login client_secret=*** token=***", record.getMessage())


if __name__ == "__main__":
    unittest.main()
