import io
import json
import tempfile
import unittest
from contextlib import redirect_stderr, redirect_stdout
from pathlib import Path

import yaml

from calsync.main import main
from calsync.vault import Vault


class VaultTests(unittest.TestCase):
    def test_lists_markdown_relative_and_skips_hidden(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            root = Path(temp_dir)
            (root / "b").mkdir()
            (root / ".obsidian").mkdir()
            (root / "z.md").write_text("", encoding="utf-8")
            (root / "b" / "a.md").write_text("", encoding="utf-8")
            (root / ".obsidian" / "x.md").write_text("", encoding="utf-8")
            (root / "notes.txt").write_text("", encoding="utf-8")

            vault = Vault(root)
            self.assertEqual(vault.markdown_files(), ["b/a.md", "z.md"])
            self.assertEqual(vault.document_path(root / "b" / "a.md"), "b/a.md")
            self.assertEqual(vault.document_path("b/a.md"), "b/a.md")


class CliTests(unittest.TestCase):
    def _config(self, root: Path) -> Path:
        config_path = root / "config.yaml"
        config_path.write_text(
            yaml.safe_dump(
                {
                    "google": {"client_id": "cid", "client_secret": "very-secret"},
                    "storage": {
                        "vault_path": str(root / "vault"),
                        "sync_data_path": str(root / "sync-data.json"),
                        "state_db_path": str(root / "state.db"),
                    },
                }
            ),
            encoding="utf-8",
        )
        (root / "vault").mkdir()
        return config_path

    def test_config_command_masks_secrets(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            config_path = self._config(Path(temp_dir))
            buffer = io.StringIO()
            with redirect_stdout(buffer):
                code = main(["--config", str(config_path), "config"])
            self.assertEqual(code, 0)
            payload = json.loads(buffer.getvalue())
            self.assertEqual(payload["google"]["client_secret"], "***")

    def test_sync_without_refresh_token_is_skipped(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            root = Path(temp_dir)
            config_path = self._config(root)
            (root / "vault" / "today.md").write_text("- [ ] t(1h)\n", encoding="utf-8")
            buffer = io.StringIO()
            with redirect_stdout(buffer):
                code = main(["--config", str(config_path), "--json", "sync", "today.md"])
            self.assertEqual(code, 0)
            self.assertEqual(json.loads(buffer.getvalue())["status"], "skipped")

    def test_sync_of_undecodable_document_fails_cleanly(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            root = Path(temp_dir)
            config_path = self._config(root)
            manager_config = yaml.safe_load(config_path.read_text(encoding="utf-8"))
            manager_config["google"]["refresh_token"] = "r"
            config_path.write_text(yaml.safe_dump(manager_config), encoding="utf-8")
            (root / "vault" / "latin.md").write_bytes(b"- [ ] caf\xe9(1h)\n")
            stderr = io.StringIO()
            with redirect_stderr(stderr), redirect_stdout(io.StringIO()):
                code = main(["--config", str(config_path), "sync", "latin.md"])
            self.assertEqual(code, 1)
            self.assertIn("Could not read latin.md", stderr.getvalue())

    def test_history_is_empty_initially(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            config_path = self._config(Path(temp_dir))
            buffer = io.StringIO()
            with redirect_stdout(buffer):
                code = main(["--config", str(config_path), "history"])
            self.assertEqual(code, 0)
            self.assertEqual(json.loads(buffer.getvalue()), [])


if __name__ == "__main__":
    unittest.main()
