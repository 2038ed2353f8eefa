import tempfile
import unittest
from datetime import date, datetime
from pathlib import Path
from unittest import mock

from calsync.gcal_client import CredentialError, GatewayError
from calsync.models import AppConfig
from calsync.state_store import StateStore
from calsync.sync_engine import NO_TODOS_MESSAGE, NOT_CONFIGURED_MESSAGE, SyncEngine
from calsync.sync_store import SyncStore
from calsync.vault import Vault

TODAY = date(2026, 10, 18)


class _FakeGateway:
    def __init__(self) -> None:
        self.calls: list[tuple] = []
        self.created = 0
        self.fail_titles: set[str] = set()
        self.credential_error: CredentialError | None = None

    def ensure_access_token(self) -> str:
        if self.credential_error is not None:
            raise self.credential_error
        return "token"

    def create_event(self, title: str, start: datetime, minutes: int) -> str:
        if title in self.fail_titles:
            raise GatewayError(f"cannot create {title}", status_code=500)
        self.created += 1
        self.calls.append(("create", title, start, minutes))
        return f"evt-{self.created}"

    def update_event(self, event_id: str, title: str, start: datetime, minutes: int) -> None:
        self.calls.append(("update", event_id, title, start, minutes))

    def mark_event_completed(self, event_id: str, estimated: int, actual: int | None) -> None:
        self.calls.append(("complete", event_id, estimated, actual))

    def delete_event(self, event_id: str) -> bool:
        self.calls.append(("delete", event_id))
        return True


class SyncEngineTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        root = Path(self._tmp.name)
        self.vault_root = root / "vault"
        self.vault_root.mkdir()
        self.config = AppConfig.from_dict(
            {
                "google": {"client_id": "cid", "client_secret": "s", "refresh_token": "r"},
                "scheduling": {"start_hour": 10, "start_minute": 30, "time_zone": "Europe/Berlin"},
            }
        )
        self.config_manager = mock.Mock()
        self.config_manager.load.return_value = self.config
        self.sync_store = SyncStore(root / "sync-data.json")
        self.state_store = StateStore(str(root / "state.db"))
        self.gateway = _FakeGateway()
        self.engine = SyncEngine(
            self.config_manager,
            self.sync_store,
            self.state_store,
            vault=Vault(self.vault_root),
            gateway_factory=lambda config: self.gateway,
            today=lambda: TODAY,
        )

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def _write(self, name: str, text: str) -> None:
        path = self.vault_root / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")

    def test_first_sync_creates_stacked_events(self) -> None:
        self._write("today.md", "- [ ] t1(1h)\n- [ ] t2(30m)\n- [ ] t3(1h30m)\n")
        result = self.engine.sync_document("today.md")

        self.assertEqual(result.status, "success")
        self.assertEqual(result.synced, 3)
        self.assertEqual(result.message, "Synced 3 todos to Google Calendar.")
        starts = [call[2].strftime("%H:%M") for call in self.gateway.calls]
        self.assertEqual(starts, ["10:30", "11:30", "12:00"])
        self.assertEqual(len(self.sync_store.load("today.md")), 3)

        runs = self.state_store.recent_sync_runs()
        self.assertEqual(runs[0]["status"], "success")
        self.assertEqual(runs[0]["synced"], 3)
        actions = [event["action"] for event in self.state_store.recent_audit_events(run_id=runs[0]["id"])]
        self.assertEqual(sorted(actions), ["create", "create", "create"])

    def test_resync_without_changes_is_idempotent(self) -> None:
        self._write("today.md", "- [ ] t1(1h)\n- [ ] t2(30m)\n")
        self.engine.sync_document("today.md")
        stored = self.sync_store.load_all()
        self.gateway.calls.clear()

        result = self.engine.sync_document("today.md")

        self.assertEqual(self.gateway.calls, [])
        self.assertEqual(self.sync_store.load_all(), stored)
        self.assertEqual(result.synced, 2)

    def test_completing_and_removing_todos(self) -> None:
        self._write("today.md", "- [ ] keep(1h)\n- [ ] finish(2h)\n- [ ] drop(15m)\n")
        self.engine.sync_document("today.md")
        self.gateway.calls.clear()

        self._write("today.md", "- [ ] keep(1h)\n- [x] finish(2h)(1h30m)\n")
        result = self.engine.sync_document("today.md")

        self.assertEqual(self.gateway.calls, [("complete", "evt-2", 120, 90), ("delete", "evt-3")])
        self.assertEqual(
            [entry.last_known_text for entry in self.sync_store.load("today.md")],
            ["keep", "finish"],
        )
        self.assertEqual(result.status, "success")

    def test_reordering_keeps_identity(self) -> None:
        self._write("today.md", "- [ ] a(1h)\n- [ ] b(1h)\n")
        self.engine.sync_document("today.md")
        self.gateway.calls.clear()

        self._write("today.md", "- [ ] b(1h)\n\n- [ ] a(1h)\n")
        self.engine.sync_document("today.md")

        self.assertEqual(self.gateway.calls, [])
        self.assertEqual(len(self.sync_store.load_all()), 2)

    def test_credential_failure_aborts_before_any_action(self) -> None:
        self._write("today.md", "- [ ] t1(1h)\n")
        self.gateway.credential_error = CredentialError("Token refresh failed")

        result = self.engine.sync_document("today.md")

        self.assertEqual(result.status, "error")
        self.assertIn("Token refresh failed", result.message)
        self.assertEqual(self.gateway.calls, [])
        self.assertFalse(self.sync_store.data_path.exists())

    def test_item_failures_are_counted_not_fatal(self) -> None:
        self._write("today.md", "- [ ] broken(1h)\n- [ ] fine(30m)\n")
        self.gateway.fail_titles = {"broken"}

        result = self.engine.sync_document("today.md")

        self.assertEqual(result.status, "partial")
        self.assertEqual(result.failures, 1)
        self.assertEqual(result.synced, 1)
        self.assertIn("1 action failed", result.message)
        self.assertEqual([entry.last_known_text for entry in self.sync_store.load_all()], ["fine"])
        audit = self.state_store.recent_audit_events()
        self.assertIn("create_failed", [event["action"] for event in audit])

    def test_corrupt_store_degrades_to_fresh_sync(self) -> None:
        self._write("today.md", "- [ ] t1(1h)\n")
        self.sync_store.data_path.write_text("garbage", encoding="utf-8")

        with self.assertLogs("calsync.sync_store", level="ERROR"):
            result = self.engine.sync_document("today.md")

        self.assertEqual(result.status, "success")
        self.assertEqual(len(self.sync_store.load_all()), 1)

    def test_unconfigured_or_empty_documents_are_skipped(self) -> None:
        self._write("empty.md", "# nothing to do\n- [ ] no estimate\n")
        result = self.engine.sync_document("empty.md")
        self.assertEqual((result.status, result.message), ("skipped", NO_TODOS_MESSAGE))

        self.config_manager.load.return_value = AppConfig.from_dict({"google": {"client_id": "cid"}})
        result = self.engine.sync_document("empty.md")
        self.assertEqual((result.status, result.message), ("skipped", NOT_CONFIGURED_MESSAGE))

    def test_sync_all_keeps_documents_separate(self) -> None:
        self._write("a.md", "- [ ] shared(1h)\n")
        self._write("sub/b.md", "- [ ] shared(1h)\n- [x] done(30m)\n")
        self._write(".hidden/c.md", "- [ ] hidden(1h)\n")
        self._write("notes.md", "no todos here\n")

        result = self.engine.sync_all()

        self.assertEqual(result.status, "success")
        self.assertEqual(result.synced, 3)
        self.assertEqual(result.message, "Synced 3 todos across all files.")
        entries = self.sync_store.load_all()
        self.assertEqual(sorted(entry.document_path for entry in entries), ["a.md", "sub/b.md"])
        self.assertNotEqual(entries[0].identifier, entries[1].identifier)

    def test_sync_all_stops_on_credential_failure(self) -> None:
        self._write("a.md", "- [ ] one(1h)\n")
        self._write("b.md", "- [ ] two(1h)\n")
        self.gateway.credential_error = CredentialError("revoked")

        result = self.engine.sync_all()

        self.assertEqual(result.status, "error")
        self.assertEqual(len(self.state_store.recent_sync_runs()), 1)


if __name__ == "__main__":
    unittest.main()
