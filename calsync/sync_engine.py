from __future__ import annotations

import logging
import traceback
from datetime import date, datetime, timezone
from typing import Any, Callable

from calsync.config_manager import ConfigManager
from calsync.gcal_client import CredentialError, GoogleCalendarService
from calsync.models import AppConfig, SyncResult, TodoRecord, schedule_origin
from calsync.reconciler import ActionReport, reconcile
from calsync.state_store import StateStore
from calsync.sync_store import SyncStore
from calsync.todo_parser import parse_todos
from calsync.vault import Vault

logger = logging.getLogger(__name__)

NOT_CONFIGURED_MESSAGE = "Google Calendar not configured. Run `calsync auth` after setting client_id/client_secret."
NO_TODOS_MESSAGE = "No todos with duration found in this file."
ALL_FILES = "*"


def _elapsed_ms(started_at: datetime) -> int:
    return int((datetime.now(timezone.utc) - started_at).total_seconds() * 1000)


def _failure_notice(failures: int) -> str:
    if not failures:
        return ""
    noun = "action" if failures == 1 else "actions"
    return f" {failures} {noun} failed; check the log for details."


class SyncEngine:
    def __init__(
        self,
        config_manager: ConfigManager,
        sync_store: SyncStore,
        state_store: StateStore,
        *,
        vault: Vault | None = None,
        gateway_factory: Callable[[AppConfig], Any] | None = None,
        today: Callable[[], date] = date.today,
    ) -> None:
        self.config_manager = config_manager
        self.sync_store = sync_store
        self.state_store = state_store
        self.vault = vault
        self.gateway_factory = gateway_factory or self._default_gateway
        self.today = today

    def _default_gateway(self, config: AppConfig) -> GoogleCalendarService:
        return GoogleCalendarService(
            config.google,
            config.scheduling,
            on_token_refresh=self._persist_token,
        )

    def _persist_token(self, access_token: str, token_expiry: int) -> None:
        self.config_manager.update({"google": {"access_token": access_token, "token_expiry": token_expiry}})

    def _vault(self, config: AppConfig) -> Vault:
        return self.vault or Vault(config.storage.vault_path)

    def _skipped(self, message: str, trigger: str, document_path: str) -> SyncResult:
        logger.info("%s (%s)", message, document_path)
        return SyncResult(
            status="skipped",
            message=message,
            duration_ms=0,
            synced=0,
            failures=0,
            trigger=trigger,
            document_path=document_path,
        )

    def sync_document(self, document_path: str, trigger: str = "manual") -> SyncResult:
        config = self.config_manager.load()
        if not config.google.is_configured():
            return self._skipped(NOT_CONFIGURED_MESSAGE, trigger, document_path)
        vault = self._vault(config)
        document_path = vault.document_path(document_path)
        todos = parse_todos(vault.read(document_path), document_path)
        if not todos:
            return self._skipped(NO_TODOS_MESSAGE, trigger, document_path)
        result, _ = self._run(config, self.gateway_factory(config), todos, document_path, trigger)
        return result

    def sync_todos(self, todos: list[TodoRecord], document_path: str, trigger: str = "manual") -> SyncResult:
        config = self.config_manager.load()
        result, _ = self._run(config, self.gateway_factory(config), todos, document_path, trigger)
        return result

    def sync_all(self, trigger: str = "manual") -> SyncResult:
        started_at = datetime.now(timezone.utc)
        config = self.config_manager.load()
        if not config.google.is_configured():
            return self._skipped(NOT_CONFIGURED_MESSAGE, trigger, ALL_FILES)
        vault = self._vault(config)
        gateway = self.gateway_factory(config)
        synced = 0
        failures = 0
        documents = 0

        for document_path in vault.markdown_files():
            try:
                todos = parse_todos(vault.read(document_path), document_path)
            except (OSError, UnicodeDecodeError) as exc:
                logger.warning("Could not read %s: %s", document_path, exc)
                failures += 1
                continue
            if not todos:
                continue
            documents += 1
            result, fatal = self._run(config, gateway, todos, document_path, trigger)
            synced += result.synced
            failures += result.failures
            if fatal:
                return SyncResult(
                    status="error",
                    message=result.message,
                    duration_ms=_elapsed_ms(started_at),
                    synced=synced,
                    failures=failures,
                    trigger=trigger,
                    document_path=ALL_FILES,
                )

        return SyncResult(
            status="partial" if failures else "success",
            message=f"Synced {synced} todos across all files.{_failure_notice(failures)}",
            duration_ms=_elapsed_ms(started_at),
            synced=synced,
            failures=failures,
            trigger=trigger,
            document_path=ALL_FILES,
        )

    def _run(
        self,
        config: AppConfig,
        gateway: Any,
        todos: list[TodoRecord],
        document_path: str,
        trigger: str,
    ) -> tuple[SyncResult, bool]:
        """Reconcile one document. The flag is True when the pass hit a credential failure."""
        started_at = datetime.now(timezone.utc)
        run_id = self.state_store.start_sync_run(trigger=trigger, document_path=document_path)

        def finish(status: str, message: str, synced: int, failures: int) -> SyncResult:
            duration_ms = _elapsed_ms(started_at)
            self.state_store.finish_sync_run(
                run_id=run_id,
                status=status,
                message=message,
                duration_ms=duration_ms,
                synced=synced,
                failures=failures,
            )
            return SyncResult(
                status=status,
                message=message,
                duration_ms=duration_ms,
                synced=synced,
                failures=failures,
                trigger=trigger,
                document_path=document_path,
            )

        def audit(report: ActionReport) -> None:
            self.state_store.record_audit_event(
                run_id=run_id,
                document_path=document_path,
                identifier=report.action.identifier,
                action=report.action.kind if report.ok else f"{report.action.kind}_failed",
                details=report.to_dict(),
            )

        try:
            gateway.ensure_access_token()
        except CredentialError as exc:
            message = f"Sync aborted: {exc}"
            logger.error("%s (%s)", message, document_path)
            self.state_store.record_audit_event(
                run_id=run_id,
                document_path=document_path,
                identifier="sync",
                action="credential_error",
                details={"trigger": trigger, "error": str(exc)},
            )
            return finish("error", message, 0, 0), True

        try:
            existing = self.sync_store.load(document_path)
            origin = schedule_origin(self.today(), config.scheduling.start_hour, config.scheduling.start_minute)
            outcome = reconcile(todos, document_path, existing, gateway, origin, on_report=audit)
            self.sync_store.replace_document(document_path, outcome.entries)
        except Exception as exc:
            error_message = f"{type(exc).__name__}: {exc}"
            logger.exception("Sync of %s failed", document_path)
            self.state_store.record_audit_event(
                run_id=run_id,
                document_path=document_path,
                identifier="sync",
                action="run_error",
                details={
                    "trigger": trigger,
                    "error": error_message,
                    "traceback": traceback.format_exc(limit=5),
                },
            )
            return finish("error", error_message, 0, 0), False

        if outcome.aborted:
            message = f"Sync aborted: {outcome.aborted}"
            self.state_store.record_audit_event(
                run_id=run_id,
                document_path=document_path,
                identifier="sync",
                action="credential_error",
                details={"trigger": trigger, "error": outcome.aborted},
            )
            return finish("error", message, outcome.synced, outcome.failures), True

        message = f"Synced {outcome.synced} todos to Google Calendar.{_failure_notice(outcome.failures)}"
        logger.info("%s (%s)", message, document_path)
        status = "partial" if outcome.failures else "success"
        return finish(status, message, outcome.synced, outcome.failures), False
