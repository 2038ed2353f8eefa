from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Callable

from calsync.gcal_client import CredentialError
from calsync.models import SyncEntry, TodoRecord
from calsync.planner import COMPLETE, CREATE, DELETE, UPDATE, ReconcilePlan, SyncAction, plan_reconciliation

logger = logging.getLogger(__name__)


@dataclass
class ActionReport:
    action: SyncAction
    ok: bool
    error: str = ""
    remote_event_id: str = ""

    def to_dict(self) -> dict[str, Any]:
        payload = self.action.to_dict()
        payload["ok"] = self.ok
        if self.error:
            payload["error"] = self.error
        if self.remote_event_id:
            payload["remote_event_id"] = self.remote_event_id
        return payload


@dataclass
class ReconcileOutcome:
    plan: ReconcilePlan
    entries: list[SyncEntry]
    reports: list[ActionReport] = field(default_factory=list)
    aborted: str = ""

    @property
    def actions(self) -> list[SyncAction]:
        return self.plan.actions

    @property
    def applied(self) -> int:
        return sum(1 for report in self.reports if report.ok)

    @property
    def failures(self) -> int:
        return sum(1 for report in self.reports if not report.ok)

    @property
    def synced(self) -> int:
        handled = sum(
            1
            for report in self.reports
            if report.action.kind == COMPLETE or (report.ok and report.action.kind != DELETE)
        )
        return handled + len(self.plan.unchanged) + len(self.plan.untracked_completed)


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _execute(action: SyncAction, gateway: Any) -> str:
    if action.kind == CREATE:
        return gateway.create_event(action.text, action.start, action.estimated_minutes)
    if action.kind == UPDATE:
        gateway.update_event(action.remote_event_id, action.text, action.start, action.estimated_minutes)
    elif action.kind == COMPLETE:
        gateway.mark_event_completed(action.remote_event_id, action.estimated_minutes, action.actual_minutes)
    elif action.kind == DELETE:
        gateway.delete_event(action.remote_event_id)
    else:
        raise ValueError(f"Unknown sync action: {action.kind}")
    return action.remote_event_id


def apply_plan(
    plan: ReconcilePlan,
    gateway: Any,
    existing_entries: list[SyncEntry],
    *,
    now: Callable[[], str] = _utc_now,
    on_report: Callable[[ActionReport], None] | None = None,
) -> ReconcileOutcome:
    """Run the plan against the calendar, one action at a time, in plan order.

    A failing action is logged and reported and the pass moves on: a failed
    create leaves no entry, a failed update leaves the stale one. Orphaned
    entries are dropped whether or not their delete went through. A
    CredentialError stops the pass; the outcome then holds the entries as
    they stand after the actions that did run.
    """
    entries = [entry for entry in existing_entries if entry.document_path == plan.document_path]
    outcome = ReconcileOutcome(plan=plan, entries=entries)

    for action in plan.actions:
        try:
            remote_event_id = _execute(action, gateway)
        except CredentialError as exc:
            logger.error("Aborting sync of %s: %s", plan.document_path, exc)
            outcome.aborted = str(exc)
            break
        except Exception as exc:
            logger.warning(
                "Failed to %s todo %r (%s) in %s: %s",
                action.kind,
                action.text,
                action.identifier,
                plan.document_path,
                exc,
            )
            report = ActionReport(action=action, ok=False, error=f"{type(exc).__name__}: {exc}")
            if action.kind == DELETE:
                outcome.entries = [e for e in outcome.entries if e.identifier != action.identifier]
        else:
            report = ActionReport(action=action, ok=True, remote_event_id=remote_event_id)
            _record_success(outcome, action, remote_event_id, plan.document_path, now())

        outcome.reports.append(report)
        if on_report is not None:
            on_report(report)

    return outcome


def _record_success(
    outcome: ReconcileOutcome,
    action: SyncAction,
    remote_event_id: str,
    document_path: str,
    synced_at: str,
) -> None:
    if action.kind == CREATE:
        outcome.entries.append(
            SyncEntry(
                identifier=action.identifier,
                remote_event_id=remote_event_id,
                document_path=document_path,
                last_known_text=action.text,
                last_known_estimated_minutes=action.estimated_minutes,
                last_synced_at=synced_at,
                source_line=action.source_line,
            )
        )
    elif action.kind == UPDATE:
        outcome.entries = [
            replace(
                entry,
                last_known_text=action.text,
                last_known_estimated_minutes=action.estimated_minutes,
                last_synced_at=synced_at,
                source_line=action.source_line,
            )
            if entry.identifier == action.identifier
            else entry
            for entry in outcome.entries
        ]
    elif action.kind == DELETE:
        outcome.entries = [entry for entry in outcome.entries if entry.identifier != action.identifier]


def reconcile(
    todos: list[TodoRecord],
    document_path: str,
    existing_entries: list[SyncEntry],
    gateway: Any,
    origin: datetime,
    *,
    on_report: Callable[[ActionReport], None] | None = None,
) -> ReconcileOutcome:
    plan = plan_reconciliation(todos, document_path, existing_entries, origin)
    logger.debug("Plan for %s: %s", document_path, plan.summary())
    return apply_plan(plan, gateway, existing_entries, on_report=on_report)
