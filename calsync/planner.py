from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Iterable

from calsync.models import SyncEntry, TodoRecord

CREATE = "create"
UPDATE = "update"
COMPLETE = "complete"
DELETE = "delete"


@dataclass
class SyncAction:
    kind: str
    identifier: str
    remote_event_id: str = ""
    text: str = ""
    start: datetime | None = None
    end: datetime | None = None
    estimated_minutes: int = 0
    actual_minutes: int | None = None
    source_line: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "identifier": self.identifier,
            "remote_event_id": self.remote_event_id,
            "text": self.text,
            "start": self.start.isoformat() if self.start else None,
            "end": self.end.isoformat() if self.end else None,
            "estimated_minutes": self.estimated_minutes,
            "actual_minutes": self.actual_minutes,
        }


@dataclass
class ReconcilePlan:
    document_path: str
    origin: datetime
    actions: list[SyncAction] = field(default_factory=list)
    present: set[str] = field(default_factory=set)
    unchanged: list[str] = field(default_factory=list)
    untracked_completed: list[str] = field(default_factory=list)

    def by_kind(self, kind: str) -> list[SyncAction]:
        return [action for action in self.actions if action.kind == kind]

    def summary(self) -> dict[str, Any]:
        return {
            "document_path": self.document_path,
            "origin": self.origin.isoformat(),
            "create": len(self.by_kind(CREATE)),
            "update": len(self.by_kind(UPDATE)),
            "complete": len(self.by_kind(COMPLETE)),
            "delete": len(self.by_kind(DELETE)),
            "unchanged": len(self.unchanged),
        }


def _index_entries(entries: Iterable[SyncEntry]) -> dict[str, SyncEntry]:
    indexed: dict[str, SyncEntry] = {}
    for entry in entries:
        indexed.setdefault(entry.identifier, entry)
    return indexed


def plan_reconciliation(
    todos: list[TodoRecord],
    document_path: str,
    existing_entries: list[SyncEntry],
    origin: datetime,
) -> ReconcilePlan:
    """Decide the remote actions for one document without touching anything.

    Incomplete todos are stacked back to back from ``origin`` in document
    order; every one of them consumes a slot whether or not it needs a write.
    Completed todos only annotate an already-synced event and take no slot.
    Entries of this document that no todo claims are deleted last.
    """
    scoped = [entry for entry in existing_entries if entry.document_path == document_path]
    by_identifier = _index_entries(scoped)
    plan = ReconcilePlan(document_path=document_path, origin=origin)
    cursor = origin
    scheduled: set[str] = set()

    for todo in todos:
        if todo.completed:
            plan.present.add(todo.identifier)
            entry = by_identifier.get(todo.identifier)
            if entry is None:
                plan.untracked_completed.append(todo.identifier)
                continue
            plan.actions.append(
                SyncAction(
                    kind=COMPLETE,
                    identifier=todo.identifier,
                    remote_event_id=entry.remote_event_id,
                    text=todo.text,
                    estimated_minutes=todo.estimated_minutes,
                    actual_minutes=todo.actual_minutes,
                    source_line=todo.source_line,
                )
            )
            continue

        slot_end = cursor + timedelta(minutes=todo.estimated_minutes)
        # Identical text and estimate collapse to one identity, hence one event.
        first_occurrence = todo.identifier not in scheduled
        scheduled.add(todo.identifier)
        plan.present.add(todo.identifier)
        entry = by_identifier.get(todo.identifier)

        if not first_occurrence:
            plan.unchanged.append(todo.identifier)
        elif entry is None:
            plan.actions.append(
                SyncAction(
                    kind=CREATE,
                    identifier=todo.identifier,
                    text=todo.text,
                    start=cursor,
                    end=slot_end,
                    estimated_minutes=todo.estimated_minutes,
                    source_line=todo.source_line,
                )
            )
        elif entry.last_known_text != todo.text or entry.last_known_estimated_minutes != todo.estimated_minutes:
            plan.actions.append(
                SyncAction(
                    kind=UPDATE,
                    identifier=todo.identifier,
                    remote_event_id=entry.remote_event_id,
                    text=todo.text,
                    start=cursor,
                    end=slot_end,
                    estimated_minutes=todo.estimated_minutes,
                    source_line=todo.source_line,
                )
            )
        else:
            plan.unchanged.append(todo.identifier)

        cursor = slot_end

    for entry in scoped:
        if entry.identifier in plan.present:
            continue
        plan.actions.append(
            SyncAction(
                kind=DELETE,
                identifier=entry.identifier,
                remote_event_id=entry.remote_event_id,
                text=entry.last_known_text,
                estimated_minutes=entry.last_known_estimated_minutes,
            )
        )

    return plan
