from __future__ import annotations

import errno
import json
import logging
import os
import threading
from pathlib import Path
from typing import Any, Iterable

from calsync.models import SyncEntry

logger = logging.getLogger(__name__)


class SyncStore:
    """Durable identifier -> remote event bindings.

    The file is read wholesale and rewritten wholesale. A missing file is an
    empty store; unreadable or malformed content is logged and also treated as
    empty so a sync pass can continue (at the cost of possible duplicate
    creates for todos that were already synced).
    """

    def __init__(self, data_path: str | os.PathLike[str]) -> None:
        self.data_path = Path(data_path)
        self._lock = threading.RLock()

    def load_all(self) -> list[SyncEntry]:
        with self._lock:
            if not self.data_path.exists():
                return []
            try:
                raw = self.data_path.read_text(encoding="utf-8")
                payload = json.loads(raw) if raw.strip() else {"records": []}
            except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
                logger.error("Sync data at %s is unreadable, starting empty: %s", self.data_path, exc)
                return []
            records = payload.get("records") if isinstance(payload, dict) else None
            if not isinstance(records, list):
                logger.error("Sync data at %s has no records list, starting empty", self.data_path)
                return []
            entries: list[SyncEntry] = []
            for item in records:
                if not isinstance(item, dict):
                    logger.warning("Skipping non-object sync record: %r", item)
                    continue
                try:
                    entries.append(SyncEntry.from_dict(item))
                except (TypeError, ValueError) as exc:
                    logger.warning("Skipping malformed sync record %r: %s", item, exc)
            return entries

    def load(self, document_path: str | None = None) -> list[SyncEntry]:
        entries = self.load_all()
        if document_path is None:
            return entries
        return [entry for entry in entries if entry.document_path == document_path]

    def save(self, entries: Iterable[SyncEntry]) -> None:
        payload: dict[str, Any] = {"records": [entry.to_dict() for entry in entries]}
        text = json.dumps(payload, ensure_ascii=False, indent=2)
        with self._lock:
            self.data_path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.data_path.with_suffix(self.data_path.suffix + ".tmp")
            tmp_path.write_text(text, encoding="utf-8")
            try:
                tmp_path.replace(self.data_path)
            except OSError as exc:
                if exc.errno != errno.EBUSY:
                    raise
                self.data_path.write_text(text, encoding="utf-8")
                if tmp_path.exists():
                    tmp_path.unlink()

    def replace_document(self, document_path: str, entries: Iterable[SyncEntry]) -> list[SyncEntry]:
        """Swap one document's entries, keeping other documents' entries in place."""
        with self._lock:
            current = self.load_all()
            replacement = list(entries)
            merged: list[SyncEntry] = []
            inserted = False
            for entry in current:
                if entry.document_path != document_path:
                    merged.append(entry)
                elif not inserted:
                    merged.extend(replacement)
                    inserted = True
            if not inserted:
                merged.extend(replacement)
            self.save(merged)
            return merged
